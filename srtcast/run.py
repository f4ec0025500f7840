# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT
#!/usr/bin/env python3
"""
Launcher for running the orchestrator from a source checkout without installing it.
Usage: python srtcast/run.py [--config config.yaml] [--log-level debug]
"""

import sys
from pathlib import Path


# Put the checkout root on the path so the srtcast package resolves
parent_dir = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(parent_dir))

if __name__ == "__main__":
    from srtcast.main import run

    run()
