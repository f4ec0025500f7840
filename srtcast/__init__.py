# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""SRT screen streaming orchestrator."""

__version__ = "1.0.0"
