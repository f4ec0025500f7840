# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Encoding engine discovery and short-lived probes."""

from .detector import CapabilityDetector, parse_protocols, parse_version, platform_candidates
from .probe import ProbeResult, check_endpoint, run_probe


__all__ = [
    "CapabilityDetector",
    "ProbeResult",
    "check_endpoint",
    "parse_protocols",
    "parse_version",
    "platform_candidates",
    "run_probe",
]
