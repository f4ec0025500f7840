# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Exclusive streaming session supervision and its event channel."""

from .classifier import DiagnosticClassifier, LineKind, parse_progress, split_lines
from .events import EventBus, EventType, SessionEvent, Subscription
from .supervisor import TERMINAL_STATES, SessionState, SessionSupervisor, StreamingSession


__all__ = [
    "TERMINAL_STATES",
    "DiagnosticClassifier",
    "EventBus",
    "EventType",
    "LineKind",
    "SessionEvent",
    "SessionState",
    "SessionSupervisor",
    "StreamingSession",
    "Subscription",
    "parse_progress",
    "split_lines",
]
