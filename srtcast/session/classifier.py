# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import Config


class LineKind(Enum):
    CONNECTED = "connected"
    FAILURE = "failure"
    PROGRESS = "progress"
    OTHER = "other"


_LINE_SPLIT_RE = re.compile(r"[\r\n]")
_PROGRESS_RE = re.compile(r"(\w+)=\s*(\S+)")


def split_lines(buffer: str) -> tuple[list[str], str]:
    """Split on CR or LF; returns complete lines and the unterminated remainder.

    ffmpeg ends its progress lines with a bare CR, so splitting on LF alone
    would glue every progress update into one line.
    """
    parts = _LINE_SPLIT_RE.split(buffer)
    remainder = parts.pop()
    return [p for p in parts if p.strip()], remainder


def parse_progress(line: str) -> dict[str, str]:
    """Extract key=value pairs from a `frame= ... fps= ... bitrate= ...` line."""
    return {k: v for k, v in _PROGRESS_RE.findall(line)}


@dataclass(frozen=True)
class DiagnosticClassifier:
    """Maps engine diagnostic lines onto session lifecycle signals.

    Failure markers win over connected markers on the same line.
    """

    connected_markers: tuple[str, ...] = ("Connection established", "Opening")
    failure_markers: tuple[str, ...] = ("Connection failed", "Error")

    @classmethod
    def from_config(cls, config: Config | None = None) -> "DiagnosticClassifier":
        config = config or Config()
        return cls(
            connected_markers=tuple(config.get("session.connected_markers", cls.connected_markers)),
            failure_markers=tuple(config.get("session.failure_markers", cls.failure_markers)),
        )

    def classify(self, line: str) -> LineKind:
        if any(marker in line for marker in self.failure_markers):
            return LineKind.FAILURE
        if any(marker in line for marker in self.connected_markers):
            return LineKind.CONNECTED
        if line.lstrip().startswith("frame=") or ("fps=" in line and "bitrate=" in line):
            return LineKind.PROGRESS
        return LineKind.OTHER

    def progress(self, line: str) -> dict[str, Any]:
        return parse_progress(line)
