# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Orchestrator error taxonomy and the Result type carried across the facade.

These exceptions give every failure in detection, resolution, planning and
supervision a stable kind that the control surface can report, without leaking
subprocess or asyncio exception types to upper layers.

Design Pattern:
    Components raise these exceptions internally. The supervisor and the
    orchestrator facade catch them at their boundary and turn them into a
    failed Result plus an ``error`` event; nothing propagates to callers as an
    uncaught fault.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Wire codes for error kinds."""

    VALIDATION = "validation"
    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    PROTOCOL_UNSUPPORTED = "protocol_unsupported"
    SESSION_BUSY = "session_busy"
    INVALID_TRANSITION = "invalid_transition"
    PROCESS_FAILURE = "process_failure"
    TIMEOUT = "timeout"


class OrchestratorError(Exception):
    """Base exception for orchestrator errors.

    Attributes:
        kind: ErrorKind reported to callers
        detail: Optional structured context (field name, exit code, ...)
    """

    kind: ErrorKind = ErrorKind.PROCESS_FAILURE

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        """Initialize orchestrator error.

        Args:
            message: Human-readable error description
            detail: Structured context for the control surface
        """
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class ValidationError(OrchestratorError):
    """Bad profile, endpoint or request field (reported, never fatal).

    Raised for:
    - Endpoint host/port/mode problems
    - Encoding profile fields out of range
    - Unknown capture source, profile or server ids
    """

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: str | None = None, errors: list["ValidationError"] | None = None):
        """Initialize validation error.

        Args:
            message: Human-readable error description
            field: Name of the offending field, if a single one
            errors: Individual field errors when several were found at once
        """
        detail: dict[str, Any] = {}
        if field:
            detail["field"] = field
        if errors:
            detail["errors"] = [{"field": e.field, "message": e.message} for e in errors]
        super().__init__(message, detail)
        self.field = field
        self.errors = errors or []

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationError):
            return NotImplemented
        return (self.field, self.message) == (other.field, other.message)

    def __hash__(self) -> int:
        return hash((self.field, self.message))

    def __repr__(self) -> str:
        return f"ValidationError(field={self.field!r}, message={self.message!r})"


class CapabilityUnavailable(OrchestratorError):
    """No encoding engine could be found at all (fatal to any session start)."""

    kind = ErrorKind.CAPABILITY_UNAVAILABLE


class ProtocolUnsupported(OrchestratorError):
    """SRT was requested, the engine lacks it and the caller declined fallback."""

    kind = ErrorKind.PROTOCOL_UNSUPPORTED


class SessionBusy(OrchestratorError):
    """A session is already active (exclusivity violation, no state change)."""

    kind = ErrorKind.SESSION_BUSY


class InvalidTransition(OrchestratorError):
    """Operation is not legal in the session's current state."""

    kind = ErrorKind.INVALID_TRANSITION


class ProcessFailure(OrchestratorError):
    """Engine exited unexpectedly, reported a failure, or could not be spawned.

    Attributes:
        exit_code: Process exit code, None if it never ran or is still running
        last_line: Last diagnostic line seen from the engine
    """

    kind = ErrorKind.PROCESS_FAILURE

    def __init__(self, message: str, exit_code: int | None = None, last_line: str | None = None):
        detail: dict[str, Any] = {}
        if exit_code is not None:
            detail["exit_code"] = exit_code
        if last_line:
            detail["last_line"] = last_line
        super().__init__(message, detail)
        self.exit_code = exit_code
        self.last_line = last_line


class ProbeTimeout(OrchestratorError):
    """A bounded probe or shutdown exceeded its deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, timeout_s: float | None = None):
        super().__init__(message, {"timeout_s": timeout_s} if timeout_s is not None else None)
        self.timeout_s = timeout_s


@dataclass(frozen=True)
class Result:
    """Outcome of a facade or supervisor operation."""

    ok: bool
    value: Any = None
    error: OrchestratorError | None = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: OrchestratorError) -> "Result":
        return cls(ok=False, error=error)

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        assert self.error is not None
        return {"ok": False, "error": self.error.to_dict()}
