"""Exception hierarchy for fleetguard.

Fatal errors (ParseError, JournalWriteError) abort a run before or
immediately upon detection. Item-scoped errors (ProbeError, ActionError)
degrade a single baseline item and never abort the whole run.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FleetguardError(Exception):
    """Base exception for fleetguard errors."""

    pass


@dataclass
class ValidationIssue:
    """A single baseline validation problem.

    Attributes:
        code: Machine-readable code (e.g., "duplicate-id", "cycle").
        message: Human-readable description.
        path: Location in the document (item id or JSON path).

    """

    code: str
    message: str
    path: str = ""

    def as_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"code": self.code, "message": self.message, "path": self.path}


class ParseError(FleetguardError):
    """Baseline document is malformed; no action may be taken."""

    def __init__(self, message: str, issues: list[ValidationIssue] | None = None):
        super().__init__(message)
        self.issues = issues or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.issues:
            return base
        lines = [base] + [f"  [{i.code}] {i.path}: {i.message}" if i.path else f"  [{i.code}] {i.message}" for i in self.issues]
        return "\n".join(lines)


class ProbeError(FleetguardError):
    """The probe mechanism itself failed for one item."""

    pass


class SessionError(FleetguardError):
    """The connection or local process backing a session failed."""

    pass


class CommandTimeout(FleetguardError):
    """A command did not finish within its timeout."""

    def __init__(self, cmd: str, timeout: float | None):
        super().__init__(f"Command timed out after {timeout}s: {cmd}")
        self.cmd = cmd
        self.timeout = timeout


class ActionErrorKind(str, Enum):
    """Reasons an effect backend can fail."""

    TIMEOUT = "timeout"
    EXIT_CODE = "exit_code"
    PERMISSION_DENIED = "permission_denied"
    UNSUPPORTED = "unsupported"
    SESSION = "session"


class ActionError(FleetguardError):
    """An effect backend failed to apply an action."""

    def __init__(self, kind: ActionErrorKind, detail: str = "", *, exit_code: int | None = None):
        self.kind = kind
        self.detail = detail
        self.exit_code = exit_code
        super().__init__(self.reason)

    @property
    def reason(self) -> str:
        """Short reason string recorded in the journal."""
        if self.kind == ActionErrorKind.EXIT_CODE:
            head = f"ExitCode={self.exit_code}"
        elif self.kind == ActionErrorKind.TIMEOUT:
            head = "Timeout"
        elif self.kind == ActionErrorKind.PERMISSION_DENIED:
            head = "PermissionDenied"
        elif self.kind == ActionErrorKind.SESSION:
            head = "SessionError"
        else:
            head = "Unsupported"
        return f"{head}: {self.detail}" if self.detail else head


class JournalWriteError(FleetguardError):
    """History could not be durably recorded; the run must abort."""

    pass


class RunNotFoundError(FleetguardError):
    """No journal run exists for the requested run id."""

    pass


class ConfigError(FleetguardError):
    """Settings file or values are invalid."""

    pass


__all__ = [
    "ActionError",
    "ActionErrorKind",
    "CommandTimeout",
    "ConfigError",
    "FleetguardError",
    "JournalWriteError",
    "ParseError",
    "ProbeError",
    "RunNotFoundError",
    "SessionError",
    "ValidationIssue",
]
