"""Explicit result values for operations that can fail in expected ways.

Storage, locking and rollback resolution report failures as data rather than
raising, so that callers branch on ``result.ok`` instead of catching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Closed set of failure kinds surfaced by the core."""

    BUSY = "busy"  # Lock contention, caller may retry later
    SNAPSHOT_FAILED = "snapshot_failed"
    RESTORE_FAILED = "restore_failed"
    REMOTE_ERROR = "remote_error"
    APPLY_FAILED = "apply_failed"
    NOT_FOUND = "not_found"
    INVALID_METADATA = "invalid_metadata"
    NO_PREVIOUS_DEPLOYMENT = "no_previous_deployment"


@dataclass
class Result:
    """Outcome of a fallible operation: a value or an error kind plus message."""

    value: Any = None
    error: ErrorKind | None = None
    message: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None, message: str = "", warnings: list[str] | None = None) -> Result:
        return cls(value=value, message=message, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: ErrorKind, message: str, warnings: list[str] | None = None) -> Result:
        return cls(error=error, message=message, warnings=list(warnings or []))


class RemoteError(Exception):
    """Raised by repository implementations for any network or API problem."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
