"""
Error taxonomy for the mutual-state engine.

Core modules raise these exceptions; the engine and the review workflow
catch them at their boundary and hand back typed results instead.
"""

from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    LOCKED = "locked"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


# Stable message class per failure kind, used by presentation layers
ERROR_MESSAGES = {
    ErrorKind.INVALID_ARGUMENT: "Invalid request",
    ErrorKind.NOT_FOUND: "User not found or daily ID expired",
    ErrorKind.ALREADY_EXISTS: "Nothing changed",
    ErrorKind.LOCKED: "Locked until the daily reset",
    ErrorKind.CONFLICT: "Too many concurrent updates, please retry",
    ErrorKind.UNAVAILABLE: "Storage unavailable",
}


class MutualStateError(Exception):
    """Base class for engine failures."""

    kind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str = None):
        super().__init__(message or ERROR_MESSAGES[self.kind])
        self.message = message or ERROR_MESSAGES[self.kind]


class InvalidArgumentError(MutualStateError):
    kind = ErrorKind.INVALID_ARGUMENT


class NotFoundError(MutualStateError):
    kind = ErrorKind.NOT_FOUND


class AlreadyExistsError(MutualStateError):
    kind = ErrorKind.ALREADY_EXISTS


class LockedError(MutualStateError):
    """Raised when a lock blocks the operation; carries the expiry for countdowns."""

    kind = ErrorKind.LOCKED

    def __init__(self, lock_expires_at: Optional[datetime], message: str = None):
        super().__init__(message)
        self.lock_expires_at = lock_expires_at


class ConflictError(MutualStateError):
    kind = ErrorKind.CONFLICT


class UnavailableError(MutualStateError):
    kind = ErrorKind.UNAVAILABLE


class TransactionOrderError(RuntimeError):
    """Programming error: a transaction read after writing, or wrote without reading."""
