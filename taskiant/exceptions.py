"""
Taskiant - Exception Hierarchy

All Taskiant-specific exceptions inherit from TaskiantError.
Missing rows are not exceptional: the query layer returns None instead.
"""

from typing import Any


class TaskiantError(Exception):
    """Base exception for all Taskiant errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration Errors
class ConfigError(TaskiantError):
    """Raised when configuration is invalid or missing."""

    pass


# Credential Errors
class InvalidCredentialsError(TaskiantError):
    """Raised when the store cannot be decrypted.

    Covers both a wrong password and a corrupted store file; the two are
    not reliably distinguishable from the ciphertext alone.
    """

    pass


class KeyUnavailableError(InvalidCredentialsError):
    """Raised when the persisted store key cannot be recovered.

    Fatal for the open attempt. A new key is never generated in its place,
    since that would orphan the existing encrypted store.
    """

    pass


# Storage Errors
class StoreIOError(TaskiantError):
    """Raised on filesystem failures reading or writing the store or backups."""

    def __init__(self, message: str, path: str | None = None, details: dict[str, Any] | None = None):
        merged = dict(details or {})
        if path is not None:
            merged["path"] = path
        super().__init__(message, merged)
        self.path = path


class StoreClosedError(TaskiantError):
    """Raised when an operation needs an open store but the handle is closed."""

    pass


# Data Errors
class ConstraintViolationError(TaskiantError):
    """Raised on uniqueness or foreign-key violations (e.g. duplicate label name)."""

    pass


class ValidationError(TaskiantError):
    """Raised when input fields fail validation before reaching the store."""

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field
        self.value = value


# State Errors
class StateTransitionError(TaskiantError):
    """Raised when an invalid store lifecycle transition is attempted.

    Includes the current state and the attempted target state for debugging.
    """

    def __init__(self, message: str, from_state: str, to_state: str):
        super().__init__(message, {"from_state": from_state, "to_state": to_state})
        self.from_state = from_state
        self.to_state = to_state
