"""
Taskiant - encrypted local data layer for a task manager with Pomodoro tracking.

Projects, hierarchical tasks, labels and focus sessions live in one
password-encrypted SQLite store with rotating backups.
"""

__version__ = "0.1.0"

from taskiant.exceptions import (
    ConfigError,
    ConstraintViolationError,
    InvalidCredentialsError,
    KeyUnavailableError,
    StoreIOError,
    TaskiantError,
    ValidationError,
)

__all__ = [
    "__version__",
    "TaskiantError",
    "ConfigError",
    "InvalidCredentialsError",
    "KeyUnavailableError",
    "StoreIOError",
    "ConstraintViolationError",
    "ValidationError",
]
