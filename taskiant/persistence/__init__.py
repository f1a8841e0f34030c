"""
Taskiant Persistence Layer

Encrypted SQLite store, schema, query engine and backups.
The open store handle is passed explicitly; there is no module-level connection.
"""

from taskiant.persistence.backup import BackupManager
from taskiant.persistence.models import (
    BackupEntry,
    # Aggregates
    DayAggregate,
    # Core entities
    Label,
    PomodoroSession,
    Project,
    Stats,
    Task,
)
from taskiant.persistence.repository import TaskRepository, build_update
from taskiant.persistence.schema import ensure_schema
from taskiant.persistence.store import EncryptedStore, check_exists

__all__ = [
    # Core entities
    "Project",
    "Task",
    "Label",
    "PomodoroSession",
    # Aggregates
    "DayAggregate",
    "Stats",
    "BackupEntry",
    # Store
    "EncryptedStore",
    "check_exists",
    "ensure_schema",
    # Query engine
    "TaskRepository",
    "build_update",
    # Backups
    "BackupManager",
]
