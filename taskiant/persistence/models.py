"""
Taskiant Persistence Models

Dataclasses that map to SQLite rows for the Taskiant store.
Designed for:
- Name-based row mapping (columns added by migrations may sit in any order)
- Typed dates and timestamps on the Python side, ISO text in the store
- Plain-dict serialization for the boundary layer
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, fields
from datetime import date, datetime
from pathlib import Path
from typing import Any

DEFAULT_PROJECT_ICON = "📁"
DEFAULT_LABEL_COLOR = "#3B82F6"
DEFAULT_PRIORITY = 4
DEFAULT_POMO_TARGET = 1


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================


def now_iso() -> str:
    """Current local time as an ISO string with second resolution."""
    return datetime.now().isoformat(timespec="seconds")


def today_iso() -> str:
    """Current local date as YYYY-MM-DD."""
    return date.today().isoformat()


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse ISO datetime string to datetime object."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None


def parse_date(value: str | date | None) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except (ValueError, TypeError):
        return None


def _column(row: sqlite3.Row, name: str, default: Any = None) -> Any:
    """Read an optional column (joins and legacy tables may lack it)."""
    return row[name] if name in row.keys() else default


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value


class _RowModel:
    """Mixin providing dict serialization for the boundary layer."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _serialize(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]


# ============================================================================
# CORE ENTITIES
# ============================================================================


@dataclass
class Project(_RowModel):
    """
    A project owning a set of tasks.

    Maps to: projects table
    """

    id: int
    name: str
    icon: str = DEFAULT_PROJECT_ICON
    sort_order: int = 0
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Project:
        """Create from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            icon=row["icon"] or DEFAULT_PROJECT_ICON,
            sort_order=row["sort_order"] or 0,
            created_at=parse_datetime(row["created_at"]),
        )


@dataclass
class Task(_RowModel):
    """
    A task, optionally nested under a parent task.

    Maps to: tasks table
    Hierarchical queries fill depth/path; date views also join the
    owning project's name and icon.
    """

    id: int
    title: str
    project_id: int | None = None
    parent_id: int | None = None
    notes: str | None = None
    priority: int = DEFAULT_PRIORITY
    due_date: date | None = None
    start_time: str | None = None  # HH:MM, for time blocking
    is_completed: bool = False
    pomo_target: int = DEFAULT_POMO_TARGET
    pomo_completed: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None

    # Hierarchy annotations
    depth: int | None = None
    path: str | None = None

    # Joined project info
    project_name: str | None = None
    project_icon: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Task:
        """Create from database row."""
        return cls(
            id=row["id"],
            title=row["title"],
            project_id=row["project_id"],
            parent_id=row["parent_id"],
            notes=_column(row, "notes"),
            priority=row["priority"] or DEFAULT_PRIORITY,
            due_date=parse_date(row["due_date"]),
            start_time=_column(row, "start_time"),
            is_completed=bool(row["is_completed"]),
            pomo_target=row["pomo_target"] if row["pomo_target"] is not None else DEFAULT_POMO_TARGET,
            pomo_completed=_column(row, "pomo_completed", 0) or 0,
            created_at=parse_datetime(row["created_at"]),
            completed_at=parse_datetime(row["completed_at"]),
            depth=_column(row, "depth"),
            path=_column(row, "path"),
            project_name=_column(row, "project_name"),
            project_icon=_column(row, "project_icon"),
        )


@dataclass
class Label(_RowModel):
    """
    A named, coloured tag that can be attached to many tasks.

    Maps to: labels table
    """

    id: int
    name: str
    color: str = DEFAULT_LABEL_COLOR
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Label:
        """Create from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            color=row["color"] or DEFAULT_LABEL_COLOR,
            created_at=parse_datetime(_column(row, "created_at")),
        )


@dataclass
class PomodoroSession(_RowModel):
    """
    A focus session tied to a task.

    Maps to: pomodoro_sessions table
    An active session has end_time None and was_completed False.
    """

    id: int
    task_id: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    was_completed: bool = False

    # Joined task info (today's sessions view)
    task_title: str | None = None
    project_id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None and not self.was_completed

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> PomodoroSession:
        """Create from database row."""
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            start_time=parse_datetime(row["start_time"]),
            end_time=parse_datetime(row["end_time"]),
            was_completed=bool(row["was_completed"]),
            task_title=_column(row, "task_title"),
            project_id=_column(row, "project_id"),
        )


# ============================================================================
# AGGREGATES
# ============================================================================


@dataclass
class DayAggregate(_RowModel):
    """Per-day task counts for calendar density."""

    due_date: date
    total_tasks: int = 0
    completed_tasks: int = 0
    incomplete_tasks: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> DayAggregate:
        """Create from aggregate row."""
        return cls(
            due_date=parse_date(row["due_date"]),  # type: ignore[arg-type]
            total_tasks=row["total_tasks"] or 0,
            completed_tasks=row["completed_tasks"] or 0,
            incomplete_tasks=row["incomplete_tasks"] or 0,
        )


@dataclass
class Stats(_RowModel):
    """
    Dashboard counters.

    Built from four independent queries; the numbers are not guaranteed to
    be mutually consistent under concurrent writes.
    """

    today_total: int = 0
    today_completed: int = 0
    all_total: int = 0
    all_completed: int = 0
    completed_today: int = 0
    pomos_today: int = 0


@dataclass
class BackupEntry(_RowModel):
    """A store snapshot in the backup directory."""

    filename: str
    path: Path
    size: int
    created_at: datetime
