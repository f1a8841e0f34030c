"""
Taskiant Repository - Query engine over an open EncryptedStore

Provides all task, project, label, pomodoro and settings operations.
The repository never opens or closes the store; it is handed an explicit
store handle and uses its single connection.

Conventions:
- Missing rows are a None / False result, never an exception
- Partial updates touch exactly the recognized keys present in `changes`;
  an update with no recognized keys returns None and writes nothing
- Creates and updates return the row as re-read after the write
- Uniqueness and foreign-key failures raise ConstraintViolationError, except
  where a boolean result is documented (label association)

Hierarchy:
    Tree reads use a recursive CTE seeded by root tasks. Each node carries
    depth (root = 0) and path, the '/'-joined 10-digit zero-padded ids of its
    ancestors and itself. Sorting by path alone yields a pre-order walk of
    the whole forest.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any

from taskiant.config import DEFAULT_MAX_NOTES_LENGTH, DEFAULT_MAX_TREE_DEPTH
from taskiant.exceptions import ConstraintViolationError, ValidationError
from taskiant.persistence.models import (
    DEFAULT_LABEL_COLOR,
    DEFAULT_POMO_TARGET,
    DEFAULT_PRIORITY,
    DEFAULT_PROJECT_ICON,
    DayAggregate,
    Label,
    PomodoroSession,
    Project,
    Stats,
    Task,
    now_iso,
    today_iso,
)
from taskiant.persistence.store import EncryptedStore

logger = logging.getLogger(__name__)

# Updatable columns, in the order they appear in generated SET clauses
PROJECT_FIELDS = ("name", "icon", "sort_order")
TASK_FIELDS = (
    "title",
    "notes",
    "priority",
    "due_date",
    "start_time",
    "is_completed",
    "pomo_target",
    "project_id",
    "parent_id",
)
TIME_BLOCK_FIELDS = ("due_date", "start_time")

_START_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

_TREE_SQL = """
WITH RECURSIVE task_tree AS (
    SELECT tasks.*, 0 AS depth, printf('%010d', tasks.id) AS path
    FROM tasks
    WHERE {seed}

    UNION ALL

    SELECT t.*, tt.depth + 1, tt.path || '/' || printf('%010d', t.id)
    FROM tasks t
    INNER JOIN task_tree tt ON t.parent_id = tt.id
    WHERE tt.depth < ?
)
SELECT task_tree.*, projects.name AS project_name, projects.icon AS project_icon
FROM task_tree
LEFT JOIN projects ON task_tree.project_id = projects.id
ORDER BY {order}
"""

# Tree orderings
ORDER_BY_PATH = "task_tree.path"
ORDER_BY_PRIORITY = "task_tree.priority ASC, task_tree.path"
ORDER_BY_START_TIME = (
    "task_tree.start_time IS NULL, task_tree.start_time ASC, "
    "task_tree.priority ASC, task_tree.path"
)


# ============================================================================
# UPDATE BUILDER & VALIDATION
# ============================================================================


def build_update(
    table: str,
    allowed_fields: Iterable[str],
    changes: Mapping[str, Any],
) -> tuple[str, list[Any]] | None:
    """
    Build a minimal UPDATE for the recognized keys present in changes.

    Column names only ever come from allowed_fields; values are bound.

    Returns:
        (sql, params) where sql ends in "WHERE id = ?" and params excludes
        the id, or None if no recognized key is present
    """
    columns = [name for name in allowed_fields if name in changes]
    if not columns:
        return None
    assignments = ", ".join(f"{name} = ?" for name in columns)
    return (
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        [changes[name] for name in columns],
    )


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string", field=field, value=value)
    return value


def _check_priority(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 4:
        raise ValidationError("priority must be an integer from 1 to 4", field="priority", value=value)
    return value


def _check_pomo_target(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("pomo_target must be a non-negative integer", field="pomo_target", value=value)
    return value


def _date_param(value: date | str | None, field: str = "due_date") -> str | None:
    """Normalize a date or YYYY-MM-DD string to the stored text form."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(value).isoformat()
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date", field=field, value=value)


def _time_param(value: str | None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not _START_TIME_RE.match(value):
        raise ValidationError("start_time must be HH:MM", field="start_time", value=value)
    return value


def _parse_timestamp(value: datetime | str | None, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO timestamp", field=field, value=value)


class TaskRepository:
    """
    Query engine for the Taskiant store.

    Usage:
        with EncryptedStore.open(path, password, key=key) as store:
            repo = TaskRepository(store)
            project = repo.create_project("Work", icon="💼")
            task = repo.create_task("Write report", project_id=project.id)
            tree = repo.get_tasks(project.id)
    """

    def __init__(
        self,
        store: EncryptedStore,
        max_notes_length: int = DEFAULT_MAX_NOTES_LENGTH,
        max_tree_depth: int = DEFAULT_MAX_TREE_DEPTH,
    ):
        self.store = store
        self.max_notes_length = max_notes_length
        self.max_tree_depth = max_tree_depth

    @property
    def conn(self) -> sqlite3.Connection:
        """Connection of the underlying store; raises if it is closed."""
        return self.store.connection

    @contextmanager
    def _constraints(self, action: str) -> Generator[None, None, None]:
        """Translate integrity failures into ConstraintViolationError."""
        try:
            yield
        except sqlite3.IntegrityError as e:
            logger.warning(f"Constraint violation during {action}: {e}")
            raise ConstraintViolationError(f"Could not {action}", {"error": str(e)}) from e

    def _check_notes(self, value: Any) -> str | None:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError("notes must be a string", field="notes", value=value)
        if len(value) > self.max_notes_length:
            raise ValidationError(
                f"notes must be at most {self.max_notes_length} characters",
                field="notes",
                value=len(value),
            )
        return value

    # =========================================================================
    # PROJECT OPERATIONS
    # =========================================================================

    def list_projects(self) -> list[Project]:
        """All projects in display order."""
        rows = self.conn.execute(
            "SELECT * FROM projects ORDER BY sort_order ASC, created_at ASC, id ASC"
        ).fetchall()
        return [Project.from_row(row) for row in rows]

    def get_project(self, project_id: int) -> Project | None:
        row = self.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return Project.from_row(row) if row else None

    def create_project(self, name: str, icon: str = DEFAULT_PROJECT_ICON) -> Project:
        """
        Create a project at the end of the display order.

        The first project gets sort_order 0, each later one max + 1.
        """
        _require_text(name, "name")
        with self._constraints("create project"), self.store.transaction() as cursor:
            cursor.execute("SELECT COALESCE(MAX(sort_order), -1) + 1 FROM projects")
            sort_order = cursor.fetchone()[0]
            cursor.execute(
                "INSERT INTO projects (name, icon, sort_order, created_at) VALUES (?, ?, ?, ?)",
                (name, icon or DEFAULT_PROJECT_ICON, sort_order, now_iso()),
            )
            project_id = cursor.lastrowid

        logger.debug(f"Created project {project_id} '{name}' at position {sort_order}")
        return self.get_project(project_id)  # type: ignore[arg-type, return-value]

    def update_project(self, project_id: int, changes: Mapping[str, Any]) -> Project | None:
        if "name" in changes:
            _require_text(changes["name"], "name")
        update = build_update("projects", PROJECT_FIELDS, changes)
        if update is None:
            return None
        sql, params = update
        with self._constraints("update project"):
            self.conn.execute(sql, [*params, project_id])
        return self.get_project(project_id)

    def delete_project(self, project_id: int) -> bool:
        """Delete a project; its tasks, subtasks and sessions cascade."""
        cursor = self.conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        if cursor.rowcount:
            logger.info(f"Deleted project {project_id}")
        return cursor.rowcount > 0

    # =========================================================================
    # TASK HIERARCHY
    # =========================================================================

    def _tree(self, seed: str, params: Iterable[Any], order: str) -> list[Task]:
        sql = _TREE_SQL.format(seed=seed, order=order)
        rows = self.conn.execute(sql, [*params, self.max_tree_depth]).fetchall()
        return [Task.from_row(row) for row in rows]

    def get_tasks(self, project_id: int | None) -> list[Task]:
        """
        All tasks of a project as a pre-ordered tree.

        project_id None returns the unassigned tasks.
        """
        return self._tree(
            "tasks.parent_id IS NULL AND tasks.project_id IS ?", (project_id,), ORDER_BY_PATH
        )

    def get_tasks_by_date(self, day: date | str) -> list[Task]:
        """Trees rooted at tasks due on day, by priority then path."""
        return self._tree(
            "tasks.parent_id IS NULL AND tasks.due_date = ?", (_date_param(day),), ORDER_BY_PRIORITY
        )

    def get_tasks_today(self, today: date | str | None = None) -> list[Task]:
        return self.get_tasks_by_date(today or today_iso())

    def get_tasks_for_date(self, day: date | str) -> list[Task]:
        """Trees rooted at tasks due on day, ordered for time blocking."""
        return self._tree(
            "tasks.parent_id IS NULL AND tasks.due_date = ?",
            (_date_param(day),),
            ORDER_BY_START_TIME,
        )

    def get_subtree(self, task_id: int) -> list[Task]:
        """A task and all its descendants; depth is relative to the task."""
        return self._tree("tasks.id = ?", (task_id,), ORDER_BY_PATH)

    # =========================================================================
    # TASK OPERATIONS
    # =========================================================================

    def get_task(self, task_id: int) -> Task | None:
        row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return Task.from_row(row) if row else None

    def get_all_active_tasks(self) -> list[Task]:
        """Incomplete tasks with their project, by priority then due date (undated last)."""
        rows = self.conn.execute(
            """
            SELECT t.*, p.name AS project_name, p.icon AS project_icon
            FROM tasks t
            LEFT JOIN projects p ON t.project_id = p.id
            WHERE t.is_completed = 0
            ORDER BY t.priority ASC, t.due_date IS NULL, t.due_date ASC, t.id ASC
            """
        ).fetchall()
        return [Task.from_row(row) for row in rows]

    def create_task(
        self,
        title: str,
        project_id: int | None = None,
        parent_id: int | None = None,
        notes: str | None = None,
        priority: int = DEFAULT_PRIORITY,
        due_date: date | str | None = None,
        pomo_target: int = DEFAULT_POMO_TARGET,
        start_time: str | None = None,
    ) -> Task:
        """
        Create a task.

        Raises:
            ValidationError: On an invalid field value
            ConstraintViolationError: If project_id or parent_id does not exist
        """
        _require_text(title, "title")
        values = (
            project_id,
            parent_id,
            title,
            self._check_notes(notes),
            _check_priority(priority),
            _date_param(due_date),
            _time_param(start_time),
            _check_pomo_target(pomo_target),
            now_iso(),
        )
        with self._constraints("create task"):
            cursor = self.conn.execute(
                """
                INSERT INTO tasks (
                    project_id, parent_id, title, notes, priority,
                    due_date, start_time, pomo_target, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                values,
            )
        return self.get_task(cursor.lastrowid)  # type: ignore[arg-type, return-value]

    def _normalize_task_changes(self, task_id: int, changes: Mapping[str, Any]) -> dict[str, Any]:
        """
        Validate recognized fields. completed_at follows is_completed only
        when the stored flag actually changes.
        """
        normalized: dict[str, Any] = {}
        for name in TASK_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name == "title":
                value = _require_text(value, "title")
            elif name == "notes":
                value = self._check_notes(value)
            elif name == "priority":
                value = _check_priority(value)
            elif name == "due_date":
                value = _date_param(value)
            elif name == "start_time":
                value = _time_param(value)
            elif name == "pomo_target":
                value = _check_pomo_target(value)
            elif name == "is_completed":
                value = 1 if value else 0
                row = self.conn.execute(
                    "SELECT is_completed FROM tasks WHERE id = ?", (task_id,)
                ).fetchone()
                if row is not None and row["is_completed"] != value:
                    normalized["completed_at"] = now_iso() if value else None
            elif name == "parent_id" and value is not None:
                self._check_reparent(task_id, value)
            normalized[name] = value
        return normalized

    def _check_reparent(self, task_id: int, parent_id: int) -> None:
        """Reject a parent that would put the task inside its own subtree."""
        if parent_id == task_id:
            raise ValidationError("A task cannot be its own parent", field="parent_id", value=parent_id)
        # Ancestor walk is unbounded; UNION stops on an existing cycle
        row = self.conn.execute(
            """
            WITH RECURSIVE ancestors(id) AS (
                SELECT ?
                UNION
                SELECT t.parent_id FROM tasks t
                JOIN ancestors a ON t.id = a.id
                WHERE t.parent_id IS NOT NULL
            )
            SELECT 1 FROM ancestors WHERE id = ? LIMIT 1
            """,
            (parent_id, task_id),
        ).fetchone()
        if row is not None:
            raise ValidationError(
                "A task cannot be moved under its own descendant", field="parent_id", value=parent_id
            )

    def update_task(self, task_id: int, changes: Mapping[str, Any]) -> Task | None:
        """
        Apply a partial update.

        Setting is_completed also sets completed_at (true) or clears it (false).

        Returns:
            The updated task, or None if nothing recognized was given or the
            task does not exist
        """
        normalized = self._normalize_task_changes(task_id, changes)
        update = build_update("tasks", (*TASK_FIELDS, "completed_at"), normalized)
        if update is None:
            return None
        sql, params = update
        with self._constraints("update task"):
            self.conn.execute(sql, [*params, task_id])
        return self.get_task(task_id)

    def delete_task(self, task_id: int) -> bool:
        """Delete a task; subtasks, sessions and label links cascade."""
        cursor = self.conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        return cursor.rowcount > 0

    def toggle_task(self, task_id: int) -> Task | None:
        """Flip is_completed and set or clear completed_at in one transaction."""
        with self.store.transaction() as cursor:
            cursor.execute("SELECT is_completed FROM tasks WHERE id = ?", (task_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            completed = 0 if row["is_completed"] else 1
            cursor.execute(
                "UPDATE tasks SET is_completed = ?, completed_at = ? WHERE id = ?",
                (completed, now_iso() if completed else None, task_id),
            )
        return self.get_task(task_id)

    def move_to_today(self, task_id: int, today: date | str | None = None) -> Task | None:
        """Reschedule a task to today."""
        day = _date_param(today) if today else today_iso()
        cursor = self.conn.execute("UPDATE tasks SET due_date = ? WHERE id = ?", (day, task_id))
        if cursor.rowcount == 0:
            return None
        return self.get_task(task_id)

    def copy_to_today(self, task_id: int, today: date | str | None = None) -> Task | None:
        """
        Create a detached copy of a task due today.

        Title, notes, priority, pomo_target and project carry over. The copy
        has no parent and no subtasks.
        """
        source = self.get_task(task_id)
        if source is None:
            return None
        day = _date_param(today) if today else today_iso()
        with self._constraints("copy task"):
            cursor = self.conn.execute(
                """
                INSERT INTO tasks (project_id, parent_id, title, notes, priority, due_date, pomo_target, created_at)
                VALUES (?, NULL, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source.project_id,
                    source.title,
                    source.notes,
                    source.priority,
                    day,
                    source.pomo_target,
                    now_iso(),
                ),
            )
        return self.get_task(cursor.lastrowid)  # type: ignore[arg-type]

    # =========================================================================
    # TIME BLOCKING & CALENDAR
    # =========================================================================

    def update_task_time_block(self, task_id: int, changes: Mapping[str, Any]) -> Task | None:
        """Partial update restricted to due_date and start_time."""
        normalized: dict[str, Any] = {}
        if "due_date" in changes:
            normalized["due_date"] = _date_param(changes["due_date"])
        if "start_time" in changes:
            normalized["start_time"] = _time_param(changes["start_time"])
        update = build_update("tasks", TIME_BLOCK_FIELDS, normalized)
        if update is None:
            return None
        sql, params = update
        self.conn.execute(sql, [*params, task_id])
        return self.get_task(task_id)

    def get_time_blocked_tasks(self, day: date | str) -> list[Task]:
        """Tasks due on day with a start time, earliest first."""
        rows = self.conn.execute(
            """
            SELECT t.*, p.name AS project_name, p.icon AS project_icon
            FROM tasks t
            LEFT JOIN projects p ON t.project_id = p.id
            WHERE t.due_date = ? AND t.start_time IS NOT NULL
            ORDER BY t.start_time ASC, t.priority ASC, t.id ASC
            """,
            (_date_param(day),),
        ).fetchall()
        return [Task.from_row(row) for row in rows]

    def get_tasks_for_month(self, year: int, month: int) -> list[DayAggregate]:
        """Per-day task counts for [year-month-01, next month-01)."""
        if not 1 <= month <= 12:
            raise ValidationError("month must be 1-12", field="month", value=month)
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        rows = self.conn.execute(
            """
            SELECT
                due_date,
                COUNT(*) AS total_tasks,
                SUM(CASE WHEN is_completed = 1 THEN 1 ELSE 0 END) AS completed_tasks,
                SUM(CASE WHEN is_completed = 0 THEN 1 ELSE 0 END) AS incomplete_tasks
            FROM tasks
            WHERE due_date >= ? AND due_date < ?
            GROUP BY due_date
            ORDER BY due_date
            """,
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        return [DayAggregate.from_row(row) for row in rows]

    # =========================================================================
    # STATS
    # =========================================================================

    def get_stats(self, today: date | str | None = None) -> Stats:
        """
        Dashboard counters from four separate queries.

        completed_today counts tasks whose completed_at falls on today,
        regardless of due date.
        """
        day = _date_param(today) if today else today_iso()

        due_today = self.conn.execute(
            """
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN is_completed = 1 THEN 1 ELSE 0 END) AS completed
            FROM tasks WHERE due_date = ?
            """,
            (day,),
        ).fetchone()

        all_tasks = self.conn.execute(
            """
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN is_completed = 1 THEN 1 ELSE 0 END) AS completed
            FROM tasks
            """
        ).fetchone()

        completed_today = self.conn.execute(
            "SELECT COUNT(*) FROM tasks WHERE completed_at IS NOT NULL AND date(completed_at) = ?",
            (day,),
        ).fetchone()[0]

        pomos_today = self.conn.execute(
            "SELECT COUNT(*) FROM pomodoro_sessions WHERE date(start_time) = ? AND was_completed = 1",
            (day,),
        ).fetchone()[0]

        return Stats(
            today_total=due_today["total"] or 0,
            today_completed=due_today["completed"] or 0,
            all_total=all_tasks["total"] or 0,
            all_completed=all_tasks["completed"] or 0,
            completed_today=completed_today or 0,
            pomos_today=pomos_today or 0,
        )

    # =========================================================================
    # POMODORO OPERATIONS
    # =========================================================================

    def get_pomodoro(self, session_id: int) -> PomodoroSession | None:
        row = self.conn.execute(
            "SELECT * FROM pomodoro_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return PomodoroSession.from_row(row) if row else None

    def start_pomodoro(self, task_id: int) -> PomodoroSession:
        """
        Start a session for a task.

        Raises:
            ConstraintViolationError: If the task does not exist
        """
        with self._constraints("start pomodoro"):
            cursor = self.conn.execute(
                "INSERT INTO pomodoro_sessions (task_id, start_time) VALUES (?, ?)",
                (task_id, now_iso()),
            )
        return self.get_pomodoro(cursor.lastrowid)  # type: ignore[arg-type, return-value]

    def complete_pomodoro(self, session_id: int) -> PomodoroSession | None:
        """
        Complete a session and credit its task with one pomodoro.

        Both writes share a transaction. A missing session returns None and
        credits nothing; an already completed session is returned unchanged.
        """
        with self.store.transaction() as cursor:
            cursor.execute(
                "SELECT task_id, was_completed FROM pomodoro_sessions WHERE id = ?", (session_id,)
            )
            row = cursor.fetchone()
            if row is None:
                return None
            if not row["was_completed"]:
                cursor.execute(
                    "UPDATE pomodoro_sessions SET end_time = ?, was_completed = 1 WHERE id = ?",
                    (now_iso(), session_id),
                )
                cursor.execute(
                    "UPDATE tasks SET pomo_completed = pomo_completed + 1 WHERE id = ?",
                    (row["task_id"],),
                )
        return self.get_pomodoro(session_id)

    def cancel_pomodoro(self, session_id: int) -> bool:
        """Delete a session that has not been completed. Completed sessions are kept."""
        cursor = self.conn.execute(
            "DELETE FROM pomodoro_sessions WHERE id = ? AND was_completed = 0", (session_id,)
        )
        return cursor.rowcount > 0

    def get_task_pomodoros(self, task_id: int) -> list[PomodoroSession]:
        rows = self.conn.execute(
            "SELECT * FROM pomodoro_sessions WHERE task_id = ? ORDER BY start_time DESC, id DESC",
            (task_id,),
        ).fetchall()
        return [PomodoroSession.from_row(row) for row in rows]

    def get_today_pomodoros(self, today: date | str | None = None) -> list[PomodoroSession]:
        """Sessions started today with their task title, newest first."""
        day = _date_param(today) if today else today_iso()
        rows = self.conn.execute(
            """
            SELECT ps.*, t.title AS task_title, t.project_id
            FROM pomodoro_sessions ps
            LEFT JOIN tasks t ON ps.task_id = t.id
            WHERE date(ps.start_time) = ?
            ORDER BY ps.start_time DESC, ps.id DESC
            """,
            (day,),
        ).fetchall()
        return [PomodoroSession.from_row(row) for row in rows]

    def add_manual_pomodoro(
        self,
        task_id: int,
        start_time: datetime | str,
        end_time: datetime | str | None = None,
        was_completed: bool = True,
    ) -> PomodoroSession:
        """
        Backfill a session. A completed one also credits the task.

        Raises:
            ValidationError: If a timestamp is malformed or end precedes start
            ConstraintViolationError: If the task does not exist
        """
        started = _parse_timestamp(start_time, "start_time")
        if started is None:
            raise ValidationError("start_time is required", field="start_time")
        ended = _parse_timestamp(end_time, "end_time")
        if ended is not None:
            if (started.tzinfo is None) != (ended.tzinfo is None):
                raise ValidationError(
                    "start_time and end_time must both have a UTC offset or neither",
                    field="end_time",
                    value=end_time,
                )
            if ended < started:
                raise ValidationError(
                    "end_time must not precede start_time", field="end_time", value=end_time
                )
        start = started.isoformat(timespec="seconds")
        end = ended.isoformat(timespec="seconds") if ended else None

        with self._constraints("add pomodoro"), self.store.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO pomodoro_sessions (task_id, start_time, end_time, was_completed)
                VALUES (?, ?, ?, ?)
                """,
                (task_id, start, end, 1 if was_completed else 0),
            )
            session_id = cursor.lastrowid
            if was_completed:
                cursor.execute(
                    "UPDATE tasks SET pomo_completed = pomo_completed + 1 WHERE id = ?",
                    (task_id,),
                )
        return self.get_pomodoro(session_id)  # type: ignore[arg-type, return-value]

    # =========================================================================
    # LABEL OPERATIONS
    # =========================================================================

    def list_labels(self) -> list[Label]:
        rows = self.conn.execute("SELECT * FROM labels ORDER BY name ASC").fetchall()
        return [Label.from_row(row) for row in rows]

    def get_label(self, label_id: int) -> Label | None:
        row = self.conn.execute("SELECT * FROM labels WHERE id = ?", (label_id,)).fetchone()
        return Label.from_row(row) if row else None

    def create_label(self, name: str, color: str = DEFAULT_LABEL_COLOR) -> Label:
        """
        Raises:
            ConstraintViolationError: If a label with this name exists
        """
        _require_text(name, "name")
        with self._constraints("create label"):
            cursor = self.conn.execute(
                "INSERT INTO labels (name, color, created_at) VALUES (?, ?, ?)",
                (name, color or DEFAULT_LABEL_COLOR, now_iso()),
            )
        return self.get_label(cursor.lastrowid)  # type: ignore[arg-type, return-value]

    def delete_label(self, label_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM labels WHERE id = ?", (label_id,))
        return cursor.rowcount > 0

    def add_label_to_task(self, task_id: int, label_id: int) -> bool:
        """Link a label to a task. A duplicate link or a missing side returns False."""
        try:
            self.conn.execute(
                "INSERT INTO task_labels (task_id, label_id) VALUES (?, ?)", (task_id, label_id)
            )
        except sqlite3.IntegrityError as e:
            logger.debug(f"Label {label_id} not linked to task {task_id}: {e}")
            return False
        return True

    def remove_label_from_task(self, task_id: int, label_id: int) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM task_labels WHERE task_id = ? AND label_id = ?", (task_id, label_id)
        )
        return cursor.rowcount > 0

    def get_task_labels(self, task_id: int) -> list[Label]:
        rows = self.conn.execute(
            """
            SELECT l.* FROM labels l
            INNER JOIN task_labels tl ON l.id = tl.label_id
            WHERE tl.task_id = ?
            ORDER BY l.name ASC
            """,
            (task_id,),
        ).fetchall()
        return [Label.from_row(row) for row in rows]

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_settings(self) -> dict[str, str]:
        rows = self.conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        return {row["key"]: row["value"] for row in rows}

    def get_setting(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: Any) -> dict[str, str]:
        """Insert or replace a setting. Values are stored as text."""
        _require_text(key, "key")
        text = value if isinstance(value, str) else str(value)
        self.conn.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, text),
        )
        return {"key": key, "value": text}
