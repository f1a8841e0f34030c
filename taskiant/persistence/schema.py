"""
Taskiant schema and migrations.

ensure_schema() is idempotent and runs on every open:
- CREATE TABLE / INDEX IF NOT EXISTS for all six tables
- additive column migrations, applied only when PRAGMA table_info shows the
  column is missing; any DDL error propagates
- default settings inserted only when absent

There is no version table and no down-migration path. Migrations may only
add nullable or defaulted columns; nothing is ever dropped or rewritten.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

TABLES = (
    "projects",
    "tasks",
    "labels",
    "task_labels",
    "pomodoro_sessions",
    "settings",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL CHECK(length(name) > 0),
    icon TEXT DEFAULT '📁',
    sort_order INTEGER DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER,
    parent_id INTEGER DEFAULT NULL,
    title TEXT NOT NULL CHECK(length(title) > 0),
    notes TEXT,
    priority INTEGER DEFAULT 4 CHECK(priority BETWEEN 1 AND 4),
    due_date DATE,
    start_time TEXT,
    is_completed INTEGER DEFAULT 0,
    pomo_target INTEGER DEFAULT 1 CHECK(pomo_target >= 0),
    pomo_completed INTEGER DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    completed_at DATETIME,
    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
    FOREIGN KEY (parent_id) REFERENCES tasks(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS labels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE CHECK(length(name) > 0),
    color TEXT DEFAULT '#3B82F6',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS task_labels (
    task_id INTEGER NOT NULL,
    label_id INTEGER NOT NULL,
    PRIMARY KEY (task_id, label_id),
    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE,
    FOREIGN KEY (label_id) REFERENCES labels(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pomodoro_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL,
    start_time DATETIME NOT NULL,
    end_time DATETIME,
    was_completed INTEGER DEFAULT 0,
    FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_tasks_parent ON tasks(parent_id);
CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);
CREATE INDEX IF NOT EXISTS idx_tasks_completed ON tasks(is_completed);
CREATE INDEX IF NOT EXISTS idx_task_labels_task ON task_labels(task_id);
CREATE INDEX IF NOT EXISTS idx_task_labels_label ON task_labels(label_id);
"""

# (table, column, declaration) - columns added after the first release
COLUMN_MIGRATIONS: tuple[tuple[str, str, str], ...] = (
    ("tasks", "start_time", "TEXT"),
    ("tasks", "pomo_completed", "INTEGER DEFAULT 0"),
    ("tasks", "notes", "TEXT"),
)

DEFAULT_SETTINGS: dict[str, str] = {
    "theme": "midnight",
    "pomo_work": "25",
    "pomo_break": "5",
    "backup_enabled": "true",
}


def list_tables(conn: sqlite3.Connection) -> set[str]:
    """Names of user tables in the catalog."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    ).fetchall()
    return {row[0] for row in rows}


def list_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """Column names of a table via PRAGMA table_info."""
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def apply_column_migrations(conn: sqlite3.Connection) -> list[str]:
    """
    Add any declared column that the live table lacks.

    Returns:
        "table.column" names that were added
    """
    added: list[str] = []
    columns: dict[str, set[str]] = {}
    for table, column, decl in COLUMN_MIGRATIONS:
        if table not in columns:
            columns[table] = list_columns(conn, table)
        if column in columns[table]:
            continue
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
        columns[table].add(column)
        added.append(f"{table}.{column}")
        logger.info(f"Schema migration: added column {table}.{column}")
    return added


def seed_default_settings(conn: sqlite3.Connection) -> None:
    """Insert default settings without overwriting existing values."""
    conn.executemany(
        "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
        list(DEFAULT_SETTINGS.items()),
    )


def ensure_schema(conn: sqlite3.Connection) -> list[str]:
    """
    Create or upgrade the schema in place. Safe to call on every open.

    Runs inside a single transaction so a failed migration leaves the
    previous schema untouched.

    Returns:
        Columns added by migrations on this call
    """
    fresh = not (list_tables(conn) & set(TABLES))

    conn.execute("BEGIN")
    try:
        for statement in _split(SCHEMA_SQL):
            conn.execute(statement)
        added = apply_column_migrations(conn)
        seed_default_settings(conn)
        for statement in _split(INDEX_SQL):
            conn.execute(statement)
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise

    if fresh:
        logger.info("Created Taskiant schema")
    else:
        logger.debug("Schema verified")
    return added


def _split(script: str) -> list[str]:
    return [s.strip() for s in script.split(";") if s.strip()]
