"""
Taskiant CLI components.

- display.py: rich tables for projects, task trees, calendar and backups
- typer_commands.py: CLI entry points (status, init, today, backup, logs, ...)
"""

from taskiant.cli.typer_commands import (
    app,
    backup,
    build_service,
    init,
    list_backups,
    list_projects,
    logs,
    month,
    restore,
    run,
    stats,
    status,
    tasks_for_date,
    today,
)

__all__ = [
    # Typer app
    "app",
    "run",
    "build_service",
    # CLI commands
    "status",
    "init",
    "list_projects",
    "today",
    "tasks_for_date",
    "month",
    "stats",
    "backup",
    "list_backups",
    "restore",
    "logs",
]
