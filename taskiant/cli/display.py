"""
Taskiant CLI - Rich rendering helpers

Tables for projects, task trees, calendar counts and backups.
"""

from rich.console import Console
from rich.table import Table

from taskiant.persistence.models import BackupEntry, DayAggregate, Project, Stats, Task

console = Console()

PRIORITY_STYLES = {1: "bold red", 2: "yellow", 3: "blue", 4: "dim"}


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def projects_table(projects: list[Project]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", style="dim", width=4)
    table.add_column("Project", style="green")
    table.add_column("Order", style="dim", justify="right")
    table.add_column("Created (UTC)", style="dim")
    for project in projects:
        created = project.created_at.isoformat(sep=" ")[:16] if project.created_at else "-"
        table.add_row(str(project.id), f"{project.icon} {project.name}", str(project.sort_order), created)
    return table


def task_tree_table(tasks: list[Task], title: str | None = None) -> Table:
    """
    Render a hierarchical task list.

    Rows arrive already ordered; indentation comes from depth alone.
    """
    table = Table(show_header=True, header_style="bold", title=title)
    table.add_column("", width=3)
    table.add_column("Task")
    table.add_column("P", justify="center", width=3)
    table.add_column("Time", style="cyan", width=5)
    table.add_column("Pomo", justify="right", width=5)
    table.add_column("Project", style="dim")
    for task in tasks:
        check = "[green]✓[/green]" if task.is_completed else "[dim]○[/dim]"
        indent = "  " * (task.depth or 0)
        title_text = f"[strike dim]{task.title}[/strike dim]" if task.is_completed else task.title
        style = PRIORITY_STYLES.get(task.priority, "")
        project = f"{task.project_icon or ''} {task.project_name}".strip() if task.project_name else "-"
        table.add_row(
            check,
            f"{indent}{title_text}",
            f"[{style}]{task.priority}[/{style}]",
            task.start_time or "",
            f"{task.pomo_completed}/{task.pomo_target}",
            project,
        )
    return table


def month_table(days: list[DayAggregate]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Date", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Done", justify="right", style="green")
    table.add_column("Open", justify="right", style="yellow")
    for day in days:
        table.add_row(
            day.due_date.isoformat(),
            str(day.total_tasks),
            str(day.completed_tasks),
            str(day.incomplete_tasks),
        )
    return table


def stats_table(stats: Stats) -> Table:
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Due today", f"{stats.today_completed}/{stats.today_total}")
    table.add_row("All tasks", f"{stats.all_completed}/{stats.all_total}")
    table.add_row("Completed today", str(stats.completed_today))
    table.add_row("Pomodoros today", str(stats.pomos_today))
    return table


def backups_table(backups: list[BackupEntry]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Backup", style="cyan")
    table.add_column("Created (UTC)", style="dim")
    table.add_column("Size", justify="right")
    for entry in backups:
        table.add_row(entry.filename, entry.created_at.isoformat(sep=" "), format_size(entry.size))
    return table
