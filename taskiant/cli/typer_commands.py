"""
Taskiant CLI - Typer Commands

Administration of the encrypted store from a terminal: inspect tasks,
manage backups and read the audit logs.
"""

import logging
import os
from dataclasses import replace
from datetime import date

import typer
from rich.panel import Panel

from taskiant import __version__
from taskiant.cli.display import (
    backups_table,
    console,
    format_size,
    month_table,
    projects_table,
    stats_table,
    task_tree_table,
)
from taskiant.config import load_config, save_config
from taskiant.exceptions import ConfigError, TaskiantError
from taskiant.logging.viewer import format_entry_line, query_logs
from taskiant.service import TaskiantService

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="taskiant",
    help="Encrypted task store with Pomodoro tracking",
    add_completion=False,
    no_args_is_help=True,
)

PASSWORD_ENV = "TASKIANT_PASSWORD"


def build_service() -> TaskiantService:
    """Create the service from the current configuration."""
    return TaskiantService(load_config())


def _service_or_exit() -> TaskiantService:
    try:
        return build_service()
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _login_or_exit(password: str) -> TaskiantService:
    """
    Log in for a read-only command or print the failure and exit with code 1.

    No post-login backup is taken; inspecting a store must not rotate out
    restore points.
    """
    service = _service_or_exit()
    service.config = replace(service.config, backup_on_login=False)
    if service.check_auth_status()["needsSetup"]:
        console.print("[red]No store found.[/red] Run [cyan]taskiant init[/cyan] first.")
        raise typer.Exit(1)
    result = service.login(password)
    if not result["success"]:
        console.print(f"[bold red]Login failed:[/bold red] {result.get('error', 'unknown error')}")
        raise typer.Exit(1)
    return service


def _password_option(confirm: bool = False) -> str:
    return typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=confirm,
        envvar=PASSWORD_ENV,
        help=f"Store password (or set {PASSWORD_ENV})",
    )


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Taskiant command line."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def status() -> None:
    """Show where the store lives and whether it exists."""
    service = _service_or_exit()
    auth = service.check_auth_status()
    backups = service.list_backups()
    config = service.config

    state = "[yellow]not created[/yellow]" if auth["needsSetup"] else "[green]present[/green]"
    console.print(
        Panel(
            f"[bold]Version:[/bold] {__version__}\n"
            f"[bold]Store:[/bold] {auth['storePath']} ({state})\n"
            f"[bold]Key file:[/bold] {config.key_path}"
            f"{'' if service.vault.exists() else ' [dim](not created)[/dim]'}\n"
            f"[bold]Backups:[/bold] {len(backups)} of {config.max_backups} in {config.backup_dir}\n"
            f"[bold]Dev mode:[/bold] {'on' if config.dev_mode else 'off'}",
            title="[bold cyan]Taskiant[/bold cyan]",
            border_style="cyan",
        )
    )


@app.command()
def init(password: str = _password_option(confirm=True)) -> None:
    """Create a new encrypted store."""
    service = _service_or_exit()
    if not service.check_auth_status()["needsSetup"]:
        console.print(f"[red]A store already exists at[/red] {service.config.db_path}")
        raise typer.Exit(1)

    result = service.login(password)
    if not result["success"]:
        console.print(f"[bold red]Could not create store:[/bold red] {result.get('error')}")
        raise typer.Exit(1)
    service.logout()
    console.print(f"[green]✓ Created store at[/green] {service.config.db_path}")

    # KDF iterations are not recorded in the store header
    if not service.config.config_file.exists():
        try:
            save_config(service.config)
        except OSError as e:
            console.print(f"[yellow]Could not write {service.config.config_file}:[/yellow] {e}")
            return
        console.print(f"[dim]Saved settings to {service.config.config_file}[/dim]")


@app.command(name="projects")
def list_projects(password: str = _password_option()) -> None:
    """List projects in display order."""
    service = _login_or_exit(password)
    try:
        projects = service.repo.list_projects()  # type: ignore[union-attr]
    finally:
        service.logout()

    if not projects:
        console.print("[dim]No projects yet.[/dim]")
        return
    console.print(projects_table(projects))


@app.command()
def today(password: str = _password_option()) -> None:
    """Show today's tasks with their subtasks."""
    service = _login_or_exit(password)
    try:
        tasks = service.repo.get_tasks_today()  # type: ignore[union-attr]
    finally:
        service.logout()

    if not tasks:
        console.print("[dim]Nothing due today.[/dim]")
        return
    console.print(task_tree_table(tasks, title=f"Today ({date.today().isoformat()})"))


@app.command(name="date")
def tasks_for_date(
    day: str = typer.Argument(..., help="Date as YYYY-MM-DD"),
    timeline: bool = typer.Option(False, "--timeline", "-t", help="Order by start time"),
    password: str = _password_option(),
) -> None:
    """Show tasks due on a date."""
    service = _login_or_exit(password)
    try:
        repo = service.repo
        tasks = repo.get_tasks_for_date(day) if timeline else repo.get_tasks_by_date(day)  # type: ignore[union-attr]
    except TaskiantError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)
    finally:
        service.logout()

    if not tasks:
        console.print(f"[dim]Nothing due on {day}.[/dim]")
        return
    console.print(task_tree_table(tasks, title=day))


@app.command()
def month(
    year: int = typer.Argument(..., help="Year"),
    month_number: int = typer.Argument(..., metavar="MONTH", help="Month 1-12"),
    password: str = _password_option(),
) -> None:
    """Show per-day task counts for a month."""
    service = _login_or_exit(password)
    try:
        days = service.repo.get_tasks_for_month(year, month_number)  # type: ignore[union-attr]
    except TaskiantError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(1)
    finally:
        service.logout()

    if not days:
        console.print(f"[dim]No tasks in {year}-{month_number:02d}.[/dim]")
        return
    console.print(month_table(days))


@app.command()
def stats(password: str = _password_option()) -> None:
    """Show dashboard counters."""
    service = _login_or_exit(password)
    try:
        result = service.repo.get_stats()  # type: ignore[union-attr]
    finally:
        service.logout()
    console.print(Panel(stats_table(result), title="[bold]Stats[/bold]", border_style="blue"))


@app.command()
def backup() -> None:
    """Copy the encrypted store into the backup directory."""
    service = _service_or_exit()
    if service.create_backup():
        latest = service.list_backups()[0]
        console.print(f"[green]✓ Backup created:[/green] {latest.filename} ({format_size(latest.size)})")
    else:
        console.print("[red]Backup failed[/red] (see logs)")
        raise typer.Exit(1)


@app.command(name="backups")
def list_backups() -> None:
    """List backups, newest first."""
    service = _service_or_exit()
    entries = service.list_backups()
    if not entries:
        console.print("[dim]No backups yet.[/dim]")
        return
    console.print(backups_table(entries))


@app.command()
def restore(
    backup_path: str = typer.Argument(..., help="Backup file or filename in the backup directory"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Replace the store with a backup."""
    service = _service_or_exit()
    path = backup_path
    if os.path.sep not in backup_path:
        candidate = service.config.backup_dir / backup_path
        if candidate.exists():
            path = str(candidate)

    if not yes and not typer.confirm(f"Overwrite {service.config.db_path} with {path}?"):
        console.print("[dim]Cancelled[/dim]")
        raise typer.Exit(0)

    if service.restore_backup(path):
        console.print(f"[green]✓ Restored[/green] {path}")
    else:
        console.print(f"[red]Restore failed:[/red] {path}")
        raise typer.Exit(1)


@app.command()
def logs(
    log_type: str = typer.Option("all", "--type", "-t", help="Log type: store, backup, all"),
    since: str = typer.Option(
        None, "--since", "-s", help="Time filter (ISO or relative: 1h, 30m, 2d)"
    ),
    event: str = typer.Option(None, "--event", "-e", help="Filter by event or action"),
    failures: bool = typer.Option(False, "--failures", help="Only failed entries"),
    tail: int = typer.Option(20, "--tail", "-n", help="Show last N entries"),
) -> None:
    """View the store and backup audit logs."""
    try:
        entries = query_logs(
            log_type=log_type,
            since=since,
            event=event,
            success=False if failures else None,
            limit=tail,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not entries:
        console.print("[dim]No log entries found[/dim]")
        return

    for entry in reversed(entries):
        line = format_entry_line(entry)
        if entry.get("success", True):
            console.print(line, style="green" if entry.get("_source") == "backup" else "dim", markup=False)
        else:
            console.print(line, style="red", markup=False)


def run() -> None:
    """Entry point wrapper that invokes the Typer app."""
    app()


if __name__ == "__main__":
    run()
