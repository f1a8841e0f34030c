"""
Log Viewer Utilities for Taskiant.

Query, filter, and format audit log entries.
Used by the `taskiant logs` CLI command.
"""

import json
import re
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .config import LogConfig, get_config

LOG_TYPES = ("store", "backup")

_RELATIVE_RE = re.compile(r"^(?P<amount>\d+)(?P<unit>[mhdw])$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days", "w": "weeks"}


def parse_since(since: str) -> datetime:
    """
    Turn an ISO timestamp or a relative offset ("30m", "1h", "2d", "1w")
    into an absolute datetime.

    Raises:
        ValueError: If the string is neither
    """
    match = _RELATIVE_RE.match(since.strip().lower())
    if match:
        delta = timedelta(**{_UNITS[match["unit"]]: int(match["amount"])})
        return datetime.now() - delta
    try:
        return datetime.fromisoformat(since)
    except ValueError:
        raise ValueError(
            f"Invalid time format: {since}. Use ISO format or relative (1h, 30m, 2d)"
        ) from None


def read_jsonl(filepath: Path, since: datetime | None = None) -> Iterator[dict[str, Any]]:
    """
    Yield entries from a JSONL file, skipping blank and malformed lines.

    With since, entries without a parseable timestamp are skipped too.
    """
    if not filepath.exists():
        return

    with open(filepath, encoding="utf-8") as f:
        for raw in f:
            raw = raw.strip()
            if not raw:
                continue
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if since is not None and not _at_or_after(entry, since):
                continue
            yield entry


def _at_or_after(entry: dict[str, Any], since: datetime) -> bool:
    try:
        return datetime.fromisoformat(entry.get("timestamp", "")) >= since
    except (ValueError, TypeError):
        return False


def _log_files(config: LogConfig, log_type: str) -> list[tuple[str, Path]]:
    paths = {"store": config.store_log_path, "backup": config.backup_log_path}
    if log_type == "all":
        return [(name, paths[name]) for name in LOG_TYPES]
    if log_type not in paths:
        raise ValueError(f"Unknown log type: {log_type}. Use store, backup or all")
    return [(log_type, paths[log_type])]


def query_logs(
    log_type: str = "all",
    since: str | None = None,
    event: str | None = None,
    success: bool | None = None,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """
    Query audit log entries with filters.

    Args:
        log_type: "store", "backup", or "all"
        since: Time filter (ISO or relative like "1h")
        event: Store event or backup action name
        success: Filter by success flag
        limit: Max entries to return

    Returns:
        Matching entries, newest first, each tagged with "_source"
    """
    since_dt = parse_since(since) if since else None

    results: list[dict[str, Any]] = []
    for source, filepath in _log_files(get_config(), log_type):
        for entry in read_jsonl(filepath, since=since_dt):
            if event and event not in (entry.get("event"), entry.get("action")):
                continue
            if success is not None and entry.get("success") != success:
                continue
            entry["_source"] = source
            results.append(entry)

    results.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
    return results[:limit]


def format_entry_line(entry: dict[str, Any]) -> str:
    """One display line per entry."""
    source = entry.get("_source", "?")
    ts = entry.get("timestamp", "")[:19]
    status = "OK" if entry.get("success", True) else "FAIL"

    if source == "store":
        line = (
            f"[{ts}] STORE  {entry.get('event', '?'):14s} {status:4s} "
            f"{entry.get('duration_ms', 0):5d}ms  {entry.get('store_path', '')}"
        )
    elif source == "backup":
        path = entry.get("backup_path") or entry.get("target_path", "")
        line = f"[{ts}] BACKUP {entry.get('action', '?'):14s} {status:4s} {Path(path).name if path else ''}"
        if deleted := entry.get("deleted"):
            line += f"  (removed {len(deleted)})"
    else:
        return f"[{ts}] {source.upper()} {json.dumps(entry)[:60]}..."

    if error := entry.get("error"):
        line += f"  error={error[:60]}"
    return line
