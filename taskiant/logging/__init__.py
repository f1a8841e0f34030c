"""
Taskiant Logging System.

Structured JSONL audit logging for:
- Store lifecycle events (open, failed open, migrate, flush, close)
- Backup activity (create, rotation deletes, restore)

Usage:
    from taskiant.logging import StoreLogEntry, now_iso, store_logger

    entry = StoreLogEntry(timestamp=now_iso(), event="open", store_path=str(path))
    store_logger.info(entry.to_json())

Logs are written to ~/.taskiant/logs/:
    - store.jsonl: store lifecycle events
    - backup.jsonl: backup activity
"""

import logging
import threading
from typing import Any

from .config import LogConfig, get_config, set_config
from .entries import BackupLogEntry, StoreLogEntry, now_iso
from .handlers import create_jsonl_logger

_loggers: dict[str, logging.Logger] = {}
_lock = threading.Lock()


def get_audit_logger(kind: str) -> logging.Logger:
    """
    The JSONL logger for an audit stream ("store" or "backup").

    Created on first use from the current LogConfig, so nothing touches the
    log directory until something is audited.
    """
    with _lock:
        logger = _loggers.get(kind)
        if logger is None:
            if kind not in ("store", "backup"):
                raise ValueError(f"Unknown audit log: {kind}")
            config = get_config()
            logger = create_jsonl_logger(
                f"taskiant.audit.{kind}",
                config.path_for(kind),
                level=config.level_for(kind),
                max_bytes=config.max_file_size_bytes,
                backup_count=config.backup_count,
            )
            _loggers[kind] = logger
        return logger


def reset_loggers() -> None:
    """Close created loggers so the next write picks up a new LogConfig."""
    with _lock:
        for logger in _loggers.values():
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
        _loggers.clear()


class AuditLog:
    """Handle for one audit stream; resolves its logger on every write."""

    def __init__(self, kind: str):
        self.kind = kind

    def log(self, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
        get_audit_logger(self.kind).log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)


store_logger = AuditLog("store")
backup_logger = AuditLog("backup")


__all__ = [
    # Loggers
    "store_logger",
    "backup_logger",
    "get_audit_logger",
    "reset_loggers",
    "AuditLog",
    # Log entries
    "StoreLogEntry",
    "BackupLogEntry",
    # Utilities
    "now_iso",
    # Config
    "LogConfig",
    "get_config",
    "set_config",
]
