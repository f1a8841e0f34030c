"""
Audit log handlers for Taskiant.

Audit entries are one JSON object per line. Rotation is plain
RotatingFileHandler; this module only controls what a line looks like.
"""

import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JSONLineFormatter(logging.Formatter):
    """
    Render a record as a single JSON line.

    Messages produced by an entry's to_json() pass through unchanged (re-dumped
    so embedded newlines cannot split a line). Anything else is wrapped with
    timestamp, level and logger name.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            data = {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "message": message,
                "logger": record.name,
            }
        return json.dumps(data, default=str, ensure_ascii=False)


def create_jsonl_logger(
    name: str,
    filepath: Path,
    level: str = "INFO",
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Build a non-propagating logger that appends JSON lines to filepath.

    Calling it again for the same name replaces (and closes) the old handler,
    which is how a changed LogConfig takes effect.
    """
    filepath.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    handler = RotatingFileHandler(
        filepath,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(JSONLineFormatter())
    logger.addHandler(handler)

    # Audit lines never reach the console
    logger.propagate = False
    return logger
