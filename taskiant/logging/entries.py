"""
Audit entries for store lifecycle and backup activity.

Entries never carry passwords or key material.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, TypeVar

E = TypeVar("E", bound="_AuditEntry")


class _AuditEntry:
    """Serialization shared by all audit entries."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls: type[E], data: dict[str, Any]) -> E:
        """Build from a parsed log line; unknown keys (e.g. _source) are dropped."""
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class StoreLogEntry(_AuditEntry):
    """Store lifecycle event."""

    timestamp: str
    event: str  # open, create, open_failed, migrate, flush, close, password_changed
    store_path: str

    success: bool = True
    duration_ms: int = 0
    tables: int = 0

    error: str | None = None
    error_type: str | None = None


@dataclass
class BackupLogEntry(_AuditEntry):
    """Backup creation, rotation or restore."""

    timestamp: str
    action: str  # create, rotate, restore
    backup_path: str = ""
    source_path: str = ""
    target_path: str = ""

    success: bool = True
    size_bytes: int = 0
    deleted: list[str] = field(default_factory=list)

    error: str | None = None


def now_iso() -> str:
    return datetime.now().isoformat()
