"""
Taskiant Backup Manager

Rotating, timestamp-named copies of the encrypted store file.

Backups are raw copies of the file at rest, so they are only consistent when
taken between logical operations. TaskiantService flushes the open store
before calling create_backup(); nothing here touches a live connection.

Filenames:
    storage-YYYY-MM-DD_HH-MM-SS.db      (UTC, seconds resolution)
    storage-YYYY-MM-DD_HH-MM-SS_N.db    (same-second collision, N >= 1)
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from taskiant.config import DEFAULT_MAX_BACKUPS
from taskiant.logging import BackupLogEntry, backup_logger, now_iso
from taskiant.persistence.models import BackupEntry

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "storage-"
BACKUP_SUFFIX = ".db"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_BACKUP_RE = re.compile(
    r"^storage-(?P<ts>\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:_(?P<n>\d+))?\.db$"
)


def parse_backup_name(filename: str) -> tuple[datetime, int] | None:
    """
    Parse a backup filename into its sort key.

    Returns:
        (timestamp, collision counter), or None if the name is not a backup
    """
    match = _BACKUP_RE.match(filename)
    if not match:
        return None
    try:
        ts = datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return ts, int(match.group("n") or 0)


def utc_now() -> datetime:
    """Naive UTC time; backup names must not jump back when local clocks do."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BackupManager:
    """
    Creates, lists, rotates and restores store backups.

    Usage:
        manager = BackupManager(config.backup_dir, config.max_backups)
        manager.create_backup(config.db_path)
    """

    def __init__(
        self,
        backup_dir: Path | str,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        clock: Callable[[], datetime] = utc_now,
    ):
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self._clock = clock

    # =========================================================================
    # LISTING
    # =========================================================================

    def _backup_files(self) -> list[tuple[tuple[datetime, int], Path]]:
        """Backup files sorted oldest first."""
        if not self.backup_dir.is_dir():
            return []
        found = []
        for path in self.backup_dir.iterdir():
            key = parse_backup_name(path.name)
            if key is not None and path.is_file():
                found.append((key, path))
        found.sort(key=lambda item: item[0])
        return found

    def list_backups(self) -> list[BackupEntry]:
        """All backups, newest first."""
        entries: list[BackupEntry] = []
        for (ts, _), path in reversed(self._backup_files()):
            try:
                size = path.stat().st_size
            except OSError as e:
                logger.warning(f"Skipping unreadable backup {path.name}: {e}")
                continue
            entries.append(BackupEntry(filename=path.name, path=path, size=size, created_at=ts))
        return entries

    # =========================================================================
    # CREATE & ROTATE
    # =========================================================================

    def _next_backup_path(self) -> Path:
        """
        Name for the next backup.

        A same-second name takes one more than the highest counter already
        used for that second, so it always sorts after its siblings even when
        rotation has freed a lower name.
        """
        now = self._clock().replace(microsecond=0)
        stamp = now.strftime(TIMESTAMP_FORMAT)
        counters = [n for (ts, n), _ in self._backup_files() if ts == now]
        path = self.backup_dir / f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"
        if counters or path.exists():
            counter = max(counters, default=0) + 1
            path = self.backup_dir / f"{BACKUP_PREFIX}{stamp}_{counter}{BACKUP_SUFFIX}"
        return path

    def prune(self, keep: int) -> list[str]:
        """
        Delete the oldest backups until at most `keep` remain.

        Individual deletion failures are logged and skipped.

        Returns:
            Filenames that were deleted
        """
        files = self._backup_files()
        excess = len(files) - max(keep, 0)
        deleted: list[str] = []
        for _, path in files[: max(excess, 0)]:
            try:
                path.unlink()
                deleted.append(path.name)
                logger.info(f"Deleted old backup: {path.name}")
            except OSError as e:
                logger.error(f"Failed to delete old backup {path.name}: {e}")
        return deleted

    def create_backup(self, source_path: Path | str) -> bool:
        """
        Copy the store file into the backup directory.

        The new name is chosen before rotation; then, when max_backups
        already exist, the oldest are removed so that max_backups remain once
        the new copy lands.

        Returns:
            True if a backup was written; False on a missing source or any
            copy failure (logged, never raised)
        """
        source = Path(source_path)
        if not source.is_file():
            logger.info("No database file to backup yet")
            self._audit(action="create", source_path=str(source), success=False, error="source missing")
            return False

        deleted: list[str] = []
        backup_path: Path | None = None
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            backup_path = self._next_backup_path()

            if len(self._backup_files()) >= self.max_backups:
                deleted = self.prune(self.max_backups - 1)

            _atomic_copy(source, backup_path)
        except OSError as e:
            logger.error(f"Backup failed: {e}")
            self._audit(
                action="create",
                source_path=str(source),
                backup_path=str(backup_path or ""),
                success=False,
                deleted=deleted,
                error=str(e),
            )
            return False

        size = backup_path.stat().st_size
        logger.info(f"Backup created: {backup_path}")
        self._audit(
            action="create",
            source_path=str(source),
            backup_path=str(backup_path),
            size_bytes=size,
            deleted=deleted,
        )
        return True

    # =========================================================================
    # RESTORE
    # =========================================================================

    def restore_backup(self, backup_path: Path | str, target_path: Path | str) -> bool:
        """
        Replace target_path with the bytes of backup_path.

        The caller must close any store handle on target_path first and
        reopen it afterwards.

        Returns:
            True on success; False if the backup is missing or the copy fails
        """
        backup = Path(backup_path)
        target = Path(target_path)
        if not backup.is_file():
            logger.error(f"Restore failed: backup not found: {backup}")
            self._audit(
                action="restore",
                backup_path=str(backup),
                target_path=str(target),
                success=False,
                error="backup not found",
            )
            return False

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            _atomic_copy(backup, target)
        except OSError as e:
            logger.error(f"Restore failed: {e}")
            self._audit(
                action="restore",
                backup_path=str(backup),
                target_path=str(target),
                success=False,
                error=str(e),
            )
            return False

        logger.info(f"Restored backup from: {backup}")
        self._audit(
            action="restore",
            backup_path=str(backup),
            target_path=str(target),
            size_bytes=target.stat().st_size,
        )
        return True

    def _audit(self, action: str, success: bool = True, **fields) -> None:
        entry = BackupLogEntry(timestamp=now_iso(), action=action, success=success, **fields)
        if success:
            backup_logger.info(entry.to_json())
        else:
            backup_logger.error(entry.to_json())


def _atomic_copy(source: Path, target: Path) -> None:
    """Copy via a sibling temp file and rename, so target is never partial."""
    tmp = target.with_name(target.name + ".partial")
    try:
        shutil.copyfile(source, tmp)
        with open(tmp, "rb+") as f:
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
