"""
Taskiant Encrypted Store

Owns the single open connection to the local database.

At rest the store is one AES-GCM encrypted file (see taskiant.security.cipher).
While open, the decrypted image lives in a private working directory and is
written back atomically on flush() and close(). flush() refuses to run inside
an open transaction, which makes it the quiescent point backups rely on.

Lifecycle:
    CLOSED -> OPENING -> OPEN | FAILED, OPEN -> CLOSED

Usage:
    with EncryptedStore.open(path, password, key=vault_key) as store:
        repo = TaskRepository(store)
        ...
"""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import tempfile
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from taskiant.config import DEFAULT_KDF_ITERATIONS
from taskiant.exceptions import (
    InvalidCredentialsError,
    StoreClosedError,
    StoreIOError,
    TaskiantError,
    ValidationError,
)
from taskiant.logging import StoreLogEntry, now_iso, store_logger
from taskiant.persistence.schema import ensure_schema, list_tables
from taskiant.security import cipher
from taskiant.state import StoreLifecycle, StoreState

logger = logging.getLogger(__name__)

WORK_FILENAME = "work.db"


def check_exists(path: Path | str) -> bool:
    """True if a store file exists at path. Needs no password."""
    return Path(path).is_file()


class EncryptedStore:
    """
    Handle to an encrypted SQLite store.

    Only one handle should own a store file at a time. Instances are created
    by EncryptedStore.open(); a handle that fails to open never keeps a
    connection or working files around.
    """

    def __init__(self, path: Path | str, kdf_iterations: int = DEFAULT_KDF_ITERATIONS):
        self.path = Path(path)
        self.kdf_iterations = kdf_iterations
        self.lifecycle = StoreLifecycle()
        self._conn: sqlite3.Connection | None = None
        self._work_dir: Path | None = None
        self._key: bytes | None = None
        self._salt: bytes | None = None
        self._pepper: bytes | None = None
        self._flushed_changes = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @classmethod
    def open(
        cls,
        path: Path | str,
        password: str,
        key: bytes | None = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> EncryptedStore:
        """
        Open (or create) the store at path.

        Args:
            path: Encrypted store file
            password: User password
            key: Optional vault key mixed into the derived store key
            kdf_iterations: PBKDF2 rounds

        Returns:
            An open EncryptedStore

        Raises:
            InvalidCredentialsError: Wrong password or corrupted file
            StoreIOError: Filesystem failure
            ValidationError: Empty password
        """
        store = cls(path, kdf_iterations=kdf_iterations)
        store._open(password, key)
        return store

    @staticmethod
    def exists(path: Path | str) -> bool:
        return check_exists(path)

    @property
    def state(self) -> StoreState:
        return self.lifecycle.state

    @property
    def is_open(self) -> bool:
        return self.lifecycle.is_open

    @property
    def connection(self) -> sqlite3.Connection:
        """Live connection; raises if the store is not open."""
        if self._conn is None or not self.lifecycle.is_open:
            raise StoreClosedError("Store is not open", {"path": str(self.path)})
        return self._conn

    def _open(self, password: str, pepper: bytes | None) -> None:
        self.lifecycle.require_transition(StoreState.OPENING)
        start = time.monotonic()
        created = not self.path.exists()

        try:
            if not password:
                raise ValidationError("Password must not be empty", field="password")

            plaintext = None
            if created:
                self._salt = cipher.new_salt()
                self._key = cipher.derive_key(password, self._salt, self.kdf_iterations, pepper)
            else:
                payload = self._read_payload()
                self._salt = cipher.read_salt(payload)
                self._key = cipher.derive_key(password, self._salt, self.kdf_iterations, pepper)
                try:
                    plaintext = cipher.decrypt_payload(payload, self._key)
                except cipher.InvalidTag:
                    raise InvalidCredentialsError("Invalid password or corrupted database")
            self._pepper = pepper

            work_path = self._make_work_file(plaintext)
            self._conn = self._connect(work_path)
            self._verify()
            added = ensure_schema(self._conn)

            if created or added:
                self._write_encrypted()
            else:
                self._flushed_changes = self._conn.total_changes

        except Exception as e:
            self._discard()
            self.lifecycle.fail(type(e).__name__)
            self._audit("open_failed", start, success=False, error=e)
            logger.error(f"Failed to open store at {self.path}: {type(e).__name__}")
            if isinstance(e, TaskiantError):
                raise
            if isinstance(e, OSError):
                raise StoreIOError("Could not open store", str(self.path)) from e
            if isinstance(e, sqlite3.DatabaseError):
                raise InvalidCredentialsError("Invalid password or corrupted database") from e
            raise

        self.lifecycle.require_transition(StoreState.OPEN)
        self._audit("create" if created else "open", start)
        if added and not created:
            self._audit("migrate", start)
        logger.info(f"{'Created' if created else 'Opened'} store at {self.path}")

    def _read_payload(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise StoreIOError("Could not read store file", str(self.path)) from e

    def _make_work_file(self, plaintext: bytes | None) -> Path:
        self._work_dir = Path(tempfile.mkdtemp(prefix="taskiant-"))
        work_path = self._work_dir / WORK_FILENAME
        if plaintext is not None:
            fd = os.open(work_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(plaintext)
        return work_path

    @staticmethod
    def _connect(work_path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(
            work_path,
            check_same_thread=False,  # Single logical worker, enforced by the caller
            isolation_level=None,  # Autocommit mode, we use explicit transactions
        )
        conn.row_factory = sqlite3.Row
        # Readers are not blocked by an in-flight write
        conn.execute("PRAGMA journal_mode=WAL")
        # Durable at checkpoints with WAL, without an fsync per commit
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _verify(self) -> None:
        """Trivial catalog read; fails if the image is not a database."""
        assert self._conn is not None
        try:
            self._conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.DatabaseError as e:
            raise InvalidCredentialsError(
                "Invalid password or corrupted database", {"error": str(e)}
            ) from e

    def close(self) -> None:
        """
        Flush to the encrypted file, close the connection and remove the
        working copy.

        If the final write fails the working copy is kept for recovery and
        StoreIOError is raised.
        """
        if self.lifecycle.state is StoreState.FAILED:
            self.lifecycle.require_transition(StoreState.CLOSED)
            return
        if not self.lifecycle.is_open:
            return

        start = time.monotonic()
        flush_error: Exception | None = None
        try:
            self.flush()
        except Exception as e:
            flush_error = e
            logger.critical(f"Failed to write store on close; working copy kept at {self._work_dir}")

        assert self._conn is not None
        self._conn.close()
        self._conn = None
        if flush_error is None:
            self._remove_work_dir()
        self._key = None
        self._pepper = None
        self.lifecycle.require_transition(StoreState.CLOSED)
        self._audit("close", start, success=flush_error is None, error=flush_error)

        if flush_error is not None:
            if isinstance(flush_error, TaskiantError):
                raise flush_error
            raise StoreIOError("Could not write store on close", str(self.path)) from flush_error
        logger.info(f"Closed store at {self.path}")

    def _discard(self) -> None:
        """Drop every resource held by a failed open."""
        if self._conn is not None:
            try:
                self._conn.close()
            except sqlite3.Error:
                logger.debug("Ignoring close error on failed open")
            self._conn = None
        self._remove_work_dir()
        self._key = None
        self._pepper = None

    def _remove_work_dir(self) -> None:
        if self._work_dir is not None:
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None

    def __enter__(self) -> EncryptedStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # TRANSACTIONS & PERSISTENCE
    # =========================================================================

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """
        Execute operations in a transaction.

        Usage:
            with store.transaction() as cursor:
                cursor.execute(...)
        """
        cursor = self.connection.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            yield cursor
            cursor.execute("COMMIT")
        except Exception:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    @property
    def dirty(self) -> bool:
        """True if rows changed since the last write to the encrypted file."""
        return self.connection.total_changes != self._flushed_changes

    def flush(self, force: bool = False) -> bool:
        """
        Write the current database image to the encrypted file.

        Args:
            force: Write even if nothing changed

        Returns:
            True if the file was written

        Raises:
            StoreIOError: If called inside a transaction, or the write fails
        """
        conn = self.connection
        if conn.in_transaction:
            raise StoreIOError("Cannot flush while a transaction is open", str(self.path))
        if not force and not self.dirty:
            return False
        start = time.monotonic()
        try:
            self._write_encrypted()
        except TaskiantError as e:
            self._audit("flush", start, success=False, error=e)
            raise
        self._audit("flush", start)
        return True

    def _write_encrypted(self) -> None:
        assert self._conn is not None and self._work_dir is not None
        assert self._key is not None and self._salt is not None

        self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")

        # Consistent image via the SQLite backup API
        snapshot_path = self._work_dir / "snapshot.db"
        snapshot = sqlite3.connect(snapshot_path)
        try:
            self._conn.backup(snapshot)
        finally:
            snapshot.close()
        try:
            plaintext = snapshot_path.read_bytes()
        finally:
            snapshot_path.unlink(missing_ok=True)

        payload = cipher.encrypt_payload(plaintext, self._key, self._salt)

        tmp_path = self.path.with_name(self.path.name + ".new")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreIOError("Could not write encrypted store", str(self.path)) from e

        self._flushed_changes = self._conn.total_changes
        logger.debug(f"Wrote encrypted store ({len(payload)} bytes)")

    def change_password(self, new_password: str) -> None:
        """Re-key the store with a new password and a fresh salt."""
        if not self.is_open:
            raise StoreClosedError("Store is not open", {"path": str(self.path)})
        if not new_password:
            raise ValidationError("Password must not be empty", field="password")

        old_key, old_salt = self._key, self._salt
        self._salt = cipher.new_salt()
        self._key = cipher.derive_key(new_password, self._salt, self.kdf_iterations, self._pepper)
        try:
            self._write_encrypted()
        except Exception:
            self._key, self._salt = old_key, old_salt
            raise
        self._audit("password_changed", time.monotonic())
        logger.info("Store re-encrypted with new password")

    # =========================================================================
    # AUDIT
    # =========================================================================

    def _audit(
        self,
        event: str,
        start: float,
        success: bool = True,
        error: Exception | None = None,
    ) -> None:
        tables = 0
        if self._conn is not None and success:
            try:
                tables = len(list_tables(self._conn))
            except sqlite3.Error:
                tables = 0
        entry = StoreLogEntry(
            timestamp=now_iso(),
            event=event,
            store_path=str(self.path),
            success=success,
            duration_ms=int((time.monotonic() - start) * 1000),
            tables=tables,
            error=str(error) if error else None,
            error_type=type(error).__name__ if error else None,
        )
        store_logger.info(entry.to_json())
