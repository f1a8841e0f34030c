"""
Taskiant Service - boundary between the data layer and a presentation tier

Owns at most one open EncryptedStore with its TaskRepository, plus the
BackupManager. Callers either use the methods directly or go through
dispatch(), which maps logical operation names ("listProjects",
"toggleTask", ...) to calls and always answers with a plain dict:

    {"ok": True, "result": ...}
    {"ok": False, "error": "...", "errorType": "..."}

dispatch() never raises. Mutating operations are flushed to the encrypted
file before the result is returned.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

from taskiant.config import TaskiantConfig, load_config
from taskiant.exceptions import StoreClosedError, TaskiantError, ValidationError
from taskiant.notifications import generic_notification, pomodoro_notification
from taskiant.persistence.backup import BackupManager
from taskiant.persistence.models import BackupEntry
from taskiant.persistence.repository import TaskRepository
from taskiant.persistence.store import EncryptedStore, check_exists
from taskiant.security.keyvault import KeyringSecureStorage, KeyVault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Operation:
    """How a logical operation name maps onto a call."""

    method: str
    target: str = "repo"  # "repo", "service" or "notify"
    mutates: bool = False
    fields_arg: bool = False  # a single mapping argument is expanded into keywords


OPERATIONS: dict[str, Operation] = {
    # Auth & backups
    "checkAuthStatus": Operation("check_auth_status", target="service"),
    "login": Operation("login", target="service"),
    "logout": Operation("logout", target="service"),
    "changePassword": Operation("change_password", target="service"),
    "createBackup": Operation("create_backup", target="service"),
    "listBackups": Operation("list_backups", target="service"),
    "restoreBackup": Operation("restore_backup", target="service"),
    # Projects
    "listProjects": Operation("list_projects"),
    "getProject": Operation("get_project"),
    "createProject": Operation("create_project", mutates=True, fields_arg=True),
    "updateProject": Operation("update_project", mutates=True),
    "deleteProject": Operation("delete_project", mutates=True),
    # Tasks
    "getTasks": Operation("get_tasks"),
    "getTasksToday": Operation("get_tasks_today"),
    "getTasksByDate": Operation("get_tasks_by_date"),
    "getTasksForDate": Operation("get_tasks_for_date"),
    "getTask": Operation("get_task"),
    "getSubtree": Operation("get_subtree"),
    "getAllActiveTasks": Operation("get_all_active_tasks"),
    "createTask": Operation("create_task", mutates=True, fields_arg=True),
    "updateTask": Operation("update_task", mutates=True),
    "deleteTask": Operation("delete_task", mutates=True),
    "toggleTask": Operation("toggle_task", mutates=True),
    "moveToToday": Operation("move_to_today", mutates=True),
    "copyToToday": Operation("copy_to_today", mutates=True),
    # Calendar & time blocking
    "getTasksForMonth": Operation("get_tasks_for_month"),
    "updateTaskTimeBlock": Operation("update_task_time_block", mutates=True),
    "getTimeBlockedTasks": Operation("get_time_blocked_tasks"),
    "getStats": Operation("get_stats"),
    # Pomodoro
    "startPomodoro": Operation("start_pomodoro", mutates=True),
    "completePomodoro": Operation("complete_pomodoro", mutates=True),
    "cancelPomodoro": Operation("cancel_pomodoro", mutates=True),
    "getTaskPomodoros": Operation("get_task_pomodoros"),
    "getTodayPomodoros": Operation("get_today_pomodoros"),
    "addManualPomodoro": Operation("add_manual_pomodoro", mutates=True, fields_arg=True),
    # Labels
    "listLabels": Operation("list_labels"),
    "createLabel": Operation("create_label", mutates=True, fields_arg=True),
    "deleteLabel": Operation("delete_label", mutates=True),
    "addLabelToTask": Operation("add_label_to_task", mutates=True),
    "removeLabelFromTask": Operation("remove_label_from_task", mutates=True),
    "getTaskLabels": Operation("get_task_labels"),
    # Settings
    "getSettings": Operation("get_settings"),
    "getSetting": Operation("get_setting"),
    "setSetting": Operation("set_setting", mutates=True),
    # Notifications
    "notifyPomodoro": Operation("pomodoro_notification", target="notify", fields_arg=True),
    "notifySend": Operation("generic_notification", target="notify"),
}

_NOTIFY = {
    "pomodoro_notification": pomodoro_notification,
    "generic_notification": generic_notification,
}


def resolve_operation(name: str) -> Operation | None:
    """Look up an operation by its logical name or its Python method name."""
    if name in OPERATIONS:
        return OPERATIONS[name]
    for op in OPERATIONS.values():
        if op.method == name:
            return op
    return None


def to_plain(value: Any) -> Any:
    """Convert models and containers into JSON-friendly values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value


class TaskiantService:
    """
    Session-level facade over the encrypted store.

    Usage:
        service = TaskiantService(load_config())
        if service.login(password)["success"]:
            reply = service.dispatch("getTasksToday")
        service.logout()
    """

    def __init__(
        self,
        config: TaskiantConfig | None = None,
        vault: KeyVault | None = None,
        backups: BackupManager | None = None,
    ):
        self.config = config or load_config()
        self.vault = vault or KeyVault(
            self.config.key_path,
            KeyringSecureStorage(self.config.keyring_service),
            allow_insecure_fallback=self.config.dev_mode,
        )
        self.backups = backups or BackupManager(self.config.backup_dir, self.config.max_backups)
        self.store: EncryptedStore | None = None
        self.repo: TaskRepository | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.store is not None and self.store.is_open

    # =========================================================================
    # AUTH
    # =========================================================================

    def check_auth_status(self) -> dict[str, Any]:
        """Whether a store still has to be created, and where it lives."""
        return {
            "needsSetup": not check_exists(self.config.db_path),
            "storePath": str(self.config.db_path),
        }

    def login(self, password: str) -> dict[str, Any]:
        """
        Open (or create) the store with password.

        A successful login is followed by a best-effort backup whose failure
        is logged and never affects the result.
        """
        if self.is_authenticated:
            self.logout()

        try:
            self.config.ensure_dirs()
            if check_exists(self.config.db_path):
                key = self.vault.get_existing_key()
            else:
                key = self.vault.get_or_create_key()
            store = EncryptedStore.open(
                self.config.db_path,
                password,
                key=key,
                kdf_iterations=self.config.kdf_iterations,
            )
        except TaskiantError as e:
            logger.warning(f"Login failed: {type(e).__name__}")
            return {"success": False, "error": e.message}
        except OSError as e:
            logger.error(f"Login failed: {e}")
            return {"success": False, "error": str(e)}

        self.store = store
        self.repo = TaskRepository(
            store,
            max_notes_length=self.config.max_notes_length,
            max_tree_depth=self.config.max_tree_depth,
        )
        logger.info("Login succeeded")

        if self.config.backup_on_login:
            self._post_login_backup()
        return {"success": True}

    def _post_login_backup(self) -> None:
        try:
            if not self.backups.create_backup(self.config.db_path):
                logger.warning("Post-login backup was not created")
        except Exception as e:
            logger.warning(f"Post-login backup failed: {e}")

    def logout(self) -> None:
        """Flush and close the open store, if any."""
        store, self.store, self.repo = self.store, None, None
        if store is not None:
            store.close()
            logger.info("Logged out")

    def change_password(self, new_password: str) -> bool:
        self._require_store().change_password(new_password)
        return True

    def _require_store(self) -> EncryptedStore:
        if self.store is None or not self.store.is_open:
            raise StoreClosedError("Not logged in")
        return self.store

    # =========================================================================
    # BACKUPS
    # =========================================================================

    def create_backup(self) -> bool:
        """Flush pending changes, then copy the encrypted file."""
        if self.is_authenticated:
            try:
                self.store.flush()  # type: ignore[union-attr]
            except TaskiantError as e:
                logger.error(f"Backup skipped, flush failed: {e}")
                return False
        return self.backups.create_backup(self.config.db_path)

    def list_backups(self) -> list[BackupEntry]:
        return self.backups.list_backups()

    def restore_backup(self, backup_path: str | Path) -> bool:
        """
        Replace the store file with a backup.

        The open store is closed first; the caller has to log in again.
        """
        self.logout()
        return self.backups.restore_backup(backup_path, self.config.db_path)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, operation: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        """
        Run a logical operation and wrap the outcome.

        Args:
            operation: Logical name ("getTasksToday") or method name ("get_tasks_today")
            *args, **kwargs: Operation arguments

        Returns:
            {"ok": True, "result": <plain value>} or
            {"ok": False, "error": <message>, "errorType": <exception class>}
        """
        op = resolve_operation(operation)
        if op is None:
            return {"ok": False, "error": f"Unknown operation: {operation}", "errorType": "ValidationError"}

        if op.fields_arg and len(args) == 1 and isinstance(args[0], Mapping) and not kwargs:
            kwargs = dict(args[0])
            args = ()

        try:
            if op.target == "service":
                func = getattr(self, op.method)
            elif op.target == "notify":
                func = _NOTIFY[op.method]
            else:
                if self.repo is None:
                    raise StoreClosedError("Not logged in")
                func = getattr(self.repo, op.method)

            result = func(*args, **kwargs)

            if op.mutates:
                self._require_store().flush()
        except TaskiantError as e:
            logger.warning(f"{operation} failed: {e}")
            return {"ok": False, "error": e.message, "errorType": type(e).__name__}
        except TypeError as e:
            logger.warning(f"{operation} called with bad arguments: {e}")
            return {"ok": False, "error": str(e), "errorType": ValidationError.__name__}
        except Exception as e:
            logger.exception(f"Unexpected failure in {operation}")
            return {"ok": False, "error": str(e), "errorType": type(e).__name__}

        return {"ok": True, "result": to_plain(result)}
