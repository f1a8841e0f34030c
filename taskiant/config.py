"""
Taskiant - Configuration Management

Handles loading config.json, environment variables, and defaults.
Configuration lives in ~/.config/taskiant/config.json next to the store.
"""

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from taskiant.exceptions import ConfigError


# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "taskiant"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_MAX_BACKUPS = 7
DEFAULT_KDF_ITERATIONS = 600_000
DEFAULT_MAX_NOTES_LENGTH = 1500
DEFAULT_MAX_TREE_DEPTH = 64

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class TaskiantConfig:
    """Main configuration container for Taskiant."""

    data_dir: Path = CONFIG_DIR
    db_filename: str = "storage.db"
    backup_dirname: str = "backups"
    key_filename: str = "db-key.enc"
    max_backups: int = DEFAULT_MAX_BACKUPS
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    max_notes_length: int = DEFAULT_MAX_NOTES_LENGTH
    max_tree_depth: int = DEFAULT_MAX_TREE_DEPTH
    # Allows the fixed fallback key when no OS secure storage exists.
    # Never enable outside development.
    dev_mode: bool = False
    keyring_service: str = "taskiant"
    backup_on_login: bool = True

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.max_backups < 1:
            raise ConfigError("max_backups must be at least 1", {"max_backups": self.max_backups})
        if self.kdf_iterations < 1:
            raise ConfigError(
                "kdf_iterations must be positive", {"kdf_iterations": self.kdf_iterations}
            )

    @property
    def db_path(self) -> Path:
        """Path to the encrypted store file."""
        return self.data_dir / self.db_filename

    @property
    def backup_dir(self) -> Path:
        """Directory holding rotated store snapshots."""
        return self.data_dir / self.backup_dirname

    @property
    def key_path(self) -> Path:
        """Path to the encrypted key file."""
        return self.data_dir / self.key_filename

    @property
    def config_file(self) -> Path:
        return self.data_dir / "config.json"

    def ensure_dirs(self) -> None:
        """Create the data and backup directories if missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["data_dir"] = str(self.data_dir)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskiantConfig":
        """Create config from dictionary; unknown keys raise ConfigError."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError("Unknown configuration keys", {"keys": sorted(unknown)})
        return cls(**data)


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer", {"value": raw})


def load_config(config_file: Path | None = None) -> TaskiantConfig:
    """
    Load configuration from file and environment.

    Environment variables win over the file:
        TASKIANT_DATA_DIR, TASKIANT_MAX_BACKUPS,
        TASKIANT_KDF_ITERATIONS, TASKIANT_DEV_MODE

    Returns:
        TaskiantConfig with all settings loaded

    Raises:
        ConfigError: If configuration is invalid
    """
    env_dir = os.environ.get("TASKIANT_DATA_DIR")
    if config_file is not None:
        path = config_file
    elif env_dir:
        path = Path(env_dir).expanduser() / "config.json"
    else:
        path = CONFIG_FILE
    data: dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}", {"error": str(e)})
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a JSON object in {path}")

    if env_dir:
        data["data_dir"] = env_dir
    if (max_backups := _env_int("TASKIANT_MAX_BACKUPS")) is not None:
        data["max_backups"] = max_backups
    if (iterations := _env_int("TASKIANT_KDF_ITERATIONS")) is not None:
        data["kdf_iterations"] = iterations
    if dev_mode := os.environ.get("TASKIANT_DEV_MODE"):
        data["dev_mode"] = dev_mode.lower() in _TRUTHY

    try:
        return TaskiantConfig.from_dict(data)
    except TypeError as e:
        raise ConfigError("Invalid configuration value", {"error": str(e)})


def save_config(config: TaskiantConfig) -> None:
    """
    Save configuration to the config file in its data directory.

    Args:
        config: TaskiantConfig to save
    """
    config.data_dir.mkdir(parents=True, exist_ok=True)
    with open(config.config_file, "w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)
