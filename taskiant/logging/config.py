"""
Logging Configuration for Taskiant.

Where the audit logs live, how large they grow, and at what level each
stream records.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_log_dir() -> Path:
    return Path.home() / ".taskiant" / "logs"


@dataclass
class LogConfig:
    """Configuration for the Taskiant audit logs."""

    log_dir: Path = field(default_factory=_default_log_dir)

    # Rotation
    max_file_size_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3

    # DEBUG, INFO, WARNING, ERROR
    store_level: str = "INFO"
    backup_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "LogConfig":
        """
        Defaults overridden by TASKIANT_LOG_DIR, TASKIANT_LOG_LEVEL (both
        streams) and TASKIANT_LOG_MAX_SIZE_MB. Unparseable sizes are ignored.
        """
        config = cls()
        env = os.environ

        if log_dir := env.get("TASKIANT_LOG_DIR"):
            config.log_dir = Path(log_dir).expanduser()
        if level := env.get("TASKIANT_LOG_LEVEL"):
            config.store_level = config.backup_level = level.upper()
        size_mb = env.get("TASKIANT_LOG_MAX_SIZE_MB", "")
        if size_mb.isdigit():
            config.max_file_size_bytes = int(size_mb) * 1024 * 1024
        return config

    def ensure_log_dir(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, kind: str) -> Path:
        """Log file of an audit stream."""
        return self.log_dir / f"{kind}.jsonl"

    def level_for(self, kind: str) -> str:
        return {"store": self.store_level, "backup": self.backup_level}[kind]

    @property
    def store_log_path(self) -> Path:
        return self.path_for("store")

    @property
    def backup_log_path(self) -> Path:
        return self.path_for("backup")


_config: LogConfig | None = None


def get_config() -> LogConfig:
    """The active LogConfig, loaded from the environment on first use."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
        _config.ensure_log_dir()
    return _config


def set_config(config: LogConfig) -> None:
    """Replace the active LogConfig (tests point it at a temp dir)."""
    global _config
    _config = config
    _config.ensure_log_dir()
