"""Shared fixtures for Taskiant tests."""

from pathlib import Path

import pytest
from cryptography.fernet import Fernet

from taskiant.config import TaskiantConfig
from taskiant.logging import LogConfig, reset_loggers, set_config
from taskiant.persistence.repository import TaskRepository
from taskiant.persistence.store import EncryptedStore
from taskiant.security.keyvault import KeyVault

# Keeps PBKDF2 fast; production uses hundreds of thousands of rounds
TEST_ITERATIONS = 1000
PASSWORD = "correct horse battery staple"


class FakeSecureStorage:
    """In-memory stand-in for OS secure storage."""

    def __init__(self, available: bool = True):
        self.available = available
        self._fernet = Fernet(Fernet.generate_key())

    def is_available(self) -> bool:
        return self.available

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt(self, data: bytes) -> bytes:
        return self._fernet.decrypt(data)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Send audit logs to a temp dir and clear Taskiant env overrides."""
    for name in (
        "TASKIANT_DATA_DIR",
        "TASKIANT_MAX_BACKUPS",
        "TASKIANT_KDF_ITERATIONS",
        "TASKIANT_DEV_MODE",
        "TASKIANT_PASSWORD",
        "TASKIANT_LOG_LEVEL",
        "TASKIANT_LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    set_config(LogConfig(log_dir=tmp_path / "logs"))
    reset_loggers()
    yield
    reset_loggers()


@pytest.fixture
def config(tmp_path: Path) -> TaskiantConfig:
    return TaskiantConfig(
        data_dir=tmp_path / "data",
        kdf_iterations=TEST_ITERATIONS,
        max_backups=3,
    )


@pytest.fixture
def secure_storage() -> FakeSecureStorage:
    return FakeSecureStorage()


@pytest.fixture
def vault(config: TaskiantConfig, secure_storage: FakeSecureStorage) -> KeyVault:
    return KeyVault(config.key_path, secure_storage)


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "store" / "storage.db"


@pytest.fixture
def store(store_path: Path):
    """An open, freshly created store."""
    handle = EncryptedStore.open(store_path, PASSWORD, kdf_iterations=TEST_ITERATIONS)
    yield handle
    handle.close()


@pytest.fixture
def repo(store: EncryptedStore) -> TaskRepository:
    return TaskRepository(store)


@pytest.fixture
def storage_factory():
    """Build FakeSecureStorage instances, optionally unavailable."""
    return FakeSecureStorage


@pytest.fixture
def password() -> str:
    return PASSWORD


@pytest.fixture
def kdf_iterations() -> int:
    return TEST_ITERATIONS
