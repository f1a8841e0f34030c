"""
Taskiant Key Vault

Creates and recovers the symmetric key that is mixed into the store's
password-derived encryption key. The key file on disk is itself encrypted
through OS secure storage: a Fernet wrapping key kept in the system keyring.

Policy:
- An existing key file that cannot be decrypted is fatal (KeyUnavailableError).
  A replacement key is never generated, since it could not open the store.
- With no key file and no secure storage, creation fails unless dev_mode is
  set, in which case FALLBACK_KEY is used and nothing is persisted.
- An existing store is opened with get_existing_key(), which never creates
  a key file.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Protocol

import keyring
import keyring.errors
from cryptography.fernet import Fernet, InvalidToken
from keyring.backends import fail

from taskiant.exceptions import KeyUnavailableError, StoreIOError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
WRAPPING_KEY_NAME = "wrapping-key"

# Development-only key used when no secure storage exists. Anything encrypted
# with it is effectively protected by the password alone.
FALLBACK_KEY = b"taskiant-fallback-key-2024".ljust(KEY_SIZE, b"\0")


class SecureStorage(Protocol):
    """OS-backed encryption of small secrets."""

    def is_available(self) -> bool: ...

    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...


class KeyringSecureStorage:
    """
    SecureStorage backed by the system keyring.

    A Fernet key is stored as a keyring password under (service, "wrapping-key")
    and used to encrypt/decrypt payloads.
    """

    def __init__(self, service: str = "taskiant"):
        self.service = service

    def is_available(self) -> bool:
        try:
            backend = keyring.get_keyring()
        except keyring.errors.KeyringError:
            return False
        if isinstance(backend, fail.Keyring):
            return False
        return getattr(backend, "priority", 0) > 0

    def _fernet(self, create: bool) -> Fernet:
        try:
            token = keyring.get_password(self.service, WRAPPING_KEY_NAME)
            if token is None:
                if not create:
                    raise KeyUnavailableError(
                        "No wrapping key in secure storage", {"service": self.service}
                    )
                token = Fernet.generate_key().decode("ascii")
                keyring.set_password(self.service, WRAPPING_KEY_NAME, token)
                logger.info(f"Created wrapping key in keyring service '{self.service}'")
        except keyring.errors.KeyringError as e:
            raise KeyUnavailableError("Secure storage is unavailable", {"error": str(e)}) from e
        return Fernet(token.encode("ascii"))

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet(create=True).encrypt(data)

    def decrypt(self, data: bytes) -> bytes:
        try:
            return self._fernet(create=False).decrypt(data)
        except InvalidToken as e:
            raise KeyUnavailableError("Key file does not match the secure storage key") from e


class KeyVault:
    """
    Persists the store key encrypted with OS secure storage.

    Usage:
        vault = KeyVault(config.key_path, KeyringSecureStorage())
        key = vault.get_or_create_key()
    """

    def __init__(
        self,
        key_path: Path | str,
        storage: SecureStorage | None = None,
        allow_insecure_fallback: bool = False,
    ):
        self.key_path = Path(key_path)
        self.storage = storage if storage is not None else KeyringSecureStorage()
        self.allow_insecure_fallback = allow_insecure_fallback

    def exists(self) -> bool:
        return self.key_path.exists()

    def get_or_create_key(self) -> bytes:
        """
        Return the store key, creating and persisting one on first use.

        Raises:
            KeyUnavailableError: If an existing key cannot be decrypted, or a
                new one cannot be protected and the fallback is not allowed
            StoreIOError: If the key file cannot be read or written
        """
        if self.key_path.exists():
            return self._load_key()
        return self._create_key()

    def get_existing_key(self) -> bytes:
        """
        Return the key of a store that already exists, never creating one.

        A store made in development mode without secure storage has no key
        file; with the fallback allowed that store opens with FALLBACK_KEY.

        Raises:
            KeyUnavailableError: If the key file is missing and the fallback
                is not allowed, or the key file cannot be decrypted
        """
        if self.key_path.exists():
            return self._load_key()
        if self.allow_insecure_fallback:
            logger.warning("No key file; opening with fallback key (development mode only)")
            return FALLBACK_KEY
        logger.error(f"Database key file is missing: {self.key_path}")
        raise KeyUnavailableError(
            "Database key file is missing; the store cannot be opened without it",
            {"key_path": str(self.key_path)},
        )

    def _load_key(self) -> bytes:
        try:
            encrypted = self.key_path.read_bytes()
        except OSError as e:
            raise StoreIOError("Could not read key file", str(self.key_path)) from e

        if not self.storage.is_available():
            logger.error("Secure storage unavailable; cannot decrypt existing key file")
            raise KeyUnavailableError(
                "Could not decrypt database key. Secure storage is unavailable.",
                {"key_path": str(self.key_path)},
            )

        try:
            key = self.storage.decrypt(encrypted)
        except KeyUnavailableError:
            logger.error("Failed to decrypt database key file")
            raise
        except Exception as e:
            logger.error(f"Failed to decrypt database key file: {type(e).__name__}")
            raise KeyUnavailableError(
                "Could not decrypt database key.",
                {"key_path": str(self.key_path), "error_type": type(e).__name__},
            ) from e

        if len(key) != KEY_SIZE:
            raise KeyUnavailableError(
                "Database key file is corrupted", {"key_path": str(self.key_path)}
            )
        logger.debug("Loaded database key")
        return key

    def _create_key(self) -> bytes:
        if not self.storage.is_available():
            if self.allow_insecure_fallback:
                logger.warning(
                    "Secure storage not available - using fallback key (development mode only)"
                )
                return FALLBACK_KEY
            raise KeyUnavailableError(
                "Secure storage is unavailable; refusing to create an unprotected key",
                {"hint": "Install a keyring backend or enable dev_mode for testing"},
            )

        key = secrets.token_bytes(KEY_SIZE)
        encrypted = self.storage.encrypt(key)

        tmp_path = self.key_path.with_name(self.key_path.name + ".new")
        try:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(encrypted)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.key_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreIOError("Could not write key file", str(self.key_path)) from e

        logger.info(f"Created new database key at {self.key_path}")
        return key
