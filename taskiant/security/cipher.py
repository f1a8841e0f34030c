"""
Store file encryption.

The store at rest is a single file:

    MAGIC (4) | VERSION (1) | SALT (16) | NONCE (12) | AES-256-GCM ciphertext

The key is derived once per open with PBKDF2-HMAC-SHA256 from the user's
password, optionally combined with the vault key, and the salt from the
header. Magic, version and salt are bound as associated data, so editing any
header byte fails authentication the same way a wrong password does.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from taskiant.exceptions import InvalidCredentialsError


MAGIC = b"TKNT"
FORMAT_VERSION = 1
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32
HEADER_SIZE = len(MAGIC) + 1 + SALT_SIZE + NONCE_SIZE

__all__ = [
    "InvalidTag",
    "HEADER_SIZE",
    "new_salt",
    "derive_key",
    "read_salt",
    "encrypt_payload",
    "decrypt_payload",
]


def new_salt() -> bytes:
    """Random salt for a freshly created (or re-keyed) store."""
    return os.urandom(SALT_SIZE)


def derive_key(password: str, salt: bytes, iterations: int, pepper: bytes | None = None) -> bytes:
    """Derive the 32-byte AES key from password (+ vault key) and salt."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    secret = password.encode("utf-8")
    if pepper:
        secret += pepper
    return kdf.derive(secret)


def _prefix(salt: bytes) -> bytes:
    return MAGIC + bytes([FORMAT_VERSION]) + salt


def read_salt(payload: bytes) -> bytes:
    """
    Extract the salt from an encrypted store image.

    Raises:
        InvalidCredentialsError: If the payload is not a store file
    """
    if len(payload) < HEADER_SIZE or not payload.startswith(MAGIC):
        raise InvalidCredentialsError(
            "Invalid password or corrupted database", {"reason": "unrecognized file header"}
        )
    version = payload[len(MAGIC)]
    if version != FORMAT_VERSION:
        raise InvalidCredentialsError(
            "Invalid password or corrupted database",
            {"reason": f"unsupported format version {version}"},
        )
    start = len(MAGIC) + 1
    return payload[start : start + SALT_SIZE]


def encrypt_payload(plaintext: bytes, key: bytes, salt: bytes) -> bytes:
    """Encrypt a database image with a fresh nonce."""
    nonce = os.urandom(NONCE_SIZE)
    prefix = _prefix(salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, prefix)
    return prefix + nonce + ciphertext


def decrypt_payload(payload: bytes, key: bytes) -> bytes:
    """
    Decrypt a store image.

    Raises:
        InvalidCredentialsError: If the header is unrecognized
        InvalidTag: If the key is wrong or the ciphertext was modified
    """
    salt = read_salt(payload)
    prefix = _prefix(salt)
    nonce = payload[len(prefix) : HEADER_SIZE]
    return AESGCM(key).decrypt(nonce, payload[HEADER_SIZE:], prefix)
