"""
Taskiant Security

Key management and at-rest encryption for the local store.
"""

from taskiant.security.keyvault import (
    FALLBACK_KEY,
    KeyringSecureStorage,
    KeyVault,
    SecureStorage,
)

__all__ = [
    "FALLBACK_KEY",
    "KeyringSecureStorage",
    "KeyVault",
    "SecureStorage",
]
