"""
Key stores for the device signing key.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from homeslice.common.exceptions import KeyStoreUnavailableError

logger = logging.getLogger(__name__)


class FileKeyStore:
    """Stores the device key as an unencrypted PKCS8 PEM file readable only by its owner."""

    def __init__(self, key_path: Path):
        self.key_path = key_path

    def describe(self) -> str:
        return str(self.key_path)

    def load(self) -> Ed25519PrivateKey | None:
        """Load the key, or None if it has never been saved."""
        try:
            pem = self.key_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as err:
            msg = f"Cannot read device key {self.key_path}: {err}"
            raise KeyStoreUnavailableError(msg) from err

        try:
            private_key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError) as err:
            msg = f"Device key {self.key_path} is corrupt"
            raise KeyStoreUnavailableError(msg) from err
        if not isinstance(private_key, Ed25519PrivateKey):
            msg = f"Device key {self.key_path} is not an Ed25519 key"
            raise KeyStoreUnavailableError(msg)
        return private_key

    def save(self, private_key: Ed25519PrivateKey) -> None:
        """Persist the key with owner-only permissions."""
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        try:
            self.key_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(private_pem)
        except OSError as err:
            msg = f"Cannot write device key {self.key_path}: {err}"
            raise KeyStoreUnavailableError(msg) from err
        logger.debug("Device key saved to %s", self.key_path)

    def delete(self) -> None:
        try:
            self.key_path.unlink(missing_ok=True)
        except OSError as err:
            msg = f"Cannot delete device key {self.key_path}: {err}"
            raise KeyStoreUnavailableError(msg) from err


class MemoryKeyStore:
    """Process-local key store, used in tests and as the degraded fallback."""

    def __init__(self, private_key: Ed25519PrivateKey | None = None):
        self._private_key = private_key

    def describe(self) -> str:
        return "memory"

    def load(self) -> Ed25519PrivateKey | None:
        return self._private_key

    def save(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key

    def delete(self) -> None:
        self._private_key = None
