"""
Device identity: a persistent Ed25519 keypair and signed connect attestations.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from homeslice.common.exceptions import KeyStoreUnavailableError
from homeslice.identity.keystore import MemoryKeyStore

if TYPE_CHECKING:
    from collections.abc import Sequence

    from homeslice.common.interfaces import IKeyStore

logger = logging.getLogger(__name__)

ATTESTATION_VERSION = "v2"


def build_attestation_payload(
    device_id: str,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: Sequence[str],
    signed_at_ms: int,
    token: str | None,
    nonce: str,
) -> str:
    """Canonical pipe-delimited string covered by the device signature.

    Scopes keep their original order.
    """
    return "|".join(
        [
            ATTESTATION_VERSION,
            device_id,
            client_id,
            client_mode,
            role,
            ",".join(scopes),
            str(signed_at_ms),
            token or "",
            nonce,
        ]
    )


def device_id_for(public_key_raw: bytes) -> str:
    """Lowercase hex SHA-256 of the raw public key bytes."""
    return hashlib.sha256(public_key_raw).hexdigest()


class DeviceIdentityManager:
    """Owns the device keypair and produces signed attestations.

    Construct one per process and pass it to the clients that need it.
    """

    def __init__(self, key_store: IKeyStore | None = None):
        self.key_store = key_store if key_store is not None else MemoryKeyStore()
        self._private_key: Ed25519PrivateKey | None = None
        self._persistent = False
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Load or create the device key. Safe to call repeatedly.

        Call once before the first connection so that any storage access
        happens outside the time-sensitive handshake.
        """
        with self._lock:
            if self._private_key is not None:
                return
            try:
                private_key = self.key_store.load()
                if private_key is None:
                    private_key = Ed25519PrivateKey.generate()
                    self.key_store.save(private_key)
                    logger.info(
                        "Generated new device identity in %s",
                        self.key_store.describe(),
                    )
                else:
                    logger.debug(
                        "Loaded device identity from %s", self.key_store.describe()
                    )
                self._persistent = True
            except KeyStoreUnavailableError as err:
                logger.warning(
                    "Key store unavailable (%s); using an in-memory device key. "
                    "This device will present a new identity after restart.",
                    err,
                )
                private_key = Ed25519PrivateKey.generate()
                self._persistent = False
            self._private_key = private_key

    @property
    def is_persistent(self) -> bool:
        """False when the key only lives in memory for this process."""
        return self._persistent

    def _key(self) -> Ed25519PrivateKey:
        if self._private_key is None:
            self.initialize()
        assert self._private_key is not None
        return self._private_key

    def public_key_bytes(self) -> bytes:
        return self._key().public_key().public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )

    def device_id(self) -> str:
        return device_id_for(self.public_key_bytes())

    def public_key_base64(self) -> str:
        return base64.b64encode(self.public_key_bytes()).decode("ascii")

    def sign_attestation(
        self,
        client_id: str,
        client_mode: str,
        role: str,
        scopes: Sequence[str],
        signed_at_ms: int,
        token: str | None,
        nonce: str,
    ) -> str:
        """Sign the connect attestation and return the base64 signature.

        Returns an empty string if the payload cannot be encoded or the
        signature does not verify. Callers must never send an empty signature.
        """
        try:
            payload = build_attestation_payload(
                self.device_id(),
                client_id,
                client_mode,
                role,
                scopes,
                signed_at_ms,
                token,
                nonce,
            ).encode("utf-8")
            private_key = self._key()
            signature = private_key.sign(payload)
            private_key.public_key().verify(signature, payload)
        except (InvalidSignature, UnicodeError, ValueError, TypeError):
            logger.exception("Failed to sign device attestation")
            return ""
        return base64.b64encode(signature).decode("ascii")

    def reset(self) -> None:
        """Forget the keypair; the next access generates a new identity."""
        with self._lock:
            try:
                self.key_store.delete()
            except KeyStoreUnavailableError as err:
                logger.warning("Could not delete stored device key: %s", err)
            self._private_key = None
            self._persistent = False
        logger.info("Device identity reset")
