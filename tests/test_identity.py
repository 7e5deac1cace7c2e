import base64
import logging
import os
from pathlib import Path

import pytest
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from homeslice.common.exceptions import KeyStoreUnavailableError
from homeslice.identity import DeviceIdentityManager, FileKeyStore
from homeslice.identity.manager import build_attestation_payload, device_id_for

SCOPES = ["operator.read", "operator.write"]


def sign(manager: DeviceIdentityManager, nonce: str = "abc", ts: int = 1000) -> str:
    return manager.sign_attestation("cli", "cli", "operator", SCOPES, ts, "tok123", nonce)


def test_attestation_payload_format() -> None:
    payload = build_attestation_payload(
        "dev", "cli", "cli", "operator", SCOPES, 1000, "tok123", "abc"
    )
    assert payload == "v2|dev|cli|cli|operator|operator.read,operator.write|1000|tok123|abc"


def test_attestation_payload_without_token() -> None:
    payload = build_attestation_payload(
        "dev", "cli", "cli", "operator", SCOPES, 1000, None, "abc"
    )
    assert payload.endswith("|1000||abc")


def test_device_id_is_sha256_of_public_key() -> None:
    manager = DeviceIdentityManager()
    device_id = manager.device_id()
    sign(manager)
    sign(manager, nonce="other", ts=2000)

    assert device_id == device_id_for(manager.public_key_bytes())
    assert len(device_id) == 64  # noqa: PLR2004
    assert device_id == device_id.lower()
    assert device_id == manager.device_id()


def test_signature_verifies_against_public_key() -> None:
    manager = DeviceIdentityManager()
    signature = base64.b64decode(sign(manager))
    payload = build_attestation_payload(
        manager.device_id(), "cli", "cli", "operator", SCOPES, 1000, "tok123", "abc"
    )

    public_key = Ed25519PublicKey.from_public_bytes(manager.public_key_bytes())
    public_key.verify(signature, payload.encode())

    with pytest.raises(InvalidSignature):
        public_key.verify(signature, payload.replace("abc", "abd").encode())


def test_signature_changes_with_nonce_and_timestamp() -> None:
    manager = DeviceIdentityManager()
    base = sign(manager)

    assert sign(manager, nonce="other") != base
    assert sign(manager, ts=1001) != base


def test_public_key_base64_is_raw_32_bytes() -> None:
    manager = DeviceIdentityManager()
    assert len(base64.b64decode(manager.public_key_base64())) == 32  # noqa: PLR2004


def test_file_key_store_persists_identity(tmp_path: Path) -> None:
    key_path = tmp_path / "identity" / "device_identity.key"

    first = DeviceIdentityManager(FileKeyStore(key_path))
    first.initialize()
    assert first.is_persistent
    assert key_path.exists()

    second = DeviceIdentityManager(FileKeyStore(key_path))
    assert second.device_id() == first.device_id()


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_file_key_store_is_owner_only(tmp_path: Path) -> None:
    key_path = tmp_path / "device_identity.key"
    FileKeyStore(key_path).save(Ed25519PrivateKey.generate())

    assert key_path.stat().st_mode & 0o777 == 0o600


def test_file_key_store_rejects_corrupt_key(tmp_path: Path) -> None:
    key_path = tmp_path / "device_identity.key"
    key_path.write_text("not a key")

    with pytest.raises(KeyStoreUnavailableError):
        FileKeyStore(key_path).load()


def test_unavailable_store_degrades_to_memory(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    key_path = tmp_path / "device_identity.key"
    key_path.write_text("not a key")
    manager = DeviceIdentityManager(FileKeyStore(key_path))

    with caplog.at_level(logging.WARNING, logger="homeslice.identity.manager"):
        manager.initialize()

    assert not manager.is_persistent
    assert "Key store unavailable" in caplog.text
    assert sign(manager)


def test_initialize_is_idempotent() -> None:
    manager = DeviceIdentityManager()
    manager.initialize()
    device_id = manager.device_id()
    manager.initialize()
    assert manager.device_id() == device_id


def test_reset_generates_new_identity(tmp_path: Path) -> None:
    key_path = tmp_path / "device_identity.key"
    manager = DeviceIdentityManager(FileKeyStore(key_path))
    old_id = manager.device_id()

    manager.reset()
    assert not key_path.exists()

    assert manager.device_id() != old_id
    assert key_path.exists()
