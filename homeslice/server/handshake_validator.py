"""
Connect request validation for the development gateway.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from homeslice.identity.manager import build_attestation_payload, device_id_for

if TYPE_CHECKING:
    from homeslice.client.domain.entities import Challenge
    from homeslice.common.models import ConnectParams


class HandshakeValidator:
    """Checks a connect request against the challenge it answers."""

    def __init__(self, protocol_version: int, token: str | None = None):
        self.protocol_version = protocol_version
        self.token = token
        self.logger = logging.getLogger(__name__)

    def verify_connect(self, params: ConnectParams, challenge: Challenge) -> str | None:
        """Return None when the request is acceptable, else the rejection reason."""
        if not (params.min_protocol <= self.protocol_version <= params.max_protocol):
            return "protocol version mismatch"

        presented_token = params.auth.token if params.auth else None
        if self.token and presented_token != self.token:
            self.logger.info("Rejecting connect: bad token")
            return "invalid token"

        device = params.device
        if device.nonce != challenge.nonce or device.signed_at != challenge.issued_at_ms:
            self.logger.info("Rejecting connect from %s: stale challenge", device.id[:12])
            return "challenge mismatch"

        try:
            public_raw = base64.b64decode(device.public_key, validate=True)
            signature = base64.b64decode(device.signature, validate=True)
            public_key = Ed25519PublicKey.from_public_bytes(public_raw)
        except (binascii.Error, ValueError):
            return "malformed device key or signature"

        if device_id_for(public_raw) != device.id:
            return "device id does not match public key"

        payload = build_attestation_payload(
            device.id,
            params.client.id,
            params.client.mode,
            params.role,
            params.scopes,
            device.signed_at,
            presented_token,
            device.nonce,
        )
        try:
            public_key.verify(signature, payload.encode("utf-8"))
        except InvalidSignature:
            self.logger.info("Rejecting connect from %s: bad signature", device.id[:12])
            return "device signature invalid"

        self.logger.debug("Device %s attestation valid", device.id[:12])
        return None
