"""
Handshake assembly for the gateway connect request.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from homeslice.common.config import Config
from homeslice.common.exceptions import SigningError
from homeslice.common.models import (
    AuthBlock,
    ClientDescriptor,
    ConnectParams,
    DeviceAttestation,
)

if TYPE_CHECKING:
    from homeslice.client.domain.entities import Challenge
    from homeslice.identity import DeviceIdentityManager

logger = logging.getLogger(__name__)


class HandshakeBuilder:
    """Builds signed connect params in answer to a challenge."""

    def __init__(
        self,
        identity: DeviceIdentityManager,
        config: Config | None = None,
    ):
        self.identity = identity
        self.config = config or Config()

    def client_descriptor(self) -> ClientDescriptor:
        return ClientDescriptor(
            id=self.config.CLIENT_ID,
            display_name=self.config.CLIENT_DISPLAY_NAME,
            version=self.config.CLIENT_VERSION,
            platform=self.config.CLIENT_PLATFORM,
            mode=self.config.CLIENT_MODE,
        )

    def build_connect_params(
        self, challenge: Challenge, token: str | None
    ) -> ConnectParams:
        """Sign the challenge and assemble the connect request params.

        Raises:
            SigningError: the attestation could not be signed.
        """
        scopes = list(self.config.SCOPES)
        signature = self.identity.sign_attestation(
            client_id=self.config.CLIENT_ID,
            client_mode=self.config.CLIENT_MODE,
            role=self.config.ROLE,
            scopes=scopes,
            signed_at_ms=challenge.issued_at_ms,
            token=token,
            nonce=challenge.nonce,
        )
        if not signature:
            msg = "Device attestation signing failed"
            raise SigningError(msg)

        device = DeviceAttestation(
            id=self.identity.device_id(),
            public_key=self.identity.public_key_base64(),
            signature=signature,
            signed_at=challenge.issued_at_ms,
            nonce=challenge.nonce,
        )
        logger.debug("Signed connect attestation for device %s", device.id[:12])

        return ConnectParams(
            min_protocol=self.config.PROTOCOL_VERSION,
            max_protocol=self.config.PROTOCOL_VERSION,
            client=self.client_descriptor(),
            role=self.config.ROLE,
            scopes=scopes,
            locale=self.config.LOCALE,
            user_agent=self.config.USER_AGENT,
            device=device,
            auth=AuthBlock(token=token) if token else None,
        )
