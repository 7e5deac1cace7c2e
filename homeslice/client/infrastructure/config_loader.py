"""Infrastructure layer: Configuration loading.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from homeslice.client.application.correlation import SlotPolicy
from homeslice.client.application.router import acknowledgment_filter
from homeslice.client.client import GatewayClient
from homeslice.common import Configurable, setup_logger
from homeslice.common.config import Config
from homeslice.common.models import ClientConfig
from homeslice.identity import DeviceIdentityManager, FileKeyStore

OVERRIDABLE = [
    "gateway_url",
    "gateway_token",
    "companion_name",
    "identity_dir",
    "probe_timeout",
    "handshake_timeout",
    "request_id_policy",
    "alert_session_keys",
    "alert_ignored_replies",
    "alert_init_message",
    "log_level",
]


class ConfigLoader(Configurable):
    """Resolves client settings from overrides and environment defaults."""

    def __init__(self, client_config: ClientConfig | None = None):
        self.config: Config = Config()
        client_config = client_config or ClientConfig()

        self.gateway_url: str
        self.gateway_token: str | None
        self.companion_name: str
        self.identity_dir: Path
        self.probe_timeout: float
        self.handshake_timeout: float
        self.request_id_policy: str
        self.alert_session_keys: list[str]
        self.alert_ignored_replies: list[str]
        self.alert_init_message: str | None
        self.log_level: int
        self.apply_overrides(client_config.model_dump(), self.config, OVERRIDABLE)

        self.identity_key_path: Path = (
            client_config.identity_key_path
            or Path(self.identity_dir) / self.config.IDENTITY_KEY_PATH.name
        )

        # Setup logging
        self.logger = logging.getLogger("homeslice")
        setup_logger(self.logger, self.log_level)

    def companion_session_key(self) -> str:
        return f"app:{self.companion_name}:main"

    def build_identity(self) -> DeviceIdentityManager:
        """Create the identity manager backed by the configured key file."""
        return DeviceIdentityManager(FileKeyStore(self.identity_key_path))

    def build_client(
        self, identity: DeviceIdentityManager | None = None, **kwargs: Any
    ) -> GatewayClient:
        """Create a gateway client wired with the resolved settings."""
        return GatewayClient(
            identity or self.build_identity(),
            endpoint=self.gateway_url,
            token=self.gateway_token,
            companion=self.companion_name,
            config=self.config,
            probe_timeout=self.probe_timeout,
            handshake_timeout=self.handshake_timeout,
            slot_policy=SlotPolicy(self.request_id_policy),
            alert_session_keys=self.alert_session_keys,
            alert_filter=acknowledgment_filter(self.alert_ignored_replies),
            alert_init_message=self.alert_init_message,
            **kwargs,
        )
