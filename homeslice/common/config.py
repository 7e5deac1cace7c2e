"""
Configuration settings for the gateway client.
"""

from __future__ import annotations

import logging
import os
import platform
from pathlib import Path


def _split_env_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Central configuration class for all client settings."""

    def __init__(self) -> None:
        # Gateway connection
        self.GATEWAY_URL: str = os.getenv(
            "HOMESLICE_GATEWAY_URL", "ws://127.0.0.1:18789"
        )
        self.GATEWAY_TOKEN: str | None = os.getenv("HOMESLICE_GATEWAY_TOKEN") or None
        self.COMPANION_NAME: str = os.getenv("HOMESLICE_COMPANION", "pizza")

        # Liveness probe and handshake timeouts, in seconds
        self.PROBE_TIMEOUT: float = float(os.getenv("HOMESLICE_PROBE_TIMEOUT", "10"))
        self.HANDSHAKE_TIMEOUT: float = float(
            os.getenv("HOMESLICE_HANDSHAKE_TIMEOUT", "15")
        )

        # Protocol constants
        self.PROTOCOL_VERSION: int = 3
        self.CLIENT_ID: str = "cli"
        self.CLIENT_MODE: str = "cli"
        self.CLIENT_DISPLAY_NAME: str = "HomeSlice"
        self.CLIENT_VERSION: str = "0.1.0"
        self.CLIENT_PLATFORM: str = platform.system().lower() or "unknown"
        self.ROLE: str = "operator"
        self.SCOPES: list[str] = ["operator.read", "operator.write"]
        self.LOCALE: str = os.getenv("HOMESLICE_LOCALE", "en-US")
        self.USER_AGENT: str = f"homeslice/{self.CLIENT_VERSION}"

        # Request correlation: "fixed" keeps one id per request kind on the wire
        self.REQUEST_ID_POLICY: str = os.getenv("HOMESLICE_REQUEST_IDS", "fixed")

        # Alert feed
        self.ALERT_SESSION_KEYS: list[str] = _split_env_list(
            os.getenv("HOMESLICE_ALERT_SESSIONS")
        )
        self.ALERT_EVENTS: list[str] = ["chat", "agent"]
        self.ALERT_IGNORED_REPLIES: list[str] = ["HEARTBEAT_OK", "NO_REPLY"]
        self.ALERT_INIT_MESSAGE: str | None = (
            os.getenv("HOMESLICE_ALERT_INIT_MESSAGE") or None
        )

        # File paths
        self.IDENTITY_DIR: Path = Path(
            os.getenv("HOMESLICE_IDENTITY_DIR", str(Path.home() / ".homeslice"))
        )
        self.IDENTITY_KEY_PATH: Path = self.IDENTITY_DIR / "device_identity.key"

        # Development gateway
        self.DEV_GATEWAY_HOST: str = os.getenv("HOMESLICE_DEV_GATEWAY_HOST", "127.0.0.1")
        self.DEV_GATEWAY_PORT: int = int(
            os.getenv("HOMESLICE_DEV_GATEWAY_PORT", "18789")
        )

        # Logging
        self.LOG_LEVEL: int = logging.getLevelName(
            os.getenv("HOMESLICE_LOG_LEVEL", "INFO").upper()
        )
        if not isinstance(self.LOG_LEVEL, int):
            self.LOG_LEVEL = logging.INFO

    def companion_session_key(self) -> str:
        """Session key of the primary outbound chat channel."""
        return f"app:{self.COMPANION_NAME}:main"
