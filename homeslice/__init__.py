# HomeSlice gateway client

from homeslice.client.application.runner import GatewayRunner
from homeslice.client.client import GatewayClient
from homeslice.client.domain.entities import ChatResult, ConnectionPhase
from homeslice.client.infrastructure.config_loader import ConfigLoader
from homeslice.common.models import ClientConfig
from homeslice.identity import DeviceIdentityManager

__all__ = [
    "ChatResult",
    "ClientConfig",
    "ConfigLoader",
    "ConnectionPhase",
    "DeviceIdentityManager",
    "GatewayClient",
    "GatewayRunner",
]
