# Gateway client
from homeslice.client.application.runner import GatewayRunner as GatewayRunner
from homeslice.client.client import GatewayClient as GatewayClient
from homeslice.client.domain.entities import ChatResult as ChatResult
from homeslice.client.domain.entities import ConnectionPhase as ConnectionPhase

__all__ = ["ChatResult", "ConnectionPhase", "GatewayClient", "GatewayRunner"]
