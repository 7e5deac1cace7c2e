"""
Custom exceptions for the gateway client.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for gateway client failures."""


class TransportError(GatewayError):
    """Socket open, liveness probe or send failure."""


class HandshakeTimeoutError(TransportError):
    """The gateway did not complete the handshake in time."""


class ConnectionClosedError(TransportError):
    """The connection was closed locally while work was still pending."""


class RemoteClosedError(TransportError):
    """The gateway closed the connection normally."""


class ProtocolError(GatewayError):
    """Malformed frame or missing required fields."""


class AuthError(GatewayError):
    """The gateway rejected the connect request."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class SigningError(GatewayError):
    """The device attestation could not be produced."""


class GatewayRequestError(GatewayError):
    """The gateway reported a failed request or chat run."""

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        run_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.request_id = request_id
        self.run_id = run_id


class RequestSupersededError(GatewayError):
    """A newer request of the same kind replaced this one."""


class KeyStoreUnavailableError(GatewayError):
    """The key store could not be read or written."""
