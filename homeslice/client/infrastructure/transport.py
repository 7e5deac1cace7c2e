"""Infrastructure layer: WebSocket transport.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
)

from homeslice.common.exceptions import RemoteClosedError, TransportError

logger = logging.getLogger(__name__)

SCHEME_MAP = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}
MAX_FRAME_BYTES = 16 * 1024 * 1024


def normalize_endpoint(url: str) -> str:
    """Map an endpoint to a WebSocket URL.

    http becomes ws, https becomes wss and a bare host defaults to wss.
    """
    url = url.strip()
    if not url:
        msg = "Gateway endpoint is empty"
        raise TransportError(msg)

    if "://" not in url:
        url = f"wss://{url}"
    parts = urlsplit(url)
    scheme = SCHEME_MAP.get(parts.scheme.lower())
    if scheme is None:
        msg = f"Unsupported gateway scheme: {parts.scheme}"
        raise TransportError(msg)
    if not parts.netloc:
        msg = f"Gateway endpoint has no host: {url}"
        raise TransportError(msg)
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


class WebSocketTransport:
    """Text-framed duplex socket over a websockets client connection."""

    def __init__(self, connection: ClientConnection):
        self.connection = connection

    async def send(self, text: str) -> None:
        try:
            await self.connection.send(text)
        except ConnectionClosed as err:
            msg = f"Send failed: {err}"
            raise TransportError(msg) from err

    async def recv(self) -> str:
        try:
            frame = await self.connection.recv()
        except ConnectionClosedOK as err:
            msg = f"Gateway closed the connection: {err}"
            raise RemoteClosedError(msg) from err
        except ConnectionClosed as err:
            msg = f"Connection lost: {err}"
            raise TransportError(msg) from err
        if isinstance(frame, bytes):
            return frame.decode("utf-8", errors="replace")
        return frame

    async def ping(self, timeout: float) -> None:
        try:
            pong_waiter = await self.connection.ping()
            await asyncio.wait_for(pong_waiter, timeout)
        except asyncio.TimeoutError as err:
            msg = f"No pong within {timeout}s"
            raise TransportError(msg) from err
        except ConnectionClosed as err:
            msg = f"Liveness probe failed: {err}"
            raise TransportError(msg) from err

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.connection.close(code, reason)


async def websocket_connector(url: str, open_timeout: float = 10.0) -> WebSocketTransport:
    """Open a WebSocket connection to ``url``."""
    try:
        connection = await connect(
            url,
            open_timeout=open_timeout,
            max_size=MAX_FRAME_BYTES,
        )
    except (OSError, InvalidURI, InvalidHandshake, asyncio.TimeoutError) as err:
        msg = f"Cannot connect to {url}: {err}"
        raise TransportError(msg) from err
    logger.debug("WebSocket open to %s", url)
    return WebSocketTransport(connection)
