"""
Connection and subscription tracking for the development gateway.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import WebSocket

    from homeslice.client.domain.entities import Challenge

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class PeerConnection:
    websocket: WebSocket
    challenge: Challenge
    device_id: str | None = None
    subscriptions: set[str] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.device_id is not None


class SessionManager:
    """Tracks connected peers and the session keys they subscribed to."""

    def __init__(self) -> None:
        self.peers: list[PeerConnection] = []

    def add_peer(self, peer: PeerConnection) -> None:
        self.peers.append(peer)

    def remove_peer(self, peer: PeerConnection) -> None:
        if peer in self.peers:
            self.peers.remove(peer)

    def subscribe(self, peer: PeerConnection, session_keys: list[str]) -> None:
        peer.subscriptions.update(session_keys)
        logger.debug("Peer %s subscribed to %s", peer.device_id, session_keys)

    def subscribers(self, session_key: str) -> list[PeerConnection]:
        return [
            peer
            for peer in self.peers
            if peer.authenticated and session_key in peer.subscriptions
        ]

    def get_active_peer_count(self) -> int:
        return len([peer for peer in self.peers if peer.authenticated])
