"""
Development gateway using FastAPI.

A loopback stand-in for the real gateway that speaks the same wire protocol:
challenge, signed connect, chat.send with streamed agent snapshots and
sessions.subscribe. Meant for local testing of the client only.
"""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from typing import Any, Callable

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from homeslice.client.domain.entities import (
    Challenge,
    CompanionSessionKey,
    parse_session_key,
)
from homeslice.common.codec import decode_frame, encode_frame
from homeslice.common.config import Config
from homeslice.common.exceptions import ProtocolError
from homeslice.common.models import (
    ChatSendParams,
    ConnectParams,
    ErrorShape,
    EventFrame,
    RequestFrame,
    ResponseFrame,
    SubscribeParams,
    WireModel,
)

from .handshake_validator import HandshakeValidator
from .session_manager import PeerConnection, SessionManager

POLICY_VIOLATION = 1008


class AlertRequest(WireModel):
    session_key: str
    text: str


def echo_reply(message: str) -> str:
    return f"You said: {message}"


def agent_session_key(session_key: str) -> str:
    """Agent-level key under which a session's streamed events are published."""
    key = parse_session_key(session_key)
    if isinstance(key, CompanionSessionKey):
        return f"agent:main:{session_key}"
    return session_key


def chat_final_event(session_key: str, text: str, run_id: str | None = None) -> EventFrame:
    payload: dict[str, Any] = {
        "sessionKey": session_key,
        "state": "final",
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }
    if run_id:
        payload["runId"] = run_id
    return EventFrame(event="chat", payload=payload)


class DevGateway:
    """Development gateway handling one WebSocket route and a few HTTP helpers."""

    def __init__(
        self,
        token: str | None = None,
        log_level: int | None = None,
        server_host: str | None = None,
        server_port: int | None = None,
        reply: Callable[[str], str] = echo_reply,
        config: Config | None = None,
    ):
        self.config = config or Config()
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(log_level if log_level is not None else self.config.LOG_LEVEL)
        self.token = token
        self.server_host = server_host or self.config.DEV_GATEWAY_HOST
        self.server_port = server_port or self.config.DEV_GATEWAY_PORT
        self.reply = reply

        self.app = FastAPI(title="HomeSlice development gateway")
        self.session_manager = SessionManager()
        self.handshake_validator = HandshakeValidator(
            self.config.PROTOCOL_VERSION, token
        )

        # Setup routes
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Setup API routes."""

        @self.app.get("/health")
        def health() -> dict[str, Any]:
            return {
                "status": "ok",
                "timestamp": int(time.time()),
                "peers": self.session_manager.get_active_peer_count(),
            }

        self.app.post("/alerts")(self.push_alert)
        self.app.websocket("/")(self.gateway_socket)

    async def push_alert(self, request: AlertRequest) -> dict[str, Any]:
        """Publish a completed message to peers subscribed to an alert session."""
        frame = chat_final_event(request.session_key, request.text, uuid.uuid4().hex)
        delivered = 0
        for peer in self.session_manager.subscribers(request.session_key):
            await peer.websocket.send_text(encode_frame(frame))
            delivered += 1
        self.logger.info(
            "Alert on %s delivered to %d peer(s)", request.session_key, delivered
        )
        return {"delivered": delivered}

    async def gateway_socket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        challenge = Challenge(
            nonce=secrets.token_hex(16), issued_at_ms=int(time.time() * 1000)
        )
        peer = PeerConnection(websocket=websocket, challenge=challenge)
        self.session_manager.add_peer(peer)
        await self._send(
            peer,
            EventFrame(
                event="connect.challenge",
                payload={"nonce": challenge.nonce, "ts": challenge.issued_at_ms},
            ),
        )

        try:
            while True:
                text = await websocket.receive_text()
                try:
                    frame = decode_frame(text)
                except ProtocolError as err:
                    self.logger.warning("Dropping frame from peer: %s", err)
                    continue
                if not isinstance(frame, RequestFrame):
                    continue
                if not await self.handle_request(peer, frame):
                    break
        except WebSocketDisconnect:
            self.logger.debug("Peer %s disconnected", peer.device_id)
        finally:
            self.session_manager.remove_peer(peer)

    async def handle_request(self, peer: PeerConnection, frame: RequestFrame) -> bool:
        """Answer one request. Returns False when the connection must close."""
        if frame.method == "connect":
            return await self._handle_connect(peer, frame)

        if not peer.authenticated:
            await self._fail(peer, frame, "NOT_CONNECTED", "connect first")
            return True

        try:
            if frame.method == "chat.send":
                await self._handle_chat_send(peer, frame)
            elif frame.method == "sessions.subscribe":
                params = SubscribeParams.model_validate(frame.params)
                self.session_manager.subscribe(peer, params.session_keys)
                await self._send(
                    peer,
                    ResponseFrame(
                        id=frame.id, ok=True, payload={"subscribed": params.session_keys}
                    ),
                )
            else:
                await self._fail(peer, frame, "UNKNOWN_METHOD", frame.method)
        except ValidationError as err:
            await self._fail(
                peer, frame, "INVALID_REQUEST", f"{err.error_count()} invalid field(s)"
            )
        return True

    async def _handle_connect(self, peer: PeerConnection, frame: RequestFrame) -> bool:
        try:
            params = ConnectParams.model_validate(frame.params)
        except ValidationError:
            await self._fail(peer, frame, "INVALID_REQUEST", "invalid connect params")
            await peer.websocket.close(POLICY_VIOLATION)
            return False

        reason = self.handshake_validator.verify_connect(params, peer.challenge)
        if reason is not None:
            await self._fail(peer, frame, "UNAUTHORIZED", reason)
            await peer.websocket.close(POLICY_VIOLATION)
            return False

        peer.device_id = params.device.id
        self.logger.info("Device %s connected", peer.device_id[:12])
        await self._send(
            peer,
            ResponseFrame(
                id=frame.id,
                ok=True,
                payload={
                    "type": "hello-ok",
                    "protocol": self.config.PROTOCOL_VERSION,
                    "deviceId": peer.device_id,
                },
            ),
        )
        return True

    async def _handle_chat_send(self, peer: PeerConnection, frame: RequestFrame) -> None:
        params = ChatSendParams.model_validate(frame.params)
        run_id = uuid.uuid4().hex
        await self._send(
            peer, ResponseFrame(id=frame.id, ok=True, payload={"runId": run_id})
        )

        reply = self.reply(params.message)
        stream_key = agent_session_key(params.session_key)
        words = reply.split(" ")
        for count in range(1, len(words) + 1):
            data: dict[str, Any] = {"text": " ".join(words[:count])}
            if count == len(words):
                data["phase"] = "end"
            await self._send(
                peer,
                EventFrame(
                    event="agent",
                    payload={
                        "sessionKey": stream_key,
                        "stream": "assistant",
                        "runId": run_id,
                        "data": data,
                    },
                ),
            )
        await self._send(peer, chat_final_event(params.session_key, reply, run_id))

    async def _send(
        self, peer: PeerConnection, frame: EventFrame | ResponseFrame
    ) -> None:
        await peer.websocket.send_text(encode_frame(frame))

    async def _fail(
        self, peer: PeerConnection, frame: RequestFrame, code: str, message: str
    ) -> None:
        await self._send(
            peer,
            ResponseFrame(
                id=frame.id, ok=False, error=ErrorShape(code=code, message=message)
            ),
        )
