import asyncio
import json
from typing import Any

import pytest

from homeslice.client.client import GatewayClient
from homeslice.common.exceptions import TransportError
from homeslice.identity import DeviceIdentityManager, MemoryKeyStore

COMPANION_KEY = "app:pizza:main"
AGENT_KEY = "agent:main:app:pizza:main"
ALERT_KEY = "agent:main:telegram:123"


class FakeTransport:
    """In-memory stand-in for a gateway socket."""

    def __init__(self, ping_error: Exception | None = None):
        self.ping_error = ping_error
        self.sent: list[str] = []
        self.incoming: asyncio.Queue[str | Exception] = asyncio.Queue()
        self.closed: tuple[int, str] | None = None

    async def send(self, text: str) -> None:
        if self.closed is not None:
            raise TransportError("socket closed")
        self.sent.append(text)

    async def recv(self) -> str:
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def ping(self, timeout: float) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def push(self, frame: dict[str, Any] | str | Exception) -> None:
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self.incoming.put_nowait(frame)

    def sent_frames(self) -> list[dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent_frames() if frame["method"] == method]


class EchoGatewayTransport(FakeTransport):
    """Fake socket that answers connect and chat.send the way a gateway does."""

    def __init__(self) -> None:
        super().__init__()
        self.runs = 0
        self.push(challenge("n-1", 1000))

    async def send(self, text: str) -> None:
        await super().send(text)
        frame = json.loads(text)
        if frame["method"] == "connect":
            self.push(response(frame["id"], payload={"type": "hello-ok"}))
        elif frame["method"] == "chat.send":
            reply = f"Echo: {frame['params']['message']}"
            self.runs += 1
            run_id = f"run-{self.runs}"
            self.push(response(frame["id"], payload={"runId": run_id}))
            self.push(agent_event(AGENT_KEY, reply[:4], run_id=run_id))
            self.push(agent_event(AGENT_KEY, reply, phase="end", run_id=run_id))
            self.push(chat_event(COMPANION_KEY, "final", reply, run_id=run_id))


def challenge(nonce: str = "abc", ts: int = 1000) -> dict[str, Any]:
    return {
        "type": "event",
        "event": "connect.challenge",
        "payload": {"nonce": nonce, "ts": ts},
    }


def response(
    request_id: str,
    ok: bool = True,
    payload: dict[str, Any] | None = None,
    error: dict[str, Any] | None = None,
) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": "res", "id": request_id, "ok": ok}
    if payload is not None:
        frame["payload"] = payload
    if error is not None:
        frame["error"] = error
    return frame


def agent_event(
    session_key: str,
    text: str | None = None,
    phase: str | None = None,
    stream: str = "assistant",
    run_id: str = "run-1",
) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if text is not None:
        data["text"] = text
    if phase is not None:
        data["phase"] = phase
    return {
        "type": "event",
        "event": "agent",
        "payload": {
            "sessionKey": session_key,
            "stream": stream,
            "runId": run_id,
            "data": data,
        },
    }


def chat_event(
    session_key: str,
    state: str,
    text: str | None = None,
    error_message: str | None = None,
    run_id: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"sessionKey": session_key, "state": state}
    if run_id is not None:
        payload["runId"] = run_id
    if text is not None:
        payload["message"] = {
            "role": "assistant",
            "content": [{"type": "text", "text": text}],
        }
    if error_message is not None:
        payload["errorMessage"] = error_message
    return {"type": "event", "event": "chat", "payload": payload}


async def settle(rounds: int = 20) -> None:
    """Let the client's receive loop drain whatever was pushed."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_client(
    transport: FakeTransport,
    identity: DeviceIdentityManager | None = None,
    **kwargs: Any,
) -> GatewayClient:
    connected_urls: list[str] = []

    async def connector(url: str) -> FakeTransport:
        connected_urls.append(url)
        return transport

    kwargs.setdefault("endpoint", "ws://gateway.test:18789")
    kwargs.setdefault("token", "tok123")
    kwargs.setdefault("companion", "pizza")
    client = GatewayClient(
        identity or DeviceIdentityManager(MemoryKeyStore()),
        connector=connector,
        **kwargs,
    )
    client.connected_urls = connected_urls  # type: ignore[attr-defined]
    return client


async def complete_handshake(client: GatewayClient, transport: FakeTransport) -> None:
    transport.push(challenge())
    await settle()
    transport.push(response("1", payload={"type": "hello-ok"}))
    await settle()


@pytest.fixture
def identity() -> DeviceIdentityManager:
    return DeviceIdentityManager(MemoryKeyStore())


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Any) -> None:
    """Keep tests independent of the caller's HOMESLICE_* settings."""
    for name in (
        "HOMESLICE_GATEWAY_URL",
        "HOMESLICE_GATEWAY_TOKEN",
        "HOMESLICE_COMPANION",
        "HOMESLICE_ALERT_SESSIONS",
        "HOMESLICE_ALERT_INIT_MESSAGE",
        "HOMESLICE_REQUEST_IDS",
        "HOMESLICE_PROBE_TIMEOUT",
        "HOMESLICE_HANDSHAKE_TIMEOUT",
        "HOMESLICE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOMESLICE_IDENTITY_DIR", str(tmp_path / "identity"))
