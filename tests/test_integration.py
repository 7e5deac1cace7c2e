# Integration tests
import asyncio
import socket
import threading
import time

import httpx
import pytest
import uvicorn

from homeslice.client.application.runner import GatewayRunner
from homeslice.client.client import GatewayClient
from homeslice.client.domain.entities import ConnectionPhase
from homeslice.common.exceptions import AuthError
from homeslice.identity import DeviceIdentityManager, FileKeyStore
from homeslice.server.core import DevGateway


@pytest.fixture
def live_gateway():
    """Run the development gateway on a free loopback port."""
    server_host = "127.0.0.1"
    # Find a free port
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((server_host, 0))
        server_port = s.getsockname()[1]

    gateway = DevGateway(token="secret", server_host=server_host, server_port=server_port)
    server = uvicorn.Server(
        uvicorn.Config(gateway.app, host=server_host, port=server_port, log_level="warning")
    )
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    deadline = time.monotonic() + 10
    while not server.started:
        if time.monotonic() > deadline:
            pytest.fail("development gateway did not start")
        time.sleep(0.05)

    yield {"gateway": gateway, "url": f"http://{server_host}:{server_port}"}

    server.should_exit = True
    thread.join(timeout=10)


def test_full_integration_flow(live_gateway, tmp_path):
    """Connect, authenticate and receive a streamed reply over a real socket."""
    identity = DeviceIdentityManager(FileKeyStore(tmp_path / "device_identity.key"))
    client = GatewayClient(identity, live_gateway["url"], "secret")

    async def scenario() -> str:
        try:
            return await asyncio.wait_for(client.ask("hello there"), 10)
        finally:
            await client.disconnect()

    reply = asyncio.run(scenario())

    assert reply == "You said: hello there"
    assert client.phase is ConnectionPhase.IDLE
    assert identity.is_persistent


def test_wrong_token_is_rejected(live_gateway):
    client = GatewayClient(DeviceIdentityManager(), live_gateway["url"], "wrong")

    async def scenario() -> None:
        await asyncio.wait_for(client.ask("hello"), 10)

    with pytest.raises(AuthError):
        asyncio.run(scenario())
    assert client.phase is ConnectionPhase.CLOSED


def test_runner_alert_feed(live_gateway):
    """Alerts published by the gateway land in the runner's alert queue."""
    alert_key = "agent:main:telegram:42"
    client = GatewayClient(
        DeviceIdentityManager(),
        live_gateway["url"],
        "secret",
        alert_session_keys=[alert_key],
    )
    runner = GatewayRunner(client)
    runner.start_in_thread()
    try:
        runner.connect_for_alerts().result(timeout=5)
        result = runner.send("ping").result(timeout=10)
        assert result.text == "You said: ping"

        deadline = time.monotonic() + 5
        while not live_gateway["gateway"].session_manager.subscribers(alert_key):
            assert time.monotonic() < deadline
            time.sleep(0.05)

        response = httpx.post(
            f"{live_gateway['url']}/alerts",
            json={"sessionKey": alert_key, "text": "Dinner is ready"},
        )
        assert response.json() == {"delivered": 1}
        assert runner.alerts.get(timeout=5) == "Dinner is ready"
    finally:
        runner.stop_thread()
