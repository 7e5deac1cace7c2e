import pytest
from conftest import EchoGatewayTransport, FakeTransport, make_client

from homeslice.client.application.runner import GatewayRunner
from homeslice.client.domain.entities import ChatResult, ConnectionPhase
from homeslice.common.exceptions import TransportError


@pytest.fixture
def start_runner():
    runners: list[GatewayRunner] = []

    def build(transport: FakeTransport) -> GatewayRunner:
        runner = GatewayRunner(make_client(transport))
        runner.start_in_thread()
        runners.append(runner)
        return runner

    yield build
    for runner in runners:
        runner.stop_thread()


def test_runner_send_returns_reply(start_runner) -> None:
    gateway = start_runner(EchoGatewayTransport())
    seen: list[ChatResult] = []

    result = gateway.send("hi", on_result=seen.append).result(timeout=5)

    assert result.text == "Echo: hi"
    assert seen == [result]
    assert gateway.client.phase is ConnectionPhase.READY


def test_runner_reports_connection_failure(start_runner) -> None:
    gateway = start_runner(FakeTransport(ping_error=TransportError("no pong")))

    result = gateway.send("hi").result(timeout=5)

    assert isinstance(result.error, TransportError)
    assert gateway.client.phase is ConnectionPhase.CLOSED


def test_runner_stop_disconnects(start_runner) -> None:
    transport = EchoGatewayTransport()
    gateway = start_runner(transport)
    gateway.send("hi").result(timeout=5)

    gateway.stop_thread()

    assert gateway.client.phase is ConnectionPhase.IDLE
    assert transport.closed == (1001, "going away")


def test_submit_requires_running_loop() -> None:
    gateway = GatewayRunner(make_client(FakeTransport()))

    async def nothing() -> None:
        pass

    with pytest.raises(RuntimeError):
        gateway.submit(nothing())


def test_runner_consecutive_sends_get_their_own_replies(start_runner) -> None:
    gateway = start_runner(EchoGatewayTransport())

    assert gateway.send("one").result(timeout=5).text == "Echo: one"
    assert gateway.send("two").result(timeout=5).text == "Echo: two"
