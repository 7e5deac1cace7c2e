"""
Application layer: Runs a gateway client on its own event loop thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import TYPE_CHECKING, Any, Coroutine

from homeslice.client.domain.entities import ChatResult

if TYPE_CHECKING:
    import queue

    from homeslice.client.client import GatewayClient
    from homeslice.client.domain.entities import ResultCallback


class GatewayRunner:
    """Thread-safe facade over a GatewayClient.

    The client's event loop runs in a daemon thread. Every public method may be
    called from any thread and hands its work to that loop. Result callbacks
    run on the loop thread; callers wanting another context use the returned
    futures instead.
    """

    def __init__(self, client: GatewayClient):
        self.client = client
        self.logger = logging.getLogger(__name__)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._started = threading.Event()

    @property
    def alerts(self) -> queue.Queue[str]:
        return self.client.alerts

    def start_in_thread(self) -> None:
        """Start the event loop in a separate thread."""
        if self._thread and self._thread.is_alive():
            self.logger.warning("Gateway runner is already running")
            return
        self._started.clear()
        self._thread = threading.Thread(
            target=self._run, name="homeslice-gateway", daemon=True
        )
        self._thread.start()
        self._started.wait()
        self.logger.info("Gateway runner started in background thread")

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        loop.call_soon(self._started.set)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Schedule a coroutine on the client's loop."""
        if self._loop is None or not self._loop.is_running():
            coro.close()
            msg = "Gateway runner is not started"
            raise RuntimeError(msg)
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def send(
        self,
        message: str,
        endpoint: str | None = None,
        token: str | None = None,
        on_result: ResultCallback | None = None,
    ) -> concurrent.futures.Future[ChatResult]:
        """Send a chat message; the returned future resolves with its ChatResult."""
        result_future: concurrent.futures.Future[ChatResult] = (
            concurrent.futures.Future()
        )

        def deliver(result: ChatResult) -> None:
            try:
                if on_result is not None:
                    on_result(result)
            finally:
                if not result_future.done():
                    result_future.set_result(result)

        def on_dispatched(future: concurrent.futures.Future) -> None:
            if future.cancelled():
                return
            error = future.exception()
            if error is not None and not result_future.done():
                result_future.set_result(ChatResult(error=error))

        self.submit(self.client.send(message, endpoint, token, deliver)).add_done_callback(
            on_dispatched
        )
        return result_future

    def connect_for_alerts(
        self,
        endpoint: str | None = None,
        token: str | None = None,
        session_keys: list[str] | None = None,
    ) -> concurrent.futures.Future:
        return self.submit(self.client.connect_for_alerts(endpoint, token, session_keys))

    def disconnect(self) -> concurrent.futures.Future:
        return self.submit(self.client.disconnect())

    def stop_thread(self, timeout: float = 5.0) -> None:
        """Disconnect and stop the background loop."""
        if self._loop is None or self._thread is None:
            return
        if self._loop.is_running():
            try:
                self.disconnect().result(timeout)
            except concurrent.futures.TimeoutError:
                self.logger.warning("Timed out disconnecting from gateway")
            self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        self._thread = None
        self._loop = None
        self.logger.info("Gateway runner stopped")
