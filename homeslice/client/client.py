"""
Gateway protocol client.

One asyncio event loop owns the connection: the receive loop, the handshake and
every public coroutine run on it, so connection state, the correlation table
and the exchange buffers are only ever touched from that loop.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel

from homeslice.client.application.correlation import (
    CorrelationTable,
    ResponseHandler,
    SlotPolicy,
)
from homeslice.client.application.router import (
    SessionEventRouter,
    acknowledgment_filter,
)
from homeslice.client.domain.entities import (
    Challenge,
    ChatResult,
    CloseReason,
    ConnectionPhase,
    RequestKind,
    ResultCallback,
)
from homeslice.client.infrastructure.transport import (
    normalize_endpoint,
    websocket_connector,
)
from homeslice.client.session_handler import HandshakeBuilder
from homeslice.common.codec import decode_frame, encode_request, parse_payload, preview
from homeslice.common.config import Config
from homeslice.common.exceptions import (
    AuthError,
    ConnectionClosedError,
    GatewayRequestError,
    HandshakeTimeoutError,
    ProtocolError,
    RemoteClosedError,
    RequestSupersededError,
    SigningError,
    TransportError,
)
from homeslice.common.models import (
    ChallengePayload,
    ChatSendParams,
    ChatSendResult,
    EventFrame,
    ResponseFrame,
    SubscribeParams,
)

if TYPE_CHECKING:
    import queue

    from homeslice.common.interfaces import Connector, ITransport
    from homeslice.identity import DeviceIdentityManager

logger = logging.getLogger(__name__)

GOING_AWAY = 1001
INTERNAL_ERROR = 1011


@dataclass
class QueuedMessage:
    """Chat message waiting for the connection to become ready."""

    message: str
    on_result: ResultCallback | None


class GatewayClient:
    """Authenticated, session-multiplexed client for the companion gateway."""

    def __init__(
        self,
        identity: DeviceIdentityManager,
        endpoint: str | None = None,
        token: str | None = None,
        companion: str | None = None,
        *,
        config: Config | None = None,
        connector: Connector | None = None,
        probe_timeout: float | None = None,
        handshake_timeout: float | None = None,
        slot_policy: SlotPolicy | None = None,
        alert_session_keys: list[str] | None = None,
        alert_queue: queue.Queue[str] | None = None,
        alert_filter: Callable[[str], bool] | None = None,
        alert_init_message: str | None = None,
        on_alert: Callable[[str, str], None] | None = None,
        on_phase_change: Callable[[ConnectionPhase, CloseReason | None], None]
        | None = None,
    ):
        self.config = config or Config()
        self.identity = identity
        self.endpoint = endpoint or self.config.GATEWAY_URL
        self.token = token if token is not None else self.config.GATEWAY_TOKEN
        self.companion = companion or self.config.COMPANION_NAME
        self.connector: Connector = connector or websocket_connector
        self.probe_timeout = (
            probe_timeout if probe_timeout is not None else self.config.PROBE_TIMEOUT
        )
        self.handshake_timeout = (
            handshake_timeout
            if handshake_timeout is not None
            else self.config.HANDSHAKE_TIMEOUT
        )
        self.alert_init_message = alert_init_message or self.config.ALERT_INIT_MESSAGE
        self.on_phase_change = on_phase_change

        self.handshake = HandshakeBuilder(identity, self.config)
        self.requests = CorrelationTable(
            slot_policy or SlotPolicy(self.config.REQUEST_ID_POLICY)
        )
        self.router = SessionEventRouter(
            self.companion,
            alert_queue=alert_queue,
            alert_filter=alert_filter
            or acknowledgment_filter(self.config.ALERT_IGNORED_REPLIES),
            on_alert=on_alert,
        )
        for key in alert_session_keys or self.config.ALERT_SESSION_KEYS:
            self.router.add_alert_session(key)

        # Connection state
        self._phase = ConnectionPhase.IDLE
        self._close_reason: CloseReason | None = None
        self._transport: ITransport | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._handshake_timer: asyncio.Task[None] | None = None
        self._challenge: Challenge | None = None
        self._queued: QueuedMessage | None = None
        self._bind_runs = True
        self._alerts_wanted = False
        self.last_error: Exception | None = None

    # State

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def close_reason(self) -> CloseReason | None:
        return self._close_reason

    @property
    def is_ready(self) -> bool:
        return self._phase is ConnectionPhase.READY

    @property
    def alerts(self) -> queue.Queue[str]:
        """FIFO of completed alert messages."""
        return self.router.alerts

    @property
    def session_key(self) -> str:
        return str(self.router.foreground.session_key)

    def _set_phase(
        self, phase: ConnectionPhase, reason: CloseReason | None = None
    ) -> None:
        if phase is self._phase and reason is self._close_reason:
            return
        logger.debug("Connection phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self._close_reason = reason
        if self.on_phase_change is not None:
            try:
                self.on_phase_change(phase, reason)
            except Exception:
                logger.exception("Phase listener raised")

    # Public entry points

    async def connect(self, endpoint: str | None = None, token: str | None = None) -> None:
        """Open the socket, probe it and wait for the gateway challenge.

        Does nothing while a connection is ready or being established.
        Failures are reported to pending callbacks and leave the client
        CLOSED with reason ERROR.
        """
        if endpoint:
            self.endpoint = endpoint
        if token is not None:
            self.token = token or None
        if self._phase is ConnectionPhase.READY or self._phase.in_progress:
            logger.debug("Connect ignored in phase %s", self._phase.value)
            return

        self.identity.initialize()
        self.last_error = None
        self._set_phase(ConnectionPhase.CONNECTING)

        try:
            url = normalize_endpoint(self.endpoint)
            logger.info("Connecting to gateway %s", url)
            transport = await self.connector(url)
            if self._phase is not ConnectionPhase.CONNECTING:
                # disconnected while the socket was opening
                await transport.close(GOING_AWAY, "going away")
                return
            self._transport = transport
            await transport.ping(self.probe_timeout)
        except TransportError as err:
            if self._phase is not ConnectionPhase.CONNECTING:
                return
            logger.error("Gateway connection failed: %s", err)
            await self._fail_connection(err, CloseReason.ERROR)
            return

        if self._transport is not transport:
            return

        self._set_phase(ConnectionPhase.AWAITING_CHALLENGE)
        self._receive_task = asyncio.create_task(self._receive_loop(transport))
        self._handshake_timer = asyncio.create_task(self._handshake_deadline(transport))

    async def send(
        self,
        message: str,
        endpoint: str | None = None,
        token: str | None = None,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Send a chat message to the companion session.

        ``on_result`` fires once with the completed reply or a failure. While
        the connection is not ready, a single message is queued and the
        connection is started; a later call replaces the queued message and
        its callback receives ``RequestSupersededError``.
        """
        if self._phase is ConnectionPhase.READY:
            try:
                await self._send_chat(message, on_result)
            except TransportError as err:
                logger.error("Chat send failed: %s", err)
                await self._fail_connection(err, CloseReason.ERROR)
            return

        if self._queued is not None:
            logger.info("Replacing queued message; only the latest is sent")
            self._supersede(self._queued.on_result)
        self._queued = QueuedMessage(message, on_result)
        await self.connect(endpoint, token)

    async def ask(
        self,
        message: str,
        endpoint: str | None = None,
        token: str | None = None,
    ) -> str:
        """Send a chat message and wait for the completed reply text."""
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def on_result(result: ChatResult) -> None:
            if future.done():
                return
            if result.error is not None:
                future.set_exception(result.error)
            else:
                future.set_result(result.text or "")

        await self.send(message, endpoint, token, on_result)
        return await future

    async def connect_for_alerts(
        self,
        endpoint: str | None = None,
        token: str | None = None,
        session_keys: list[str] | None = None,
    ) -> None:
        """Connect proactively and subscribe to the alert sessions.

        Completed alert messages are pushed to ``alerts``.
        """
        for key in session_keys or []:
            self.router.add_alert_session(key)
        if not self.router.alert_exchanges:
            msg = "No alert session keys configured"
            raise ValueError(msg)

        self._alerts_wanted = True
        if self._phase is ConnectionPhase.READY:
            try:
                await self._subscribe_alerts()
            except TransportError as err:
                logger.error("Alert subscription failed: %s", err)
                await self._fail_connection(err, CloseReason.ERROR)
            return
        await self.connect(endpoint, token)

    async def send_alert_reply(self, message: str, session_key: str | None = None) -> None:
        """Send a message into an alert session.

        Raises:
            TransportError: the connection is not ready.
            ValueError: no alert session is known.
        """
        if self._phase is not ConnectionPhase.READY:
            msg = "Gateway connection is not ready"
            raise TransportError(msg)
        if session_key is not None:
            self.router.add_alert_session(session_key)
        else:
            keys = self.router.alert_session_keys()
            if not keys:
                msg = "No alert session keys configured"
                raise ValueError(msg)
            session_key = keys[0]

        params = ChatSendParams(
            session_key=session_key,
            message=message,
            idempotency_key=str(uuid.uuid4()),
        )
        await self._request(
            RequestKind.ALERT_SEND, "chat.send", params, self._on_alert_chat_response
        )

    async def disconnect(self) -> None:
        """Close the socket with a going-away closure.

        Every exchange still waiting for a reply fails with
        ``ConnectionClosedError``.
        """
        transport = self._transport
        if transport is None and self._phase in (
            ConnectionPhase.IDLE,
            ConnectionPhase.CLOSED,
        ):
            return

        self._teardown()
        self._alerts_wanted = False
        self._set_phase(ConnectionPhase.IDLE)
        self._fail_pending(ConnectionClosedError("Disconnected from gateway"))
        if transport is not None:
            await transport.close(GOING_AWAY, "going away")
        logger.info("Disconnected from gateway")

    # Receive path

    async def _receive_loop(self, transport: ITransport) -> None:
        while True:
            try:
                text = await transport.recv()
            except TransportError as err:
                if transport is not self._transport:
                    return
                reason = (
                    CloseReason.REMOTE
                    if isinstance(err, RemoteClosedError)
                    else CloseReason.ERROR
                )
                logger.warning("Gateway connection closed: %s", err)
                await self._fail_connection(err, reason)
                return

            try:
                await self._dispatch(text)
            except ProtocolError as err:
                logger.warning("Dropping frame: %s [%s]", err, preview(text))
            except TransportError as err:
                logger.error("Gateway send failed: %s", err)
                await self._fail_connection(err, CloseReason.ERROR)
                return

            if transport is not self._transport:
                return

    async def _dispatch(self, text: str) -> None:
        frame = decode_frame(text)
        if isinstance(frame, EventFrame):
            if frame.event == "connect.challenge":
                await self._on_challenge(frame)
            else:
                self.router.route(frame)
        elif isinstance(frame, ResponseFrame):
            pending = self.requests.resolve(frame)
            if pending is not None:
                await pending.on_response(frame)
        else:
            msg = f"Unexpected request frame from gateway: {frame.method}"
            raise ProtocolError(msg)

    # Handshake

    async def _on_challenge(self, frame: EventFrame) -> None:
        payload = parse_payload(ChallengePayload, frame.payload)
        if self._phase not in (
            ConnectionPhase.AWAITING_CHALLENGE,
            ConnectionPhase.HANDSHAKING,
        ):
            logger.debug("Ignoring challenge in phase %s", self._phase.value)
            return
        if self._phase is ConnectionPhase.HANDSHAKING:
            logger.info("Gateway re-issued its challenge; signing the new nonce")
        self._challenge = Challenge(nonce=payload.nonce, issued_at_ms=payload.ts)
        await self._send_connect()

    async def _send_connect(self) -> None:
        challenge, self._challenge = self._challenge, None
        if challenge is None:
            return
        try:
            params = self.handshake.build_connect_params(challenge, self.token)
        except SigningError as err:
            logger.error("Aborting handshake: %s", err)
            await self._fail_connection(err, CloseReason.ERROR)
            return

        self._set_phase(ConnectionPhase.HANDSHAKING)
        await self._request(
            RequestKind.CONNECT, "connect", params, self._on_connect_response
        )

    async def _on_connect_response(self, frame: ResponseFrame) -> None:
        if not frame.ok:
            err = AuthError(frame.error_message(), frame.error_code())
            logger.error("Gateway rejected connect: %s", err)
            await self._fail_connection(err, CloseReason.ERROR)
            return

        self._cancel_handshake_timer()
        self._set_phase(ConnectionPhase.READY)
        logger.info(
            "Connected to gateway as device %s", self.identity.device_id()[:12]
        )

        queued, self._queued = self._queued, None
        if queued is not None:
            await self._send_chat(queued.message, queued.on_result)
        if self._alerts_wanted:
            await self._subscribe_alerts()

    async def _handshake_deadline(self, transport: ITransport) -> None:
        await asyncio.sleep(self.handshake_timeout)
        if transport is self._transport and self._phase.in_progress:
            err = HandshakeTimeoutError(
                f"Gateway did not complete the handshake within {self.handshake_timeout}s"
            )
            logger.error("%s", err)
            await self._fail_connection(err, CloseReason.ERROR)

    # Requests

    async def _request(
        self,
        kind: RequestKind,
        method: str,
        params: BaseModel,
        on_response: ResponseHandler,
    ) -> str:
        if self._transport is None:
            msg = "Not connected to the gateway"
            raise TransportError(msg)
        request_id, replaced = self.requests.register(kind, on_response)
        if replaced is not None:
            logger.info("Replacing in-flight %s request", kind.value)
        await self._transport.send(encode_request(request_id, method, params))
        logger.debug("Sent %s request %s", method, request_id)
        return request_id

    async def _send_chat(self, message: str, on_result: ResultCallback | None) -> None:
        # With fixed ids a replaced chat.send still answers on the shared slot,
        # so its run id cannot be told apart from ours.
        self._bind_runs = (
            self.requests.policy is SlotPolicy.MONOTONIC
            or self.requests.pending(RequestKind.CHAT_SEND) is None
        )
        superseded = self.router.begin_exchange(on_result)
        if superseded is not None:
            self._supersede(superseded)
        params = ChatSendParams(
            session_key=self.session_key,
            message=message,
            idempotency_key=str(uuid.uuid4()),
        )
        await self._request(
            RequestKind.CHAT_SEND, "chat.send", params, self._on_chat_send_response
        )

    async def _on_chat_send_response(self, frame: ResponseFrame) -> None:
        if frame.ok:
            result = parse_payload(ChatSendResult, frame.payload or {})
            if self._bind_runs:
                self.router.bind_run(result.run_id)
            logger.debug("Chat run %s accepted", result.run_id)
            return
        err = GatewayRequestError(frame.error_message(), request_id=frame.id)
        logger.warning("Chat send rejected: %s", err)
        self.router.fail_pending(err)

    async def _subscribe_alerts(self) -> None:
        keys = self.router.alert_session_keys()
        params = SubscribeParams(session_keys=keys, events=list(self.config.ALERT_EVENTS))
        await self._request(
            RequestKind.SUBSCRIBE,
            "sessions.subscribe",
            params,
            self._on_subscribe_response,
        )
        if self.alert_init_message:
            init = ChatSendParams(
                session_key=keys[0],
                message=self.alert_init_message,
                idempotency_key=str(uuid.uuid4()),
            )
            await self._request(
                RequestKind.ALERT_INIT, "chat.send", init, self._on_alert_chat_response
            )

    async def _on_subscribe_response(self, frame: ResponseFrame) -> None:
        if frame.ok:
            logger.info(
                "Subscribed to %d alert session(s)", len(self.router.alert_exchanges)
            )
        else:
            logger.warning("Alert subscription rejected: %s", frame.error_message())

    async def _on_alert_chat_response(self, frame: ResponseFrame) -> None:
        if not frame.ok:
            logger.warning("Alert message rejected: %s", frame.error_message())

    # Failure handling

    def _supersede(self, on_result: ResultCallback | None) -> None:
        if on_result is not None:
            error = RequestSupersededError("Replaced by a newer message")
            SessionEventRouter.deliver(on_result, ChatResult(error=error))

    def _fail_pending(self, error: Exception) -> None:
        queued, self._queued = self._queued, None
        if queued is not None and queued.on_result is not None:
            SessionEventRouter.deliver(queued.on_result, ChatResult(error=error))
        self.router.fail_pending(error)

    def _cancel_handshake_timer(self) -> None:
        timer, self._handshake_timer = self._handshake_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    def _teardown(self) -> None:
        self._cancel_handshake_timer()
        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._transport = None
        self._challenge = None
        self.requests.clear()

    async def _fail_connection(self, error: Exception, reason: CloseReason) -> None:
        transport = self._transport
        self._teardown()
        self.last_error = error
        self._set_phase(ConnectionPhase.CLOSED, reason)
        self._fail_pending(error)
        if transport is not None and reason is CloseReason.ERROR:
            try:
                await transport.close(INTERNAL_ERROR, "client error")
            except TransportError as err:
                logger.debug("Ignoring close failure: %s", err)
