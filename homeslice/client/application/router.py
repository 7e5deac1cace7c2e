"""
Application layer: routing session events and assembling streamed replies.

Every inbound event is classified by its session key into the foreground
exchange, one of the subscribed alert exchanges, or ignored. Both event shapes
carry the full text so far, so the exchange buffer is replaced, never appended.
"""

from __future__ import annotations

import logging
import queue
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable

from homeslice.client.domain.entities import (
    AgentSessionKey,
    AlertSessionKey,
    ChatResult,
    CompanionSessionKey,
    ResultCallback,
    SessionExchange,
    SessionKey,
    parse_session_key,
)
from homeslice.common.codec import parse_payload
from homeslice.common.exceptions import GatewayRequestError
from homeslice.common.models import AgentEventPayload, ChatEventPayload

if TYPE_CHECKING:
    from homeslice.common.models import EventFrame

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_REPLIES = ("HEARTBEAT_OK", "NO_REPLY")


class Route(str, Enum):
    FOREGROUND = "foreground"
    ALERT = "alert"
    IGNORED = "ignored"


def acknowledgment_filter(
    ignored_replies: Iterable[str] = DEFAULT_IGNORED_REPLIES,
) -> Callable[[str], bool]:
    """Build a filter accepting non-empty alerts that are not bare acknowledgments."""
    ignored = {reply.strip().upper() for reply in ignored_replies}

    def accept(text: str) -> bool:
        stripped = text.strip()
        return bool(stripped) and stripped.upper() not in ignored

    return accept


class SessionEventRouter:
    """Demultiplexes session events into completed messages."""

    def __init__(
        self,
        companion: str,
        alert_queue: queue.Queue[str] | None = None,
        alert_filter: Callable[[str], bool] | None = None,
        on_alert: Callable[[str, str], None] | None = None,
    ):
        self.companion = companion
        self.foreground = SessionExchange(CompanionSessionKey(companion))
        self.alert_exchanges: dict[AlertSessionKey, SessionExchange] = {}
        self.alerts: queue.Queue[str] = (
            alert_queue if alert_queue is not None else queue.Queue()
        )
        self.alert_filter = alert_filter or acknowledgment_filter()
        self.on_alert = on_alert

    # Exchanges

    def begin_exchange(self, completion: ResultCallback | None) -> ResultCallback | None:
        """Register the foreground completion, returning the one it replaces."""
        superseded = self.foreground.take_completion()
        self.foreground.finish_run()
        self.foreground.completion = completion
        self.foreground.text_buffer = ""
        return superseded

    def bind_run(self, run_id: str | None) -> None:
        """Record the run id the gateway assigned to the foreground message."""
        if run_id is None or run_id == self.foreground.completed_run_id:
            return
        self.foreground.run_id = run_id

    def add_alert_session(self, raw_key: str) -> AlertSessionKey:
        key = parse_session_key(raw_key)
        if not isinstance(key, AlertSessionKey):
            msg = f"Not an alert session key: {raw_key!r}"
            raise ValueError(msg)
        self.alert_exchanges.setdefault(key, SessionExchange(key))
        return key

    def alert_session_keys(self) -> list[str]:
        return [str(key) for key in self.alert_exchanges]

    def has_pending(self) -> bool:
        return self.foreground.completion is not None

    def fail_pending(self, error: Exception) -> None:
        """Fail the live foreground exchange, if any."""
        completion = self.foreground.take_completion()
        self.foreground.text_buffer = ""
        self.foreground.finish_run()
        if completion is not None:
            self.deliver(completion, ChatResult(error=error))

    # Routing

    def classify(self, key: SessionKey) -> tuple[Route, SessionExchange | None]:
        if isinstance(key, (CompanionSessionKey, AgentSessionKey)):
            if key.companion == self.companion:
                return Route.FOREGROUND, self.foreground
            return Route.IGNORED, None
        if isinstance(key, AlertSessionKey):
            exchange = self.alert_exchanges.get(key)
            if exchange is not None:
                return Route.ALERT, exchange
            return Route.IGNORED, None
        return Route.IGNORED, None

    def route(self, frame: EventFrame) -> Route:
        """Apply one event frame.

        Raises:
            ProtocolError: the payload lacks required fields.
        """
        if frame.event == "chat":
            return self._on_chat(parse_payload(ChatEventPayload, frame.payload))
        if frame.event == "agent":
            return self._on_agent(parse_payload(AgentEventPayload, frame.payload))
        logger.debug("Ignoring %s event", frame.event)
        return Route.IGNORED

    def _on_chat(self, payload: ChatEventPayload) -> Route:
        route, exchange = self.classify(parse_session_key(payload.session_key))
        if exchange is None:
            logger.debug("Ignoring chat event for %s", payload.session_key)
            return route
        if exchange.is_stale(payload.run_id):
            logger.debug("Ignoring chat event from stale run %s", payload.run_id)
            return Route.IGNORED

        if payload.state in ("error", "aborted"):
            reason = payload.error_message or f"chat run {payload.state}"
            self._fail(route, exchange, reason, payload.run_id)
            return route

        message = payload.message
        if message is not None and message.role == "assistant":
            text = message.text()
            if text:
                exchange.replace_text(text)

        if payload.state == "final":
            self._complete(route, exchange, payload.run_id)
        return route

    def _on_agent(self, payload: AgentEventPayload) -> Route:
        route, exchange = self.classify(parse_session_key(payload.session_key))
        if exchange is None:
            logger.debug("Ignoring agent event for %s", payload.session_key)
            return route
        if exchange.is_stale(payload.run_id):
            logger.debug("Ignoring agent event from stale run %s", payload.run_id)
            return Route.IGNORED

        data = payload.data
        if payload.stream == "assistant" and data.text is not None:
            exchange.replace_text(data.text)

        if data.phase == "end":
            self._complete(route, exchange, payload.run_id)
        elif data.phase == "error":
            self._fail(route, exchange, "agent run failed", payload.run_id)
        return route

    # Delivery

    def _complete(
        self, route: Route, exchange: SessionExchange, run_id: str | None
    ) -> None:
        text = exchange.take_text()
        exchange.finish_run(run_id)
        if route is Route.FOREGROUND:
            completion = exchange.take_completion()
            if completion is None:
                logger.debug("Dropping completion with no waiting caller")
                return
            self.deliver(completion, ChatResult(text=text))
            return

        if not self.alert_filter(text):
            logger.debug("Filtered alert on %s", exchange.session_key)
            return
        self.alerts.put_nowait(text)
        logger.info("Queued alert from %s", exchange.session_key)
        if self.on_alert is not None:
            try:
                self.on_alert(str(exchange.session_key), text)
            except Exception:
                logger.exception("Alert hook raised")

    def _fail(
        self,
        route: Route,
        exchange: SessionExchange,
        reason: str,
        run_id: str | None,
    ) -> None:
        exchange.text_buffer = ""
        exchange.finish_run(run_id)
        if route is Route.ALERT:
            logger.warning("Alert run on %s failed: %s", exchange.session_key, reason)
            return
        completion = exchange.take_completion()
        if completion is not None:
            error = GatewayRequestError(reason, run_id=run_id)
            self.deliver(completion, ChatResult(error=error))

    @staticmethod
    def deliver(completion: ResultCallback, result: ChatResult) -> None:
        try:
            completion(result)
        except Exception:
            logger.exception("Result callback raised")
