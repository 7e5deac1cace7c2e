"""
Application layer: matching gateway responses to the requests that caused them.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from homeslice.client.domain.entities import RequestKind

if TYPE_CHECKING:
    from homeslice.common.models import ResponseFrame

logger = logging.getLogger(__name__)

FIXED_REQUEST_IDS: dict[RequestKind, str] = {
    RequestKind.CONNECT: "1",
    RequestKind.CHAT_SEND: "2",
    RequestKind.SUBSCRIBE: "3",
    RequestKind.ALERT_INIT: "4",
    RequestKind.ALERT_SEND: "5",
}


class SlotPolicy(str, Enum):
    """How request ids are chosen.

    Both policies keep a single slot per request kind: registering a kind
    that is already in flight replaces the older request (last write wins).
    FIXED_PER_KIND reuses the well-known id of the kind on the wire;
    MONOTONIC draws fresh ids so a late response to a replaced request is
    ignored rather than resolving its successor.
    """

    FIXED_PER_KIND = "fixed"
    MONOTONIC = "monotonic"


ResponseHandler = Callable[["ResponseFrame"], Awaitable[None]]


@dataclass
class PendingRequest:
    kind: RequestKind
    request_id: str
    on_response: ResponseHandler


class CorrelationTable:
    """Request id to response handler table with one slot per request kind."""

    def __init__(self, policy: SlotPolicy = SlotPolicy.FIXED_PER_KIND):
        self.policy = policy
        self._by_id: dict[str, PendingRequest] = {}
        self._by_kind: dict[RequestKind, PendingRequest] = {}
        self._counter = itertools.count(1)

    def _next_id(self, kind: RequestKind) -> str:
        if self.policy is SlotPolicy.FIXED_PER_KIND:
            return FIXED_REQUEST_IDS[kind]
        return str(next(self._counter))

    def register(
        self, kind: RequestKind, on_response: ResponseHandler
    ) -> tuple[str, PendingRequest | None]:
        """Claim the slot for ``kind``.

        Returns the request id to put on the wire and the request that was
        replaced, if the slot was occupied.
        """
        replaced = self._by_kind.pop(kind, None)
        if replaced is not None:
            self._by_id.pop(replaced.request_id, None)
            logger.debug(
                "Replacing in-flight %s request %s", kind.value, replaced.request_id
            )

        request_id = self._next_id(kind)
        pending = PendingRequest(kind, request_id, on_response)
        self._by_id[request_id] = pending
        self._by_kind[kind] = pending
        return request_id, replaced

    def resolve(self, frame: ResponseFrame) -> PendingRequest | None:
        """Release the slot matching the id of ``frame``.

        Returns the pending request whose handler should receive the frame, or
        None for unknown ids.
        """
        pending = self._by_id.pop(frame.id, None)
        if pending is None:
            logger.debug("Ignoring response for unknown request id %s", frame.id)
            return None
        if self._by_kind.get(pending.kind) is pending:
            del self._by_kind[pending.kind]
        return pending

    def pending(self, kind: RequestKind) -> PendingRequest | None:
        return self._by_kind.get(kind)

    def clear(self) -> list[PendingRequest]:
        """Drop all slots, returning what was still in flight."""
        dropped = list(self._by_id.values())
        self._by_id.clear()
        self._by_kind.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._by_id)
