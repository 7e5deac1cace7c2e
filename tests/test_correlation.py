from homeslice.client.application.correlation import (
    CorrelationTable,
    SlotPolicy,
)
from homeslice.client.domain.entities import RequestKind
from homeslice.common.models import ResponseFrame


async def noop(frame: ResponseFrame) -> None:
    pass


async def other(frame: ResponseFrame) -> None:
    pass


def test_fixed_ids_per_kind() -> None:
    table = CorrelationTable()
    ids = [table.register(kind, noop)[0] for kind in RequestKind]
    assert ids == ["1", "2", "3", "4", "5"]
    assert len(table) == 5  # noqa: PLR2004


def test_register_same_kind_replaces_slot() -> None:
    table = CorrelationTable()
    first_id, replaced = table.register(RequestKind.CHAT_SEND, noop)
    assert replaced is None

    second_id, replaced = table.register(RequestKind.CHAT_SEND, other)
    assert second_id == first_id == "2"
    assert replaced is not None
    assert replaced.on_response is noop
    assert len(table) == 1

    pending = table.resolve(ResponseFrame(id="2", ok=True))
    assert pending is not None
    assert pending.on_response is other
    assert len(table) == 0


def test_resolve_unknown_id_returns_none() -> None:
    table = CorrelationTable()
    table.register(RequestKind.CONNECT, noop)
    assert table.resolve(ResponseFrame(id="42", ok=True)) is None
    assert table.pending(RequestKind.CONNECT) is not None


def test_resolve_releases_slot_once() -> None:
    table = CorrelationTable()
    table.register(RequestKind.SUBSCRIBE, noop)
    assert table.resolve(ResponseFrame(id="3", ok=True)) is not None
    assert table.resolve(ResponseFrame(id="3", ok=True)) is None
    assert table.pending(RequestKind.SUBSCRIBE) is None


def test_monotonic_ids_ignore_late_responses() -> None:
    table = CorrelationTable(SlotPolicy.MONOTONIC)
    first_id, _ = table.register(RequestKind.CHAT_SEND, noop)
    second_id, replaced = table.register(RequestKind.CHAT_SEND, other)

    assert first_id != second_id
    assert replaced is not None
    assert table.resolve(ResponseFrame(id=first_id, ok=True)) is None
    pending = table.resolve(ResponseFrame(id=second_id, ok=True))
    assert pending is not None
    assert pending.on_response is other


def test_clear_returns_in_flight() -> None:
    table = CorrelationTable()
    table.register(RequestKind.CONNECT, noop)
    table.register(RequestKind.CHAT_SEND, noop)

    dropped = table.clear()
    assert {p.kind for p in dropped} == {RequestKind.CONNECT, RequestKind.CHAT_SEND}
    assert len(table) == 0
