"""Tests for the flow EventBus."""

import pytest

from flowengine.runtime.event_bus import EventBus, FlowEvent, FlowEventType


@pytest.mark.asyncio
async def test_subscribers_filtered_by_type_request_and_node():
    bus = EventBus()
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe([FlowEventType.NODE_START], handler, filter_request="r1", filter_node="a")

    await bus.emit_node_start("r1", "a", "x1")
    await bus.emit_node_start("r1", "b", "x2")
    await bus.emit_node_start("r2", "a", "x3")
    await bus.emit_error("r1", "boom", "a")

    assert [e.execution_id for e in received] == ["x1"]


@pytest.mark.asyncio
async def test_handler_errors_do_not_propagate():
    bus = EventBus()
    received = []

    async def broken(event):
        raise RuntimeError("observer bug")

    async def healthy(event):
        received.append(event)

    bus.subscribe([FlowEventType.DONE], broken)
    bus.subscribe([FlowEventType.DONE], healthy)

    await bus.emit_done("r1", ok=True)

    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    received = []

    async def handler(event):
        received.append(event)

    sub_id = bus.subscribe([FlowEventType.CHUNK], handler)
    assert bus.unsubscribe(sub_id) is True
    assert bus.unsubscribe(sub_id) is False

    await bus.emit_chunk("r1", "n", "x", "text")
    assert received == []


@pytest.mark.asyncio
async def test_history_most_recent_first_and_bounded():
    bus = EventBus(max_history=3)
    for i in range(5):
        await bus.emit_chunk("r1", "n", f"x{i}", str(i))

    history = bus.get_history(FlowEventType.CHUNK)

    assert [e.data["text"] for e in history] == ["4", "3", "2"]
    assert bus.get_history(limit=1)[0].data["text"] == "4"


@pytest.mark.asyncio
async def test_stats():
    bus = EventBus()
    await bus.emit_node_start("r1", "a", "x")
    await bus.emit_node_end("r1", "a", "x", 5, "success")
    await bus.emit_node_start("r1", "b", "y")

    stats = bus.get_stats()

    assert stats["total_events"] == 3
    assert stats["events_by_type"] == {"node_start": 2, "node_end": 1}


@pytest.mark.asyncio
async def test_wait_for_timeout_returns_none():
    bus = EventBus()
    assert await bus.wait_for(FlowEventType.DONE, timeout=0.01) is None
    assert bus.get_stats()["subscriptions"] == 0


def test_event_to_dict():
    event = FlowEvent(type=FlowEventType.NODE_RETRY, request_id="r1", node_id="n", data={"attempt": 1})
    data = event.to_dict()
    assert data["type"] == "node_retry"
    assert data["data"] == {"attempt": 1}
    assert "timestamp" in data
