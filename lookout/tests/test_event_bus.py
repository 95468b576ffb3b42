"""Tests for event bus."""

import asyncio
import pytest

from lookout.daemon.bus import EventBus, Event


@pytest.mark.asyncio
async def test_event_emit_and_subscribe():
    """Test basic pub/sub functionality."""
    bus = EventBus()
    await bus.start()

    received_events = []

    async def handler(event: Event):
        received_events.append(event)

    # Subscribe to turn events
    bus.subscribe("turn.*", handler)

    # Emit event
    await bus.emit(Event(
        type="turn.completed",
        data={"query": "gm"}
    ))

    # Give time for processing
    await asyncio.sleep(0.1)

    assert len(received_events) == 1
    assert received_events[0].type == "turn.completed"
    assert received_events[0].data["query"] == "gm"

    await bus.stop()


@pytest.mark.asyncio
async def test_wildcard_subscription():
    """Test wildcard pattern matching."""
    bus = EventBus()
    await bus.start()

    all_events = []
    turn_events = []

    async def all_handler(event: Event):
        all_events.append(event)

    async def turn_handler(event: Event):
        turn_events.append(event)

    bus.subscribe("*", all_handler)
    bus.subscribe("turn.*", turn_handler)

    await bus.emit(Event(type="turn.started", data={}))
    await bus.emit(Event(type="alias.hit", data={}))
    await bus.emit(Event(type="turn.superseded", data={}))

    await asyncio.sleep(0.1)

    assert len(all_events) == 3
    assert len(turn_events) == 2

    await bus.stop()


@pytest.mark.asyncio
async def test_bound_method_handlers_stay_subscribed():
    """Handlers are held strongly, so bound methods keep receiving events."""

    class Counter:
        def __init__(self):
            self.count = 0

        async def on_event(self, event: Event):
            self.count += 1

    bus = EventBus()
    await bus.start()
    bus.subscribe("selection.recorded", Counter().on_event)
    counter = Counter()
    bus.subscribe("selection.recorded", counter.on_event)

    bus.emit_nowait(Event(type="selection.recorded", data={}))
    await asyncio.sleep(0.1)
    assert counter.count == 1

    bus.unsubscribe("selection.recorded", counter.on_event)
    bus.emit_nowait(Event(type="selection.recorded", data={}))
    await asyncio.sleep(0.1)
    assert counter.count == 1

    await bus.stop()


@pytest.mark.asyncio
async def test_handler_errors_are_counted():
    bus = EventBus()
    await bus.start()

    async def broken(event: Event):
        raise RuntimeError("boom")

    seen = []

    def sync_handler(event: Event):
        seen.append(event.type)

    bus.subscribe("turn.completed", broken)
    bus.subscribe("turn.completed", sync_handler)
    await bus.emit(Event(type="turn.completed", data={}))
    await asyncio.sleep(0.1)

    assert seen == ["turn.completed"]
    assert bus.get_stats()['handler_errors'] == 1

    await bus.stop()


@pytest.mark.asyncio
async def test_event_queue_full():
    """Test behavior when event queue is full."""
    bus = EventBus(max_queue=2)

    # Nothing drains the queue until start()
    await bus.emit(Event(type="test.1", data={}))
    assert bus.emit_nowait(Event(type="test.2", data={}))

    # This should be dropped
    await bus.emit(Event(type="test.3", data={}))
    assert not bus.emit_nowait(Event(type="test.4", data={}))

    stats = bus.get_stats()
    assert stats['dropped'] == 2
    assert stats['emitted'] == 2


def test_pattern_matching():
    """Test pattern matching logic."""
    bus = EventBus()

    # Exact match
    assert bus._matches_pattern("turn.completed", "turn.completed")
    assert not bus._matches_pattern("turn.completed", "turn.started")

    # Wildcard
    assert bus._matches_pattern("turn.completed", "turn.*")
    assert bus._matches_pattern("alias.hit", "alias.*")
    assert not bus._matches_pattern("turn.completed", "alias.*")
    assert not bus._matches_pattern("turnover.x", "turn.*")

    # Global wildcard
    assert bus._matches_pattern("anything", "*")
    assert bus._matches_pattern("turn.completed", "*")
