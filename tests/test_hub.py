"""Tests for the hub module."""

import asyncio

from seismic_bridge.history import HistoryBuffer
from seismic_bridge.hub import EventHub
from seismic_bridge.models import Fault, RawLine, Sample


def _hub(replay_size: int = 100, queue_size: int = 256) -> EventHub:
    return EventHub(HistoryBuffer(1000, name="log"), replay_size=replay_size, queue_size=queue_size)


def test_replay_then_live_without_gap_or_duplicate() -> None:
    """Events before subscribe arrive in the backlog, events after arrive live."""
    hub = _hub()
    before = [RawLine(text=f"b{i}") for i in range(3)]
    after = [RawLine(text=f"a{i}") for i in range(2)]
    for event in before:
        hub.publish(event)

    sub, backlog = hub.subscribe()
    for event in after:
        hub.publish(event)

    assert backlog == tuple(before)
    assert sub.pending() == tuple(after)


def test_replay_is_limited() -> None:
    hub = _hub(replay_size=2)
    for i in range(5):
        hub.publish(RawLine(text=str(i)))
    _, backlog = hub.subscribe()
    assert [e.text for e in backlog] == ["3", "4"]
    _, backlog = hub.subscribe(replay=0)
    assert backlog == ()


def test_samples_are_delivered_but_not_journaled() -> None:
    hub = _hub()
    sub, _ = hub.subscribe()
    sample = Sample(accel_z=9.8, complete=True)
    hub.publish(sample)
    assert sub.pending() == (sample,)
    assert len(hub.journal) == 0


def test_overflow_drops_oldest_for_slow_subscriber_only() -> None:
    """A full queue sheds its oldest events; other subscribers are unaffected."""
    hub = _hub(queue_size=3)
    slow, _ = hub.subscribe(name="slow")
    fast, _ = hub.subscribe(name="fast")
    events = [RawLine(text=str(i)) for i in range(5)]

    for event in events[:3]:
        hub.publish(event)
    assert len(fast.pending()) == 3
    for event in events[3:]:
        hub.publish(event)

    assert slow.pending() == tuple(events[2:])
    assert slow.dropped == 2
    assert fast.pending() == tuple(events[3:])
    assert fast.dropped == 0


def test_unsubscribe_stops_delivery() -> None:
    hub = _hub()
    sub, _ = hub.subscribe()
    assert len(hub) == 1
    assert hub.unsubscribe(sub.id) is True
    assert hub.unsubscribe(sub.id) is False
    hub.publish(Fault(message="x"))
    assert sub.pending() == ()
    assert sub.closed
    assert len(hub) == 0


def test_async_iteration_ends_on_close() -> None:
    """``async for`` yields queued events and stops once the hub closes."""
    hub = _hub()
    sub, _ = hub.subscribe()
    received = []

    async def consume() -> None:
        async for event in sub:
            received.append(event)

    async def scenario() -> None:
        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        hub.publish(RawLine(text="one"))
        hub.publish(RawLine(text="two"))
        while len(received) < 2:
            await asyncio.sleep(0.01)
        hub.close()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())
    assert [e.text for e in received] == ["one", "two"]
