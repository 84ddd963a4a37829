"""Tests for the session event bus."""

from sessionhub.bus.events import READY, SESSION_DESTROYED, SessionEvent
from sessionhub.bus.queue import EventBus

from tests.conftest import EventRecorder


async def test_published_events_reach_session_subscribers(bus: EventBus) -> None:
    mine, other = EventRecorder(), EventRecorder()
    bus.subscribe("s1", mine)
    bus.subscribe("s2", other)

    await bus.publish("s1", READY, {"phone": "1"})
    await bus.join()

    assert mine.names() == [READY]
    assert mine.events[0].payload == {"phone": "1"}
    assert other.events == []


async def test_unsubscribe_stops_delivery(bus: EventBus) -> None:
    recorder = EventRecorder()
    unsubscribe = bus.subscribe("s1", recorder)

    unsubscribe()
    await bus.publish("s1", READY)
    await bus.join()

    assert recorder.events == []
    assert bus.subscriber_count("s1") == 0


async def test_failing_subscriber_does_not_block_others(bus: EventBus) -> None:
    recorder = EventRecorder()

    async def broken(event: SessionEvent) -> None:
        raise RuntimeError("boom")

    bus.subscribe("s1", broken)
    bus.subscribe("s1", recorder)

    await bus.publish("s1", READY)
    await bus.join()

    assert recorder.names() == [READY]


async def test_destroyed_session_drops_subscribers(bus: EventBus) -> None:
    recorder = EventRecorder()
    bus.subscribe("s1", recorder)

    await bus.publish("s1", SESSION_DESTROYED)
    await bus.join()

    assert recorder.names() == [SESSION_DESTROYED]
    assert bus.subscriber_count("s1") == 0


async def test_wildcard_subscriber_sees_every_session(bus: EventBus) -> None:
    recorder = EventRecorder()
    bus.subscribe_all(recorder)

    await bus.publish("s1", READY)
    await bus.publish("s2", READY)
    await bus.join()

    assert [e.session_id for e in recorder.events] == ["s1", "s2"]
    assert bus.pending == 0
