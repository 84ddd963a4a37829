"""Tests for session creation, start, destroy and queries."""

import asyncio

import pytest

from sessionhub.bus.events import AUTH_FAILURE, QR, READY, SESSION_DESTROYED
from sessionhub.engine.base import EngineProfile
from sessionhub.errors import EngineStartError, SessionNotFoundError, SessionSupersededError
from sessionhub.session.manager import SessionManager
from sessionhub.session.models import ENGINE_STATES, LifecycleState
from sessionhub.utils.helpers import monotonic_s

from tests.conftest import EventRecorder, FakeEngineFactory, settle


def assert_engine_invariant(manager: SessionManager) -> None:
    for record in manager.registry.records():
        assert (record.engine is not None) == (record.state in ENGINE_STATES), record


async def test_create_twice_for_same_user_supersedes(manager: SessionManager) -> None:
    first = manager.get_or_create_session("abc", {"ua": "x"})
    second = manager.get_or_create_session("abc", {"ua": "x"})

    assert first != second
    assert manager.is_user_session_current(second)
    assert not manager.is_user_session_current(first)
    with pytest.raises(SessionSupersededError) as exc_info:
        manager.require_session(first)
    assert exc_info.value.current_session_id == second

    await manager.wait_idle()

    assert manager.get_session(first) is None
    with pytest.raises(SessionNotFoundError):
        manager.require_session(first)
    assert manager.require_session(second).session_id == second


async def test_superseded_session_engine_is_torn_down(
    manager: SessionManager, factory: FakeEngineFactory, recorder: EventRecorder
) -> None:
    first = manager.get_or_create_session("abc", {})
    await manager.start_session(first)
    engine = factory.engines[-1]

    manager.get_or_create_session("abc", {})
    await manager.wait_idle()
    await manager.bus.join()

    assert engine.destroy_calls == 1
    assert SESSION_DESTROYED in recorder.names(first)


async def test_start_attaches_primary_engine(manager: SessionManager, factory: FakeEngineFactory) -> None:
    session_id = manager.get_or_create_session("abc", {})

    assert await manager.start_session(session_id) is True

    record = manager.get_session(session_id)
    assert record.state == LifecycleState.INITIALIZING
    assert record.profile == EngineProfile.PRIMARY
    assert record.engine is factory.engines[0]
    assert factory.engines[0].data_dir == manager.session_dir(session_id)
    assert factory.engines[0].data_dir.is_dir()
    assert_engine_invariant(manager)


async def test_concurrent_start_creates_one_engine(manager: SessionManager, factory: FakeEngineFactory) -> None:
    factory.start_delay = 0.05
    session_id = manager.get_or_create_session("abc", {})

    results = await asyncio.gather(manager.start_session(session_id), manager.start_session(session_id))

    assert results == [True, True]
    assert len(factory.engines) == 1


async def test_start_on_started_session_is_noop(manager: SessionManager, factory: FakeEngineFactory) -> None:
    session_id = manager.get_or_create_session("abc", {})
    await manager.start_session(session_id)

    assert await manager.start_session(session_id) is True
    assert len(factory.engines) == 1


async def test_start_falls_back_when_primary_fails(
    manager: SessionManager, factory: FakeEngineFactory
) -> None:
    factory.fail_profiles = {EngineProfile.PRIMARY}
    session_id = manager.get_or_create_session("abc", {})

    assert await manager.start_session(session_id) is True

    primary, fallback = factory.engines
    record = manager.get_session(session_id)
    assert primary.destroy_calls == 1
    assert record.engine is fallback
    assert record.profile == EngineProfile.FALLBACK
    assert fallback.data_dir == manager.fallback_dir(session_id)
    assert fallback.data_dir != primary.data_dir


async def test_start_raises_when_all_profiles_fail(
    manager: SessionManager, factory: FakeEngineFactory, recorder: EventRecorder
) -> None:
    factory.fail_profiles = {EngineProfile.PRIMARY, EngineProfile.FALLBACK}
    session_id = manager.get_or_create_session("abc", {})

    with pytest.raises(EngineStartError):
        await manager.start_session(session_id)
    await manager.bus.join()

    record = manager.get_session(session_id)
    assert record.state == LifecycleState.CREATED
    assert record.engine is None
    assert record.is_authenticated is False
    assert all(e.destroy_calls == 1 for e in factory.engines)
    assert AUTH_FAILURE in recorder.names(session_id)
    assert_engine_invariant(manager)


async def test_init_timeout_tears_engine_down(manager: SessionManager, factory: FakeEngineFactory) -> None:
    factory.start_delay = 5.0
    session_id = manager.get_or_create_session("abc", {})

    with pytest.raises(EngineStartError):
        await manager.start_session(session_id)

    assert len(factory.engines) == 2
    assert all(e.destroy_calls == 1 for e in factory.engines)
    assert manager.get_session(session_id).engine is None


async def test_start_unknown_session_raises(manager: SessionManager) -> None:
    with pytest.raises(SessionNotFoundError):
        await manager.start_session("missing")


async def test_destroy_is_idempotent(
    manager: SessionManager, factory: FakeEngineFactory, recorder: EventRecorder
) -> None:
    session_id = manager.get_or_create_session("abc", {})
    await manager.start_session(session_id)
    session_dir = manager.session_dir(session_id)
    record = manager.get_session(session_id)

    assert await manager.destroy_session(session_id) is True
    assert await manager.destroy_session(session_id) is False
    await manager.bus.join()

    assert factory.engines[0].destroy_calls == 1
    assert record.state == LifecycleState.DESTROYED
    assert record.engine is None
    assert not session_dir.exists()
    assert manager.get_session(session_id) is None
    assert recorder.names(session_id).count(SESSION_DESTROYED) == 1


async def test_destroy_during_start_releases_engine(
    manager: SessionManager, factory: FakeEngineFactory
) -> None:
    factory.start_delay = 0.05
    session_id = manager.get_or_create_session("abc", {})

    start = asyncio.create_task(manager.start_session(session_id))
    await settle()
    await manager.destroy_session(session_id)

    with pytest.raises(SessionNotFoundError):
        await start
    assert [e.destroy_calls for e in factory.engines] == [1]
    assert len(manager.registry) == 0


async def test_health_check_requires_ready_engine(
    manager: SessionManager, factory: FakeEngineFactory
) -> None:
    session_id = manager.get_or_create_session("abc", {})
    assert await manager.is_session_healthy("missing") is False
    assert await manager.is_session_healthy(session_id) is False

    await manager.start_session(session_id)
    assert await manager.is_session_healthy(session_id) is False

    factory.engines[0].emit("ready")
    await settle()
    assert await manager.is_session_healthy(session_id) is True


async def test_health_check_fails_on_probe_problems(
    manager: SessionManager, factory: FakeEngineFactory, ready_session: str
) -> None:
    factory.state = None
    assert await manager.is_session_healthy(ready_session) is False

    factory.state = "CONNECTED"
    factory.probe_error = RuntimeError("page crashed")
    assert await manager.is_session_healthy(ready_session) is False

    factory.probe_error = None
    factory.probe_delay = 1.0
    assert await manager.is_session_healthy(ready_session) is False


async def test_health_check_false_while_reconnecting(manager: SessionManager, ready_session: str) -> None:
    manager.get_session(ready_session).reconnecting = True

    assert await manager.is_session_healthy(ready_session) is False


async def test_touch_and_snapshot(manager: SessionManager, ready_session: str) -> None:
    record = manager.get_session(ready_session)
    record.last_activity = monotonic_s() - 100

    assert manager.touch_session(ready_session) is True
    assert manager.touch_session("missing") is False

    snapshot = manager.snapshot(ready_session)
    assert snapshot.state == LifecycleState.READY
    assert snapshot.is_ready is True
    assert snapshot.phone_identity == "15550001111"
    assert snapshot.has_engine is True
    assert snapshot.idle_s < 100
    assert snapshot.to_dict()["state"] == "ready"
    assert manager.snapshot("missing") is None


async def test_stats(manager: SessionManager, ready_session: str) -> None:
    manager.get_or_create_session("user-2", {})

    assert manager.stats() == {
        "total_sessions": 2,
        "users": 2,
        "ready": 1,
        "not_ready": 1,
        "reconnecting": 0,
    }


async def test_subscribe_replays_qr(manager: SessionManager, factory: FakeEngineFactory) -> None:
    session_id = manager.get_or_create_session("abc", {})
    await manager.start_session(session_id)
    factory.engines[0].emit("qr", qr="2@abc")
    await settle()
    await manager.bus.join()

    recorder = EventRecorder()
    await manager.subscribe(session_id, recorder)

    assert recorder.names() == [QR]
    assert recorder.events[0].payload == {"qr": "2@abc"}


async def test_subscribe_replays_ready(manager: SessionManager, ready_session: str) -> None:
    recorder = EventRecorder()
    await manager.bus.join()

    unsubscribe = await manager.subscribe(ready_session, recorder)

    assert recorder.names() == [READY]
    assert recorder.events[0].payload == {"phone": "15550001111"}
    unsubscribe()
    assert manager.bus.subscriber_count(ready_session) == 0


async def test_cleanup_inactive_sessions(manager: SessionManager, ready_session: str) -> None:
    fresh = manager.get_or_create_session("user-2", {})
    manager.get_session(ready_session).last_activity = monotonic_s() - 2 * 24 * 3600

    assert await manager.cleanup_inactive_sessions() == 1

    assert manager.get_session(ready_session) is None
    assert manager.get_session(fresh) is not None


async def test_cleanup_unfinished_sessions(manager: SessionManager, ready_session: str) -> None:
    stale = manager.get_or_create_session("user-2", {})
    manager.get_session(stale).created_at = monotonic_s() - 3600
    manager.get_session(ready_session).created_at = monotonic_s() - 3600

    assert await manager.cleanup_unfinished_sessions() == 1

    assert manager.get_session(stale) is None
    assert manager.get_session(ready_session) is not None


async def test_shutdown_destroys_everything(manager: SessionManager, factory: FakeEngineFactory) -> None:
    for user in ("a", "b", "c"):
        await manager.start_session(manager.get_or_create_session(user, {}))

    await manager.shutdown()

    assert len(manager.registry) == 0
    assert all(e.destroy_calls == 1 for e in factory.engines)
    assert manager.relay.active == 0


async def test_engine_auth_failure_during_start_is_published_once_per_engine(
    manager: SessionManager, factory: FakeEngineFactory, recorder: EventRecorder
) -> None:
    factory.start_events = [("auth_failure", {"message": "bad credentials"})]
    session_id = manager.get_or_create_session("abc", {})

    with pytest.raises(EngineStartError):
        await manager.start_session(session_id)
    await manager.bus.join()

    failures = [e for e in recorder.events if e.event == AUTH_FAILURE]
    assert len(failures) == len(factory.engines) == 2
    assert all(e.payload == {"error": "bad credentials"} for e in failures)


async def test_relay_tasks_exit_when_engine_teardown_fails(
    manager: SessionManager, factory: FakeEngineFactory
) -> None:
    factory.destroy_error = RuntimeError("bridge hung on close")
    old = manager.get_or_create_session("abc", {})
    await manager.start_session(old)
    current = manager.get_or_create_session("abc", {})
    await manager.start_session(current)
    other = manager.get_or_create_session("xyz", {})
    await manager.start_session(other)

    await manager.wait_idle()
    await manager.destroy_session(current)
    await manager.destroy_session(other)
    await settle()

    assert len(manager.registry) == 0
    assert all(e.destroy_calls == 1 for e in factory.engines)
    assert manager.relay.active == 0
