"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from sessionhub.bus.events import SessionEvent
from sessionhub.bus.queue import EventBus
from sessionhub.config.schema import (
    Config,
    EngineConfig,
    SessionsConfig,
    SupervisorConfig,
)
from sessionhub.engine.base import BaseEngine, EngineProfile
from sessionhub.session.manager import SessionManager


class FakeEngine(BaseEngine):
    """In-memory engine driven by its factory's knobs."""

    def __init__(self, factory: "FakeEngineFactory", session_id: str, data_dir: Path, profile: EngineProfile):
        super().__init__(session_id, data_dir, profile)
        self.factory = factory
        self.destroy_calls = 0

    async def start(self) -> None:
        for name, payload in self.factory.start_events:
            self.emit(name, **payload)
            await asyncio.sleep(0.01)
        if self.factory.start_delay:
            await asyncio.sleep(self.factory.start_delay)
        if self.profile in self.factory.fail_profiles:
            raise RuntimeError(f"{self.profile.value} launch failed")

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.factory.destroy_error:
            raise self.factory.destroy_error
        self.close_events()

    async def get_state(self) -> str | None:
        if self.factory.probe_delay:
            await asyncio.sleep(self.factory.probe_delay)
        if self.factory.probe_error:
            raise self.factory.probe_error
        return self.factory.state


@dataclass
class FakeEngineFactory:
    """Engine factory that records every engine it builds."""

    engines: list[FakeEngine] = field(default_factory=list)
    fail_profiles: set[EngineProfile] = field(default_factory=set)
    start_delay: float = 0.0
    start_events: list[tuple[str, dict]] = field(default_factory=list)
    destroy_error: Exception | None = None
    probe_delay: float = 0.0
    probe_error: Exception | None = None
    state: str | None = "CONNECTED"

    def __call__(self, session_id: str, data_dir: Path, profile: EngineProfile) -> FakeEngine:
        engine = FakeEngine(self, session_id, data_dir, profile)
        self.engines.append(engine)
        return engine


@dataclass
class EventRecorder:
    """Bus subscriber that keeps every event it receives."""

    events: list[SessionEvent] = field(default_factory=list)

    async def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)

    def names(self, session_id: str | None = None) -> list[str]:
        return [e.event for e in self.events if session_id is None or e.session_id == session_id]

    def last(self, name: str) -> SessionEvent:
        return [e for e in self.events if e.event == name][-1]


async def settle(rounds: int = 10) -> None:
    """Let relay tasks and other pending callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@dataclass
class FakeTranscoder:
    """Stands in for FFmpegTranscoder; writes a fake mp3 next to the input."""

    available: bool = True
    delay: float = 0.0
    error: Exception | None = None
    calls: list[Path] = field(default_factory=list)

    async def convert(self, input_path: Path, output_path: Path, on_progress=None) -> None:
        self.calls.append(input_path)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        output_path.write_bytes(b"ID3" + input_path.read_bytes())


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        sessions=SessionsConfig(data_dir=str(tmp_path / "data")),
        supervisor=SupervisorConfig(probe_timeout_s=0.2, fast_probe_timeout_s=0.1),
        engine=EngineConfig(
            fallback_dir=str(tmp_path / "fallback"),
            init_timeout_s=0.3,
            fallback_init_timeout_s=0.2,
        ),
    )


@pytest.fixture
def factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
async def bus():
    bus = EventBus()
    bus.start()
    yield bus
    await bus.stop()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    recorder = EventRecorder()
    bus.subscribe_all(recorder)
    return recorder


@pytest.fixture
async def manager(config: Config, bus: EventBus, factory: FakeEngineFactory):
    manager = SessionManager(config, bus, factory)
    yield manager
    await manager.shutdown()


@pytest.fixture
async def ready_session(manager: SessionManager, factory: FakeEngineFactory):
    """A started session whose engine has reported ready."""
    session_id = manager.get_or_create_session("user-1", {"ua": "test"})
    await manager.start_session(session_id)
    factory.engines[-1].emit("ready", phone="15550001111")
    await settle()
    return session_id
