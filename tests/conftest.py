"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from standing.config import StandingConfig
from standing.core import Standing
from standing.database.models import Base
from standing.database.seed import seed_default_badges
from standing.engine.events import Signal
from standing.services.event_bus import EventBus

# Wednesday, midday UTC
DEFAULT_NOW = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock pinned to a settable instant."""

    def __init__(self, now: datetime = DEFAULT_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SignalRecorder:
    """Subscribes to outbound signals and keeps every payload in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def attach(self, bus: EventBus, topics=tuple(Signal)) -> SignalRecorder:
        for topic in topics:
            bus.subscribe(topic, self._handler(str(topic)))
        return self

    def _handler(self, topic: str):
        async def _record(payload: dict) -> None:
            self.events.append((topic, dict(payload)))
        return _record

    def of(self, topic: str) -> list[dict]:
        return [payload for t, payload in self.events if t == str(topic)]


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every Standing table.

    StaticPool keeps one shared connection so the worker threads used by
    ``run_db`` all see the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cfg() -> StandingConfig:
    return StandingConfig.defaults()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder() -> SignalRecorder:
    return SignalRecorder()


@pytest.fixture
def app(db_engine: Engine, cfg: StandingConfig, clock: FakeClock, recorder: SignalRecorder) -> Standing:
    """Fully wired engine over a seeded badge catalogue, with every
    outbound signal recorded."""
    seed_default_badges(db_engine)
    standing = Standing(cfg, db_engine, clock)
    recorder.attach(standing.bus)
    return standing
