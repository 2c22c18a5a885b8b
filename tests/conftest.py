"""Pytest fixtures for casesync tests."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from casesync import config as env_names
from casesync.config import Settings
from casesync.database import create_tables, make_session_factory
from casesync.events import BroadcastEvent

# Use in-memory SQLite for tests (with async support)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

REMOTE_ENV_VARS = (
    env_names.SERVEMANAGER_BASE_URL,
    env_names.SERVEMANAGER_API_KEY,
    env_names.STRIPE_PUBLISHABLE_KEY,
    env_names.STRIPE_SECRET_KEY,
    env_names.STRIPE_WEBHOOK_SECRET,
    env_names.STRIPE_ENVIRONMENT,
)


def make_settings(**overrides: Any) -> Settings:
    """Settings for tests, independent of the process environment."""
    base = Settings(
        database_url=TEST_DATABASE_URL,
        config_store_url="",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        sync_endpoint_url="http://localhost:8000/api/sync",
        sync_interval_seconds=30.0,
        sync_warmup_seconds=5.0,
        sync_timeout_seconds=15.0,
        sync_max_backoff_seconds=None,
        background_sync_enabled=False,
        remote_http_timeout_seconds=5.0,
    )
    return dataclasses.replace(base, **overrides)


@pytest.fixture(autouse=True)
def clean_remote_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real credentials in the environment out of the tests."""
    for name in REMOTE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(db_engine)


# ============================================================================
# Virtual time
# ============================================================================


class FakeTimer:
    """Cancellable timer handle returned by FakeScheduler."""

    def __init__(self, when: float, callback: Callable[[], Any]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Scheduler driven by advance_to() instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[FakeTimer] = []

    def time(self) -> float:
        return self.now

    def clock(self) -> datetime:
        return datetime.fromtimestamp(1_700_000_000 + self.now, timezone.utc)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        """Armed timers, earliest first."""
        return sorted(
            (t for t in self._timers if not t.cancelled),
            key=lambda t: t.when,
        )

    async def advance_to(
        self,
        target: float,
        settle: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """Fire every timer due up to ``target``, in order.

        ``settle`` is awaited after each timer so work it spawned completes
        before the next one fires.
        """
        while True:
            due = [t for t in self.pending if t.when <= target]
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
            if settle is not None:
                await settle()
        self.now = target


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


# ============================================================================
# Collaborator fakes
# ============================================================================


class RecordingBroadcaster:
    """Broadcaster that records events and reports a fixed observer count."""

    def __init__(self, observers: int = 1) -> None:
        self.events: list[BroadcastEvent] = []
        self.observers = observers

    def broadcast(self, event: BroadcastEvent) -> int:
        self.events.append(event)
        return self.observers


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()
