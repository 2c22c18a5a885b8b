"""Tests for the polling sync engine.

Tests verify:
1. Warm-up then fixed-interval schedule, and stop leaves no timers
2. At most one resync in flight per engine
3. Timeouts cancel the request and are classified
4. Silent failures still notify, user-initiated failures do not
5. Optional capped backoff
"""

from __future__ import annotations

import asyncio

import pytest

from casesync.errors import RemoteNetworkError, RemoteRejected, RemoteTimeout
from casesync.sync import (
    LocalSyncTrigger,
    SyncConfig,
    SyncEngine,
    SyncErrorKind,
    SyncState,
    classify_error,
)
from conftest import FakeScheduler

pytestmark = pytest.mark.asyncio


class FakeTrigger:
    """Sync trigger recording calls, optionally blocking or failing."""

    def __init__(self, error: Exception | None = None, block: asyncio.Event | None = None) -> None:
        self.error = error
        self.block = block
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = False

    async def trigger(self) -> dict:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.block is not None:
                await self.block.wait()
            if self.error is not None:
                raise self.error
            return {"success": True}
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.in_flight -= 1


async def until(predicate, attempts: int = 100) -> None:
    """Yield to the loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def make_engine(trigger, scheduler: FakeScheduler, **kwargs) -> SyncEngine:
    config = kwargs.pop("config", SyncConfig(interval_seconds=30, warmup_seconds=5))
    return SyncEngine(
        trigger,
        config=config,
        scheduler=scheduler,
        clock=scheduler.clock,
        **kwargs,
    )


class TestSchedule:
    """Test warm-up and recurring schedule."""

    async def test_warmup_then_interval_then_stop(self, scheduler):
        """Resyncs at 5 and 35; stop at 40 prevents the one at 65."""
        trigger = FakeTrigger()
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        await scheduler.advance_to(4.9, settle=engine.join)
        assert trigger.calls == 0

        await scheduler.advance_to(5, settle=engine.join)
        assert trigger.calls == 1

        await scheduler.advance_to(35, settle=engine.join)
        assert trigger.calls == 2

        await scheduler.advance_to(40, settle=engine.join)
        engine.stop_polling()
        await scheduler.advance_to(200, settle=engine.join)

        assert trigger.calls == 2
        assert scheduler.pending == []

    async def test_stop_during_warmup_cancels_it(self, scheduler):
        trigger = FakeTrigger()
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        engine.stop_polling()
        await scheduler.advance_to(500, settle=engine.join)

        assert trigger.calls == 0
        assert engine.state == SyncState.STOPPED
        assert engine.status.is_polling is False
        assert engine.status.next_sync is None

    async def test_stop_is_idempotent(self, scheduler):
        engine = make_engine(FakeTrigger(), scheduler)
        engine.stop_polling()
        engine.stop_polling()
        assert engine.state == SyncState.STOPPED

    async def test_start_twice_is_noop(self, scheduler):
        trigger = FakeTrigger()
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        engine.start_polling()
        await scheduler.advance_to(5, settle=engine.join)

        assert trigger.calls == 1
        assert len(scheduler.pending) == 1

    async def test_disabled_config_does_not_poll(self, scheduler):
        engine = make_engine(
            FakeTrigger(),
            scheduler,
            config=SyncConfig(enabled=False),
        )

        engine.start_polling()

        assert engine.status.is_polling is False
        assert scheduler.pending == []

    async def test_success_records_times(self, scheduler):
        engine = make_engine(FakeTrigger(), scheduler)

        engine.start_polling()
        await scheduler.advance_to(5, settle=engine.join)

        status = engine.status
        assert status.last_sync == scheduler.clock()
        assert (status.next_sync - status.last_sync).total_seconds() == 30
        assert status.error is None
        assert engine.state == SyncState.POLLING

    async def test_stop_cancels_in_flight_resync(self, scheduler):
        block = asyncio.Event()
        trigger = FakeTrigger(block=block)
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        await scheduler.advance_to(5)
        await until(lambda: trigger.in_flight == 1)

        engine.stop_polling()
        await engine.join()

        assert trigger.cancelled is True
        assert engine.status.is_syncing is False

    async def test_stop_during_manual_sync_reports_it_in_flight(self, scheduler):
        """A user-initiated resync survives stop and stays visible."""
        block = asyncio.Event()
        trigger = FakeTrigger(block=block)
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        manual = asyncio.create_task(engine.manual_sync())
        await until(lambda: trigger.in_flight == 1)

        engine.stop_polling()

        assert engine.status.is_polling is False
        assert engine.status.next_sync is None
        assert engine.status.is_syncing is True
        assert engine.state == SyncState.SYNCING
        assert await engine.trigger_sync(show_loading=False) is False

        block.set()
        assert await manual is True
        assert trigger.cancelled is False
        assert engine.status.is_syncing is False
        assert engine.state == SyncState.STOPPED
        assert scheduler.pending == []


class TestSingleFlight:
    """Test at-most-one resync in flight."""

    async def test_tick_while_syncing_is_skipped(self, scheduler):
        block = asyncio.Event()
        trigger = FakeTrigger(block=block)
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        await scheduler.advance_to(5)
        await until(lambda: trigger.in_flight == 1)
        assert engine.status.is_syncing is True

        await scheduler.advance_to(35)
        await scheduler.advance_to(65)
        block.set()
        await engine.join()

        assert trigger.calls == 1
        assert trigger.max_in_flight == 1
        # the schedule keeps going after skipped ticks
        assert scheduler.pending[0].when == 95

    async def test_manual_sync_while_syncing_returns_false(self, scheduler):
        block = asyncio.Event()
        trigger = FakeTrigger(block=block)
        engine = make_engine(trigger, scheduler)

        first = asyncio.create_task(engine.manual_sync())
        await until(lambda: trigger.in_flight == 1)
        second = await engine.manual_sync()
        block.set()

        assert second is False
        assert await first is True
        assert trigger.calls == 1

    async def test_concurrent_calls_never_overlap(self, scheduler):
        block = asyncio.Event()
        trigger = FakeTrigger(block=block)
        engine = make_engine(trigger, scheduler)

        tasks = [asyncio.create_task(engine.trigger_sync(show_loading=False)) for _ in range(5)]
        await until(lambda: trigger.in_flight == 1)
        block.set()
        results = await asyncio.gather(*tasks)

        assert results.count(True) == 1
        assert trigger.max_in_flight == 1


class TestFailures:
    """Test failure classification and notification."""

    async def test_timeout_cancels_and_classifies(self, scheduler):
        trigger = FakeTrigger(block=asyncio.Event())
        engine = make_engine(
            trigger,
            scheduler,
            config=SyncConfig(timeout_seconds=0.01),
        )

        ok = await engine.manual_sync()

        assert ok is False
        assert trigger.cancelled is True
        assert engine.status.error == SyncErrorKind.TIMEOUT
        assert engine.status.is_syncing is False

    async def test_silent_failure_still_notifies(self, scheduler):
        updates = []
        engine = make_engine(
            FakeTrigger(error=RemoteNetworkError("connection reset")),
            scheduler,
            on_data_update=lambda: updates.append(1),
        )

        ok = await engine.trigger_sync(show_loading=False)

        assert ok is False
        assert updates == [1]
        assert engine.status.error == SyncErrorKind.NETWORK
        assert engine.status.error_detail == "connection reset"
        assert engine.status.consecutive_failures == 1

    async def test_user_initiated_failure_does_not_notify(self, scheduler):
        updates = []
        engine = make_engine(
            FakeTrigger(error=RemoteRejected(500, "boom")),
            scheduler,
            on_data_update=lambda: updates.append(1),
        )

        ok = await engine.manual_sync()

        assert ok is False
        assert updates == []
        assert engine.status.error == SyncErrorKind.OTHER

    async def test_success_clears_error_and_notifies_async_callback(self, scheduler):
        updates = []

        async def on_update():
            updates.append(1)

        trigger = FakeTrigger(error=RemoteTimeout("slow"))
        engine = make_engine(trigger, scheduler, on_data_update=on_update)
        await engine.manual_sync()
        assert engine.status.error == SyncErrorKind.TIMEOUT

        trigger.error = None
        ok = await engine.manual_sync()

        assert ok is True
        assert engine.status.error is None
        assert engine.status.consecutive_failures == 0
        assert updates == [1]

    async def test_callback_failure_is_contained(self, scheduler):
        def on_update():
            raise RuntimeError("view refresh failed")

        engine = make_engine(FakeTrigger(), scheduler, on_data_update=on_update)

        assert await engine.manual_sync() is True

    async def test_polling_continues_after_failures(self, scheduler):
        trigger = FakeTrigger(error=RemoteNetworkError("down"))
        engine = make_engine(trigger, scheduler)

        engine.start_polling()
        await scheduler.advance_to(125, settle=engine.join)

        # 5, 35, 65, 95, 125
        assert trigger.calls == 5
        assert engine.status.is_polling is True
        assert engine.status.consecutive_failures == 5

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (asyncio.TimeoutError(), SyncErrorKind.TIMEOUT),
            (RemoteTimeout("t"), SyncErrorKind.TIMEOUT),
            (ConnectionRefusedError(), SyncErrorKind.NETWORK),
            (RemoteNetworkError("n"), SyncErrorKind.NETWORK),
            (RemoteRejected(404), SyncErrorKind.OTHER),
            (ValueError("bad json"), SyncErrorKind.OTHER),
        ],
    )
    async def test_classify_error(self, exc, kind):
        assert classify_error(exc) == kind


class TestBackoff:
    """Test optional capped backoff."""

    async def test_backoff_grows_and_caps(self, scheduler):
        trigger = FakeTrigger(error=RemoteNetworkError("down"))
        engine = make_engine(
            trigger,
            scheduler,
            config=SyncConfig(interval_seconds=30, warmup_seconds=5, max_backoff_seconds=100),
        )

        engine.start_polling()
        await scheduler.advance_to(35, settle=engine.join)
        # one failure before the tick at 35: next delay 60
        assert scheduler.pending[0].when == 95

        await scheduler.advance_to(95, settle=engine.join)
        # two failures: 120 capped to 100
        assert scheduler.pending[0].when == 195

    async def test_no_backoff_by_default(self, scheduler):
        engine = make_engine(FakeTrigger(error=RemoteNetworkError("down")), scheduler)

        engine.start_polling()
        await scheduler.advance_to(35, settle=engine.join)

        assert scheduler.pending[0].when == 65

    async def test_config_validation(self):
        with pytest.raises(ValueError):
            SyncConfig(interval_seconds=0)
        with pytest.raises(ValueError):
            SyncConfig(interval_seconds=30, max_backoff_seconds=10)


class TestLocalSyncTrigger:
    """Test the in-process trigger."""

    async def test_all_resources_failed_raises(self):
        class Summary:
            all_failed = True
            failure = RemoteNetworkError("down")

        class Refresher:
            async def refresh(self):
                return Summary()

        with pytest.raises(RemoteNetworkError):
            await LocalSyncTrigger(Refresher()).trigger()
