"""Polling sync engine.

States:
    idle --start_polling--> polling --tick--> syncing --> polling
    any  --stop_polling-->  stopped

Schedule: one warm-up resync at ``warmup`` seconds, then every ``interval``
seconds anchored to it (W, W+I, W+2I, ...).

Rules:
    1. At most one resync in flight per engine. A tick or manual call that
       finds one running is skipped, not queued.
    2. Public operations never raise. Failures land in SyncStatus.
    3. stop_polling() leaves no armed timers and no timer-spawned resync.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Protocol

import httpx

from casesync.config import Settings
from casesync.errors import RemoteNetworkError, RemoteTimeout
from casesync.sync.trigger import SyncTrigger

logger = logging.getLogger(__name__)

# Upper bound on the backoff exponent
_MAX_BACKOFF_EXPONENT = 16


class SyncState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SYNCING = "syncing"
    STOPPED = "stopped"


class SyncErrorKind(str, Enum):
    """Classification stored in SyncStatus.error."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    OTHER = "other"


def classify_error(exc: BaseException) -> SyncErrorKind:
    """Map an exception from a resync attempt onto a SyncErrorKind."""
    # TimeoutError subclasses OSError, so timeouts are checked first
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, RemoteTimeout, httpx.TimeoutException)):
        return SyncErrorKind.TIMEOUT
    if isinstance(exc, (RemoteNetworkError, httpx.TransportError, OSError)):
        return SyncErrorKind.NETWORK
    return SyncErrorKind.OTHER


@dataclass
class SyncStatus:
    """Mutable status owned by one SyncEngine.

    Attributes:
        is_polling: Timers are armed.
        last_sync: When the last successful resync finished.
        next_sync: When the next resync is expected, while polling.
        is_syncing: A resync is in flight.
        error: Classification of the last failure; cleared on success.
        error_detail: Message of the last failure.
        consecutive_failures: Failures since the last success.
    """

    is_polling: bool = False
    last_sync: datetime | None = None
    next_sync: datetime | None = None
    is_syncing: bool = False
    error: SyncErrorKind | None = None
    error_detail: str | None = None
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "isPolling": self.is_polling,
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "nextSync": self.next_sync.isoformat() if self.next_sync else None,
            "isSyncing": self.is_syncing,
            "error": self.error.value if self.error else None,
            "errorDetail": self.error_detail,
            "consecutiveFailures": self.consecutive_failures,
        }


@dataclass(frozen=True)
class SyncConfig:
    """
    Configuration for a SyncEngine.

    Attributes:
        interval_seconds: Time between scheduled resyncs. Default 30.
        warmup_seconds: Delay before the initial resync. Default 5.
        timeout_seconds: Bound on a single resync; the request is cancelled
            when it expires. Default 15.
        max_backoff_seconds: When set, the tick delay doubles per consecutive
            failure up to this cap. None keeps a fixed interval.
        enabled: start_polling() is a no-op when False.
    """

    interval_seconds: float = 30.0
    warmup_seconds: float = 5.0
    timeout_seconds: float = 15.0
    max_backoff_seconds: float | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.warmup_seconds < 0:
            raise ValueError("warmup_seconds must be non-negative")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_backoff_seconds is not None and self.max_backoff_seconds < self.interval_seconds:
            raise ValueError("max_backoff_seconds must be >= interval_seconds")

    @classmethod
    def from_settings(cls, settings: Settings, enabled: bool = True) -> SyncConfig:
        return cls(
            interval_seconds=settings.sync_interval_seconds,
            warmup_seconds=settings.sync_warmup_seconds,
            timeout_seconds=settings.sync_timeout_seconds,
            max_backoff_seconds=settings.sync_max_backoff_seconds,
            enabled=enabled,
        )


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Timer source. The running asyncio loop satisfies it."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        ...

    def time(self) -> float:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """Keep a local cache fresh by periodically triggering a resync.

    Usage:
        engine = SyncEngine(HttpSyncTrigger(url), on_data_update=refresh_views)
        engine.start_polling()
        ...
        await engine.manual_sync()
        engine.stop_polling()
    """

    def __init__(
        self,
        trigger: SyncTrigger,
        *,
        config: SyncConfig | None = None,
        on_data_update: Callable[[], Any] | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._trigger = trigger
        self.config = config or SyncConfig()
        self._on_data_update = on_data_update
        self._scheduler = scheduler
        self._clock = clock or _utcnow

        self._lock = asyncio.Lock()
        self._status = SyncStatus()
        self._state = SyncState.IDLE
        self._stopped = False
        self._warmup_handle: TimerHandle | None = None
        self._tick_handle: TimerHandle | None = None
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def status(self) -> SyncStatus:
        """Snapshot of the current status."""
        return replace(self._status)

    @property
    def state(self) -> SyncState:
        return self._state

    def start_polling(self) -> None:
        """Arm the warm-up and recurring timers. No-op if already polling or disabled."""
        if self._status.is_polling:
            return
        if not self.config.enabled:
            logger.info("Background sync disabled, not polling")
            return

        scheduler = self._scheduler or asyncio.get_running_loop()
        self._scheduler = scheduler
        self._stopped = False
        self._status.is_polling = True
        self._status.next_sync = self._clock() + timedelta(seconds=self.config.warmup_seconds)
        self._state = SyncState.SYNCING if self._status.is_syncing else SyncState.POLLING
        self._warmup_handle = scheduler.call_later(self.config.warmup_seconds, self._on_warmup)
        logger.info(
            "Polling started (interval=%ss, warmup=%ss)",
            self.config.interval_seconds,
            self.config.warmup_seconds,
        )

    def stop_polling(self) -> None:
        """Cancel timers and any timer-spawned resync. Idempotent.

        A user-initiated resync in flight is left to finish.
        """
        if self._warmup_handle is not None:
            self._warmup_handle.cancel()
            self._warmup_handle = None
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        for task in list(self._tasks):
            task.cancel()

        was_polling = self._status.is_polling
        self._stopped = True
        self._status.is_polling = False
        self._status.next_sync = None
        # a manual resync keeps running; trigger_sync clears is_syncing when it ends
        self._state = SyncState.SYNCING if self._lock.locked() else SyncState.STOPPED
        if was_polling:
            logger.info("Polling stopped")

    async def manual_sync(self) -> bool:
        """User-initiated resync."""
        return await self.trigger_sync(show_loading=True)

    async def trigger_sync(self, show_loading: bool = True) -> bool:
        """Run one resync.

        Returns True on success. Returns False when the resync failed or was
        skipped because another one is in flight. Never raises.

        A silent (show_loading=False) resync notifies on_data_update even on
        failure so dependents fall back to cached data.
        """
        if self._lock.locked():
            logger.warning("Resync already in flight, skipping")
            return False

        async with self._lock:
            self._status.is_syncing = True
            self._state = SyncState.SYNCING
            failure: Exception | None = None
            try:
                await asyncio.wait_for(
                    self._trigger.trigger(),
                    timeout=self.config.timeout_seconds,
                )
            except Exception as e:
                failure = e
            finally:
                self._status.is_syncing = False
                self._state = self._resting_state()

        if failure is None:
            now = self._clock()
            self._status.last_sync = now
            if self._status.is_polling:
                self._status.next_sync = now + timedelta(seconds=self.config.interval_seconds)
            self._status.error = None
            self._status.error_detail = None
            self._status.consecutive_failures = 0
            await self._notify()
            return True

        kind = classify_error(failure)
        self._status.error = kind
        self._status.error_detail = str(failure) or type(failure).__name__
        self._status.consecutive_failures += 1
        logger.warning(
            "Resync failed (%s, %d consecutive): %s",
            kind.value,
            self._status.consecutive_failures,
            self._status.error_detail,
        )
        if not show_loading:
            await self._notify()
        return False

    async def join(self) -> None:
        """Wait for timer-spawned resyncs to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _resting_state(self) -> SyncState:
        if self._status.is_polling:
            return SyncState.POLLING
        if self._stopped:
            return SyncState.STOPPED
        return SyncState.IDLE

    def _on_warmup(self) -> None:
        self._warmup_handle = None
        if not self._status.is_polling:
            return
        self._spawn()
        self._arm_tick(self.config.interval_seconds)

    def _on_tick(self) -> None:
        self._tick_handle = None
        if not self._status.is_polling:
            return
        self._spawn()
        self._arm_tick(self._tick_delay())

    def _arm_tick(self, delay: float) -> None:
        assert self._scheduler is not None
        self._tick_handle = self._scheduler.call_later(delay, self._on_tick)

    def _tick_delay(self) -> float:
        interval = self.config.interval_seconds
        cap = self.config.max_backoff_seconds
        failures = self._status.consecutive_failures
        if cap is None or failures == 0:
            return interval
        return min(interval * 2 ** min(failures, _MAX_BACKOFF_EXPONENT), cap)

    def _spawn(self) -> None:
        if self._lock.locked() or any(not t.done() for t in self._tasks):
            logger.debug("Tick while resync in flight, skipped")
            return
        task = asyncio.get_running_loop().create_task(self.trigger_sync(show_loading=False))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _notify(self) -> None:
        if self._on_data_update is None:
            return
        try:
            result = self._on_data_update()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("on_data_update callback failed")
