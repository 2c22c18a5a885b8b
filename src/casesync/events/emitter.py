"""Broadcaster for delivering events to connected observers.

The broadcaster provides:
- Observer registration with optional type filtering
- Fire-and-forget delivery (async observers run as tasks)
- Error isolation (observer failures don't reach the caller)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from casesync.events.types import BroadcastEvent

logger = logging.getLogger(__name__)

Observer = Callable[[BroadcastEvent], Any]


@runtime_checkable
class Broadcaster(Protocol):
    """Protocol for event broadcasters.

    broadcast() must not block and must not raise. It returns the number of
    observers the event was handed to, so callers can tell whether anyone
    was listening.
    """

    def broadcast(self, event: BroadcastEvent) -> int:
        ...


@dataclass
class ObserverRegistration:
    """Registration of an observer."""

    observer: Observer
    event_types: set[str] | None  # None = all events


class LocalBroadcaster:
    """In-process broadcaster.

    Sync observers are called inline; observers returning an awaitable are
    scheduled as tasks on the running loop. Failures are logged.

    Usage:
        broadcaster = LocalBroadcaster()

        async def push(event: BroadcastEvent) -> None:
            await websocket.send_text(event.to_json())

        broadcaster.subscribe(push)
        broadcaster.broadcast(outcome.to_event())
    """

    def __init__(self) -> None:
        self._observers: list[ObserverRegistration] = []
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, observer: Observer) -> None:
        """Register observer for all events."""
        self._observers.append(ObserverRegistration(observer=observer, event_types=None))

    def subscribe_type(self, event_type: str | list[str], observer: Observer) -> None:
        """Register observer for specific event type(s)."""
        if isinstance(event_type, list):
            types = set(event_type)
        else:
            types = {event_type}
        self._observers.append(ObserverRegistration(observer=observer, event_types=types))

    def unsubscribe(self, observer: Observer) -> None:
        """Unregister an observer."""
        self._observers = [
            reg for reg in self._observers if reg.observer is not observer
        ]

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def broadcast(self, event: BroadcastEvent) -> int:
        delivered = 0
        for reg in list(self._observers):
            if reg.event_types and event.type not in reg.event_types:
                continue

            try:
                result = reg.observer(event)
            except Exception:
                logger.exception("Observer %s failed for event %s", reg.observer, event.type)
                continue

            if inspect.isawaitable(result):
                try:
                    task = asyncio.get_running_loop().create_task(
                        self._deliver(reg.observer, result, event)
                    )
                except RuntimeError:
                    logger.warning("No running loop, dropping async delivery of %s", event.type)
                    if inspect.iscoroutine(result):
                        result.close()
                    continue
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            delivered += 1
        return delivered

    async def _deliver(
        self,
        observer: Observer,
        result: Awaitable[Any],
        event: BroadcastEvent,
    ) -> None:
        try:
            await result
        except Exception:
            logger.exception("Async observer %s failed for event %s", observer, event.type)

    async def drain(self) -> None:
        """Wait for in-flight async deliveries."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
