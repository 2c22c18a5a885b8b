"""Sync triggers: how a SyncEngine asks for a full resynchronization."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from casesync.errors import RemoteError, RemoteNetworkError, RemoteRejected, RemoteTimeout

if TYPE_CHECKING:
    from casesync.sync.cache import CacheRefresher

logger = logging.getLogger(__name__)


class SyncTrigger(Protocol):
    """Protocol for resync triggers. Raises on failure."""

    async def trigger(self) -> dict[str, Any]:
        """Request one resync and return its JSON summary."""
        ...


class HttpSyncTrigger:
    """POST to the collaborator sync endpoint. Any non-2xx is a failure."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def trigger(self) -> dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self._timeout_seconds,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.post(self.url, headers={"Content-Type": "application/json"})
            except httpx.TimeoutException as e:
                raise RemoteTimeout(f"POST {self.url} timed out") from e
            except httpx.TransportError as e:
                raise RemoteNetworkError(f"POST {self.url} failed: {e}") from e

        if not resp.is_success:
            raise RemoteRejected(resp.status_code, resp.text, self.url)
        if not resp.content:
            return {}
        return resp.json()


class LocalSyncTrigger:
    """Run the CacheRefresher in-process.

    Mirrors the endpoint: when every resource failed the first failure is
    raised, otherwise the summary is returned.
    """

    def __init__(self, refresher: CacheRefresher) -> None:
        self.refresher = refresher

    async def trigger(self) -> dict[str, Any]:
        summary = await self.refresher.refresh()
        if summary.all_failed:
            if summary.failure is not None:
                raise summary.failure
            raise RemoteError("Resync failed for every resource")
        return summary.to_dict()
