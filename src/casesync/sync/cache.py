"""Server-side resync: mirror remote collections into the local cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casesync.models import CachedRecord
from casesync.remote.gateway import ServeManagerGateway

logger = logging.getLogger(__name__)

DEFAULT_RESOURCES = ("jobs", "clients", "servers")
PER_PAGE = 100
MAX_PAGES = 50


@dataclass
class ResourceResult:
    """Outcome of refreshing one resource."""

    resource: str
    fetched: int = 0
    pages: int = 0
    truncated: bool = False
    error: str | None = None


@dataclass
class SyncSummary:
    """Result of one CacheRefresher run.

    Per-resource failures are recorded here, not raised.
    """

    started_at: datetime
    finished_at: datetime | None = None
    results: dict[str, ResourceResult] = field(default_factory=dict)
    failure: BaseException | None = field(default=None, repr=False, compare=False)

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and all(r.error for r in self.results.values())

    @property
    def total_records(self) -> int:
        return sum(r.fetched for r in self.results.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": not self.all_failed,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "totalRecords": self.total_records,
            "resources": {
                name: {
                    "fetched": r.fetched,
                    "pages": r.pages,
                    "truncated": r.truncated,
                    "error": r.error,
                }
                for name, r in self.results.items()
            },
        }


class CachedRecordRepository:
    """Local cache of remote records, keyed by (resource, remote id)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def replace(
        self,
        resource: str,
        records: Iterable[dict[str, Any]],
        prune: bool = True,
    ) -> int:
        """Upsert ``records``; with ``prune`` drop rows no longer present remotely.

        Returns the number of records written.
        """
        by_id = {str(r["id"]): r for r in records}
        now = datetime.now(timezone.utc)

        async with self._session_factory() as session:
            result = await session.execute(
                select(CachedRecord).where(CachedRecord.resource == resource)
            )
            existing = {row.remote_id: row for row in result.scalars()}

            for remote_id, payload in by_id.items():
                row = existing.get(remote_id)
                if row is None:
                    session.add(
                        CachedRecord(
                            resource=resource,
                            remote_id=remote_id,
                            payload=payload,
                            last_synced_at=now,
                        )
                    )
                else:
                    row.payload = payload
                    row.last_synced_at = now

            stale = set(existing) - set(by_id)
            if prune and stale:
                await session.execute(
                    delete(CachedRecord)
                    .where(CachedRecord.resource == resource)
                    .where(CachedRecord.remote_id.in_(sorted(stale)))
                )
            await session.commit()
        return len(by_id)

    async def list(self, resource: str) -> list[dict[str, Any]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CachedRecord.payload)
                .where(CachedRecord.resource == resource)
                .order_by(CachedRecord.remote_id)
            )
            return list(result.scalars())

    async def count(self, resource: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(CachedRecord)
                .where(CachedRecord.resource == resource)
            )
            return int(result.scalar_one())


def _extract_items(body: Any) -> list[dict[str, Any]]:
    """Items of a collection response (``{"data": [...]}`` or a bare list)."""
    if isinstance(body, list):
        items = body
    elif isinstance(body, dict) and isinstance(body.get("data"), list):
        items = body["data"]
    else:
        return []
    return [item for item in items if isinstance(item, dict)]


class CacheRefresher:
    """Page through remote resources and mirror them into the cache.

    Pagination stops on a short page, and after ``max_pages`` pages as a
    safety limit.
    """

    def __init__(
        self,
        gateway: ServeManagerGateway,
        repository: CachedRecordRepository,
        resources: Sequence[str] = DEFAULT_RESOURCES,
        per_page: int = PER_PAGE,
        max_pages: int = MAX_PAGES,
    ) -> None:
        self.gateway = gateway
        self.repository = repository
        self.resources = tuple(resources)
        self.per_page = per_page
        self.max_pages = max_pages

    async def refresh(self) -> SyncSummary:
        summary = SyncSummary(started_at=datetime.now(timezone.utc))
        for resource in self.resources:
            result = ResourceResult(resource=resource)
            summary.results[resource] = result
            try:
                records = await self._fetch_all(resource, result)
                # A truncated fetch is incomplete; keep rows we did not see
                await self.repository.replace(resource, records, prune=not result.truncated)
            except Exception as e:
                logger.warning("Refreshing %s failed: %s", resource, e)
                result.error = str(e) or type(e).__name__
                if summary.failure is None:
                    summary.failure = e
        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Cache refresh finished: %d records, %d resource error(s)",
            summary.total_records,
            sum(1 for r in summary.results.values() if r.error),
        )
        return summary

    async def _fetch_all(self, resource: str, result: ResourceResult) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            body = await self.gateway.list_page(resource, page=page, per_page=self.per_page)
            items = _extract_items(body)
            result.pages = page
            records.extend(item for item in items if item.get("id") is not None)
            if len(items) < self.per_page:
                break
            if page >= self.max_pages:
                logger.warning("Stopped paging %s at the %d page limit", resource, self.max_pages)
                result.truncated = True
                break
            page += 1
        result.fetched = len(records)
        return records
