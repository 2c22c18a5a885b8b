"""Wiring of the casesync components for one process.

The FastAPI app and the CLI both build their components here so they share
one configuration path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from casesync.config import Settings
from casesync.database import create_tables, get_engine, make_session_factory
from casesync.events import (
    CACHE_UPDATED,
    BroadcastEvent,
    LocalBroadcaster,
    OutboxRelay,
    OutcomeStore,
)
from casesync.reconciliation import ReconciliationWorkflow
from casesync.remote import (
    ConfigAdmin,
    ConfigResolver,
    ConfigStore,
    FallbackConfig,
    ServeManagerGateway,
)
from casesync.sync import (
    CachedRecordRepository,
    CacheRefresher,
    LocalSyncTrigger,
    SyncConfig,
    SyncEngine,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Components shared by request handlers and background work."""

    settings: Settings
    db_engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    resolver: ConfigResolver
    admin: ConfigAdmin
    gateway: ServeManagerGateway
    broadcaster: LocalBroadcaster
    outcomes: OutcomeStore
    relay: OutboxRelay
    workflow: ReconciliationWorkflow
    cache: CachedRecordRepository
    refresher: CacheRefresher
    config_store: ConfigStore | None = field(default=None)
    background: SyncEngine | None = field(default=None)

    def start_background_sync(self) -> SyncEngine:
        """Start a server-side SyncEngine driving the CacheRefresher."""
        if self.background is None:
            self.background = SyncEngine(
                LocalSyncTrigger(self.refresher),
                config=SyncConfig.from_settings(self.settings),
                on_data_update=self._announce_refresh,
            )
        self.background.start_polling()
        return self.background

    async def stop_background_sync(self) -> None:
        if self.background is None:
            return
        self.background.stop_polling()
        await self.background.join()

    def _announce_refresh(self) -> None:
        assert self.background is not None
        self.broadcaster.broadcast(
            BroadcastEvent(type=CACHE_UPDATED, data=self.background.status.to_dict())
        )


def build_services(
    settings: Settings,
    db_engine: AsyncEngine | None = None,
    fallback: FallbackConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Build components for ``settings``. No I/O is performed.

    ``transport`` replaces the HTTP transport of the remote gateway.
    """
    db_engine = db_engine or get_engine(settings.database_url)
    session_factory = make_session_factory(db_engine)

    if settings.config_store_url == settings.database_url:
        store = ConfigStore(session_factory)
    else:
        store = ConfigStore.from_url(settings.config_store_url)

    resolver = ConfigResolver(store=store, fallback=fallback or FallbackConfig())
    gateway = ServeManagerGateway(
        resolver,
        timeout_seconds=settings.remote_http_timeout_seconds,
        transport=transport,
    )
    broadcaster = LocalBroadcaster()
    outcomes = OutcomeStore(session_factory)
    cache = CachedRecordRepository(session_factory)

    return Services(
        settings=settings,
        db_engine=db_engine,
        session_factory=session_factory,
        resolver=resolver,
        admin=ConfigAdmin(resolver),
        gateway=gateway,
        broadcaster=broadcaster,
        outcomes=outcomes,
        relay=OutboxRelay(outcomes, broadcaster),
        workflow=ReconciliationWorkflow(gateway, broadcaster, outbox=outcomes),
        cache=cache,
        refresher=CacheRefresher(gateway, cache),
        config_store=store,
    )


async def open_services(settings: Settings) -> Services:
    """Build components and make sure the local tables exist."""
    services = build_services(settings)
    await create_tables(services.db_engine)
    logger.info("casesync services ready (database=%s)", services.db_engine.url.drivername)
    return services


async def close_services(services: Services) -> None:
    await services.stop_background_sync()
    if services.config_store is not None:
        await services.config_store.close()
    await services.db_engine.dispose()
