"""Tier-2 configuration store.

A single-record lookup keyed by service name against the
``api_configurations`` table. Lookups raise on database errors; the
resolver treats any error as "tier absent".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from casesync.models import ApiConfiguration

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKER = "placeholder"

_WRITABLE_FIELDS = (
    "base_url",
    "api_key",
    "publishable_key",
    "secret_key",
    "webhook_secret",
    "environment",
    "enabled",
)


def is_store_configured(url: str | None) -> bool:
    """Connection parameters present and not a placeholder value."""
    return bool(url) and PLACEHOLDER_MARKER not in url.lower()  # type: ignore[union-attr]


@dataclass(frozen=True)
class StoredServiceConfig:
    """One row of api_configurations, detached from the session."""

    service_name: str
    base_url: str = ""
    api_key: str = ""
    publishable_key: str = ""
    secret_key: str = ""
    webhook_secret: str = ""
    environment: str = "test"
    enabled: bool = False

    @classmethod
    def from_row(cls, row: ApiConfiguration) -> StoredServiceConfig:
        return cls(
            service_name=row.service_name,
            base_url=row.base_url or "",
            api_key=row.api_key or "",
            publishable_key=row.publishable_key or "",
            secret_key=row.secret_key or "",
            webhook_secret=row.webhook_secret or "",
            environment=row.environment or "test",
            enabled=bool(row.enabled),
        )


class ConfigStore:
    """Configuration store backed by SQL.

    Usage:
        store = ConfigStore(session_factory)
        record = await store.get("servemanager")
        await store.save("servemanager", base_url="...", api_key="...", enabled=True)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        """``engine`` is disposed by close(); pass it only when the store owns it."""
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, url: str | None) -> ConfigStore | None:
        """Build a store for ``url``, or None when it is not configured.

        No connection is attempted here; the first lookup connects.
        """
        if not is_store_configured(url):
            return None
        from casesync.database import get_engine, make_session_factory

        engine = get_engine(url)
        return cls(make_session_factory(engine), engine=engine)

    async def close(self) -> None:
        """Dispose the engine this store created. No-op for a shared engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    async def get(self, service_name: str) -> StoredServiceConfig | None:
        """Look up the record for ``service_name``; None when not found."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiConfiguration).where(
                    ApiConfiguration.service_name == service_name
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return StoredServiceConfig.from_row(row)

    async def save(self, service_name: str, **values: Any) -> StoredServiceConfig:
        """Upsert the record for ``service_name``.

        Only known fields are written; None values leave the column as is.
        """
        unknown = set(values) - set(_WRITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown configuration fields: {sorted(unknown)}")

        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiConfiguration).where(
                    ApiConfiguration.service_name == service_name
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = ApiConfiguration(service_name=service_name)
                session.add(row)
            for name, value in values.items():
                if value is not None:
                    setattr(row, name, value)
            saved = StoredServiceConfig.from_row(row)
            await session.commit()
        logger.info("Saved %s configuration to store", service_name)
        return saved
