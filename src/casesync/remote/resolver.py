"""Tiered configuration resolver.

Resolution order, first tier producing both a base URL and a key wins:
    1. Environment variables
    2. Config store (api_configurations, only when configured)
    3. Caller-owned FallbackConfig
    4. Disabled descriptor

Resolution never raises. Tier failures are logged and treated as
"tier absent".
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from casesync import config as env_names
from casesync.remote.config import (
    SERVEMANAGER_SERVICE,
    SOURCE_ENV,
    SOURCE_STORE,
    STRIPE_SERVICE,
    CapabilityDescriptor,
    FallbackConfig,
    PaymentProcessorDescriptor,
    is_masked,
)
from casesync.remote.store import ConfigStore, StoredServiceConfig

logger = logging.getLogger(__name__)


class ConfigResolver:
    """Resolve remote credentials from the configuration tiers.

    A fresh descriptor is built on every call so credential rotation takes
    effect on the next remote call.

    Usage:
        resolver = ConfigResolver(store=ConfigStore.from_url(url), fallback=FallbackConfig())
        descriptor = await resolver.resolve()
        if descriptor.enabled:
            ...
    """

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        store: ConfigStore | None = None,
        fallback: FallbackConfig | None = None,
    ) -> None:
        # None means read os.environ on every call
        self._environ = environ
        self.store = store
        self.fallback = fallback if fallback is not None else FallbackConfig()

    def _env(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    async def resolve(self) -> CapabilityDescriptor:
        """Resolve the system-of-record descriptor. Never raises."""
        try:
            return await self._resolve()
        except Exception:
            logger.exception("Config resolution failed, returning disabled descriptor")
            return CapabilityDescriptor.disabled()

    async def _resolve(self) -> CapabilityDescriptor:
        env = self._env()
        base_url = env.get(env_names.SERVEMANAGER_BASE_URL, "")
        api_key = env.get(env_names.SERVEMANAGER_API_KEY, "")
        if base_url and api_key:
            return CapabilityDescriptor.from_pair(base_url, api_key, SOURCE_ENV)

        record = await self._lookup(SERVEMANAGER_SERVICE)
        if record is not None and record.enabled and record.base_url and record.api_key:
            return CapabilityDescriptor.from_pair(
                record.base_url, record.api_key, SOURCE_STORE
            )

        descriptor = self.fallback.descriptor()
        if descriptor is not None:
            return descriptor

        return CapabilityDescriptor.disabled()

    async def resolve_payment_processor(self) -> PaymentProcessorDescriptor:
        """Resolve payment processor credentials. Never raises."""
        try:
            return await self._resolve_payment_processor()
        except Exception:
            logger.exception("Payment processor resolution failed")
            return PaymentProcessorDescriptor.disabled()

    async def _resolve_payment_processor(self) -> PaymentProcessorDescriptor:
        env = self._env()
        secret_key = env.get(env_names.STRIPE_SECRET_KEY, "")
        if secret_key:
            return PaymentProcessorDescriptor(
                publishable_key=env.get(env_names.STRIPE_PUBLISHABLE_KEY, ""),
                secret_key=secret_key,
                webhook_secret=env.get(env_names.STRIPE_WEBHOOK_SECRET, ""),
                environment=_environment(env.get(env_names.STRIPE_ENVIRONMENT, "")),
                enabled=True,
                source=SOURCE_ENV,
            )

        record = await self._lookup(STRIPE_SERVICE)
        if record is not None and record.enabled and record.secret_key:
            return PaymentProcessorDescriptor(
                publishable_key=record.publishable_key,
                secret_key=record.secret_key,
                webhook_secret=record.webhook_secret,
                environment=_environment(record.environment),
                enabled=True,
                source=SOURCE_STORE,
            )

        descriptor = self.fallback.payment_descriptor()
        if descriptor is not None:
            return descriptor

        return PaymentProcessorDescriptor.disabled()

    async def _lookup(self, service_name: str) -> StoredServiceConfig | None:
        if self.store is None:
            return None
        try:
            return await self.store.get(service_name)
        except Exception as e:
            logger.warning(
                "Config store lookup for %s failed, skipping tier: %s",
                service_name,
                e,
            )
            return None


def _environment(value: str | None) -> str:
    value = (value or "").strip().lower()
    return value if value in {"test", "live"} else "test"


@dataclass
class ConfigUpdate:
    """Administrative write for the system-of-record configuration.

    ``api_key`` may be a masked value echoed back from a read; it then
    keeps the key already on file.
    """

    base_url: str = ""
    api_key: str = ""
    enabled: bool = False


class ConfigAdminError(ValueError):
    """The submitted configuration is invalid."""


class ConfigAdmin:
    """Administrative write path for tiers 2 and 3.

    Writes always land in the caller-owned FallbackConfig and are persisted
    to the config store when one is configured, so they survive a restart.
    """

    def __init__(self, resolver: ConfigResolver) -> None:
        self.resolver = resolver

    async def apply(self, update: ConfigUpdate) -> CapabilityDescriptor:
        """Validate and apply ``update``; return the newly resolved descriptor."""
        base_url = update.base_url.strip()
        api_key = update.api_key.strip()

        if update.enabled and not base_url:
            raise ConfigAdminError("Base URL is required when the integration is enabled")

        if is_masked(api_key):
            api_key = await self._current_key()

        if update.enabled and not api_key:
            raise ConfigAdminError("API key is required when the integration is enabled")

        fallback = self.resolver.fallback
        fallback.base_url = base_url
        fallback.api_key = api_key
        fallback.enabled = update.enabled

        store = self.resolver.store
        if store is not None:
            try:
                await store.save(
                    SERVEMANAGER_SERVICE,
                    base_url=base_url,
                    api_key=api_key,
                    enabled=update.enabled,
                )
            except Exception:
                logger.exception("Failed to persist configuration; kept in memory only")

        logger.info(
            "Updated %s configuration (enabled=%s)", SERVEMANAGER_SERVICE, update.enabled
        )
        return await self.resolver.resolve()

    async def _current_key(self) -> str:
        if self.resolver.fallback.api_key:
            return self.resolver.fallback.api_key
        current = await self.resolver.resolve()
        return current.api_key
