"""Remote configuration objects.

Descriptors are produced fresh by every resolution and never cached beyond
a single operation.

Rules:
    1. enabled implies every credential the service needs is present.
    2. Descriptors are immutable (frozen dataclasses).
    3. The tier-3 fallback is owned by the caller and passed in explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

SERVEMANAGER_SERVICE = "servemanager"
STRIPE_SERVICE = "stripe"

SOURCE_ENV = "env"
SOURCE_STORE = "store"
SOURCE_FALLBACK = "fallback"
SOURCE_DEFAULT = "default"

MASK_PREFIX = "***"


def mask_secret(value: str) -> str:
    """Render a secret as ``***`` plus its last four characters."""
    if not value:
        return ""
    return MASK_PREFIX + value[-4:]


def is_masked(value: str | None) -> bool:
    """True when a value is a masked secret echoed back by a client."""
    return bool(value) and value.startswith(MASK_PREFIX)  # type: ignore[union-attr]


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    Credentials and endpoint for the external system-of-record.

    Attributes:
        base_url: API root, e.g. "https://www.servemanager.com/api".
        api_key: Key used as the Basic auth username.
        enabled: True only when both base_url and api_key are non-empty.
        source: Tier that produced this descriptor.
    """

    base_url: str = ""
    api_key: str = ""
    enabled: bool = False
    source: str = SOURCE_DEFAULT

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.enabled and not (self.base_url and self.api_key):
            raise ValueError("enabled descriptor requires base_url and api_key")

    @classmethod
    def disabled(cls) -> CapabilityDescriptor:
        """The terminal tier: nothing configured."""
        return cls()

    @classmethod
    def from_pair(cls, base_url: str, api_key: str, source: str) -> CapabilityDescriptor:
        return cls(
            base_url=base_url,
            api_key=api_key,
            enabled=bool(base_url and api_key),
            source=source,
        )

    def masked(self) -> dict[str, Any]:
        """Safe representation for logs and API responses."""
        return {
            "baseUrl": self.base_url,
            "apiKey": mask_secret(self.api_key),
            "enabled": self.enabled,
            "source": self.source,
        }


@dataclass(frozen=True)
class PaymentProcessorDescriptor:
    """
    Payment processor credentials.

    Attributes:
        publishable_key: Client-side key.
        secret_key: Server-side key; required for enabled.
        webhook_secret: Secret for verifying webhook signatures. Optional.
        environment: "test" or "live". Default "test".
        enabled: True only when secret_key is non-empty.
        source: Tier that produced this descriptor.
    """

    publishable_key: str = ""
    secret_key: str = ""
    webhook_secret: str = ""
    environment: str = "test"
    enabled: bool = False
    source: str = SOURCE_DEFAULT

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.environment not in {"test", "live"}:
            raise ValueError("environment must be 'test' or 'live'")
        if self.enabled and not self.secret_key:
            raise ValueError("enabled descriptor requires secret_key")

    @classmethod
    def disabled(cls) -> PaymentProcessorDescriptor:
        return cls()

    def masked(self) -> dict[str, Any]:
        return {
            "publishableKey": self.publishable_key,
            "secretKey": mask_secret(self.secret_key),
            "webhookSecret": mask_secret(self.webhook_secret),
            "environment": self.environment,
            "enabled": self.enabled,
            "source": self.source,
        }


@dataclass
class FallbackConfig:
    """
    Tier-3 configuration: a caller-owned, in-memory context.

    Mutated only by the administrative write path. There is no lock;
    concurrent writers get last-writer-wins. Contents are lost when the
    owner goes away; ConfigAdmin also persists writes to the store when
    one is configured.
    """

    base_url: str = ""
    api_key: str = ""
    enabled: bool = False
    publishable_key: str = ""
    secret_key: str = ""
    webhook_secret: str = ""
    environment: str = "test"
    payment_enabled: bool = False

    def update(self, **changes: Any) -> None:
        """Apply a partial update. Unknown fields raise ValueError."""
        for name, value in changes.items():
            if value is None:
                continue
            if not hasattr(self, name):
                raise ValueError(f"unknown fallback field: {name}")
            setattr(self, name, value)

    def clear(self) -> None:
        """Reset every field to its default."""
        for f in fields(self):
            setattr(self, f.name, f.default)

    def descriptor(self) -> CapabilityDescriptor | None:
        """Descriptor for this tier, or None when the tier is absent."""
        if not (self.enabled and self.base_url and self.api_key):
            return None
        return CapabilityDescriptor.from_pair(self.base_url, self.api_key, SOURCE_FALLBACK)

    def payment_descriptor(self) -> PaymentProcessorDescriptor | None:
        if not (self.payment_enabled and self.secret_key):
            return None
        return PaymentProcessorDescriptor(
            publishable_key=self.publishable_key,
            secret_key=self.secret_key,
            webhook_secret=self.webhook_secret,
            environment=self.environment or "test",
            enabled=True,
            source=SOURCE_FALLBACK,
        )
