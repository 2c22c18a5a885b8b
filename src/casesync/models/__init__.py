"""ORM models."""

from casesync.models.base import Base, TimestampMixin
from casesync.models.records import (
    ApiConfiguration,
    CachedRecord,
    ReconciliationOutcomeRecord,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "ApiConfiguration",
    "CachedRecord",
    "ReconciliationOutcomeRecord",
]
