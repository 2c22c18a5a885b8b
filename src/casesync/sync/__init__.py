"""Polling sync engine, sync triggers and the server-side cache refresher."""

from casesync.sync.cache import (
    CachedRecordRepository,
    CacheRefresher,
    ResourceResult,
    SyncSummary,
)
from casesync.sync.engine import (
    Scheduler,
    SyncConfig,
    SyncEngine,
    SyncErrorKind,
    SyncState,
    SyncStatus,
    classify_error,
)
from casesync.sync.trigger import HttpSyncTrigger, LocalSyncTrigger, SyncTrigger

__all__ = [
    "SyncEngine",
    "SyncConfig",
    "SyncState",
    "SyncStatus",
    "SyncErrorKind",
    "Scheduler",
    "classify_error",
    "SyncTrigger",
    "HttpSyncTrigger",
    "LocalSyncTrigger",
    "CacheRefresher",
    "CachedRecordRepository",
    "ResourceResult",
    "SyncSummary",
]
