"""Reconciliation outcome events, broadcaster and outbox."""

from casesync.events.emitter import Broadcaster, LocalBroadcaster
from casesync.events.store import OutboxRelay, OutcomeStore
from casesync.events.types import (
    CACHE_UPDATED,
    INVOICE_PAYMENT_STATUS_UPDATED,
    MANUAL_RECONCILIATION_MESSAGE,
    BroadcastEvent,
    OutcomeStatus,
    ReconciliationOutcome,
)

__all__ = [
    "CACHE_UPDATED",
    "INVOICE_PAYMENT_STATUS_UPDATED",
    "MANUAL_RECONCILIATION_MESSAGE",
    "BroadcastEvent",
    "OutcomeStatus",
    "ReconciliationOutcome",
    "Broadcaster",
    "LocalBroadcaster",
    "OutcomeStore",
    "OutboxRelay",
]
