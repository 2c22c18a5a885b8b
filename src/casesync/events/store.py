"""Outbox for reconciliation outcomes.

The outcome store provides:
- Durable record of every outcome, written before it is broadcast
- Idempotent writes (via outcome_id)
- Redelivery of outcomes no observer has received yet
- Operator alert queries for outcomes needing manual reconciliation
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from casesync.events.emitter import Broadcaster
from casesync.events.types import OutcomeStatus, ReconciliationOutcome
from casesync.models import ReconciliationOutcomeRecord

logger = logging.getLogger(__name__)


class OutcomeStore:
    """Outcome outbox backed by SQL.

    Usage:
        store = OutcomeStore(session_factory)
        await store.append(outcome)
        for outcome in await store.requiring_attention():
            ...
        await store.acknowledge(outcome.outcome_id)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, outcome: ReconciliationOutcome) -> bool:
        """Append outcome to store.

        Returns True if stored, False if duplicate (idempotent).
        """
        async with self._session_factory() as session:
            existing = await session.get(ReconciliationOutcomeRecord, outcome.outcome_id)
            if existing is not None:
                return False
            session.add(
                ReconciliationOutcomeRecord(
                    outcome_id=outcome.outcome_id,
                    invoice_id=outcome.invoice_id,
                    status=outcome.status.value,
                    amount=str(outcome.amount),
                    payment_reference=outcome.payment_reference,
                    remote_updated=outcome.remote_updated,
                    message=outcome.message,
                    error=outcome.error,
                    occurred_at=outcome.timestamp,
                    payload=outcome.to_dict(),
                )
            )
            await session.commit()
            return True

    async def mark_dispatched(self, outcome_id: UUID, at: datetime | None = None) -> bool:
        async with self._session_factory() as session:
            record = await session.get(ReconciliationOutcomeRecord, outcome_id)
            if record is None:
                return False
            if record.dispatched_at is None:
                record.dispatched_at = at or datetime.now(timezone.utc)
                await session.commit()
            return True

    async def pending_dispatch(self, limit: int = 100) -> list[ReconciliationOutcome]:
        """Outcomes not yet received by any observer, oldest first."""
        stmt = (
            select(ReconciliationOutcomeRecord)
            .where(ReconciliationOutcomeRecord.dispatched_at.is_(None))
            .order_by(ReconciliationOutcomeRecord.occurred_at)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def requiring_attention(self) -> list[ReconciliationOutcome]:
        """Unacknowledged outcomes that need manual reconciliation."""
        stmt = (
            select(ReconciliationOutcomeRecord)
            .where(
                ReconciliationOutcomeRecord.status
                == OutcomeStatus.STRIPE_ONLY_FAILURE.value
            )
            .where(ReconciliationOutcomeRecord.acknowledged_at.is_(None))
            .order_by(ReconciliationOutcomeRecord.occurred_at)
        )
        return await self._fetch(stmt)

    async def acknowledge(self, outcome_id: UUID, at: datetime | None = None) -> bool:
        """Mark a manual-reconciliation alert as resolved.

        Returns False when the outcome does not exist or needs no action.
        """
        async with self._session_factory() as session:
            record = await session.get(ReconciliationOutcomeRecord, outcome_id)
            if record is None or record.status != OutcomeStatus.STRIPE_ONLY_FAILURE.value:
                return False
            if record.acknowledged_at is None:
                record.acknowledged_at = at or datetime.now(timezone.utc)
                await session.commit()
                logger.info("Acknowledged reconciliation alert %s", outcome_id)
            return True

    async def get_by_reference(self, payment_reference: str) -> list[ReconciliationOutcome]:
        """All outcomes recorded for a payment reference."""
        stmt = (
            select(ReconciliationOutcomeRecord)
            .where(ReconciliationOutcomeRecord.payment_reference == payment_reference)
            .order_by(ReconciliationOutcomeRecord.occurred_at)
        )
        return await self._fetch(stmt)

    async def _fetch(self, stmt) -> list[ReconciliationOutcome]:
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [ReconciliationOutcome.from_dict(row.payload) for row in rows]


class OutboxRelay:
    """Write-then-broadcast publishing over an OutcomeStore.

    An outcome is marked dispatched once at least one observer received it.
    Undispatched outcomes are re-broadcast by redeliver_pending(), giving
    at-least-once delivery to operators.
    """

    def __init__(self, store: OutcomeStore, broadcaster: Broadcaster) -> None:
        self.store = store
        self.broadcaster = broadcaster

    async def publish(self, outcome: ReconciliationOutcome) -> int:
        """Record and broadcast an outcome. Never raises."""
        try:
            await self.store.append(outcome)
        except Exception:
            logger.exception("Failed to record outcome %s in outbox", outcome.outcome_id)

        delivered = self._broadcast(outcome)
        if delivered:
            await self._mark(outcome.outcome_id)
        return delivered

    async def redeliver_pending(self) -> int:
        """Re-broadcast undispatched outcomes. Returns how many were delivered."""
        try:
            pending = await self.store.pending_dispatch()
        except Exception:
            logger.exception("Failed to load undispatched outcomes")
            return 0

        redelivered = 0
        for outcome in pending:
            if self._broadcast(outcome):
                await self._mark(outcome.outcome_id)
                redelivered += 1
        if redelivered:
            logger.info("Redelivered %d reconciliation outcome(s)", redelivered)
        return redelivered

    def _broadcast(self, outcome: ReconciliationOutcome) -> int:
        try:
            return self.broadcaster.broadcast(outcome.to_event())
        except Exception:
            logger.exception("Broadcast of outcome %s failed", outcome.outcome_id)
            return 0

    async def _mark(self, outcome_id: UUID) -> None:
        try:
            await self.store.mark_dispatched(outcome_id)
        except Exception:
            logger.exception("Failed to mark outcome %s dispatched", outcome_id)
