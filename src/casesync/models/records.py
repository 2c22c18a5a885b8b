"""Local persistence models.

- api_configurations: tier-2 configuration store, one row per service
- cached_record: local cache of records pulled from the system-of-record
- reconciliation_outcome: durable outbox of reconciliation outcomes
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from casesync.models.base import Base, TimestampMixin


class ApiConfiguration(Base, TimestampMixin):
    """Stored credentials for one external service.

    Keyed by ``service_name`` ('servemanager', 'stripe').
    """

    __tablename__ = "api_configurations"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    service_name: Mapped[str] = mapped_column(String(64), nullable=False)
    base_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    api_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    publishable_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    secret_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(Text, nullable=True)
    environment: Mapped[str | None] = mapped_column(String(16), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("service_name", name="api_configurations_service_name_uq"),
    )


class CachedRecord(Base):
    """A remote record as last seen by a resync."""

    __tablename__ = "cached_record"

    cached_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("resource", "remote_id", name="cached_record_resource_remote_uq"),
    )


class ReconciliationOutcomeRecord(Base):
    """Outbox row for a ReconciliationOutcome.

    Written before the outcome is broadcast. ``dispatched_at`` is set once at
    least one observer received it; ``acknowledged_at`` is set by an operator
    after manual reconciliation.
    """

    __tablename__ = "reconciliation_outcome"

    outcome_id: Mapped[UUID] = mapped_column(primary_key=True)
    invoice_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    remote_updated: Mapped[bool] = mapped_column(Boolean, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    dispatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('applied', 'stripe_only_failure')",
            name="reconciliation_outcome_status_ck",
        ),
        Index("ix_reconciliation_outcome_reference", "payment_reference"),
        Index("ix_reconciliation_outcome_invoice", "invoice_id"),
    )
