"""Event types for reconciliation outcomes and broadcasts.

Outcomes are immutable (frozen dataclasses), created exactly once per
payment confirmation and serializable for the outbox and for observers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

INVOICE_PAYMENT_STATUS_UPDATED = "invoice_payment_status_updated"
CACHE_UPDATED = "cache_updated"

MANUAL_RECONCILIATION_MESSAGE = (
    "payment succeeded upstream but remote system not updated"
    " — manual reconciliation required"
)
APPLIED_MESSAGE = "Payment recorded in the remote system"


class OutcomeStatus(str, Enum):
    """How a payment confirmation ended up in the system-of-record."""

    APPLIED = "applied"
    STRIPE_ONLY_FAILURE = "stripe_only_failure"


@dataclass(frozen=True)
class BroadcastEvent:
    """Event delivered to connected observers."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": _serialize_dict(self.data)}

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass(frozen=True)
class ReconciliationOutcome:
    """Result of reflecting one confirmed payment into the system-of-record.

    Attributes:
        invoice_id: Remote invoice the payment belongs to.
        status: applied, or stripe_only_failure when the remote write failed.
        amount: Amount submitted (or that would have been submitted).
        payment_reference: Processor reference, used for duplicate detection.
        timestamp: When the outcome was decided (UTC).
        remote_updated: True only for applied.
        message: Human-readable summary for operators.
        error: Failure detail for stripe_only_failure.
        outcome_id: Unique id; the outbox key.
    """

    invoice_id: str
    status: OutcomeStatus
    amount: Decimal
    payment_reference: str
    timestamp: datetime
    remote_updated: bool
    message: str
    error: str | None = None
    outcome_id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        """Validate status and remote_updated agree."""
        if self.remote_updated != (self.status == OutcomeStatus.APPLIED):
            raise ValueError("remote_updated must be True exactly when status is applied")

    @classmethod
    def applied(
        cls,
        invoice_id: str,
        amount: Decimal,
        payment_reference: str,
        timestamp: datetime | None = None,
    ) -> ReconciliationOutcome:
        return cls(
            invoice_id=invoice_id,
            status=OutcomeStatus.APPLIED,
            amount=amount,
            payment_reference=payment_reference,
            timestamp=timestamp or datetime.now(timezone.utc),
            remote_updated=True,
            message=APPLIED_MESSAGE,
        )

    @classmethod
    def partial(
        cls,
        invoice_id: str,
        amount: Decimal,
        payment_reference: str,
        error: str,
        timestamp: datetime | None = None,
    ) -> ReconciliationOutcome:
        """Payment accepted by the processor, remote record not created."""
        return cls(
            invoice_id=invoice_id,
            status=OutcomeStatus.STRIPE_ONLY_FAILURE,
            amount=amount,
            payment_reference=payment_reference,
            timestamp=timestamp or datetime.now(timezone.utc),
            remote_updated=False,
            message=MANUAL_RECONCILIATION_MESSAGE,
            error=error,
        )

    @property
    def requires_manual_action(self) -> bool:
        return self.status == OutcomeStatus.STRIPE_ONLY_FAILURE

    def to_dict(self) -> dict[str, Any]:
        """Serialize outcome to dictionary (wire keys are camelCase)."""
        return _serialize_dict(
            {
                "outcomeId": self.outcome_id,
                "invoiceId": self.invoice_id,
                "status": self.status,
                "amount": self.amount,
                "paymentReference": self.payment_reference,
                "timestamp": self.timestamp,
                "remoteUpdated": self.remote_updated,
                "message": self.message,
                "error": self.error,
                "requiresManualAction": self.requires_manual_action,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReconciliationOutcome:
        """Rebuild an outcome serialized by to_dict."""
        return cls(
            invoice_id=data["invoiceId"],
            status=OutcomeStatus(data["status"]),
            amount=Decimal(data["amount"]),
            payment_reference=data["paymentReference"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            remote_updated=data["remoteUpdated"],
            message=data["message"],
            error=data.get("error"),
            outcome_id=UUID(data["outcomeId"]),
        )

    def to_event(self) -> BroadcastEvent:
        return BroadcastEvent(type=INVOICE_PAYMENT_STATUS_UPDATED, data=self.to_dict())


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, date):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj
