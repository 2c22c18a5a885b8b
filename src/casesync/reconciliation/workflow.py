"""Payment-to-record reconciliation.

Reflects a processor-confirmed payment into the system-of-record and always
ends in exactly one observable outcome.

Rules:
    1. Only confirmed-success payments are processed; anything else is a no-op.
    2. A remote submission failure never reaches the caller. The payment was
       already accepted by the processor; the failure becomes a
       stripe_only_failure outcome requiring manual reconciliation.
    3. Amount resolution never aborts: caller amount, then invoice
       total/balance_due, then PLACEHOLDER_AMOUNT.
    4. Replayed confirmations are not deduplicated here; the reference number
       is what a downstream consumer can match on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from casesync.errors import LookupExhausted, ReconciliationPartial
from casesync.events.emitter import Broadcaster
from casesync.events.store import OutboxRelay, OutcomeStore
from casesync.events.types import ReconciliationOutcome
from casesync.remote.gateway import RemoteGateway

logger = logging.getLogger(__name__)

PAID_STATUS = "paid"
PAYMENT_METHOD = "stripe"
PLACEHOLDER_AMOUNT = Decimal("0.50")
REFERENCE_PREFIX = "stripe_"

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PaymentConfirmation:
    """A payment the processor reports as completed.

    Attributes:
        invoice_id: Remote invoice the payment is for.
        status: Processor-side status; only "paid" is reconciled.
        payment_reference: Processor reference (payment intent id).
        amount: Charged amount in currency units, when known.
    """

    invoice_id: str
    status: str = PAID_STATUS
    payment_reference: str | None = None
    amount: Decimal | None = None

    @classmethod
    def from_payment_intent(cls, intent: Mapping[str, Any]) -> PaymentConfirmation:
        """Build from a processor payment-intent object.

        ``amount_received`` is in cents; ``metadata.invoiceId`` names the invoice.
        """
        metadata = intent.get("metadata")
        if not isinstance(metadata, Mapping):
            metadata = {}
        invoice_id = metadata.get("invoiceId") or metadata.get("invoice_id")
        if not invoice_id:
            raise ValueError("payment intent has no invoiceId metadata")

        amount_received = intent.get("amount_received")
        amount = None
        if amount_received:
            try:
                amount = (Decimal(str(amount_received)) / 100).quantize(_CENTS)
            except InvalidOperation as e:
                raise ValueError(f"invalid amount_received: {amount_received!r}") from e

        status = intent.get("status")
        return cls(
            invoice_id=str(invoice_id),
            status=PAID_STATUS if status == "succeeded" else str(status or ""),
            payment_reference=intent.get("id"),
            amount=amount,
        )


def format_amount(amount: Decimal) -> str:
    return str(amount.quantize(_CENTS))


def invoice_amount(invoice: Mapping[str, Any]) -> Decimal:
    """Charge amount from an invoice body: ``total``, then ``balance_due``.

    Accepts a flat body, ``{"data": {...}}`` and JSON:API ``attributes``.
    Raises LookupExhausted when neither field holds a positive number.
    """
    data = invoice.get("data") or invoice
    if isinstance(data, Mapping) and isinstance(data.get("attributes"), Mapping):
        data = data["attributes"]
    if not isinstance(data, Mapping):
        raise LookupExhausted("invoice body has no fields")

    for key in ("total", "balance_due"):
        value = data.get(key)
        if value in (None, ""):
            continue
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            continue
        if amount > 0:
            return amount
    raise LookupExhausted("invoice has no total or balance_due")


class ReconciliationWorkflow:
    """Apply confirmed payments to the system-of-record.

    Usage:
        workflow = ReconciliationWorkflow(gateway, broadcaster, outbox=OutcomeStore(factory))
        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_123", amount=Decimal("125.00"))
        )
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        broadcaster: Broadcaster,
        *,
        outbox: OutcomeStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._gateway = gateway
        self._broadcaster = broadcaster
        self._relay = OutboxRelay(outbox, broadcaster) if outbox is not None else None
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle_payment(
        self, confirmation: PaymentConfirmation
    ) -> ReconciliationOutcome | None:
        """Reconcile one confirmed payment.

        Returns the outcome, or None when the confirmation is not a
        successful payment. Does not raise on remote failures.
        """
        if confirmation.status != PAID_STATUS:
            logger.info(
                "Ignoring payment for invoice %s with status %r",
                confirmation.invoice_id,
                confirmation.status,
            )
            return None

        now = self._clock()
        reference = confirmation.payment_reference or (
            f"{REFERENCE_PREFIX}{int(now.timestamp() * 1000)}"
        )
        amount = await self._resolve_amount(confirmation)
        payload = self._payment_payload(amount, reference, now)

        try:
            await self._gateway.create_payment(confirmation.invoice_id, payload)
        except Exception as e:
            partial = ReconciliationPartial(confirmation.invoice_id, e)
            logger.exception("%s", partial)
            outcome = ReconciliationOutcome.partial(
                invoice_id=confirmation.invoice_id,
                amount=amount,
                payment_reference=reference,
                error=str(e) or type(e).__name__,
                timestamp=now,
            )
        else:
            logger.info(
                "Recorded payment %s of %s on invoice %s",
                reference,
                format_amount(amount),
                confirmation.invoice_id,
            )
            outcome = ReconciliationOutcome.applied(
                invoice_id=confirmation.invoice_id,
                amount=amount,
                payment_reference=reference,
                timestamp=now,
            )

        await self._publish(outcome)
        return outcome

    async def _resolve_amount(self, confirmation: PaymentConfirmation) -> Decimal:
        if confirmation.amount is not None:
            return confirmation.amount.quantize(_CENTS)
        try:
            invoice = await self._gateway.get_invoice(confirmation.invoice_id)
            return invoice_amount(invoice).quantize(_CENTS)
        except Exception as e:
            logger.warning(
                "Amount lookup for invoice %s failed, using placeholder %s: %s",
                confirmation.invoice_id,
                PLACEHOLDER_AMOUNT,
                e,
            )
            return PLACEHOLDER_AMOUNT

    def _payment_payload(
        self, amount: Decimal, reference: str, now: datetime
    ) -> dict[str, Any]:
        return {
            "data": {
                "type": "payment",
                "attributes": {
                    "amount": format_amount(amount),
                    "payment_method": PAYMENT_METHOD,
                    "payment_date": now.date().isoformat(),
                    "reference_number": reference,
                    "notes": f"Payment processed via Stripe ({reference})",
                },
            }
        }

    async def _publish(self, outcome: ReconciliationOutcome) -> None:
        if self._relay is not None:
            await self._relay.publish(outcome)
            return
        try:
            self._broadcaster.broadcast(outcome.to_event())
        except Exception:
            logger.exception("Broadcast of outcome %s failed", outcome.outcome_id)
