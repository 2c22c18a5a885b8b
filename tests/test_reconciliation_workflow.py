"""Tests for the payment-to-record reconciliation workflow.

Tests verify:
1. Only confirmed-success payments reach the remote system
2. Amount resolution falls back to invoice fields, then the placeholder
3. Remote failures become a flagged outcome and never raise
4. Outcomes go through the outbox before being broadcast
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from casesync.errors import ConfigUnavailable, RemoteNetworkError, RemoteRejected
from casesync.events import (
    INVOICE_PAYMENT_STATUS_UPDATED,
    MANUAL_RECONCILIATION_MESSAGE,
    OutcomeStatus,
    OutcomeStore,
)
from casesync.reconciliation import (
    PLACEHOLDER_AMOUNT,
    PaymentConfirmation,
    ReconciliationWorkflow,
    invoice_amount,
)
from casesync.remote import ConfigResolver, ServeManagerGateway
from conftest import RecordingBroadcaster

FIXED_NOW = datetime(2026, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


class FakeGateway:
    """RemoteGateway answering invoice lookups and payment submissions."""

    def __init__(
        self,
        invoice: dict | None = None,
        invoice_error: Exception | None = None,
        payment_error: Exception | None = None,
    ) -> None:
        self.invoice = invoice or {}
        self.invoice_error = invoice_error
        self.payment_error = payment_error
        self.requests: list[tuple[str, str, dict | None]] = []

    async def request(self, path, *, method="GET", body=None):
        self.requests.append((method, path, body))
        if method == "GET":
            if self.invoice_error is not None:
                raise self.invoice_error
            return self.invoice
        if self.payment_error is not None:
            raise self.payment_error
        return {"data": {"type": "payment", "id": "pay_1"}}

    async def get_invoice(self, invoice_id):
        return await self.request(f"/invoices/{invoice_id}")

    async def create_payment(self, invoice_id, payload):
        return await self.request(f"/invoices/{invoice_id}/payments", method="POST", body=payload)

    @property
    def submissions(self) -> list[dict]:
        return [body for method, _, body in self.requests if method == "POST"]


def workflow_for(gateway, broadcaster, **kwargs) -> ReconciliationWorkflow:
    return ReconciliationWorkflow(gateway, broadcaster, clock=lambda: FIXED_NOW, **kwargs)


class TestPreconditions:
    """Test the confirmed-success precondition."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["failed", "requires_payment_method", "", "PAID"])
    async def test_non_paid_is_noop(self, status, broadcaster):
        gateway = FakeGateway()
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", status=status, amount=Decimal("10"))
        )

        assert outcome is None
        assert gateway.requests == []
        assert broadcaster.events == []


class TestAmountResolution:
    """Test amount resolution order."""

    @pytest.mark.asyncio
    async def test_failed_lookup_uses_placeholder(self, broadcaster):
        gateway = FakeGateway(invoice_error=RemoteRejected(404, "not found"))
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_1")
        )

        assert gateway.submissions[0]["data"]["attributes"]["amount"] == "0.50"
        assert outcome.amount == PLACEHOLDER_AMOUNT

    @pytest.mark.asyncio
    async def test_invoice_total_used(self, broadcaster):
        gateway = FakeGateway(invoice={"data": {"attributes": {"total": "80.5", "balance_due": "10"}}})
        workflow = workflow_for(gateway, broadcaster)

        await workflow.handle_payment(PaymentConfirmation(invoice_id="42", payment_reference="pi_1"))

        assert gateway.requests[0] == ("GET", "/invoices/42", None)
        assert gateway.submissions[0]["data"]["attributes"]["amount"] == "80.50"

    @pytest.mark.asyncio
    async def test_balance_due_when_no_total(self, broadcaster):
        gateway = FakeGateway(invoice={"balance_due": 12})
        workflow = workflow_for(gateway, broadcaster)

        await workflow.handle_payment(PaymentConfirmation(invoice_id="42", payment_reference="pi_1"))

        assert gateway.submissions[0]["data"]["attributes"]["amount"] == "12.00"

    @pytest.mark.asyncio
    async def test_caller_amount_skips_lookup(self, broadcaster):
        gateway = FakeGateway()
        workflow = workflow_for(gateway, broadcaster)

        await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_1", amount=Decimal("7"))
        )

        assert [m for m, _, _ in gateway.requests] == ["POST"]
        assert gateway.submissions[0]["data"]["attributes"]["amount"] == "7.00"

    def test_invoice_amount_without_fields(self):
        from casesync.errors import LookupExhausted

        with pytest.raises(LookupExhausted):
            invoice_amount({"data": {"attributes": {"total": "0"}}})


class TestSubmission:
    """Test the payment record submitted to the remote system."""

    @pytest.mark.asyncio
    async def test_applied_outcome(self, broadcaster):
        """Invoice 42, 125.00, pi_123 accepted: one applied outcome."""
        gateway = FakeGateway()
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(
                invoice_id="42",
                payment_reference="pi_123",
                amount=Decimal("125.00"),
            )
        )

        assert outcome.status == OutcomeStatus.APPLIED
        assert outcome.remote_updated is True
        assert len(broadcaster.events) == 1
        event = broadcaster.events[0]
        assert event.type == INVOICE_PAYMENT_STATUS_UPDATED
        assert event.data["invoiceId"] == "42"
        assert event.data["amount"] == "125.00"
        assert event.data["remoteUpdated"] is True
        assert event.data["status"] == "applied"

    @pytest.mark.asyncio
    async def test_payload_shape(self, broadcaster):
        gateway = FakeGateway()
        workflow = workflow_for(gateway, broadcaster)

        await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_123", amount=Decimal("125"))
        )

        method, path, body = gateway.requests[0]
        assert (method, path) == ("POST", "/invoices/42/payments")
        assert body == {
            "data": {
                "type": "payment",
                "attributes": {
                    "amount": "125.00",
                    "payment_method": "stripe",
                    "payment_date": "2026-03-14",
                    "reference_number": "pi_123",
                    "notes": "Payment processed via Stripe (pi_123)",
                },
            }
        }

    @pytest.mark.asyncio
    async def test_generated_reference(self, broadcaster):
        gateway = FakeGateway()
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", amount=Decimal("1"))
        )

        expected = f"stripe_{int(FIXED_NOW.timestamp() * 1000)}"
        assert outcome.payment_reference == expected
        assert gateway.submissions[0]["data"]["attributes"]["reference_number"] == expected

    @pytest.mark.asyncio
    async def test_success_with_plain_text_body_is_applied(self, broadcaster):
        """A 201 whose body is not JSON still counts as recorded."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, text="Created", headers={"content-type": "text/plain"})

        gateway = ServeManagerGateway(
            ConfigResolver(
                environ={
                    "SERVEMANAGER_BASE_URL": "https://sm.example/api",
                    "SERVEMANAGER_API_KEY": "k",
                }
            ),
            transport=httpx.MockTransport(handler),
        )
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_123", amount=Decimal("125"))
        )

        assert [(r.method, r.url.path) for r in seen] == [("POST", "/api/invoices/42/payments")]
        assert outcome.status == OutcomeStatus.APPLIED
        assert outcome.remote_updated is True
        assert broadcaster.events[0].data["status"] == "applied"

    @pytest.mark.asyncio
    async def test_plain_text_invoice_uses_placeholder(self, broadcaster):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, text="<html>maintenance</html>")
            return httpx.Response(201, json={"data": {"id": "p1"}})

        gateway = ServeManagerGateway(
            ConfigResolver(
                environ={
                    "SERVEMANAGER_BASE_URL": "https://sm.example/api",
                    "SERVEMANAGER_API_KEY": "k",
                }
            ),
            transport=httpx.MockTransport(handler),
        )
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_1")
        )

        assert outcome.status == OutcomeStatus.APPLIED
        assert outcome.amount == PLACEHOLDER_AMOUNT


class TestPartialFailure:
    """Test remote failures after the processor accepted the payment."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            RemoteNetworkError("connection reset"),
            RemoteRejected(500, "internal error"),
            ConfigUnavailable("not configured"),
        ],
    )
    async def test_failure_is_flagged_not_raised(self, error, broadcaster):
        gateway = FakeGateway(payment_error=error)
        workflow = workflow_for(gateway, broadcaster)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_9", amount=Decimal("20"))
        )

        assert outcome.status == OutcomeStatus.STRIPE_ONLY_FAILURE
        assert outcome.remote_updated is False
        assert outcome.message == MANUAL_RECONCILIATION_MESSAGE
        assert outcome.requires_manual_action is True
        assert len(broadcaster.events) == 1
        assert broadcaster.events[0].data["status"] == "stripe_only_failure"
        assert broadcaster.events[0].data["remoteUpdated"] is False

    @pytest.mark.asyncio
    async def test_failing_broadcaster_does_not_raise(self):
        class ExplodingBroadcaster:
            def broadcast(self, event):
                raise RuntimeError("no observers")

        workflow = workflow_for(FakeGateway(), ExplodingBroadcaster())

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_1", amount=Decimal("1"))
        )

        assert outcome.status == OutcomeStatus.APPLIED


class TestOutbox:
    """Test outbox-first publishing."""

    @pytest.mark.asyncio
    async def test_outcome_recorded_and_dispatched(self, session_factory):
        store = OutcomeStore(session_factory)
        broadcaster = RecordingBroadcaster(observers=1)
        workflow = workflow_for(FakeGateway(payment_error=RemoteNetworkError("down")), broadcaster, outbox=store)

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_5", amount=Decimal("3"))
        )

        assert [o.outcome_id for o in await store.requiring_attention()] == [outcome.outcome_id]
        assert await store.pending_dispatch() == []

    @pytest.mark.asyncio
    async def test_unobserved_outcome_stays_pending(self, session_factory):
        store = OutcomeStore(session_factory)
        workflow = workflow_for(
            FakeGateway(payment_error=RemoteNetworkError("down")),
            RecordingBroadcaster(observers=0),
            outbox=store,
        )

        outcome = await workflow.handle_payment(
            PaymentConfirmation(invoice_id="42", payment_reference="pi_6", amount=Decimal("3"))
        )

        pending = await store.pending_dispatch()
        assert [o.outcome_id for o in pending] == [outcome.outcome_id]


class TestFromPaymentIntent:
    """Test mapping a processor payment intent."""

    def test_succeeded_intent(self):
        confirmation = PaymentConfirmation.from_payment_intent(
            {
                "id": "pi_123",
                "status": "succeeded",
                "amount_received": 12500,
                "metadata": {"invoiceId": "42"},
            }
        )

        assert confirmation == PaymentConfirmation(
            invoice_id="42",
            status="paid",
            payment_reference="pi_123",
            amount=Decimal("125.00"),
        )

    def test_other_status_is_not_paid(self):
        confirmation = PaymentConfirmation.from_payment_intent(
            {"id": "pi_1", "status": "processing", "metadata": {"invoiceId": "42"}}
        )
        assert confirmation.status == "processing"
        assert confirmation.amount is None

    def test_missing_invoice_id(self):
        with pytest.raises(ValueError):
            PaymentConfirmation.from_payment_intent({"id": "pi_1", "status": "succeeded"})

    def test_metadata_not_a_mapping(self):
        with pytest.raises(ValueError, match="invoiceId"):
            PaymentConfirmation.from_payment_intent(
                {"id": "pi_1", "status": "succeeded", "metadata": ["42"]}
            )

    def test_unparseable_amount(self):
        with pytest.raises(ValueError, match="amount_received"):
            PaymentConfirmation.from_payment_intent(
                {
                    "id": "pi_1",
                    "status": "succeeded",
                    "amount_received": "lots",
                    "metadata": {"invoiceId": "42"},
                }
            )
