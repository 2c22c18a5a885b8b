"""Payment confirmation, processor webhook and reconciliation alerts."""

import json
import logging
from uuid import UUID

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from casesync.api.dependencies import ServicesDep
from casesync.api.schemas import (
    AlertListResponse,
    ErrorResponse,
    PaymentConfirmRequest,
    ReconciliationResponse,
    WebhookResponse,
)
from casesync.reconciliation import PaymentConfirmation

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
SIGNATURE_TOLERANCE_SECONDS = 300


@router.post(
    "/stripe/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": ErrorResponse}},
)
async def stripe_webhook(request: Request, services: ServicesDep) -> WebhookResponse:
    """Receive processor events.

    The signature is verified when a webhook secret is configured. A
    reconciliation failure still answers 200: the payment itself succeeded.
    """
    try:
        payload = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payload is not valid UTF-8",
        )
    processor = await services.resolver.resolve_payment_processor()

    if processor.webhook_secret:
        signature = request.headers.get("stripe-signature")
        if not signature:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing Stripe-Signature header",
            )
        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                processor.webhook_secret,
                tolerance=SIGNATURE_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError:
            logger.warning("Rejected webhook with invalid signature")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid signature",
            )

    try:
        event = json.loads(payload)
    except ValueError:
        event = None
    if not isinstance(event, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    if event.get("type") != PAYMENT_SUCCEEDED:
        logger.info("Ignoring webhook event %s", event.get("type"))
        return WebhookResponse()

    data = event.get("data")
    intent = data.get("object") if isinstance(data, dict) else None
    if not isinstance(intent, dict):
        intent = {}
    try:
        confirmation = PaymentConfirmation.from_payment_intent(intent)
    except ValueError as e:
        logger.warning("Payment intent %s not reconcilable: %s", intent.get("id"), e)
        return WebhookResponse()

    outcome = await services.workflow.handle_payment(confirmation)
    return WebhookResponse(
        handled=outcome is not None,
        outcome=outcome.to_dict() if outcome else None,
    )


@router.post("/payments/confirm", response_model=ReconciliationResponse)
async def confirm_payment(
    payload: PaymentConfirmRequest,
    services: ServicesDep,
) -> ReconciliationResponse:
    """Reconcile a payment confirmed client-side."""
    outcome = await services.workflow.handle_payment(
        PaymentConfirmation(
            invoice_id=payload.invoice_id,
            status=payload.status,
            payment_reference=payload.payment_reference,
            amount=payload.amount,
        )
    )
    return ReconciliationResponse(
        handled=outcome is not None,
        outcome=outcome.to_dict() if outcome else None,
    )


@router.get("/reconciliation/alerts", response_model=AlertListResponse)
async def list_alerts(services: ServicesDep) -> AlertListResponse:
    """Payments accepted by the processor but missing in the remote system."""
    outcomes = await services.outcomes.requiring_attention()
    return AlertListResponse(
        count=len(outcomes),
        alerts=[o.to_dict() for o in outcomes],
    )


@router.post(
    "/reconciliation/alerts/{outcome_id}/acknowledge",
    responses={404: {"model": ErrorResponse}},
)
async def acknowledge_alert(outcome_id: UUID, services: ServicesDep) -> dict[str, str]:
    """Mark an alert resolved after manual reconciliation."""
    if not await services.outcomes.acknowledge(outcome_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No open alert {outcome_id}",
        )
    return {"status": "acknowledged", "outcomeId": str(outcome_id)}
