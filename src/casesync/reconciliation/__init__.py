"""Payment-to-record reconciliation workflow."""

from casesync.reconciliation.workflow import (
    PAID_STATUS,
    PLACEHOLDER_AMOUNT,
    PaymentConfirmation,
    ReconciliationWorkflow,
    invoice_amount,
)

__all__ = [
    "PAID_STATUS",
    "PLACEHOLDER_AMOUNT",
    "PaymentConfirmation",
    "ReconciliationWorkflow",
    "invoice_amount",
]
