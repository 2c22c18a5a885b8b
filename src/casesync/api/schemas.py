"""Pydantic schemas for API request/response models.

Wire names are camelCase; Python attributes are snake_case.
"""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accept both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)


# ============================================================================
# Configuration
# ============================================================================


class ConfigUpdateRequest(CamelModel):
    """Administrative write of the system-of-record configuration."""

    base_url: str = Field(default="", alias="baseUrl")
    api_key: str = Field(default="", alias="apiKey")
    enabled: bool = False


class ConfigResponse(BaseModel):
    """Masked view of the resolved configuration."""

    servemanager: dict[str, Any]
    stripe: dict[str, Any]


# ============================================================================
# Payments and reconciliation
# ============================================================================


class PaymentConfirmRequest(CamelModel):
    """A payment confirmed by the processor, reported by a trusted caller."""

    invoice_id: str = Field(alias="invoiceId", min_length=1)
    payment_reference: str | None = Field(default=None, alias="paymentReference")
    amount: Decimal | None = Field(default=None, gt=0)
    status: str = "paid"


class ReconciliationResponse(BaseModel):
    """Result of a reconciliation request."""

    handled: bool
    outcome: dict[str, Any] | None = None


class AlertListResponse(BaseModel):
    """Outcomes waiting for manual reconciliation."""

    count: int
    alerts: list[dict[str, Any]]


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = True
    handled: bool = False
    outcome: dict[str, Any] | None = None


# ============================================================================
# Sync and cache
# ============================================================================


class CacheListResponse(BaseModel):
    resource: str
    count: int
    data: list[dict[str, Any]]


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
