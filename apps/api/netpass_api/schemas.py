"""Pydantic schemas for API requests/responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field


# ============================================================================
# POST /api/payment/initialize - Request
# ============================================================================


class PaymentInitializeRequest(BaseModel):
    """Request body for POST /api/payment/initialize.

    ``amount`` accepts a number or a numeric string ("500").
    """

    email: EmailStr
    amount: float = Field(..., gt=0, allow_inf_nan=False, description="Amount in gateway units")

    def gateway_amount(self) -> int | float:
        """Amount as sent to Paystack (integral values without a trailing .0)."""
        return int(self.amount) if self.amount.is_integer() else self.amount


# ============================================================================
# Gateway pass-through responses
# ============================================================================


class GatewayResponse(BaseModel):
    """Envelope for routes that relay a Paystack result."""

    success: bool = True
    data: Any = None
    message: str


class TransactionListResponse(GatewayResponse):
    """Response for GET /api/transactions."""

    meta: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Subscriptions
# ============================================================================


class SubscriptionView(BaseModel):
    """Public view of an ActiveSubscription row."""

    email: str
    paid_on: datetime
    expires_on: datetime
    service: str
    reference: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "SubscriptionView":
        return cls(
            email=row.email,
            paid_on=row.paid_on,
            expires_on=row.expires_on,
            service=row.service,
            reference=row.reference,
        )


class VerifyResponse(GatewayResponse):
    """Response for GET /api/payment/verify/{reference}.

    ``subscription`` is the entitlement after reconciliation (None when the
    payment was not successful or could not be applied).
    """

    subscription: Optional[SubscriptionView] = None


class SubscriptionStatusResponse(BaseModel):
    """Response for GET /api/subscription/{email} (portal access check)."""

    success: bool = True
    active: bool
    data: Optional[SubscriptionView] = None
    message: str


class RebuildResponse(BaseModel):
    """Response for POST /internal/subscriptions/{email}/rebuild."""

    success: bool = True
    data: Optional[SubscriptionView] = None
    message: str


# ============================================================================
# Webhooks
# ============================================================================


class WebhookAck(BaseModel):
    """Acknowledgment returned to Paystack for every accepted delivery."""

    success: bool = True
    message: str = "Webhook received successfully"
    status: str


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    RFC 9457: detail can be either a string or a structured object (dict).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
