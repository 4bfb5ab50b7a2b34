"""Typed billing entities, validated at construction time.

Every write that reaches the RecordStore is one of these models, so the store
can assume well-formed data: a valid email, a non-negative amount, UTC
timestamps and an entitlement window with expires_on > paid_on.

Construction failures are raised as billing ValidationError (never pydantic's),
so callers handle a single validation-error kind.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from netpass_api.billing.errors import ValidationError
from netpass_api.billing.expiry import LONGEST_DURATION

DEFAULT_SERVICE = "internet"


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _first_error(exc: pydantic.ValidationError) -> ValidationError:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(loc) for loc in first.get("loc", ())) or None
    msg = first.get("msg", "validation failed")
    detail = f"Invalid field '{field}': {msg}" if field else msg
    return ValidationError(detail, field=field)


class _Entity(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @classmethod
    def build(cls, **fields: Any):
        """Construct the entity, raising billing ValidationError on bad input."""
        try:
            return cls(**fields)
        except pydantic.ValidationError as exc:
            raise _first_error(exc) from exc

    @field_validator("email", mode="after", check_fields=False)
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.lower()


class _Window(_Entity):
    paid_on: datetime
    expires_on: datetime
    service: str = Field(default=DEFAULT_SERVICE, min_length=1)

    @field_validator("paid_on", "expires_on", mode="after")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _window_is_positive(self):
        if self.expires_on <= self.paid_on:
            raise ValueError("expires_on must be later than paid_on")
        return self


class CustomerRecord(_Entity):
    """Customer upsert input."""

    email: EmailStr


class TransactionRecord(_Window):
    """Ledger entry input (one per successful payment)."""

    email: EmailStr
    amount: Decimal = Field(ge=0)
    reference: Optional[str] = None
    currency: Optional[str] = None


class SubscriptionRecord(_Window):
    """Active-subscription upsert input (the entitlement window)."""

    email: EmailStr
    reference: Optional[str] = None


class PaymentEvent(_Entity):
    """A successful payment as reported by the gateway.

    Built from a ``charge.success`` webhook ``data`` object or from a
    verify-transaction response; both share the Paystack transaction shape.
    """

    reference: str = Field(min_length=1)
    email: EmailStr
    amount: Decimal = Field(ge=0)
    paid_at: datetime
    currency: Optional[str] = None
    service: str = Field(default=DEFAULT_SERVICE, min_length=1)
    transaction_id: Optional[str] = None

    @field_validator("paid_at", mode="after")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        try:
            value = as_utc(value)
            value + LONGEST_DURATION
        except OverflowError:
            raise ValueError("paid_at leaves no room for an access window") from None
        return value

    @classmethod
    def from_gateway(cls, data: Any) -> "PaymentEvent":
        """Parse a Paystack transaction object.

        Raises:
            ValidationError: If the object is not a dict or misses
                reference / customer.email / amount / paid_at
        """
        if not isinstance(data, dict):
            raise ValidationError("Payment data must be an object", field="data")

        customer = data.get("customer") or {}
        metadata = data.get("metadata") or {}
        if not isinstance(customer, dict):
            raise ValidationError("customer must be an object", field="data.customer")

        service = metadata.get("service") if isinstance(metadata, dict) else None
        transaction_id = data.get("id")

        fields: dict[str, Any] = {
            "reference": data.get("reference"),
            "email": customer.get("email"),
            "amount": data.get("amount"),
            # Paystack sends paid_at; older payloads only carry paidAt
            "paid_at": data.get("paid_at") or data.get("paidAt"),
            "currency": data.get("currency"),
            "transaction_id": str(transaction_id) if transaction_id is not None else None,
        }
        if service:
            fields["service"] = service
        return cls.build(**fields)
