"""Paystack API client.

Paystack API Reference:
- Transactions: https://paystack.com/docs/api/transaction/
- Customers: https://paystack.com/docs/api/customer/
- Transfers: https://paystack.com/docs/api/transfer/

Every failure (non-2xx, network error, timeout, or a ``status: false`` body)
surfaces as a single GatewayError carrying Paystack's ``message`` when one was
returned. Calls are never retried here; retry policy belongs to the caller.
"""

import logging
import time
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field, field_validator, model_validator

from netpass_api.billing.errors import GatewayError
from netpass_api.config.env import (
    get_paystack_base_url,
    get_paystack_secret_key,
    get_paystack_timeout,
)

logger = logging.getLogger(__name__)

_GENERIC_TRANSPORT_MESSAGE = "Payment gateway request failed"


class TransferRequest(BaseModel):
    """Outbound transfer (payout) request.

    NGN amounts are given in naira and sent in kobo (x100); other currencies
    are taken to be in their subunit already. Either way Paystack receives a
    whole number, so amounts finer than one subunit are rejected.
    """

    amount: Decimal = Field(gt=0, allow_inf_nan=False)
    recipient: str = Field(min_length=1)
    source: Optional[str] = None
    reason: Optional[str] = None
    currency: str = "NGN"
    reference: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _float_via_repr(cls, value: Any) -> Any:
        # 19.99 must stay 19.99, not its binary expansion
        if isinstance(value, float):
            return Decimal(repr(value))
        return value

    @model_validator(mode="after")
    def _whole_subunits(self) -> "TransferRequest":
        subunits = self._subunits()
        if subunits != subunits.to_integral_value():
            unit = "1 kobo" if self.currency == "NGN" else f"one {self.currency} subunit"
            raise ValueError(f"amount must not be finer than {unit}")
        return self

    def _subunits(self) -> Decimal:
        return self.amount * 100 if self.currency == "NGN" else self.amount

    def to_gateway_payload(self) -> dict[str, Any]:
        """Build the Paystack /transfer body."""
        return {
            "source": self.source or "balance",
            "amount": int(self._subunits()),
            "recipient": self.recipient,
            "reason": self.reason or "Transfer",
            "currency": self.currency,
            "reference": self.reference or f"transfer_{int(time.time() * 1000)}",
        }


class PaystackClient:
    """Paystack REST client (Bearer secret-key auth).

    Environment Variables:
    - PAYSTACK_SECRET_KEY: Paystack secret key (sk_test_* or sk_live_*)
    - PAYSTACK_BASE_URL: API base URL (default https://api.paystack.co)
    - PAYSTACK_TIMEOUT_SECONDS: per-request timeout (default 30)
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not secret_key:
            raise ValueError("Paystack secret key is required")

        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        # Determine environment from key prefix
        self.env = "sandbox" if secret_key.startswith("sk_test_") else "live"

    @classmethod
    def from_env(cls) -> "PaystackClient":
        """Build a client from environment configuration.

        Raises:
            ValueError: If PAYSTACK_SECRET_KEY is missing or the timeout is invalid
        """
        return cls(
            secret_key=get_paystack_secret_key(),
            base_url=get_paystack_base_url(),
            timeout=get_paystack_timeout(),
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Perform one Paystack call and return the full response envelope.

        Raises:
            GatewayError: On any transport or gateway-reported failure
        """
        url = f"{self.base_url}{path}"

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.request(method, url, headers=self._headers(), json=json, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("paystack.request.timeout", extra={"event": "paystack.request.timeout", "path": path})
            raise GatewayError("Payment gateway timed out") from exc
        except httpx.RequestError as exc:
            logger.warning(
                "paystack.request.transport_error",
                extra={"event": "paystack.request.transport_error", "path": path, "error_type": type(exc).__name__},
            )
            raise GatewayError(_GENERIC_TRANSPORT_MESSAGE) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        message = body.get("message") if isinstance(body, dict) else None

        if response.is_error:
            logger.warning(
                "paystack.request.failed",
                extra={"event": "paystack.request.failed", "path": path, "status_code": response.status_code},
            )
            raise GatewayError(
                message or f"{_GENERIC_TRANSPORT_MESSAGE} (HTTP {response.status_code})",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise GatewayError("Payment gateway returned an unreadable response", status_code=response.status_code)

        if body.get("status") is False:
            raise GatewayError(message or _GENERIC_TRANSPORT_MESSAGE, status_code=response.status_code)

        return body

    async def initialize_transaction(self, email: str, amount: float) -> dict[str, Any]:
        """Start a hosted-checkout payment.

        Returns:
            ``{authorization_url, access_code, reference}``
        """
        body = await self._request(
            "POST",
            "/transaction/initialize",
            json={"email": email, "amount": amount},
        )
        data = body.get("data") or {}
        logger.info(
            "Paystack transaction initialized",
            extra={"event": "paystack.transaction.initialized", "reference": data.get("reference")},
        )
        return data

    async def verify_transaction(self, reference: str) -> dict[str, Any]:
        """Verify a transaction by reference and return the transaction record."""
        body = await self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data") or {}
        logger.info(
            "Paystack transaction verified",
            extra={
                "event": "paystack.transaction.verified",
                "reference": reference,
                "status": data.get("status"),
            },
        )
        return data

    async def fetch_transaction(self, transaction_id: str) -> dict[str, Any]:
        """Fetch one transaction by Paystack id."""
        body = await self._request("GET", f"/transaction/{transaction_id}")
        return body.get("data") or {}

    async def list_transactions(
        self,
        *,
        per_page: int = 50,
        page: int = 1,
        customer: Optional[str] = None,
        status: Optional[str] = None,
        from_: Optional[str] = None,
        to: Optional[str] = None,
    ) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        """List transactions.

        Returns:
            (transactions, pagination meta)
        """
        params: dict[str, Any] = {"perPage": per_page, "page": page}
        if customer:
            params["customer"] = customer
        if status:
            params["status"] = status
        if from_:
            params["from"] = from_
        if to:
            params["to"] = to

        body = await self._request("GET", "/transaction", params=params)
        return body.get("data") or [], body.get("meta") or {}

    async def fetch_customer(self, email_or_code: str) -> dict[str, Any]:
        """Fetch a Paystack customer by email or customer code."""
        body = await self._request("GET", f"/customer/{email_or_code}")
        return body.get("data") or {}

    async def initiate_transfer(self, request: TransferRequest) -> dict[str, Any]:
        """Initiate an outbound transfer to a recipient code."""
        payload = request.to_gateway_payload()
        body = await self._request("POST", "/transfer", json=payload)
        data = body.get("data") or {}
        logger.info(
            "Paystack transfer initiated",
            extra={
                "event": "paystack.transfer.initiated",
                "reference": payload["reference"],
                "status": data.get("status"),
            },
        )
        return data


# Global client instance (singleton)
_paystack_client: Optional[PaystackClient] = None


def get_paystack_client() -> PaystackClient:
    """Get global Paystack client instance (singleton).

    Raises:
        ValueError: If PAYSTACK_SECRET_KEY is not configured
    """
    global _paystack_client
    if _paystack_client is None:
        _paystack_client = PaystackClient.from_env()
    return _paystack_client
