"""Payment endpoints: Paystack pass-through plus verify-and-activate.

Gateway failures propagate as GatewayError and are rendered as 502 Problem
Details by the app-level handler, carrying Paystack's own message. The verify
route is the exception: the portal only ever sees a generic "please retry".
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from netpass_api.billing.entities import PaymentEvent
from netpass_api.billing.errors import GatewayError, ValidationError
from netpass_api.billing.paystack import PaystackClient, TransferRequest
from netpass_api.billing.reconciler import WebhookReconciler
from netpass_api.routers.deps import get_gateway, get_reconciler
from netpass_api.schemas import (
    GatewayResponse,
    PaymentInitializeRequest,
    SubscriptionView,
    TransactionListResponse,
    VerifyResponse,
)

router = APIRouter(prefix="/api", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/payment/initialize", response_model=GatewayResponse)
async def initialize_payment(
    body: PaymentInitializeRequest,
    gateway: PaystackClient = Depends(get_gateway),
) -> GatewayResponse:
    """Start a hosted-checkout payment and return the authorization URL."""
    data = await gateway.initialize_transaction(body.email, body.gateway_amount())
    return GatewayResponse(data=data, message="Payment initialized successfully")


@router.get("/payment/verify/{reference}", response_model=VerifyResponse)
async def verify_payment(
    reference: str,
    gateway: PaystackClient = Depends(get_gateway),
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> VerifyResponse:
    """Verify a payment and, when it succeeded, activate the subscription.

    The successful transaction goes through the same reconciliation path as a
    charge.success webhook, so whichever arrives second is a no-op.
    """
    try:
        data = await gateway.verify_transaction(reference)
    except GatewayError as exc:
        logger.warning(
            "PAYMENT_VERIFY_FAILED",
            extra={"reference": reference, "gateway_status": exc.status_code},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment verification failed, please retry",
        )

    subscription: Optional[SubscriptionView] = None
    if data.get("status") == "success":
        try:
            payment = PaymentEvent.from_gateway(data)
        except ValidationError as exc:
            logger.error(
                "PAYMENT_VERIFY_UNPARSEABLE",
                extra={"reference": reference, "field": exc.field},
            )
        else:
            outcome = reconciler.handle_payment_succeeded(payment)
            row = reconciler.store.get_active_subscription(payment.email)
            if row is not None:
                subscription = SubscriptionView.from_row(row)
            logger.info(
                "PAYMENT_VERIFY_RECONCILED",
                extra={"reference": reference, "status": outcome.status},
            )

    return VerifyResponse(
        data=data,
        message="Payment verification successful",
        subscription=subscription,
    )


@router.get("/transaction/{transaction_id}", response_model=GatewayResponse)
async def get_transaction(
    transaction_id: str,
    gateway: PaystackClient = Depends(get_gateway),
) -> GatewayResponse:
    data = await gateway.fetch_transaction(transaction_id)
    return GatewayResponse(data=data, message="Transaction details retrieved successfully")


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    per_page: int = Query(50, alias="perPage", ge=1),
    page: int = Query(1, ge=1),
    customer: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    gateway: PaystackClient = Depends(get_gateway),
) -> TransactionListResponse:
    data, meta = await gateway.list_transactions(
        per_page=per_page,
        page=page,
        customer=customer,
        status=status_filter,
        from_=from_,
        to=to,
    )
    return TransactionListResponse(
        data=data,
        meta=meta,
        message="Transactions retrieved successfully",
    )


@router.get("/customer/email/{email}", response_model=GatewayResponse)
async def get_customer_by_email(
    email: str,
    gateway: PaystackClient = Depends(get_gateway),
) -> GatewayResponse:
    data = await gateway.fetch_customer(email)
    return GatewayResponse(data=data, message="Customer retrieved successfully")


@router.post("/transfer/initialize", response_model=GatewayResponse)
async def initialize_transfer(
    body: TransferRequest,
    gateway: PaystackClient = Depends(get_gateway),
) -> GatewayResponse:
    """Initiate an outbound transfer (NGN amounts are given in naira)."""
    data = await gateway.initiate_transfer(body)
    return GatewayResponse(data=data, message="Transfer initialized successfully")
