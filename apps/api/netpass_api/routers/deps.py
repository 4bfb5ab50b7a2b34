"""FastAPI dependencies shared by the routers.

Handlers never reach for a global DB handle or gateway: the record store,
reconciler and Paystack client are injected, and tests override them via
``app.dependency_overrides``.
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from netpass_api.billing.paystack import PaystackClient, get_paystack_client
from netpass_api.billing.reconciler import WebhookReconciler
from netpass_api.billing.store import RecordStore
from netpass_api.db.session import get_db


def get_record_store(db: Session = Depends(get_db)) -> RecordStore:
    """RecordStore bound to the request's session."""
    return RecordStore(db)


def get_reconciler(store: RecordStore = Depends(get_record_store)) -> WebhookReconciler:
    """WebhookReconciler over the injected store."""
    return WebhookReconciler(store)


def get_gateway() -> PaystackClient:
    """Paystack client singleton.

    Raises:
        HTTPException: 500 GATEWAY_MISCONFIG when PAYSTACK_SECRET_KEY is missing
    """
    try:
        return get_paystack_client()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error_code": "GATEWAY_MISCONFIG",
                "message": "Payment gateway is not properly configured",
            },
        )
