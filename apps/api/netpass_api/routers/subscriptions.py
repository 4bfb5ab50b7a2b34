"""Portal access check.

Expiry is evaluated here, at read time: a subscription is active iff
``expires_on > now``. Nothing ever deletes or deactivates rows on expiry.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from netpass_api.billing.entities import as_utc
from netpass_api.billing.store import RecordStore
from netpass_api.routers.deps import get_record_store
from netpass_api.schemas import SubscriptionStatusResponse, SubscriptionView

router = APIRouter(prefix="/api/subscription", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.get("/{email}", response_model=SubscriptionStatusResponse)
def get_subscription_status(
    email: str,
    store: RecordStore = Depends(get_record_store),
) -> SubscriptionStatusResponse:
    """Return whether ``email`` currently has internet access."""
    row = store.get_active_subscription(email)
    if row is None:
        return SubscriptionStatusResponse(active=False, message="No active subscription")

    view = SubscriptionView.from_row(row)
    active = as_utc(row.expires_on) > datetime.now(timezone.utc)
    return SubscriptionStatusResponse(
        active=active,
        data=view,
        message="Subscription is active" if active else "Subscription has expired",
    )
