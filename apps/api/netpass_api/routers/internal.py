"""Internal endpoints for out-of-band reconciliation.

WARNING: These endpoints are NOT for public use.
- Protected by the X-Internal-Key secret header (NETPASS_INTERNAL_KEY)
"""

import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status

from netpass_api.billing.store import RecordStore
from netpass_api.config.env import get_internal_key
from netpass_api.routers.deps import get_record_store
from netpass_api.schemas import RebuildResponse, SubscriptionView

router = APIRouter(prefix="/internal", tags=["internal"])
logger = logging.getLogger(__name__)


def require_internal_key(
    x_internal_key: str = Header(..., alias="X-Internal-Key"),
) -> None:
    """Reject the request unless X-Internal-Key matches NETPASS_INTERNAL_KEY."""
    try:
        expected_key = get_internal_key()
    except RuntimeError:
        logger.error("INTERNAL_KEY_NOT_CONFIGURED")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal endpoints are not configured",
        )

    if not secrets.compare_digest(x_internal_key, expected_key):
        logger.warning("INTERNAL_KEY_REJECTED")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal key",
            headers={"WWW-Authenticate": "Header"},
        )


@router.post(
    "/subscriptions/{email}/rebuild",
    response_model=RebuildResponse,
    dependencies=[Depends(require_internal_key)],
)
def rebuild_subscription(
    email: str,
    store: RecordStore = Depends(get_record_store),
) -> RebuildResponse:
    """Recompute the active subscription for ``email`` from the ledger.

    Used after a reconcile.step_failed alert left the projection behind the
    ledger.
    """
    row = store.rebuild_active_subscription(email)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No ledger entries for this email",
        )

    logger.info("SUBSCRIPTION_REBUILD_REQUESTED", extra={"email": email})
    return RebuildResponse(
        data=SubscriptionView.from_row(row),
        message="Subscription rebuilt from ledger",
    )
