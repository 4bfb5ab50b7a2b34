"""Log-based metrics and alerts for subscription billing.

Usage:
    from netpass_api.observability.metrics import log_payment_success, log_reconcile_step_failed

    log_payment_success(email="ada@hotspot.ng", amount="500", plan="daily")
    log_reconcile_step_failed(step="upsert_active_subscription", reference="T123", error_type="StoreError")

Every helper emits one structured record whose ``event`` field is the metric
name; dashboards count/aggregate on it. ``alert=True`` records are routed to
on-call by the log pipeline.

Security:
- Emails are masked by the JSON formatter's sanitizer
- Raw gateway payloads are never passed to these helpers
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Payment Metrics
# ============================================================================


def log_payment_success(
    email: str,
    amount: str,
    plan: Optional[str] = None,
    currency: Optional[str] = None,
) -> None:
    """Log a reconciled successful payment (subscription activated)."""
    logger.info(
        "payment.success",
        extra={
            "event": "payment.success",
            "email": email,
            "amount": amount,
            "plan": plan,
            "currency": currency,
        },
    )


def log_payment_failed(
    email: Optional[str],
    amount: Optional[str],
    gateway_response: Optional[str] = None,
) -> None:
    """Log a failed charge reported by the gateway (no entitlement change)."""
    logger.warning(
        "payment.failed",
        extra={
            "event": "payment.failed",
            "email": email,
            "amount": amount,
            "gateway_response": gateway_response,
        },
    )


def log_unmatched_amount(amount: str, reference: Optional[str]) -> None:
    """Log a payment whose amount matches no price tier (1-day fallback applied)."""
    logger.warning(
        "payment.unmatched_amount",
        extra={
            "event": "payment.unmatched_amount",
            "amount": amount,
            "reference": reference,
        },
    )


# ============================================================================
# Transfer Metrics
# ============================================================================


def log_transfer_event(kind: str, transfer_code: Optional[str], amount: Optional[str]) -> None:
    """Log an outbound transfer outcome (success/failed/reversed)."""
    level = logging.INFO if kind == "transfer.success" else logging.WARNING
    logger.log(
        level,
        kind,
        extra={
            "event": kind,
            "transfer_code": transfer_code,
            "amount": amount,
        },
    )


# ============================================================================
# Webhook / Reconciliation Metrics
# ============================================================================


def log_webhook_unhandled(kind: str) -> None:
    """Log an acknowledged webhook whose event kind has no handler."""
    logger.info(
        "webhook.unhandled",
        extra={"event": "webhook.unhandled", "event_kind": kind},
    )


def log_reconcile_step_failed(
    step: str,
    reference: Optional[str],
    error_type: str,
    error_msg: Optional[str] = None,
) -> None:
    """Alert: one reconciliation step failed after the webhook was acknowledged.

    The ledger and the active-subscription projection may now diverge; the
    projection can be rebuilt via POST /internal/subscriptions/{email}/rebuild.
    """
    logger.error(
        "reconcile.step_failed",
        extra={
            "event": "reconcile.step_failed",
            "alert": True,
            "step": step,
            "reference": reference,
            "error_type": error_type,
            "error_msg": error_msg,
        },
    )


def log_reconcile_duplicate(reference: Optional[str]) -> None:
    """Log a redelivered payment that was skipped by the dedup gate."""
    logger.info(
        "reconcile.duplicate",
        extra={"event": "reconcile.duplicate", "reference": reference},
    )
