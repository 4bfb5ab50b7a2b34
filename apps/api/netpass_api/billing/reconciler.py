"""Webhook reconciler: applies gateway events to the record store.

Transitions by event kind:

  charge.success   → dedup gate on the payment reference, then
                       1. upsert Customer(email)
                       2. insert Transaction unless the reference is already in the ledger
                       3. upsert ActiveSubscription (only if paid_on is newer)
  charge.failed    → metric only; no ledger or entitlement change
  transfer.*       → metric only (outbound payouts, not subscriber-facing)
  anything else    → logged as unhandled

Partial failure: the three writes are independent units of work. Each step
is caught on its own, reported through reconcile.step_failed (alert) and
recorded on the outcome; the remaining steps still run. The dedup record is
then left 'failed' so a redelivery can reclaim it, and re-running is safe
because every step is idempotent. The reconciler never raises to its caller.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from netpass_api.billing.entities import (
    CustomerRecord,
    PaymentEvent,
    SubscriptionRecord,
    TransactionRecord,
)
from netpass_api.billing.errors import StoreError
from netpass_api.billing.expiry import PriceTier, compute_expiry, match_tier
from netpass_api.billing.store import RecordStore
from netpass_api.billing.webhook_dedup import (
    PROVIDER_PAYSTACK,
    mark_dedup_done,
    mark_dedup_failed,
    payment_dedup_key,
    try_acquire_dedup,
)
from netpass_api.context import event_kind_var, reference_var
from netpass_api.observability.metrics import (
    log_payment_failed,
    log_payment_success,
    log_reconcile_duplicate,
    log_reconcile_step_failed,
    log_transfer_event,
    log_unmatched_amount,
    log_webhook_unhandled,
)
from netpass_api.utils.sanitize import sanitize_str

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Gateway event kinds the reconciler knows about."""

    PAYMENT_SUCCEEDED = "charge.success"
    PAYMENT_FAILED = "charge.failed"
    TRANSFER_SUCCEEDED = "transfer.success"
    TRANSFER_FAILED = "transfer.failed"
    TRANSFER_REVERSED = "transfer.reversed"


_TRANSFER_KINDS = {
    EventKind.TRANSFER_SUCCEEDED,
    EventKind.TRANSFER_FAILED,
    EventKind.TRANSFER_REVERSED,
}


def classify(kind: str) -> Optional[EventKind]:
    """Map a raw event name to EventKind (None when unrecognized)."""
    try:
        return EventKind(kind)
    except ValueError:
        return None


class ReconcileOutcome(BaseModel):
    """Result of reconciling one gateway event.

    status:
      processed         → all steps applied
      already_processed → duplicate delivery, nothing written
      partial_failure   → at least one step failed (see failed_steps)
      recorded          → log/metric-only event (charge.failed, transfer.*)
      ignored           → unrecognized event kind
    """

    status: str
    event: str
    reference: Optional[str] = None
    email: Optional[str] = None
    expires_on: Optional[datetime] = None
    subscription_updated: Optional[bool] = None
    failed_steps: list[str] = Field(default_factory=list)


class WebhookReconciler:
    """Reconciles gateway events against an injected RecordStore."""

    def __init__(self, store: RecordStore, provider: str = PROVIDER_PAYSTACK):
        self.store = store
        self.provider = provider

    def dispatch(
        self,
        kind: str,
        data: Any,
        request_hash: Optional[str] = None,
    ) -> ReconcileOutcome:
        """Route one webhook event to its transition.

        Raises:
            ValidationError: If a charge.success payload is malformed. Parsing
                happens before the dedup gate, so nothing has been written.
        """
        if classify(kind) is EventKind.PAYMENT_SUCCEEDED:
            return self.handle_payment_succeeded(PaymentEvent.from_gateway(data), request_hash)
        return self.handle_notification(kind, data if isinstance(data, dict) else {})

    # ------------------------------------------------------------------
    # payment succeeded
    # ------------------------------------------------------------------

    def handle_payment_succeeded(
        self,
        payment: PaymentEvent,
        request_hash: Optional[str] = None,
    ) -> ReconcileOutcome:
        """Apply a successful payment. Safe to call repeatedly for the same reference.

        Once the gate is claimed, nothing escapes: an unexpected error is
        reported as a failed ``reconcile`` step and the gate is left 'failed'
        so a redelivery or a verify call can reclaim it.
        """
        event_kind_var.set(EventKind.PAYMENT_SUCCEEDED.value)
        reference_var.set(payment.reference)

        dedup_key = payment_dedup_key(payment.reference)
        gate_held = self._acquire(dedup_key, request_hash)
        if gate_held is False:
            log_reconcile_duplicate(payment.reference)
            return ReconcileOutcome(
                status="already_processed",
                event=EventKind.PAYMENT_SUCCEEDED.value,
                reference=payment.reference,
                email=payment.email,
            )

        try:
            outcome, tier = self._apply_payment(payment)
        except Exception as exc:
            outcome, tier = self._aborted(payment, exc), None

        if outcome.failed_steps:
            outcome.status = "partial_failure"
            if gate_held:
                self._release(dedup_key, mark_dedup_failed)
            return outcome

        if gate_held:
            self._release(dedup_key, mark_dedup_done)

        log_payment_success(
            email=payment.email,
            amount=str(payment.amount),
            plan=tier.plan if tier else None,
            currency=payment.currency,
        )
        return outcome

    def _apply_payment(self, payment: PaymentEvent) -> tuple[ReconcileOutcome, Optional[PriceTier]]:
        tier = match_tier(payment.amount)
        if tier is None:
            log_unmatched_amount(str(payment.amount), payment.reference)
        expires_on = compute_expiry(payment.amount, payment.paid_at)

        outcome = ReconcileOutcome(
            status="processed",
            event=EventKind.PAYMENT_SUCCEEDED.value,
            reference=payment.reference,
            email=payment.email,
            expires_on=expires_on,
        )

        self._step(
            outcome,
            "upsert_customer",
            lambda: self.store.upsert_customer(CustomerRecord.build(email=payment.email)),
        )
        self._step(
            outcome,
            "insert_transaction",
            lambda: self._append_ledger(payment, expires_on),
        )
        result = self._step(
            outcome,
            "upsert_active_subscription",
            lambda: self.store.upsert_active_subscription(
                SubscriptionRecord.build(
                    email=payment.email,
                    paid_on=payment.paid_at,
                    expires_on=expires_on,
                    service=payment.service,
                    reference=payment.reference,
                )
            ),
        )
        if result is not None:
            _, outcome.subscription_updated = result
        return outcome, tier

    def _aborted(self, payment: PaymentEvent, exc: Exception) -> ReconcileOutcome:
        self.store.session.rollback()
        log_reconcile_step_failed(
            step="reconcile",
            reference=payment.reference,
            error_type=type(exc).__name__,
            error_msg=sanitize_str(str(exc)),
        )
        logger.error("RECONCILE_ABORTED", extra={"reference": payment.reference}, exc_info=True)
        return ReconcileOutcome(
            status="partial_failure",
            event=EventKind.PAYMENT_SUCCEEDED.value,
            reference=payment.reference,
            email=payment.email,
            failed_steps=["reconcile"],
        )

    def _append_ledger(self, payment: PaymentEvent, expires_on: datetime) -> bool:
        """Insert the ledger row unless this reference was already recorded."""
        if self.store.find_transaction_by_reference(payment.reference) is not None:
            logger.info(
                "LEDGER_ENTRY_EXISTS",
                extra={"reference": payment.reference},
            )
            return False

        self.store.insert_transaction(
            TransactionRecord.build(
                email=payment.email,
                reference=payment.reference,
                paid_on=payment.paid_at,
                expires_on=expires_on,
                service=payment.service,
                amount=payment.amount,
                currency=payment.currency,
            )
        )
        return True

    # ------------------------------------------------------------------
    # notification-only events
    # ------------------------------------------------------------------

    def handle_notification(self, kind: str, data: dict[str, Any]) -> ReconcileOutcome:
        """Acknowledge an event that never mutates subscription state."""
        event_kind_var.set(kind)
        reference = data.get("reference") if isinstance(data, dict) else None
        if reference:
            reference_var.set(str(reference))

        classified = classify(kind)

        if classified is EventKind.PAYMENT_FAILED:
            customer = data.get("customer") or {}
            log_payment_failed(
                email=customer.get("email") if isinstance(customer, dict) else None,
                amount=str(data["amount"]) if data.get("amount") is not None else None,
                gateway_response=data.get("gateway_response"),
            )
            return ReconcileOutcome(status="recorded", event=kind, reference=reference)

        if classified in _TRANSFER_KINDS:
            log_transfer_event(
                kind,
                transfer_code=data.get("transfer_code"),
                amount=str(data["amount"]) if data.get("amount") is not None else None,
            )
            return ReconcileOutcome(status="recorded", event=kind, reference=reference)

        log_webhook_unhandled(kind)
        return ReconcileOutcome(status="ignored", event=kind, reference=reference)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _step(self, outcome: ReconcileOutcome, name: str, action: Callable[[], Any]) -> Any:
        try:
            return action()
        except Exception as exc:
            outcome.failed_steps.append(name)
            log_reconcile_step_failed(
                step=name,
                reference=outcome.reference,
                error_type=type(exc).__name__,
                error_msg=sanitize_str(str(exc)),
            )
            if not isinstance(exc, StoreError):
                logger.error("RECONCILE_STEP_UNEXPECTED_ERROR", extra={"step": name}, exc_info=True)
            return None

    def _acquire(self, dedup_key: str, request_hash: Optional[str]) -> Optional[bool]:
        """Claim the dedup gate.

        Returns True/False from the gate, or None when the gate itself is
        unavailable; processing then continues on the strength of the
        ledger reference check and the conditional subscription write.
        """
        try:
            return try_acquire_dedup(self.store.session, self.provider, dedup_key, request_hash)
        except StoreError as exc:
            log_reconcile_step_failed(
                step="dedup_gate",
                reference=reference_var.get() or None,
                error_type=type(exc).__name__,
                error_msg=exc.message,
            )
            return None

    def _release(self, dedup_key: str, mark: Callable[..., None]) -> None:
        try:
            mark(self.store.session, self.provider, dedup_key)
        except StoreError as exc:
            log_reconcile_step_failed(
                step=exc.operation,
                reference=reference_var.get() or None,
                error_type=type(exc).__name__,
                error_msg=exc.message,
            )
