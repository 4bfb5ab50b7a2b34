"""WebhookReconciler: idempotent replay, order independence, partial failure."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from netpass_api.billing.entities import as_utc
from netpass_api.billing.errors import StoreError, ValidationError
from netpass_api.billing.reconciler import EventKind, WebhookReconciler, classify
from netpass_api.billing.webhook_dedup import PROVIDER_PAYSTACK, get_dedup_status, mark_dedup_failed

EMAIL = "ada@hotspot.ng"
T1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _step_failures(caplog) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.getMessage() == "reconcile.step_failed"]


def test_classify_known_and_unknown_kinds():
    assert classify("charge.success") is EventKind.PAYMENT_SUCCEEDED
    assert classify("transfer.reversed") is EventKind.TRANSFER_REVERSED
    assert classify("subscription.create") is None


def test_successful_payment_applies_all_three_writes(reconciler: WebhookReconciler, store, make_charge):
    outcome = reconciler.dispatch("charge.success", make_charge(), "hash-1")

    assert outcome.status == "processed"
    assert outcome.failed_steps == []
    assert outcome.subscription_updated is True
    assert outcome.expires_on == T1 + timedelta(days=1)

    assert store.get_customer(EMAIL) is not None
    assert len(store.list_transactions(EMAIL)) == 1
    subscription = store.get_active_subscription(EMAIL)
    assert as_utc(subscription.expires_on) == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_T100") == "done"


def test_replayed_event_is_a_no_op(reconciler: WebhookReconciler, store, make_charge):
    reconciler.dispatch("charge.success", make_charge())
    outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.status == "already_processed"
    assert len(store.list_transactions(EMAIL)) == 1


def test_reclaimed_event_does_not_duplicate_ledger(reconciler: WebhookReconciler, store, make_charge):
    reconciler.dispatch("charge.success", make_charge())
    mark_dedup_failed(store.session, PROVIDER_PAYSTACK, "ref_T100")

    outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.status == "processed"
    assert outcome.subscription_updated is False
    assert len(store.list_transactions(EMAIL)) == 1


@pytest.mark.parametrize("order", [("T1", "T2"), ("T2", "T1")])
def test_out_of_order_delivery_converges_on_latest_payment(
    reconciler: WebhookReconciler, store, make_charge, order
):
    events = {
        "T1": make_charge(reference="T1", amount=500, paid_at="2024-01-01T00:00:00Z"),
        "T2": make_charge(reference="T2", amount=11000, paid_at="2024-01-10T00:00:00Z"),
    }

    for reference in order:
        reconciler.dispatch("charge.success", events[reference])

    subscription = store.get_active_subscription(EMAIL)
    assert subscription.reference == "T2"
    assert as_utc(subscription.paid_on) == datetime(2024, 1, 10, tzinfo=timezone.utc)
    assert as_utc(subscription.expires_on) == datetime(2024, 2, 9, tzinfo=timezone.utc)
    assert len(store.list_transactions(EMAIL)) == 2


def test_partial_failure_alerts_and_leaves_dedup_failed(
    reconciler: WebhookReconciler, store, make_charge, caplog
):
    caplog.set_level(logging.INFO)
    boom = StoreError("upsert_active_subscription failed: OperationalError", operation="upsert_active_subscription")

    with patch.object(store, "upsert_active_subscription", side_effect=boom):
        outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.status == "partial_failure"
    assert outcome.failed_steps == ["upsert_active_subscription"]
    # earlier steps still ran
    assert store.get_customer(EMAIL) is not None
    assert len(store.list_transactions(EMAIL)) == 1
    assert store.get_active_subscription(EMAIL) is None
    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_T100") == "failed"

    alerts = _step_failures(caplog)
    assert len(alerts) == 1
    assert alerts[0].levelno == logging.ERROR
    assert alerts[0].alert is True
    assert alerts[0].step == "upsert_active_subscription"
    assert not any(r.getMessage() == "payment.success" for r in caplog.records)


def test_redelivery_after_partial_failure_completes(reconciler: WebhookReconciler, store, make_charge):
    boom = StoreError("down", operation="upsert_active_subscription")
    with patch.object(store, "upsert_active_subscription", side_effect=boom):
        reconciler.dispatch("charge.success", make_charge())

    outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.status == "processed"
    assert store.get_active_subscription(EMAIL) is not None
    assert len(store.list_transactions(EMAIL)) == 1
    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_T100") == "done"


def test_failing_first_step_does_not_block_later_steps(reconciler: WebhookReconciler, store, make_charge):
    boom = StoreError("down", operation="upsert_customer")
    with patch.object(store, "upsert_customer", side_effect=boom):
        outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.failed_steps == ["upsert_customer"]
    assert len(store.list_transactions(EMAIL)) == 1
    assert store.get_active_subscription(EMAIL) is not None


def test_unavailable_dedup_gate_does_not_block_processing(reconciler: WebhookReconciler, store, make_charge):
    boom = StoreError("dedup gate failed", operation="try_acquire_dedup")
    with patch("netpass_api.billing.reconciler.try_acquire_dedup", side_effect=boom):
        outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.status == "processed"
    assert len(store.list_transactions(EMAIL)) == 1



def test_unexpected_error_after_claim_is_contained_and_gate_released(
    reconciler: WebhookReconciler, store, make_charge, caplog
):
    caplog.set_level(logging.INFO)

    with patch("netpass_api.billing.reconciler.compute_expiry", side_effect=RuntimeError("tier table corrupt")):
        outcome = reconciler.dispatch("charge.success", make_charge())

    assert outcome.status == "partial_failure"
    assert outcome.failed_steps == ["reconcile"]
    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_T100") == "failed"
    alerts = _step_failures(caplog)
    assert [a.step for a in alerts] == ["reconcile"]

    redelivered = reconciler.dispatch("charge.success", make_charge())

    assert redelivered.status == "processed"
    assert store.get_active_subscription(EMAIL) is not None
    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_T100") == "done"


def test_payment_with_no_room_for_a_window_is_rejected_before_the_gate(
    reconciler: WebhookReconciler, store, make_charge
):
    with pytest.raises(ValidationError):
        reconciler.dispatch("charge.success", make_charge(paid_at="9999-12-31T12:00:00Z"))

    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_T100") is None
    assert store.get_customer(EMAIL) is None

def test_unmatched_amount_gets_one_day_and_is_reported(
    reconciler: WebhookReconciler, store, make_charge, caplog
):
    caplog.set_level(logging.INFO)

    outcome = reconciler.dispatch("charge.success", make_charge(amount=999))

    assert outcome.expires_on == T1 + timedelta(days=1)
    assert any(r.getMessage() == "payment.unmatched_amount" for r in caplog.records)


def test_malformed_payment_raises_before_any_write(reconciler: WebhookReconciler, store, make_charge):
    data = make_charge(reference="BAD1", customer={})

    with pytest.raises(ValidationError):
        reconciler.dispatch("charge.success", data)

    assert get_dedup_status(store.session, PROVIDER_PAYSTACK, "ref_BAD1") is None
    assert store.find_transaction_by_reference("BAD1") is None


@pytest.mark.parametrize("kind", ["charge.failed", "transfer.success", "transfer.failed", "transfer.reversed"])
def test_notification_events_are_recorded_without_writes(
    reconciler: WebhookReconciler, store, make_charge, kind
):
    outcome = reconciler.dispatch(kind, make_charge(status="failed", transfer_code="TRF_1"))

    assert outcome.status == "recorded"
    assert outcome.event == kind
    assert store.get_customer(EMAIL) is None
    assert store.get_active_subscription(EMAIL) is None


def test_unknown_event_is_ignored(reconciler: WebhookReconciler, store, caplog):
    caplog.set_level(logging.INFO)

    outcome = reconciler.dispatch("subscription.create", {"subscription_code": "SUB_1"})

    assert outcome.status == "ignored"
    assert any(r.getMessage() == "webhook.unhandled" for r in caplog.records)
