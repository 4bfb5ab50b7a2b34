"""Webhook dedup gate: claim, duplicate, failure reclaim."""

from unittest.mock import MagicMock

import pytest

from netpass_api.billing.errors import StoreError
from netpass_api.billing.webhook_dedup import (
    PROVIDER_PAYSTACK,
    get_dedup_status,
    mark_dedup_done,
    mark_dedup_failed,
    payment_dedup_key,
    try_acquire_dedup,
)


def test_payment_dedup_key_is_the_reference():
    assert payment_dedup_key("T100") == "ref_T100"

    with pytest.raises(ValueError):
        payment_dedup_key("")


def test_first_claim_wins_and_duplicates_are_rejected(db_session):
    assert try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T100", "hash-1") is True
    assert get_dedup_status(db_session, PROVIDER_PAYSTACK, "ref_T100") == "processing"

    # concurrent duplicate while the first handler is still processing
    assert try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T100", "hash-1") is False

    mark_dedup_done(db_session, PROVIDER_PAYSTACK, "ref_T100")
    assert get_dedup_status(db_session, PROVIDER_PAYSTACK, "ref_T100") == "done"
    assert try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T100") is False


def test_failed_claim_is_reclaimed_once(db_session):
    try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T200")
    mark_dedup_failed(db_session, PROVIDER_PAYSTACK, "ref_T200")

    assert try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T200") is True
    assert get_dedup_status(db_session, PROVIDER_PAYSTACK, "ref_T200") == "processing"
    assert try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T200") is False


def test_keys_are_scoped_per_provider(db_session):
    assert try_acquire_dedup(db_session, PROVIDER_PAYSTACK, "ref_T300") is True
    assert try_acquire_dedup(db_session, "other", "ref_T300") is True


def test_unknown_key_has_no_status(db_session):
    assert get_dedup_status(db_session, PROVIDER_PAYSTACK, "ref_missing") is None


def test_unsupported_dialect_is_a_store_error():
    session = MagicMock()
    session.get_bind.return_value.dialect.name = "mysql"

    with pytest.raises(StoreError) as exc_info:
        try_acquire_dedup(session, PROVIDER_PAYSTACK, "ref_T400")

    assert exc_info.value.operation == "try_acquire_dedup"
    session.execute.assert_not_called()
