"""Typed billing entities: validation at construction time."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from netpass_api.billing.entities import (
    CustomerRecord,
    PaymentEvent,
    SubscriptionRecord,
    TransactionRecord,
)
from netpass_api.billing.errors import ValidationError

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _charge(**overrides) -> dict:
    data = {
        "id": 302961,
        "reference": "T100",
        "amount": 500,
        "currency": "NGN",
        "paid_at": "2024-01-01T00:00:00.000Z",
        "customer": {"email": "ada@hotspot.ng"},
    }
    data.update(overrides)
    return data


class TestCustomerRecord:
    def test_email_is_trimmed_and_lowercased(self):
        record = CustomerRecord.build(email="  Ada@Hotspot.NG ")
        assert record.email == "ada@hotspot.ng"

    def test_invalid_email_raises_billing_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            CustomerRecord.build(email="not-an-email")
        assert exc_info.value.field == "email"

    def test_records_are_immutable(self):
        record = CustomerRecord.build(email="ada@hotspot.ng")
        with pytest.raises(Exception):
            record.email = "eve@hotspot.ng"


class TestWindowRecords:
    def test_naive_timestamps_are_taken_as_utc(self):
        record = SubscriptionRecord.build(
            email="ada@hotspot.ng",
            paid_on=datetime(2024, 1, 1),
            expires_on=datetime(2024, 1, 2),
        )
        assert record.paid_on.tzinfo == timezone.utc
        assert record.service == "internet"

    def test_expires_on_must_be_after_paid_on(self):
        with pytest.raises(ValidationError):
            SubscriptionRecord.build(email="ada@hotspot.ng", paid_on=T0, expires_on=T0)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            TransactionRecord.build(
                email="ada@hotspot.ng",
                paid_on=T0,
                expires_on=T0 + timedelta(days=1),
                amount=Decimal("-1"),
            )
        assert exc_info.value.field == "amount"


class TestPaymentEvent:
    def test_from_gateway_parses_transaction_object(self):
        payment = PaymentEvent.from_gateway(_charge())

        assert payment.reference == "T100"
        assert payment.email == "ada@hotspot.ng"
        assert payment.amount == Decimal("500")
        assert payment.paid_at == T0
        assert payment.currency == "NGN"
        assert payment.service == "internet"
        assert payment.transaction_id == "302961"

    def test_legacy_paid_at_spelling_and_metadata_service(self):
        data = _charge(metadata={"service": "hotspot-premium"})
        data["paidAt"] = data.pop("paid_at")

        payment = PaymentEvent.from_gateway(data)

        assert payment.paid_at == T0
        assert payment.service == "hotspot-premium"

    @pytest.mark.parametrize(
        "data",
        [
            None,
            "charge",
            _charge(customer=None),
            _charge(customer="ada@hotspot.ng"),
            _charge(reference=""),
            _charge(amount=-5),
            _charge(paid_at=None),
            _charge(paid_at="9999-12-31T12:00:00Z"),
            _charge(paid_at="9999-12-31T23:00:00-05:00"),
        ],
    )
    def test_malformed_payloads_raise_validation_error(self, data):
        with pytest.raises(ValidationError):
            PaymentEvent.from_gateway(data)
