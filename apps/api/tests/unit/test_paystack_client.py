"""Paystack client against httpx.MockTransport (no network)."""

import json

import httpx
import pytest
from pydantic import ValidationError as PydanticValidationError

from netpass_api.billing import paystack
from netpass_api.billing.errors import GatewayError
from netpass_api.billing.paystack import PaystackClient, TransferRequest

BASE_URL = "https://api.paystack.test"


def _client(handler) -> PaystackClient:
    return PaystackClient(
        "sk_test_abc123",
        base_url=BASE_URL,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_initialize_transaction_sends_bearer_auth_and_returns_data():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "access_code": "abc",
                    "reference": "T100",
                },
            },
        )

    data = await _client(handler).initialize_transaction("ada@hotspot.ng", 500)

    assert data["reference"] == "T100"
    assert seen == {
        "method": "POST",
        "path": "/transaction/initialize",
        "auth": "Bearer sk_test_abc123",
        "body": {"email": "ada@hotspot.ng", "amount": 500},
    }


@pytest.mark.asyncio
async def test_non_2xx_carries_gateway_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})

    with pytest.raises(GatewayError) as exc_info:
        await _client(handler).verify_transaction("missing")

    assert exc_info.value.message == "Transaction reference not found"
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_status_false_body_is_a_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": False, "message": "Invalid key"})

    with pytest.raises(GatewayError, match="Invalid key"):
        await _client(handler).fetch_customer("ada@hotspot.ng")


@pytest.mark.asyncio
async def test_unreadable_error_body_falls_back_to_generic_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="<html>upstream down</html>")

    with pytest.raises(GatewayError) as exc_info:
        await _client(handler).fetch_transaction("1")

    assert "HTTP 503" in exc_info.value.message
    assert "<html>" not in exc_info.value.message


@pytest.mark.asyncio
async def test_network_error_is_a_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError) as exc_info:
        await _client(handler).fetch_transaction("1")

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_timeout_is_a_gateway_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GatewayError, match="timed out"):
        await _client(handler).verify_transaction("T100")


@pytest.mark.asyncio
async def test_list_transactions_forwards_filters_and_returns_meta():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(dict(request.url.params))
        return httpx.Response(
            200,
            json={"status": True, "message": "ok", "data": [{"id": 1}], "meta": {"total": 1, "page": 2}},
        )

    data, meta = await _client(handler).list_transactions(
        per_page=10, page=2, status="success", from_="2024-01-01"
    )

    assert data == [{"id": 1}]
    assert meta == {"total": 1, "page": 2}
    assert seen == {"perPage": "10", "page": "2", "status": "success", "from": "2024-01-01"}


@pytest.mark.asyncio
async def test_initiate_transfer_posts_kobo_amount():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": True, "message": "Transfer queued", "data": {"status": "pending"}})

    data = await _client(handler).initiate_transfer(
        TransferRequest(amount=1500, recipient="RCP_gx2wn530m0i3w3m", reference="payout_1")
    )

    assert data == {"status": "pending"}
    assert seen["path"] == "/transfer"
    assert seen["body"] == {
        "source": "balance",
        "amount": 150000,
        "recipient": "RCP_gx2wn530m0i3w3m",
        "reason": "Transfer",
        "currency": "NGN",
        "reference": "payout_1",
    }


def test_transfer_payload_defaults():
    payload = TransferRequest(amount=1550, recipient="RCP_1", currency="USD").to_gateway_payload()

    assert payload["amount"] == 1550
    assert payload["source"] == "balance"
    assert payload["reason"] == "Transfer"
    assert payload["reference"].startswith("transfer_")


@pytest.mark.parametrize(
    "amount,kobo",
    [(19.99, 1999), (1.15, 115), (0.29, 29), ("250.50", 25050), (7, 700)],
)
def test_naira_amounts_are_sent_as_whole_kobo(amount, kobo):
    sent = TransferRequest(amount=amount, recipient="RCP_1").to_gateway_payload()["amount"]

    assert sent == kobo
    assert type(sent) is int


@pytest.mark.parametrize(
    "amount,currency",
    [(10.005, "NGN"), ("0.001", "NGN"), (15.5, "USD")],
)
def test_amounts_finer_than_one_subunit_are_rejected(amount, currency):
    with pytest.raises(PydanticValidationError):
        TransferRequest(amount=amount, recipient="RCP_1", currency=currency)


def test_client_requires_secret_key():
    with pytest.raises(ValueError):
        PaystackClient("")


def test_environment_is_derived_from_key_prefix():
    assert PaystackClient("sk_test_x").env == "sandbox"
    assert PaystackClient("sk_live_x").env == "live"


def test_get_paystack_client_is_a_lazy_singleton(monkeypatch):
    monkeypatch.setattr(paystack, "_paystack_client", None)
    monkeypatch.setenv("PAYSTACK_SECRET_KEY", "sk_test_singleton")
    monkeypatch.setenv("PAYSTACK_BASE_URL", "https://api.paystack.test/")

    first = paystack.get_paystack_client()

    assert first is paystack.get_paystack_client()
    assert first.base_url == "https://api.paystack.test"


def test_get_paystack_client_without_secret_raises(monkeypatch):
    monkeypatch.setattr(paystack, "_paystack_client", None)
    monkeypatch.delenv("PAYSTACK_SECRET_KEY", raising=False)

    with pytest.raises(ValueError):
        paystack.get_paystack_client()
