"""Gateway client against httpx.MockTransport: classification, retries, response union."""

import base64

import httpx
import orjson
import pytest

from storefront.core.exceptions import (
    AuthenticationError,
    GatewayRejectedError,
    TransientGatewayError,
    UnknownGatewayError,
)
from storefront.models.order import Address, Customer, LineItem
from storefront.services.gateway import (
    ApprovedTransaction,
    GatewayClient,
    GatewayTransactionRequest,
    PendingTransaction,
    UnrecognizedTransaction,
)

BASE_URL = "https://gateway.test/api/user"


class Recorder:
    """MockTransport handler replaying scripted responses in order (last one repeats)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


def _client(handler, public_key="pk_test", secret_key="sk_test", max_attempts=3) -> GatewayClient:
    return GatewayClient(
        BASE_URL,
        public_key,
        secret_key,
        timeout=5,
        max_attempts=max_attempts,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def _request(payment_method="PIX", **overrides) -> GatewayTransactionRequest:
    data = dict(
        amount_cents=5000,
        payment_method=payment_method,
        order_number="ORD-1700000000000-ABC123",
        description="Order ORD-1700000000000-ABC123",
        items=[LineItem(product_id="sku-shirt", name="T-shirt", quantity=2, unit_price_cents=2500)],
        customer=Customer(name="Maria Silva", email="maria@example.com", document="12345678900"),
        shipping_address=Address(street="Rua A", number="1", city="Sao Paulo", state="SP", zip_code="01001000"),
    )
    data.update(overrides)
    return GatewayTransactionRequest(**data)


def _ok(data: dict, envelope: bool = True) -> httpx.Response:
    body = {"status": 200, "message": "ok", "data": data} if envelope else data
    return httpx.Response(200, json=body)


PIX_DATA = {
    "id": "tx_123",
    "status": "pending",
    "amount": 5000,
    "paymentMethod": "PIX",
    "pix": {"qrCode": "000201QR", "copyPaste": "000201COPY"},
}


async def test_create_pix_transaction_sends_expected_request():
    rec = Recorder(_ok(PIX_DATA))
    client = _client(rec)
    txn = await client.create_transaction(_request())
    await client.aclose()

    assert isinstance(txn, PendingTransaction)
    assert txn.id == "tx_123"
    assert txn.pix.qr_code == "000201QR"
    assert txn.pix.copy_paste == "000201COPY"
    assert txn.raw["id"] == "tx_123"

    sent = rec.requests[0]
    assert sent.method == "POST"
    assert sent.url == httpx.URL(f"{BASE_URL}/transactions")
    assert sent.headers["Idempotency-Key"] == "ORD-1700000000000-ABC123"
    expected_auth = base64.b64encode(b"pk_test:sk_test").decode()
    assert sent.headers["Authorization"] == f"Basic {expected_auth}"
    body = orjson.loads(sent.content)
    assert body["amount"] == 5000
    assert body["paymentMethod"] == "PIX"
    assert body["pix"] == {"expiresInDays": 1}
    assert body["metadata"]["orderId"] == "ORD-1700000000000-ABC123"
    assert body["items"][0] == {
        "title": "T-shirt",
        "unitPrice": 2500,
        "quantity": 2,
        "tangible": True,
        "externalRef": "sku-shirt",
    }
    assert body["customer"]["document"] == {"number": "12345678900", "type": "CPF"}
    assert "card" not in body


async def test_card_request_carries_token_and_installments():
    rec = Recorder(_ok({"id": "tx_9", "status": "approved"}, envelope=False))
    client = _client(rec)
    txn = await client.create_transaction(
        _request("CREDIT_CARD", card_token="card_abc", installments=3)
    )
    assert isinstance(txn, ApprovedTransaction)
    body = orjson.loads(rec.requests[0].content)
    assert body["card"] == {"token": "card_abc"}
    assert body["installments"] == 3
    assert "pix" not in body


async def test_unknown_status_kept_as_unrecognized():
    rec = Recorder(_ok({"id": 77, "status": "chargeback", "reason": "fraud"}))
    txn = await _client(rec).get_transaction_status("77")
    assert isinstance(txn, UnrecognizedTransaction)
    assert txn.id == "77"
    assert txn.status == "chargeback"
    assert txn.raw["reason"] == "fraud"


@pytest.mark.parametrize("code", [401, 403])
async def test_auth_failure_is_fatal_and_not_retried(code):
    rec = Recorder(httpx.Response(code, json={"message": "bad credentials"}))
    with pytest.raises(AuthenticationError):
        await _client(rec).create_transaction(_request())
    assert len(rec.requests) == 1


async def test_missing_credentials_never_calls_gateway():
    rec = Recorder(_ok(PIX_DATA))
    with pytest.raises(AuthenticationError):
        await _client(rec, public_key="", secret_key="").create_transaction(_request())
    assert rec.requests == []


async def test_transient_errors_retried_until_success():
    rec = Recorder(
        httpx.Response(503, json={"message": "unavailable"}),
        httpx.ConnectError("connection refused"),
        _ok(PIX_DATA),
    )
    txn = await _client(rec).create_transaction(_request())
    assert txn.id == "tx_123"
    assert len(rec.requests) == 3


async def test_transient_errors_give_up_after_max_attempts():
    rec = Recorder(httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(TransientGatewayError) as exc:
        await _client(rec, max_attempts=3).create_transaction(_request())
    assert exc.value.http_status == 500
    assert len(rec.requests) == 3


async def test_rate_limit_and_timeout_are_transient():
    rec = Recorder(httpx.Response(429), httpx.ReadTimeout("slow"), _ok(PIX_DATA))
    txn = await _client(rec).get_transaction_status("tx_123")
    assert txn.status == "pending"
    assert len(rec.requests) == 3


async def test_poll_without_retry_is_single_call():
    rec = Recorder(httpx.Response(502))
    with pytest.raises(TransientGatewayError):
        await _client(rec).get_transaction_status("tx_123", retry=False)
    assert len(rec.requests) == 1


async def test_client_error_rejected_without_retry():
    rec = Recorder(httpx.Response(400, json={"message": "invalid document"}))
    with pytest.raises(GatewayRejectedError) as exc:
        await _client(rec).create_transaction(_request())
    assert exc.value.message == "invalid document"
    assert len(rec.requests) == 1


async def test_envelope_error_status_rejected():
    rec = Recorder(httpx.Response(200, json={"status": 422, "message": "amount too low"}))
    with pytest.raises(GatewayRejectedError):
        await _client(rec).create_transaction(_request())


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json={"status": 200, "data": {"status": "pending"}}),
    ],
)
async def test_unparseable_body_is_unknown(response):
    with pytest.raises(UnknownGatewayError):
        await _client(Recorder(response)).create_transaction(_request())


async def test_refund_posts_amount():
    rec = Recorder(_ok({"id": "tx_123", "status": "refunded"}))
    txn = await _client(rec).refund_transaction("tx_123", 1000)
    assert txn.status == "refunded"
    assert rec.requests[0].url.path.endswith("/transactions/tx_123/refund")
    assert orjson.loads(rec.requests[0].content) == {"amount": 1000}
