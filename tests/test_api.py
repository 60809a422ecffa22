"""HTTP surface over ASGITransport with the container's collaborators faked."""

import orjson
import pytest
from conftest import ADMIN_KEY, WEBHOOK_SECRET, checkout_body, gateway_txn

from storefront.core.security import create_session_cookie, sign_webhook_payload
from storefront.deps import SESSION_COOKIE_NAME

pytestmark = pytest.mark.asyncio


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


async def test_request_id_echoed(client):
    r = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


async def test_checkout_pix(client, gateway):
    r = await client.post("/v1/checkout", json=checkout_body("PIX"))
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "awaiting_payment"
    assert data["payment_status"] == "pending"
    assert data["transaction_id"] == "tx_1"
    assert data["pix"]["copy_paste"] == "000201PIXCOPY"
    assert gateway.requests[0].amount_cents == 5000


async def test_checkout_invalid_card_lists_errors(client):
    body = checkout_body("CREDIT_CARD")
    body["card"]["expiry"] = "01/20"
    body["card"]["holder_name"] = ""
    r = await client.post("/v1/checkout", json=body)
    assert r.status_code == 400
    error = r.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert len(error["details"]["errors"]) == 2
    assert "4111" not in r.text


async def test_checkout_declined_is_402(client, gateway):
    gateway.create_result = gateway_txn("declined", "tx_d", message="Card declined")
    r = await client.post("/v1/checkout", json=checkout_body("CREDIT_CARD"))
    assert r.status_code == 402
    error = r.json()["error"]
    assert error["code"] == "PAYMENT_DECLINED"
    assert error["message"] == "Card declined"
    assert error["details"]["order_number"].startswith("ORD-")


async def test_checkout_schema_error_is_422(client):
    r = await client.post("/v1/checkout", json={"items": []})
    assert r.status_code == 422


async def test_webhook_endpoint(client):
    placed = (await client.post("/v1/checkout", json=checkout_body("PIX"))).json()
    body = orjson.dumps(
        {
            "event": "transaction.updated",
            "data": {"id": "tx_1", "status": "approved", "order_id": placed["order_number"], "transaction_id": "tx_1"},
        }
    )
    headers = {"X-Webhook-Signature": sign_webhook_payload(body, WEBHOOK_SECRET), "Content-Type": "application/json"}

    r = await client.post("/v1/webhooks/transactions", content=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["applied"] is True

    r = await client.post("/v1/webhooks/transactions", content=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["applied"] is False

    r = await client.get(f"/v1/orders/{placed['order_number']}")
    assert r.json()["payment_status"] == "approved"


async def test_webhook_bad_signature_is_401(client):
    body = b'{"event": "x", "data": {"status": "approved", "order_id": "ORD-1"}}'
    r = await client.post("/v1/webhooks/transactions", content=body, headers={"X-Webhook-Signature": "00" * 32})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "INVALID_SIGNATURE"

    latin1 = ("é" * 64).encode("latin-1")
    r = await client.post("/v1/webhooks/transactions", content=body, headers={"X-Webhook-Signature": latin1})
    assert r.status_code == 401


async def test_webhook_unknown_order_is_404(client):
    body = orjson.dumps({"event": "x", "data": {"id": "tx_9", "status": "approved", "order_id": "ORD-0-NOPE00"}})
    r = await client.post(
        "/v1/webhooks/transactions",
        content=body,
        headers={"X-Webhook-Signature": sign_webhook_payload(body, WEBHOOK_SECRET)},
    )
    assert r.status_code == 404


async def test_orders_listing_uses_session(client):
    session = {"Cookie": f"{SESSION_COOKIE_NAME}={create_session_cookie({'user_id': 'user-42'})}"}
    await client.post("/v1/checkout", json=checkout_body("PIX"), headers=session)
    await client.post("/v1/checkout", json=checkout_body("PIX"), headers=session)

    r = await client.get("/v1/orders", params={"limit": 1}, headers=session)
    assert r.status_code == 200
    page = r.json()
    assert len(page["items"]) == 1
    assert page["has_more"] is True

    assert (await client.get("/v1/orders")).status_code == 401
    number = page["items"][0]["order_number"]
    assert (await client.get(f"/v1/orders/{number}")).status_code == 404


async def test_tampered_session_rejected(client):
    r = await client.get("/v1/orders", headers={"Cookie": f"{SESSION_COOKIE_NAME}=forged.cookie.value"})
    assert r.status_code == 401


async def test_card_routes(client):
    card = {"number": "5555 5555 5555 4444", "holder_name": "MARIA SILVA", "expiry": "12/49", "cvv": "123"}

    r = await client.post("/v1/cards/validate", json=card)
    assert r.json() == {"valid": True, "errors": [], "brand": "MASTERCARD", "last4": "4444"}

    r = await client.post("/v1/cards/token", json=card)
    token = r.json()
    assert token["token"].startswith("card_")
    assert token["masked"] == "****-****-****-4444"

    r = await client.post("/v1/cards/detect-brand", json={"number": "378282246310005"})
    assert r.json()["brand"] == "AMEX"
    assert r.json()["supported"] is True

    r = await client.post("/v1/cards/installments", json={"amount_cents": 12000, "brand": "VISA"})
    plan = r.json()
    assert plan["max_installments"] == 12
    assert plan["options"][11]["per_installment"] == 10.0


async def test_admin_requires_key(client):
    r = await client.get("/v1/admin/polling")
    assert r.status_code == 403
    r = await client.get("/v1/admin/polling", headers={"X-Admin-Key": "wrong"})
    assert r.status_code == 403
    r = await client.get("/v1/admin/polling", headers={"X-Admin-Key": ADMIN_KEY})
    assert r.status_code == 200
    assert r.json() == {"tracked": []}


async def test_admin_refund(client, gateway, notifier):
    gateway.create_result = gateway_txn("approved", "tx_card")
    placed = (await client.post("/v1/checkout", json=checkout_body("CREDIT_CARD"))).json()

    r = await client.post(
        f"/v1/admin/orders/{placed['order_number']}/refund",
        json={"amount_cents": None},
        headers={"X-Admin-Key": ADMIN_KEY},
    )
    assert r.status_code == 200
    assert r.json()["refunded"] is True
    assert r.json()["order"]["payment_status"] == "refunded"
    assert notifier.kinds()[-1] == "payment_refunded"


async def test_admin_test_webhook_replays(client):
    placed = (await client.post("/v1/checkout", json=checkout_body("PIX"))).json()
    r = await client.get(
        "/v1/admin/webhooks/test",
        params={"order_number": placed["order_number"], "status": "approved"},
        headers={"X-Admin-Key": ADMIN_KEY},
    )
    sample = r.json()
    r = await client.post(
        "/v1/webhooks/transactions",
        content=sample["raw_body"].encode(),
        headers=sample["headers"],
    )
    assert r.status_code == 200
    assert r.json()["applied"] is True


async def test_admin_stop_polling(client, container):
    placed = (await client.post("/v1/checkout", json=checkout_body("PIX"))).json()
    url = f"/v1/admin/polling/{placed['order_number']}/stop"

    r = await client.post(url, headers={"X-Admin-Key": ADMIN_KEY})
    assert r.status_code == 200
    assert r.json() == {"order_number": placed["order_number"], "stopped": True}
    txn = await container.store.find_transaction(placed["transaction_id"])
    assert txn.polling_end_reason == "stopped"
    assert await container.poller.scan() == 0

    r = await client.post(url, headers={"X-Admin-Key": ADMIN_KEY})
    assert r.json()["stopped"] is False

    r = await client.post("/v1/admin/polling/ORD-0-NOPE00/stop", headers={"X-Admin-Key": ADMIN_KEY})
    assert r.status_code == 404


async def test_admin_resend_confirmation(client, notifier):
    placed = (await client.post("/v1/checkout", json=checkout_body("PIX"))).json()
    r = await client.post(
        f"/v1/admin/orders/{placed['order_number']}/resend-confirmation",
        headers={"X-Admin-Key": ADMIN_KEY},
    )
    assert r.status_code == 200
    assert r.json()["sent"] is True
    assert notifier.kinds() == ["payment_pending_pix", "order_confirmation"]
    assert notifier.sent[-1]["order_number"] == placed["order_number"]

    r = await client.post("/v1/admin/orders/ORD-0-NOPE00/resend-confirmation", headers={"X-Admin-Key": ADMIN_KEY})
    assert r.status_code == 404
