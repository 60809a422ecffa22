import os
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Test settings; must be set before storefront.core.config is first used
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "storefront_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("GATEWAY_PUBLIC_KEY", "pk_test")
os.environ.setdefault("GATEWAY_SECRET_KEY", "sk_test")

from storefront.container import Container  # noqa: E402
from storefront.core.config import get_settings  # noqa: E402
from storefront.db.init import init_db  # noqa: E402
from storefront.services.gateway import parse_gateway_transaction  # noqa: E402

WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]
ADMIN_KEY = os.environ["ADMIN_API_KEY"]

VISA = "4111 1111 1111 1111"


def gateway_txn(status: str, txn_id: str = "tx_1", **fields: Any):
    """Build a parsed gateway response the way the client would return it."""
    return parse_gateway_transaction({"id": txn_id, "status": status, **fields})


def pix_txn(status: str = "pending", txn_id: str = "tx_1"):
    return gateway_txn(
        status,
        txn_id,
        paymentMethod="PIX",
        pix={"qrCode": "000201PIXQR", "copyPaste": "000201PIXCOPY", "qrCodeUrl": "https://qr.test/1.png"},
    )


class FakeGateway:
    """In-process gateway: scripted create/status/refund results; exceptions are raised."""

    def __init__(self):
        self.create_result: Any = pix_txn()
        self.status_result: Any = None
        self.refund_result: Any = None
        self.requests: list = []
        self.status_calls: list[tuple[str, bool]] = []
        self.refund_calls: list[tuple[str, int | None]] = []

    async def create_transaction(self, request):
        self.requests.append(request)
        if isinstance(self.create_result, Exception):
            raise self.create_result
        return self.create_result

    async def get_transaction_status(self, external_id: str, retry: bool = True):
        self.status_calls.append((external_id, retry))
        result = self.status_result(external_id) if callable(self.status_result) else self.status_result
        if isinstance(result, Exception):
            raise result
        return result

    async def refund_transaction(self, external_id: str, amount_cents: int | None = None):
        self.refund_calls.append((external_id, amount_cents))
        return self.refund_result or gateway_txn("refunded", external_id)

    async def aclose(self) -> None:
        pass


class RecordingNotifier:
    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send(self, kind, order, transaction=None, extra=None) -> None:
        if self.fail:
            raise RuntimeError("relay down")
        self.sent.append({"kind": kind.value, "order_number": order.order_number, "extra": extra or {}})

    def kinds(self) -> list[str]:
        return [n["kind"] for n in self.sent]


class FakeCart:
    def __init__(self):
        self.cleared: list[str] = []

    async def clear(self, user_id: str) -> None:
        self.cleared.append(user_id)


class StaticCatalog:
    def __init__(self, prices: dict[str, tuple[str, int]] | None = None):
        self.prices = prices if prices is not None else {
            "sku-shirt": ("T-shirt", 2500),
            "sku-mug": ("Mug", 1200),
        }

    async def unit_prices(self, product_ids: list[str]) -> dict[str, tuple[str, int]]:
        return {pid: self.prices[pid] for pid in product_ids if pid in self.prices}


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncMongoMockClient, None]:
    client = AsyncMongoMockClient()
    await init_db(client)
    yield client


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def cart() -> FakeCart:
    return FakeCart()


@pytest.fixture
def catalog() -> StaticCatalog:
    return StaticCatalog()


@pytest_asyncio.fixture
async def container(db, gateway, notifier, cart, catalog) -> AsyncGenerator[Container, None]:
    c = await Container.build(
        get_settings(),
        mongo_client=db,
        gateway=gateway,
        notifier=notifier,
        catalog=catalog,
        cart=cart,
    )
    yield c
    await c.close()


@pytest_asyncio.fixture
async def client(container) -> AsyncGenerator[AsyncClient, None]:
    from storefront.main import app
    app.state.container = container
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.container = None


def checkout_body(payment_method: str = "PIX", **overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "items": [{"product_id": "sku-shirt", "quantity": 2}],
        "address": {
            "street": "Rua das Flores",
            "number": "100",
            "neighborhood": "Centro",
            "city": "Sao Paulo",
            "state": "SP",
            "zip_code": "01001-000",
        },
        "customer": {"name": "Maria Silva", "email": "maria@example.com", "phone": "11999990000"},
        "payment_method": payment_method,
        "installments": 1,
    }
    if payment_method == "CREDIT_CARD":
        body["card"] = {"number": VISA, "holder_name": "MARIA SILVA", "expiry": "12/49", "cvv": "123"}
    body.update(overrides)
    return body
