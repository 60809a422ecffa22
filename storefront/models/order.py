from datetime import datetime
from typing import Literal

from beanie import Document, Indexed
from pydantic import BaseModel, Field

PaymentMethod = Literal["PIX", "BOLETO", "CREDIT_CARD"]
OrderStatus = Literal["pending", "awaiting_payment", "processing", "shipped", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "approved", "declined", "refunded"]

TERMINAL_PAYMENT_STATUSES = frozenset({"approved", "declined", "refunded"})


class LineItem(BaseModel):
    """Immutable price snapshot taken at checkout, not a link to the catalog."""
    product_id: str
    name: str = ""
    quantity: int = Field(gt=0)
    unit_price_cents: int = Field(ge=0)

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


class Address(BaseModel):
    street: str
    number: str
    complement: str | None = None
    neighborhood: str | None = None
    city: str
    state: str
    zip_code: str


class Customer(BaseModel):
    name: str
    email: str
    phone: str | None = None
    document: str | None = None  # CPF


class StatusChange(BaseModel):
    order_status: OrderStatus
    payment_status: PaymentStatus
    source: str  # checkout, webhook, poller, admin
    note: str | None = None
    at: datetime = Field(default_factory=datetime.utcnow)


class Order(Document):
    order_number: Indexed(str, unique=True)
    user_id: str | None = None  # None for guest checkout
    customer: Customer | None = None
    items: list[LineItem]
    shipping_address: Address
    payment_method: PaymentMethod
    installments: int = 1
    total_cents: int
    currency: str = "BRL"
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    transaction_id: str | None = None  # gateway id of the active transaction
    status_history: list[StatusChange] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "orders"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("payment_status", 1)],
        ]

    @property
    def is_settled(self) -> bool:
        return self.payment_status in TERMINAL_PAYMENT_STATUSES
