from datetime import datetime
from typing import Any, Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field

from storefront.models.order import PaymentMethod

TransactionStatus = Literal["pending", "processing", "approved", "declined", "refunded"]

OPEN_TRANSACTION_STATUSES = ("pending", "processing")

PollingEndReason = Literal["exhausted", "stopped"]


class StoredCard(BaseModel):
    """The only card data allowed at rest: brand, last four digits and our opaque token."""
    brand: str
    last4: str
    token: str


class Transaction(Document):
    order_id: PydanticObjectId
    order_number: str
    external_id: Indexed(str, unique=True)
    amount_cents: int
    status: TransactionStatus = "pending"
    payment_method: PaymentMethod
    installments: int = 1
    card: StoredCard | None = None
    raw_response: dict[str, Any] = Field(default_factory=dict)
    # reconciliation bookkeeping, kept across worker restarts
    poll_attempts: int = 0
    polling_ended_at: datetime | None = None
    polling_end_reason: PollingEndReason | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "transactions"
        indexes = [
            [("status", 1), ("polling_ended_at", 1), ("created_at", 1)],
            [("order_id", 1)],
        ]
