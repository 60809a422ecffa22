"""Order and Transaction persistence with compare-and-set status transitions.

Every status change is one find_one_and_update whose filter holds the allowed
source states and excludes the target state. Of any number of concurrent callers
exactly one sees ``applied=True``; the others get the current document back.
"""

import secrets
import string
import time
from datetime import datetime
from typing import Any, NamedTuple

from beanie import PydanticObjectId
from beanie.odm.queries.update import UpdateResponse
from beanie.operators import NE, Eq, In, Inc, Or, Push, Set
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from storefront.core.exceptions import NotFoundError, ValidationError
from storefront.core.logging import get_logger, redact
from storefront.models.order import (
    Address,
    Customer,
    LineItem,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StatusChange,
)
from storefront.models.transaction import (
    OPEN_TRANSACTION_STATUSES,
    PollingEndReason,
    StoredCard,
    Transaction,
    TransactionStatus,
)

log = get_logger(__name__)

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits

# target payment status -> payment statuses it may be reached from
ORDER_TRANSITION_SOURCES: dict[str, tuple[str, ...]] = {
    "pending": ("pending",),
    "approved": ("pending",),
    "declined": ("pending",),
    "refunded": ("pending", "approved"),
}

TRANSACTION_TRANSITION_SOURCES: dict[str, tuple[str, ...]] = {
    "pending": (),
    "processing": ("pending",),
    "approved": ("pending", "processing"),
    "declined": ("pending", "processing"),
    "refunded": ("pending", "processing", "approved"),
}


class OrderDraft(BaseModel):
    user_id: str | None = None
    customer: Customer | None = None
    items: list[LineItem]
    shipping_address: Address
    payment_method: PaymentMethod
    installments: int = 1
    currency: str = "BRL"

    @property
    def total_cents(self) -> int:
        return sum(item.subtotal_cents for item in self.items)


class TransactionData(BaseModel):
    external_id: str
    status: TransactionStatus
    amount_cents: int
    payment_method: PaymentMethod
    installments: int = 1
    card: StoredCard | None = None
    raw_response: dict[str, Any] = {}


class Transition(NamedTuple):
    document: Any
    applied: bool


def generate_order_number() -> str:
    """ORD-<epoch millis>-<6 random chars>."""
    suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(6))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


class OrderStore:
    async def create_order(self, draft: OrderDraft) -> Order:
        if not draft.items:
            raise ValidationError("Cart is empty")
        for _ in range(3):
            order = Order(
                order_number=generate_order_number(),
                user_id=draft.user_id,
                customer=draft.customer,
                items=draft.items,
                shipping_address=draft.shipping_address,
                payment_method=draft.payment_method,
                installments=draft.installments,
                total_cents=draft.total_cents,
                currency=draft.currency,
                status_history=[
                    StatusChange(order_status="pending", payment_status="pending", source="checkout", note="created")
                ],
            )
            try:
                await order.insert()
            except DuplicateKeyError:
                continue
            log.info("order_created", order_number=order.order_number, total_cents=order.total_cents)
            return order
        raise RuntimeError("Could not allocate a unique order number")

    async def get_order(self, order_id: PydanticObjectId) -> Order | None:
        return await Order.get(order_id)

    async def find_order_by_number(self, order_number: str) -> Order | None:
        return await Order.find_one(Order.order_number == order_number)

    async def list_orders_for_user(self, user_id: str, limit: int = 50, offset: int = 0) -> list[Order]:
        return (
            await Order.find(Order.user_id == user_id)
            .sort(-Order.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )

    async def create_transaction(self, order_id: PydanticObjectId, data: TransactionData) -> Transaction:
        order = await Order.get(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if data.amount_cents != order.total_cents:
            raise ValidationError(
                "Transaction amount does not match order total",
                errors=[f"expected {order.total_cents}, got {data.amount_cents}"],
            )
        txn = Transaction(
            order_id=order.id,
            order_number=order.order_number,
            external_id=data.external_id,
            amount_cents=data.amount_cents,
            status=data.status,
            payment_method=data.payment_method,
            installments=data.installments,
            card=data.card,
            raw_response=redact(data.raw_response),
        )
        await txn.insert()
        await Order.find_one(Order.id == order.id).update(
            Set({Order.transaction_id: txn.external_id, Order.updated_at: datetime.utcnow()})
        )
        log.info("transaction_recorded", order_number=order.order_number, external_id=txn.external_id, status=txn.status)
        return txn

    async def find_transaction(self, external_id: str) -> Transaction | None:
        return await Transaction.find_one(Transaction.external_id == external_id)

    async def find_pending_transactions(self) -> list[Transaction]:
        """Open transactions that reconciliation has not given up on."""
        return await Transaction.find(
            In(Transaction.status, list(OPEN_TRANSACTION_STATUSES)),
            Eq(Transaction.polling_ended_at, None),
        ).to_list()

    async def record_poll_attempt(self, external_id: str) -> None:
        await Transaction.find_one(Transaction.external_id == external_id).update(
            Inc({Transaction.poll_attempts: 1})
        )

    async def end_polling(self, external_id: str, reason: PollingEndReason) -> Transition:
        """Mark an open transaction as no longer polled. Applied once; later calls are no-ops."""
        now = datetime.utcnow()
        updated = await Transaction.find_one(
            Transaction.external_id == external_id,
            In(Transaction.status, list(OPEN_TRANSACTION_STATUSES)),
            Eq(Transaction.polling_ended_at, None),
        ).update(
            Set(
                {
                    Transaction.polling_ended_at: now,
                    Transaction.polling_end_reason: reason,
                    Transaction.updated_at: now,
                }
            ),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if updated is not None:
            log.info("polling_ended", external_id=external_id, reason=reason, attempts=updated.poll_attempts)
            return Transition(updated, True)
        return Transition(await self.find_transaction(external_id), False)

    async def transition_order(
        self,
        order_id: PydanticObjectId,
        order_status: OrderStatus,
        payment_status: PaymentStatus,
        source: str,
        note: str | None = None,
    ) -> Transition:
        """Move the order unless it is already there or its payment is settled; never raises on a no-op."""
        now = datetime.utcnow()
        change = StatusChange(
            order_status=order_status,
            payment_status=payment_status,
            source=source,
            note=note,
            at=now,
        )
        updated = await Order.find_one(
            Order.id == order_id,
            In(Order.payment_status, list(ORDER_TRANSITION_SOURCES[payment_status])),
            Or(NE(Order.status, order_status), NE(Order.payment_status, payment_status)),
        ).update(
            Set({Order.status: order_status, Order.payment_status: payment_status, Order.updated_at: now}),
            Push({Order.status_history: change.model_dump()}),
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
        if updated is not None:
            log.info(
                "order_transitioned",
                order_number=updated.order_number,
                status=order_status,
                payment_status=payment_status,
                source=source,
            )
            return Transition(updated, True)

        current = await Order.get(order_id)
        if current is None:
            raise NotFoundError("Order not found")
        log.info(
            "order_transition_skipped",
            order_number=current.order_number,
            current_status=current.status,
            current_payment_status=current.payment_status,
            requested_payment_status=payment_status,
            source=source,
        )
        return Transition(current, False)

    async def transition_transaction(
        self,
        external_id: str,
        status: TransactionStatus,
        raw: dict[str, Any] | None = None,
    ) -> Transition:
        sources = TRANSACTION_TRANSITION_SOURCES[status]
        updated = None
        if sources:
            fields: dict[Any, Any] = {Transaction.status: status, Transaction.updated_at: datetime.utcnow()}
            if raw is not None:
                fields[Transaction.raw_response] = redact(raw)
            updated = await Transaction.find_one(
                Transaction.external_id == external_id,
                In(Transaction.status, list(sources)),
                NE(Transaction.status, status),
            ).update(Set(fields), response_type=UpdateResponse.NEW_DOCUMENT)
        if updated is not None:
            log.info("transaction_transitioned", external_id=external_id, status=status)
            return Transition(updated, True)
        return Transition(await self.find_transaction(external_id), False)
