"""Customer notifications: the core decides *what* happened, a relay renders and delivers it."""

from enum import Enum
from typing import Any, Protocol

from storefront.core.logging import get_logger
from storefront.models.order import Order
from storefront.models.transaction import Transaction

log = get_logger(__name__)

DELIVER_JOB = "deliver_notification"


class NotificationKind(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    PAYMENT_APPROVED = "payment_approved"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_PENDING_PIX = "payment_pending_pix"
    PAYMENT_PENDING_BOLETO = "payment_pending_boleto"
    PAYMENT_REFUNDED = "payment_refunded"


class NotificationDispatcher(Protocol):
    async def send(
        self,
        kind: NotificationKind,
        order: Order,
        transaction: Transaction | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        ...


def build_notification(
    kind: NotificationKind,
    order: Order,
    transaction: Transaction | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Plain-JSON job payload; no card data, no gateway payloads."""
    return {
        "kind": kind.value,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer": order.customer.model_dump() if order.customer else None,
        "total_cents": order.total_cents,
        "currency": order.currency,
        "payment_method": order.payment_method,
        "installments": order.installments,
        "transaction_id": transaction.external_id if transaction else order.transaction_id,
        "extra": extra or {},
    }


class QueueNotificationDispatcher:
    """Enqueue an ARQ delivery job. Fire-and-forget: enqueue failures are logged, not raised."""

    def __init__(self, pool):
        self._pool = pool

    async def send(
        self,
        kind: NotificationKind,
        order: Order,
        transaction: Transaction | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        payload = build_notification(kind, order, transaction, extra)
        try:
            await self._pool.enqueue_job(DELIVER_JOB, payload)
        except Exception as e:
            log.error("notification_enqueue_failed", kind=kind.value, order_number=order.order_number, error=str(e))
            return
        log.info("notification_enqueued", kind=kind.value, order_number=order.order_number)


class LoggingNotificationDispatcher:
    """Used when no queue is available (local dev): records the intent in the log only."""

    async def send(
        self,
        kind: NotificationKind,
        order: Order,
        transaction: Transaction | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        log.info("notification", **build_notification(kind, order, transaction, extra))
