"""Gateway status -> order/transaction state, shared by checkout, webhook and poller."""

from typing import Any, NamedTuple

from storefront.core.logging import get_logger
from storefront.models.order import Order
from storefront.services.catalog import CartStore
from storefront.services.notifications import NotificationDispatcher, NotificationKind
from storefront.services.order_store import OrderStore

log = get_logger(__name__)


class Outcome(NamedTuple):
    order_status: str | None
    payment_status: str | None
    notification: NotificationKind | None


PAYMENT_OUTCOMES: dict[str, Outcome] = {
    "approved": Outcome("processing", "approved", NotificationKind.PAYMENT_APPROVED),
    "declined": Outcome("cancelled", "declined", NotificationKind.PAYMENT_DECLINED),
    "pending": Outcome("awaiting_payment", "pending", None),
    "refunded": Outcome("refunded", "refunded", NotificationKind.PAYMENT_REFUNDED),
    # gateway is still working on it; only the transaction moves
    "processing": Outcome(None, None, None),
}

_PENDING_NOTIFICATIONS = {
    "PIX": NotificationKind.PAYMENT_PENDING_PIX,
    "BOLETO": NotificationKind.PAYMENT_PENDING_BOLETO,
}


class ApplyResult(NamedTuple):
    order: Order
    applied: bool
    transaction_applied: bool


def notification_for(status: str, payment_method: str) -> NotificationKind | None:
    if status == "pending":
        return _PENDING_NOTIFICATIONS.get(payment_method)
    outcome = PAYMENT_OUTCOMES.get(status)
    return outcome.notification if outcome else None


class PaymentStatusApplier:
    def __init__(self, store: OrderStore, notifier: NotificationDispatcher, cart: CartStore | None = None):
        self.store = store
        self.notifier = notifier
        self.cart = cart

    async def apply(
        self,
        order: Order,
        gateway_status: str,
        external_id: str | None = None,
        raw: dict[str, Any] | None = None,
        source: str = "webhook",
        note: str | None = None,
        notify: bool = True,
        extra: dict[str, Any] | None = None,
    ) -> ApplyResult:
        """Apply one reported status. Order first, then transaction; side effects only on an applied order move."""
        outcome = PAYMENT_OUTCOMES.get(gateway_status)
        if outcome is None:
            log.warning(
                "unrecognized_payment_status",
                order_number=order.order_number,
                status=gateway_status,
                source=source,
            )
            return ApplyResult(order, False, False)

        applied = False
        if outcome.order_status is not None:
            transition = await self.store.transition_order(
                order.id, outcome.order_status, outcome.payment_status, source, note
            )
            order, applied = transition.document, transition.applied

        txn_applied = False
        transaction = None
        external_id = external_id or order.transaction_id
        if external_id:
            txn_transition = await self.store.transition_transaction(external_id, gateway_status, raw)
            transaction, txn_applied = txn_transition.document, txn_transition.applied

        if applied:
            if gateway_status == "approved":
                await self._clear_cart(order)
            kind = notification_for(gateway_status, order.payment_method)
            if notify and kind is not None:
                await self.notify(kind, order, transaction, extra)
        return ApplyResult(order, applied, txn_applied)

    async def notify(self, kind: NotificationKind, order: Order, transaction=None, extra=None) -> None:
        """Best effort: a failed send is logged and never undoes or fails the transition."""
        try:
            await self.notifier.send(kind, order, transaction, extra)
        except Exception as e:
            log.error("notification_failed", kind=kind.value, order_number=order.order_number, error=str(e))

    async def _clear_cart(self, order: Order) -> None:
        if not order.user_id or self.cart is None:
            return
        try:
            await self.cart.clear(order.user_id)
        except Exception as e:
            log.error("cart_clear_failed", order_number=order.order_number, error=str(e))
