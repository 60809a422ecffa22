from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from storefront.container import Container
from storefront.core.audit import log_event
from storefront.core.exceptions import BadRequestError, NotFoundError
from storefront.deps import get_container, require_admin_key
from storefront.routers.checkout import OrderView
from storefront.services.notifications import NotificationKind
from storefront.services.webhooks import build_test_webhook

router = APIRouter(dependencies=[Depends(require_admin_key)])


class RefundRequest(BaseModel):
    amount_cents: int | None = Field(default=None, gt=0)


class RefundResponse(BaseModel):
    order: OrderView
    refunded: bool


@router.post("/orders/{order_number}/refund", response_model=RefundResponse)
async def refund_order(
    order_number: str,
    body: RefundRequest | None = None,
    container: Container = Depends(get_container),
):
    """Refund an approved payment through the gateway; full refund when no amount is given."""
    result = await container.checkout.refund(order_number, body.amount_cents if body else None)
    return RefundResponse(order=OrderView.from_order(result.order), refunded=result.applied)


@router.get("/webhooks/test")
async def test_webhook(
    order_number: str,
    status: str = "approved",
    container: Container = Depends(get_container),
):
    """Signed sample webhook for an existing order, to replay against this instance."""
    order = await container.store.find_order_by_number(order_number)
    if not order:
        raise NotFoundError("Order not found")
    if not order.transaction_id:
        raise BadRequestError("Order has no gateway transaction")
    if not container.settings.webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    return build_test_webhook(
        order.order_number,
        order.transaction_id,
        status,
        order.total_cents,
        container.settings.webhook_secret,
    )


@router.get("/polling")
async def polling_status(container: Container = Depends(get_container)):
    """Orders the reconciliation poller in this process is currently tracking."""
    return {"tracked": container.poller.status()}


@router.post("/polling/{order_number}/stop")
async def stop_polling(order_number: str, container: Container = Depends(get_container)):
    """Give up reconciliation for an order; the worker's task exits on its next tick."""
    order = await container.store.find_order_by_number(order_number)
    if not order:
        raise NotFoundError("Order not found")
    if not order.transaction_id:
        raise BadRequestError("Order has no gateway transaction")
    stopped = await container.poller.stop(order.id)
    if stopped:
        await log_event("admin", "polling_stopped", "order", order.order_number, {"external_id": order.transaction_id})
    return {"order_number": order.order_number, "stopped": stopped}


@router.post("/orders/{order_number}/resend-confirmation")
async def resend_confirmation(order_number: str, container: Container = Depends(get_container)):
    order = await container.store.find_order_by_number(order_number)
    if not order:
        raise NotFoundError("Order not found")
    transaction = await container.store.find_transaction(order.transaction_id) if order.transaction_id else None
    await container.applier.notify(NotificationKind.ORDER_CONFIRMATION, order, transaction)
    await log_event("admin", "confirmation_resent", "order", order.order_number, {"status": order.status})
    return {"order_number": order.order_number, "sent": True}
