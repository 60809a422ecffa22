from datetime import datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from storefront.container import Container
from storefront.core.exceptions import NotFoundError
from storefront.core.pagination import Page, paginate
from storefront.deps import get_container, get_current_user_id, get_optional_user_id
from storefront.models.order import LineItem, Order, StatusChange
from storefront.services.checkout import CheckoutRequest, CheckoutResult

router = APIRouter()


class OrderView(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    installments: int
    total_cents: int
    currency: str
    items: list[LineItem]
    transaction_id: str | None = None
    status_history: list[StatusChange] = []
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderView":
        return cls(
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            installments=order.installments,
            total_cents=order.total_cents,
            currency=order.currency,
            items=order.items,
            transaction_id=order.transaction_id,
            status_history=order.status_history,
            created_at=order.created_at,
        )


@router.post("/checkout", response_model=CheckoutResult, response_model_by_alias=False)
async def checkout(
    body: CheckoutRequest,
    request: Request,
    user_id: str | None = Depends(get_optional_user_id),
    container: Container = Depends(get_container),
):
    """Place an order and charge it. Guests may check out; prices come from the catalog."""
    ip = request.client.host if request.client else None
    return await container.checkout.checkout(body, user_id=user_id, ip=ip)


@router.get("/orders", response_model=Page[OrderView])
async def list_orders(
    limit: int = 20,
    offset: int = 0,
    user_id: str = Depends(get_current_user_id),
    container: Container = Depends(get_container),
):
    limit, offset = paginate(limit, offset)
    orders = await container.store.list_orders_for_user(user_id, limit=limit + 1, offset=offset)
    return Page(
        items=[OrderView.from_order(o) for o in orders[:limit]],
        limit=limit,
        offset=offset,
        has_more=len(orders) > limit,
    )


@router.get("/orders/{order_number}", response_model=OrderView)
async def get_order(
    order_number: str,
    user_id: str | None = Depends(get_optional_user_id),
    container: Container = Depends(get_container),
):
    """Order status for the confirmation page. Orders owned by a user are visible only to that user."""
    order = await container.store.find_order_by_number(order_number)
    if not order or (order.user_id and order.user_id != user_id):
        raise NotFoundError("Order not found")
    return OrderView.from_order(order)
