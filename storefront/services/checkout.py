"""Checkout: cart -> order -> gateway charge -> resolved order, in one request.

No exit path leaves an order in ``pending``. Gateway failures and declines cancel
it; anything unresolved moves to ``awaiting_payment`` for the webhook or the poller.
"""

from typing import Any

from pydantic import BaseModel, Field

from storefront.core.audit import log_event
from storefront.core.exceptions import (
    BadRequestError,
    NotFoundError,
    PaymentDeclinedError,
    UnknownGatewayError,
    ValidationError,
)
from storefront.core.logging import get_logger
from storefront.models.order import Address, Customer, Order, PaymentMethod
from storefront.models.transaction import StoredCard
from storefront.services.card_validator import INSTALLMENT_LIMITS, CardData, issue_card_token, validate_card
from storefront.services.catalog import Catalog, price_line_items
from storefront.services.gateway import (
    BoletoInstructions,
    GatewayClient,
    GatewayTransactionRequest,
    PixInstructions,
    UnrecognizedTransaction,
)
from storefront.services.notifications import NotificationKind
from storefront.services.order_store import OrderDraft, OrderStore, TransactionData
from storefront.services.transitions import ApplyResult, PaymentStatusApplier

log = get_logger(__name__)

_REQUIRED_ADDRESS_FIELDS = ("street", "number", "city", "state", "zip_code")


class CheckoutItem(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem]
    address: Address
    customer: Customer
    payment_method: PaymentMethod
    installments: int = 1
    card: CardData | None = None


class CheckoutResult(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    message: str
    transaction_id: str | None = None
    pix: PixInstructions | None = None
    boleto: BoletoInstructions | None = None


class CheckoutService:
    def __init__(
        self,
        store: OrderStore,
        gateway: GatewayClient,
        applier: PaymentStatusApplier,
        catalog: Catalog,
        currency: str = "BRL",
        max_installments: int = 12,
        pix_expires_in_days: int = 1,
        boleto_expires_in_days: int = 3,
        postback_url: str | None = None,
        card_token_key: str | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.applier = applier
        self.catalog = catalog
        self.currency = currency
        self.max_installments = max_installments
        self.pix_expires_in_days = pix_expires_in_days
        self.boleto_expires_in_days = boleto_expires_in_days
        self.postback_url = postback_url
        self.card_token_key = card_token_key or None

    def _validate(self, req: CheckoutRequest) -> StoredCard | None:
        errors: list[str] = []
        if not req.items:
            errors.append("Cart is empty")
        for field in _REQUIRED_ADDRESS_FIELDS:
            if not (getattr(req.address, field) or "").strip():
                errors.append(f"Address field '{field}' is required")
        if not req.customer.name.strip() or not req.customer.email.strip():
            errors.append("Customer name and email are required")

        card = None
        if req.payment_method == "CREDIT_CARD":
            if req.card is None:
                errors.append("Card data is required for credit card payments")
            else:
                result = validate_card(req.card)
                errors.extend(result.errors)
                if result.valid:
                    limit = min(self.max_installments, INSTALLMENT_LIMITS.get(result.brand, 1))
                    if not 1 <= req.installments <= limit:
                        errors.append(f"Installments must be between 1 and {limit}")
                    card = StoredCard(
                        brand=result.brand.value,
                        last4=result.last4,
                        token=issue_card_token(req.card, self.card_token_key),
                    )
        elif req.installments != 1:
            errors.append("Installments are only available for credit card payments")

        if errors:
            raise ValidationError("Invalid checkout", errors=errors)
        return card

    async def checkout(self, req: CheckoutRequest, user_id: str | None = None, ip: str | None = None) -> CheckoutResult:
        card = self._validate(req)
        items = await price_line_items(self.catalog, [(i.product_id, i.quantity) for i in req.items])
        order = await self.store.create_order(
            OrderDraft(
                user_id=user_id,
                customer=req.customer,
                items=items,
                shipping_address=req.address,
                payment_method=req.payment_method,
                installments=req.installments,
                currency=self.currency,
            )
        )

        request = GatewayTransactionRequest(
            amount_cents=order.total_cents,
            currency=order.currency,
            payment_method=order.payment_method,
            order_number=order.order_number,
            description=f"Order {order.order_number}",
            items=order.items,
            customer=order.customer,
            shipping_address=order.shipping_address,
            user_id=user_id,
            card_token=card.token if card else None,
            installments=order.installments,
            pix_expires_in_days=self.pix_expires_in_days,
            boleto_expires_in_days=self.boleto_expires_in_days,
            postback_url=self.postback_url,
            ip=ip,
        )
        try:
            txn = await self.gateway.create_transaction(request)
            if txn.id is None:
                raise UnknownGatewayError("Payment gateway response has no transaction id")
        except Exception as e:
            await self.store.transition_order(order.id, "cancelled", "declined", "checkout", note=str(e))
            log.warning("checkout_gateway_failed", order_number=order.order_number, error=str(e))
            raise

        recognized = not isinstance(txn, UnrecognizedTransaction)
        status = txn.status if recognized else "pending"
        await self.store.create_transaction(
            order.id,
            TransactionData(
                external_id=txn.id,
                status=status,
                amount_cents=order.total_cents,
                payment_method=order.payment_method,
                installments=order.installments,
                card=card,
                raw_response=txn.raw,
            ),
        )
        if not recognized:
            log.warning("checkout_unrecognized_status", order_number=order.order_number, status=txn.status)

        if status == "approved":
            result = await self.applier.apply(order, "approved", txn.id, source="checkout", notify=False)
            if result.applied:
                await self.applier.notify(NotificationKind.ORDER_CONFIRMATION, result.order)
            return self._result(result.order, "Payment approved", txn.id)

        if status == "declined":
            message = txn.message or "Payment declined"
            await self.applier.apply(order, "declined", txn.id, source="checkout", note=message)
            raise PaymentDeclinedError(message, order.order_number)

        # pending, processing or anything we do not recognise: wait for webhook/poller
        pix = txn.pix if recognized else None
        boleto = txn.boleto if recognized else None
        extra: dict[str, Any] = {}
        if pix:
            extra["pix"] = pix.model_dump()
        if boleto:
            extra["boleto"] = boleto.model_dump()
        result = await self.applier.apply(
            order, "pending", txn.id, source="checkout", notify=status == "pending", extra=extra
        )
        return self._result(result.order, _pending_message(order.payment_method), txn.id, pix=pix, boleto=boleto)

    @staticmethod
    def _result(order: Order, message: str, transaction_id: str | None, **instructions) -> CheckoutResult:
        return CheckoutResult(
            order_id=str(order.id),
            order_number=order.order_number,
            status=order.status,
            payment_status=order.payment_status,
            message=message,
            transaction_id=transaction_id,
            **instructions,
        )

    async def refund(self, order_number: str, amount_cents: int | None = None, actor: str = "admin") -> ApplyResult:
        order = await self.store.find_order_by_number(order_number)
        if not order:
            raise NotFoundError("Order not found", details={"order_number": order_number})
        if order.payment_status != "approved" or not order.transaction_id:
            raise BadRequestError("Only approved payments can be refunded")
        if amount_cents is not None and not 0 < amount_cents <= order.total_cents:
            raise BadRequestError("Refund amount must be between 1 and the order total")

        txn = await self.gateway.refund_transaction(order.transaction_id, amount_cents)
        await log_event(
            actor,
            "refund_requested",
            "order",
            order.order_number,
            {"amount_cents": amount_cents, "gateway_status": txn.status},
        )
        if txn.status != "refunded":
            # refund accepted but not settled; the webhook reports the outcome
            log.info("refund_pending", order_number=order_number, status=txn.status)
            return ApplyResult(order, False, False)
        return await self.applier.apply(
            order, "refunded", order.transaction_id, raw=getattr(txn, "raw", None), source="admin"
        )


def _pending_message(payment_method: str) -> str:
    if payment_method == "PIX":
        return "Scan the PIX QR code or use copy-paste to pay"
    if payment_method == "BOLETO":
        return "Pay the boleto before it expires"
    return "Payment is being processed"
