"""Inbound gateway webhooks: verify, correlate, apply."""

import time
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from storefront.core.audit import log_event
from storefront.core.exceptions import BadRequestError, InvalidSignatureError, UnknownTransactionError
from storefront.core.logging import get_logger, redact
from storefront.core.security import sign_webhook_payload, verify_webhook_signature
from storefront.services.order_store import OrderStore
from storefront.services.transitions import PaymentStatusApplier

log = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str | None = None
    status: str
    amount: int | None = None
    payment_method: str | None = None
    order_id: str  # our order number
    transaction_id: str | None = None
    pix_qr_code: str | None = None
    pix_copy_paste: str | None = None
    boleto_barcode: str | None = None
    boleto_url: str | None = None
    message: str | None = None
    created_at: str | None = None

    @property
    def external_id(self) -> str | None:
        return self.transaction_id or self.id


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    data: WebhookData


class WebhookResult(BaseModel):
    processed: bool
    applied: bool
    order_number: str
    status: str


class WebhookReceiver:
    def __init__(self, store: OrderStore, applier: PaymentStatusApplier, secret: str):
        self.store = store
        self.applier = applier
        self.secret = secret

    async def handle(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        if not verify_webhook_signature(raw_body, signature, self.secret):
            log.warning("webhook_invalid_signature", has_signature=bool(signature))
            raise InvalidSignatureError()

        try:
            payload = WebhookPayload.model_validate(orjson.loads(raw_body))
        except (orjson.JSONDecodeError, PydanticValidationError) as e:
            log.warning("webhook_malformed", error=str(e))
            raise BadRequestError("Malformed webhook payload") from e
        data = payload.data

        order = await self.store.find_order_by_number(data.order_id)
        if not order:
            log.warning("webhook_unknown_order", order_number=data.order_id, external_id=data.external_id)
            await log_event(
                "gateway",
                "webhook_unknown_order",
                "order",
                data.order_id,
                {"event": payload.event, "status": data.status, "external_id": data.external_id},
            )
            raise UnknownTransactionError(data.order_id)

        if not _amount_matches(data, order.total_cents):
            log.warning(
                "webhook_amount_mismatch",
                order_number=order.order_number,
                status=data.status,
                amount=data.amount,
                expected=order.total_cents,
            )
            await log_event(
                "gateway",
                "webhook_amount_mismatch",
                "order",
                order.order_number,
                {
                    "event": payload.event,
                    "status": data.status,
                    "external_id": data.external_id,
                    "amount": data.amount,
                    "expected": order.total_cents,
                },
            )
            return WebhookResult(processed=True, applied=False, order_number=order.order_number, status=data.status)

        external_id = data.external_id
        if order.transaction_id and external_id != order.transaction_id:
            # only ever move the transaction recorded on this order
            if external_id:
                log.warning(
                    "webhook_transaction_mismatch",
                    order_number=order.order_number,
                    external_id=external_id,
                    expected=order.transaction_id,
                )
            external_id = order.transaction_id

        result = await self.applier.apply(
            order,
            data.status,
            external_id=external_id,
            raw=payload.model_dump(),
            source="webhook",
            note=data.message,
            extra=_instructions(data),
        )
        await log_event(
            "gateway",
            "webhook_received",
            "order",
            order.order_number,
            {"event": payload.event, "status": data.status, "external_id": external_id, "applied": result.applied},
        )
        log.info(
            "webhook_processed",
            order_number=order.order_number,
            status=data.status,
            applied=result.applied,
        )
        return WebhookResult(processed=True, applied=result.applied, order_number=order.order_number, status=data.status)


def _amount_matches(data: WebhookData, total_cents: int) -> bool:
    """Deliveries without an amount are trusted; refunds may be partial."""
    if data.amount is None:
        return True
    if data.status == "refunded":
        return 0 < data.amount <= total_cents
    return data.amount == total_cents


def _instructions(data: WebhookData) -> dict[str, Any]:
    extra: dict[str, Any] = {}
    if data.pix_qr_code or data.pix_copy_paste:
        extra["pix"] = {"qr_code": data.pix_qr_code, "copy_paste": data.pix_copy_paste}
    if data.boleto_barcode or data.boleto_url:
        extra["boleto"] = {"barcode": data.boleto_barcode, "barcode_url": data.boleto_url}
    return extra


def build_test_webhook(order_number: str, external_id: str, status: str, amount_cents: int, secret: str) -> dict[str, Any]:
    """A correctly signed sample delivery, for wiring checks against a running instance."""
    body = {
        "event": "transaction.updated",
        "data": {
            "id": external_id,
            "status": status,
            "amount": amount_cents,
            "payment_method": "PIX",
            "order_id": order_number,
            "transaction_id": external_id,
            "created_at": str(int(time.time() * 1000)),
        },
    }
    raw = orjson.dumps(body)
    return {
        "body": redact(body),
        "raw_body": raw.decode(),
        "headers": {SIGNATURE_HEADER: sign_webhook_payload(raw, secret)},
    }
