"""Payment gateway (FastSoft Brasil) client.

All calls go through one httpx.AsyncClient with Basic auth and a per-call timeout.
Failures are classified into AuthenticationError, GatewayRejectedError,
TransientGatewayError and UnknownGatewayError; only transient ones are retried,
with exponential backoff, and only when the caller asks for it.
"""

from typing import Annotated, Any, Literal, Union

import httpx
import sentry_sdk
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from storefront.core.exceptions import (
    AuthenticationError,
    GatewayRejectedError,
    TransientGatewayError,
    UnknownGatewayError,
)
from storefront.core.logging import get_logger, redact
from storefront.models.order import Address, Customer, LineItem, PaymentMethod

log = get_logger(__name__)


class PixInstructions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qr_code: str = Field(alias="qrCode")
    copy_paste: str = Field(alias="copyPaste")
    qr_code_url: str | None = Field(default=None, alias="qrCodeUrl")


class BoletoInstructions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    barcode: str
    barcode_url: str | None = Field(default=None, alias="barcodeUrl")


class CardSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_digits: str | None = Field(default=None, alias="lastDigits")
    brand: str | None = None


class _GatewayTransaction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    id: str
    amount: int | None = None
    currency: str | None = None
    payment_method: str | None = Field(default=None, alias="paymentMethod")
    pix: PixInstructions | None = None
    boleto: BoletoInstructions | None = None
    card: CardSummary | None = None
    message: str | None = None
    created_at: str | None = Field(default=None, alias="createdAt")
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)


class ApprovedTransaction(_GatewayTransaction):
    status: Literal["approved"]


class DeclinedTransaction(_GatewayTransaction):
    status: Literal["declined"]


class PendingTransaction(_GatewayTransaction):
    status: Literal["pending"]


class ProcessingTransaction(_GatewayTransaction):
    status: Literal["processing"]


class RefundedTransaction(_GatewayTransaction):
    status: Literal["refunded"]


class UnrecognizedTransaction(BaseModel):
    """A response whose status (or shape) we do not know; kept whole so nothing is lost."""
    raw: dict[str, Any]
    id: str | None = None
    status: str | None = None


KnownTransaction = Annotated[
    Union[ApprovedTransaction, DeclinedTransaction, PendingTransaction, ProcessingTransaction, RefundedTransaction],
    Field(discriminator="status"),
]
GatewayTransaction = Union[
    ApprovedTransaction,
    DeclinedTransaction,
    PendingTransaction,
    ProcessingTransaction,
    RefundedTransaction,
    UnrecognizedTransaction,
]

_known_adapter: TypeAdapter = TypeAdapter(KnownTransaction)


def parse_gateway_transaction(data: dict[str, Any]) -> GatewayTransaction:
    try:
        return _known_adapter.validate_python({**data, "raw": data})
    except PydanticValidationError:
        ext_id = data.get("id")
        status = data.get("status")
        return UnrecognizedTransaction(
            raw=data,
            id=str(ext_id) if ext_id is not None else None,
            status=str(status) if status is not None else None,
        )


class GatewayTransactionRequest(BaseModel):
    amount_cents: int
    currency: str = "BRL"
    payment_method: PaymentMethod
    order_number: str
    description: str
    items: list[LineItem]
    customer: Customer | None = None
    shipping_address: Address | None = None
    user_id: str | None = None
    card_token: str | None = None
    installments: int = 1
    pix_expires_in_days: int = 1
    boleto_expires_in_days: int = 3
    postback_url: str | None = None
    ip: str | None = None

    def _address(self) -> dict[str, Any]:
        a = self.shipping_address
        return {
            "street": a.street,
            "streetNumber": a.number,
            "complement": a.complement,
            "zipCode": a.zip_code,
            "neighborhood": a.neighborhood or "Centro",
            "city": a.city,
            "state": a.state,
            "country": "BR",
        }

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "amount": self.amount_cents,
            "currency": self.currency,
            "paymentMethod": self.payment_method,
            "items": [
                {
                    "title": item.name or item.product_id,
                    "unitPrice": item.unit_price_cents,
                    "quantity": item.quantity,
                    "tangible": True,
                    "externalRef": item.product_id,
                }
                for item in self.items
            ],
            "metadata": {"orderId": self.order_number, "customerId": self.user_id},
        }
        if self.postback_url:
            payload["postbackUrl"] = self.postback_url
        if self.ip:
            payload["ip"] = self.ip
        if self.customer:
            customer: dict[str, Any] = {
                "name": self.customer.name,
                "email": self.customer.email,
                "phone": self.customer.phone,
            }
            if self.customer.document:
                customer["document"] = {"number": self.customer.document, "type": "CPF"}
            if self.shipping_address:
                customer["address"] = self._address()
            payload["customer"] = customer
        if self.shipping_address:
            payload["shipping"] = {"fee": 0, "address": self._address()}
        if self.payment_method == "CREDIT_CARD":
            payload["card"] = {"token": self.card_token}
            payload["installments"] = self.installments
        elif self.payment_method == "PIX":
            payload["pix"] = {"expiresInDays": self.pix_expires_in_days}
        elif self.payment_method == "BOLETO":
            payload["boleto"] = {"expiresInDays": self.boleto_expires_in_days}
        return payload


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class GatewayClient:
    """Thin async wrapper over the gateway's transactions API."""

    def __init__(
        self,
        base_url: str,
        public_key: str,
        secret_key: str,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._configured = bool(public_key and secret_key)
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=httpx.BasicAuth(public_key, secret_key),
            timeout=timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "GatewayClient":
        return cls(
            base_url=settings.gateway_base_url,
            public_key=settings.gateway_public_key,
            secret_key=settings.gateway_secret_key,
            timeout=settings.gateway_timeout_seconds,
            max_attempts=settings.gateway_max_attempts,
            backoff_seconds=settings.gateway_backoff_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_transaction(self, request: GatewayTransactionRequest) -> GatewayTransaction:
        log.info(
            "gateway_create_transaction",
            order_number=request.order_number,
            amount_cents=request.amount_cents,
            payment_method=request.payment_method,
        )
        payload = request.to_payload()
        log.debug("gateway_request_payload", payload=payload)
        data = await self._call(
            "POST",
            "/transactions",
            json=payload,
            headers={"Idempotency-Key": request.order_number},
        )
        txn = parse_gateway_transaction(data)
        log.info("gateway_transaction_created", order_number=request.order_number, external_id=txn.id, status=txn.status)
        return txn

    async def get_transaction_status(self, external_id: str, retry: bool = True) -> GatewayTransaction:
        data = await self._call("GET", f"/transactions/{external_id}", retry=retry)
        return parse_gateway_transaction(data)

    async def refund_transaction(self, external_id: str, amount_cents: int | None = None) -> GatewayTransaction:
        body = {"amount": amount_cents} if amount_cents else {}
        log.info("gateway_refund", external_id=external_id, amount_cents=amount_cents)
        data = await self._call("POST", f"/transactions/{external_id}/refund", json=body)
        return parse_gateway_transaction(data)

    async def _call(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts if retry else 1),
            wait=wait_exponential(multiplier=self._backoff, exp_base=2),
            retry=retry_if_exception_type(TransientGatewayError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request(method, path, json=json, headers=headers)
        raise UnknownGatewayError("Gateway call produced no result")

    @staticmethod
    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        log.warning(
            "gateway_retry",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if not self._configured:
            self._raise_auth_failure("Payment gateway credentials are not configured", None)
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            log.warning("gateway_timeout", method=method, path=path)
            raise TransientGatewayError("Payment gateway timed out") from e
        except httpx.TransportError as e:
            log.warning("gateway_unreachable", method=method, path=path, error=str(e))
            raise TransientGatewayError("Could not reach the payment gateway") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        code = response.status_code
        try:
            body = response.json()
        except ValueError:
            body = None
        message = _error_message(body) or response.reason_phrase or "Payment gateway error"

        if code in (401, 403):
            self._raise_auth_failure(message, code)
        if code == 429 or code >= 500:
            log.warning("gateway_server_error", status_code=code, message=message)
            raise TransientGatewayError(message, http_status=code)
        if code >= 400:
            log.info("gateway_rejected", status_code=code, message=message, body=redact(body))
            raise GatewayRejectedError(message, http_status=code)
        if not isinstance(body, dict):
            raise UnknownGatewayError("Payment gateway returned a non-JSON body", http_status=code)

        # Envelope {"status": 200, "message": ..., "data": {...}}; some endpoints answer with the bare transaction.
        envelope_status = body.get("status")
        if isinstance(envelope_status, int) and not isinstance(envelope_status, bool) and envelope_status != 200:
            raise GatewayRejectedError(message, http_status=envelope_status)
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        if "id" not in data:
            raise UnknownGatewayError("Payment gateway response has no transaction", http_status=code)
        return data

    @staticmethod
    def _raise_auth_failure(message: str, code: int | None) -> None:
        log.critical("gateway_authentication_failed", status_code=code, message=message)
        sentry_sdk.capture_message(f"Payment gateway authentication failed: {message}", level="fatal")
        raise AuthenticationError(message, http_status=code)
