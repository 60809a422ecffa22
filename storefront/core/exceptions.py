from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found", details: dict[str, Any] | None = None):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class ValidationError(AppError):
    """Bad checkout or card input. Never retried; errors are surfaced verbatim."""

    def __init__(self, message: str = "Invalid input", errors: list[str] | None = None):
        self.errors = list(errors or [message])
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"errors": self.errors},
        )


class InvalidSignatureError(UnauthorizedError):
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)
        self.code = "INVALID_SIGNATURE"


class UnknownTransactionError(NotFoundError):
    """Webhook references an order this service does not know."""

    def __init__(self, order_number: str):
        super().__init__("Order not found", details={"order_number": order_number})
        self.order_number = order_number


class PaymentDeclinedError(AppError):
    def __init__(self, message: str, order_number: str):
        super().__init__(
            message,
            code="PAYMENT_DECLINED",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"order_number": order_number},
        )
        self.order_number = order_number


class GatewayError(AppError):
    """Failure talking to the payment gateway."""

    retryable = False

    def __init__(
        self,
        message: str = "Payment gateway error",
        code: str = "GATEWAY_ERROR",
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)
        self.http_status = http_status


class AuthenticationError(GatewayError):
    """Gateway rejected our credentials. Fatal; operators must act."""

    def __init__(self, message: str = "Payment gateway credentials rejected", http_status: int | None = None):
        super().__init__(message, code="GATEWAY_AUTH", http_status=http_status)


class GatewayRejectedError(GatewayError):
    """Gateway refused the request as invalid (4xx). Not retryable."""

    def __init__(self, message: str = "Payment rejected by gateway", http_status: int | None = None, details: dict[str, Any] | None = None):
        super().__init__(
            message,
            code="GATEWAY_REJECTED",
            status_code=status.HTTP_400_BAD_REQUEST,
            http_status=http_status,
            details=details,
        )


class TransientGatewayError(GatewayError):
    """Network failure, timeout, 429 or 5xx. Safe to retry."""

    retryable = True

    def __init__(self, message: str = "Payment gateway unavailable", http_status: int | None = None):
        super().__init__(
            message,
            code="GATEWAY_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            http_status=http_status,
        )


class UnknownGatewayError(GatewayError):
    def __init__(self, message: str = "Unexpected payment gateway response", http_status: int | None = None):
        super().__init__(message, code="GATEWAY_UNKNOWN", http_status=http_status)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from storefront.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
