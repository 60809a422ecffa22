import logging
import sys
from typing import Any

import structlog

REDACTED = "***REDACTED***"

# Substrings of normalized key names that must never reach a log line.
SENSITIVE_KEYS = ("card_number", "cardnumber", "cvv", "password", "token", "secret", "authorization", "public_key")


def _is_sensitive(key: str, parent: str | None) -> bool:
    k = key.lower().replace("-", "_")
    if any(s in k for s in SENSITIVE_KEYS):
        return True
    # {"card": {"number": ...}} as sent to the gateway
    return parent == "card" and k == "number"


def redact(value: Any, _parent: str | None = None) -> Any:
    """Return a copy of value with sensitive fields masked (dicts and lists, recursively)."""
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_sensitive(k, _parent) else redact(v, str(k).lower())
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v, _parent) for v in value]
    return value


def redact_processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    return redact(event_dict)


def configure_logging(debug: bool = False) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            redact_processor,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)
