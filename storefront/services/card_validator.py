"""Card checks, installment math and opaque card tokens.

Everything here is pure: no database, no network. Raw card numbers and CVVs live
only in ``CardData`` (as ``SecretStr``) for the duration of a request. Only brand,
last4 and the ``card_`` token leave this module.
"""

import json
import re
import time
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, SecretStr

from storefront.core.encryption import decrypt_payload, encrypt_payload
from storefront.core.exceptions import ValidationError

TOKEN_PREFIX = "card_"
_CENT = Decimal("0.01")
_EXPIRY_RE = re.compile(r"^(\d{2})/(\d{2})$")


class CardBrand(str, Enum):
    VISA = "VISA"
    MASTERCARD = "MASTERCARD"
    AMEX = "AMEX"
    DINERS = "DINERS"
    DISCOVER = "DISCOVER"
    JCB = "JCB"
    ELO = "ELO"
    HIPERCARD = "HIPERCARD"
    UNKNOWN = "UNKNOWN"


_BRAND_PATTERNS: list[tuple[CardBrand, re.Pattern]] = [
    (CardBrand.VISA, re.compile(r"^4[0-9]{12}(?:[0-9]{3})?$")),
    (CardBrand.MASTERCARD, re.compile(r"^5[1-5][0-9]{14}$")),
    (CardBrand.AMEX, re.compile(r"^3[47][0-9]{13}$")),
    (CardBrand.DINERS, re.compile(r"^3(?:0[0-5]|[68][0-9])[0-9]{11}$")),
    (CardBrand.DISCOVER, re.compile(r"^6(?:011|5[0-9]{2})[0-9]{12}$")),
    (CardBrand.JCB, re.compile(r"^(?:2131|1800|35\d{3})\d{11}$")),
    (CardBrand.ELO, re.compile(r"^63[0-9]{14}$")),
    (CardBrand.HIPERCARD, re.compile(r"^606282[0-9]{10}$")),
]

SUPPORTED_BRANDS = frozenset(b for b in CardBrand if b is not CardBrand.UNKNOWN)
INSTALLMENT_LIMITS: dict[CardBrand, int] = {b: 12 for b in SUPPORTED_BRANDS}
INTEREST_RATES: dict[CardBrand, float] = {b: 0.0 for b in SUPPORTED_BRANDS}


class CardData(BaseModel):
    number: SecretStr
    holder_name: str
    expiry: str  # MM/YY
    cvv: SecretStr


class CardValidation(BaseModel):
    valid: bool
    errors: list[str] = []
    brand: CardBrand | None = None
    last4: str | None = None


class InstallmentOption(BaseModel):
    count: int
    per_installment: float
    total_with_interest: float
    interest: float


class CardTokenInfo(BaseModel):
    brand: CardBrand
    last4: str
    expiry: str
    issued_at: int


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def validate_card_number(number: str) -> bool:
    """Length 13..19 and Luhn checksum 0."""
    digits = _digits(number)
    if not 13 <= len(digits) <= 19:
        return False
    total = 0
    for i, ch in enumerate(reversed(digits)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def detect_brand(number: str) -> CardBrand:
    digits = _digits(number)
    for brand, pattern in _BRAND_PATTERNS:
        if pattern.match(digits):
            return brand
    return CardBrand.UNKNOWN


def validate_expiry(expiry: str, today: date | None = None) -> bool:
    """MM/YY, month 1..12, not before the current month (two-digit year in the current century)."""
    m = _EXPIRY_RE.match((expiry or "").strip())
    if not m:
        return False
    month, year = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        return False
    today = today or date.today()
    return (year, month) >= (today.year % 100, today.month)


def validate_cvv(cvv: str, brand: CardBrand | str) -> bool:
    digits = _digits(cvv)
    if digits != (cvv or "").strip():
        return False
    expected = 4 if brand == CardBrand.AMEX else 3
    return len(digits) == expected


def mask_card_number(number: str) -> str:
    return f"****-****-****-{_digits(number)[-4:]}"


def validate_card(card: CardData, today: date | None = None) -> CardValidation:
    """Check every rule and report all violations at once."""
    number = card.number.get_secret_value()
    cvv = card.cvv.get_secret_value()
    errors: list[str] = []

    if not number:
        errors.append("Card number is required")
    elif not validate_card_number(number):
        errors.append("Card number is invalid")

    holder = (card.holder_name or "").strip()
    if not holder:
        errors.append("Card holder name is required")
    elif len(holder) < 3:
        errors.append("Card holder name must have at least 3 characters")

    if not card.expiry:
        errors.append("Expiry date is required")
    elif not validate_expiry(card.expiry, today):
        errors.append("Expiry date is invalid or the card has expired")

    brand = detect_brand(number) if number else None
    if not cvv:
        errors.append("CVV is required")
    elif not validate_cvv(cvv, brand or CardBrand.UNKNOWN):
        errors.append("CVV is invalid for this card brand")

    if errors:
        return CardValidation(valid=False, errors=errors, brand=brand)
    return CardValidation(valid=True, brand=brand, last4=_digits(number)[-4:])


def _money(value: Decimal) -> float:
    return float(value.quantize(_CENT, rounding=ROUND_HALF_UP))


def calculate_installments(
    total: int | float,
    max_installments: int = 12,
    annual_interest_rate: float = 0.0,
) -> list[InstallmentOption]:
    """Amortized (Price table) plan for 1..max_installments.

    annual_interest_rate is a percentage; 0 splits the total evenly. Each amount is
    rounded to two decimals, so the installments may sum to the total +/- one unit.
    """
    principal = Decimal(str(total))
    rate = Decimal(str(annual_interest_rate)) / 100 / 12
    options = []
    for n in range(1, max_installments + 1):
        if rate == 0:
            per = principal / n
            total_with_interest = principal
        else:
            factor = (1 + rate) ** n
            per = principal * rate * factor / (factor - 1)
            total_with_interest = per * n
        options.append(
            InstallmentOption(
                count=n,
                per_installment=_money(per),
                total_with_interest=_money(total_with_interest),
                interest=_money(total_with_interest - principal),
            )
        )
    return options


def issue_card_token(card: CardData, key: str | None = None) -> str:
    """Validate, then wrap brand/last4/expiry/timestamp in a token only this service can open."""
    result = validate_card(card)
    if not result.valid:
        raise ValidationError("Invalid card", errors=result.errors)
    info = CardTokenInfo(
        brand=result.brand,
        last4=result.last4,
        expiry=card.expiry,
        issued_at=int(time.time() * 1000),
    )
    return TOKEN_PREFIX + encrypt_payload(info.model_dump_json().encode(), key)


def decode_card_token(token: str, key: str | None = None) -> CardTokenInfo | None:
    if not token or not token.startswith(TOKEN_PREFIX):
        return None
    raw = decrypt_payload(token[len(TOKEN_PREFIX):], key)
    if raw is None:
        return None
    try:
        return CardTokenInfo.model_validate(json.loads(raw))
    except ValueError:
        return None


def validate_card_token(token: str, key: str | None = None) -> bool:
    return decode_card_token(token, key) is not None
