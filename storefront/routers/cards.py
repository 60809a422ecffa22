from fastapi import APIRouter
from pydantic import BaseModel, Field, SecretStr

from storefront.core.config import get_settings
from storefront.services.card_validator import (
    INSTALLMENT_LIMITS,
    INTEREST_RATES,
    SUPPORTED_BRANDS,
    CardBrand,
    CardData,
    CardValidation,
    InstallmentOption,
    calculate_installments,
    detect_brand,
    issue_card_token,
    mask_card_number,
    validate_card,
)

router = APIRouter()


class InstallmentsRequest(BaseModel):
    amount_cents: int = Field(gt=0)
    brand: CardBrand | None = None


class InstallmentsResponse(BaseModel):
    brand: CardBrand | None
    max_installments: int
    options: list[InstallmentOption]


class DetectBrandRequest(BaseModel):
    number: SecretStr


class BrandInfo(BaseModel):
    brand: CardBrand
    supported: bool
    max_installments: int
    interest_rate: float


class TokenResponse(BaseModel):
    token: str
    brand: CardBrand
    last4: str
    masked: str


@router.post("/validate", response_model=CardValidation)
async def validate(body: CardData):
    """Run every card check and return all failures; the number is never echoed back."""
    return validate_card(body)


@router.post("/installments", response_model=InstallmentsResponse)
async def installments(body: InstallmentsRequest):
    """Installment plan for an amount; values are in currency units (e.g. reais)."""
    settings = get_settings()
    limit = settings.max_installments
    rate = settings.installment_interest_rate
    if body.brand is not None:
        limit = min(limit, INSTALLMENT_LIMITS.get(body.brand, 1))
        rate = INTEREST_RATES.get(body.brand, rate) or rate
    options = calculate_installments(body.amount_cents / 100, max_installments=limit, annual_interest_rate=rate)
    return InstallmentsResponse(brand=body.brand, max_installments=limit, options=options)


@router.post("/token", response_model=TokenResponse)
async def tokenize(body: CardData):
    token = issue_card_token(body, get_settings().card_token_key or None)
    number = body.number.get_secret_value()
    brand = detect_brand(number)
    masked = mask_card_number(number)
    return TokenResponse(token=token, brand=brand, last4=masked[-4:], masked=masked)


@router.post("/detect-brand", response_model=BrandInfo)
async def brand(body: DetectBrandRequest):
    detected = detect_brand(body.number.get_secret_value())
    return BrandInfo(
        brand=detected,
        supported=detected in SUPPORTED_BRANDS,
        max_installments=INSTALLMENT_LIMITS.get(detected, 1),
        interest_rate=INTEREST_RATES.get(detected, 0.0),
    )
