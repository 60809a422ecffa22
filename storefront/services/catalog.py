"""Collaborators checkout depends on but does not own: trusted prices and the shopper's cart."""

from typing import Protocol

from beanie.operators import In

from storefront.core.exceptions import ValidationError
from storefront.models.order import LineItem
from storefront.models.product import CatalogProduct

CART_KEY_PREFIX = "cart"


class Catalog(Protocol):
    async def unit_prices(self, product_ids: list[str]) -> dict[str, tuple[str, int]]:
        """product_id -> (name, unit price in cents) for active products."""
        ...


class CartStore(Protocol):
    async def clear(self, user_id: str) -> None:
        ...


async def price_line_items(catalog: Catalog, quantities: list[tuple[str, int]]) -> list[LineItem]:
    """Build the order snapshot from server-side prices; unknown products are a validation error."""
    prices = await catalog.unit_prices([pid for pid, _ in quantities])
    missing = sorted({pid for pid, _ in quantities if pid not in prices})
    if missing:
        raise ValidationError(
            "Some products are unavailable",
            errors=[f"Product {pid} is not available" for pid in missing],
        )
    return [
        LineItem(product_id=pid, name=prices[pid][0], quantity=qty, unit_price_cents=prices[pid][1])
        for pid, qty in quantities
    ]


class MongoCatalog:
    async def unit_prices(self, product_ids: list[str]) -> dict[str, tuple[str, int]]:
        products = await CatalogProduct.find(
            In(CatalogProduct.product_id, product_ids),
            CatalogProduct.active == True,  # noqa: E712
        ).to_list()
        return {p.product_id: (p.name, p.price_cents) for p in products}


class RedisCartStore:
    """Carts live in Redis under cart:<user_id>; clearing after payment is a single DEL."""

    def __init__(self, redis):
        self._redis = redis

    async def clear(self, user_id: str) -> None:
        await self._redis.delete(f"{CART_KEY_PREFIX}:{user_id}")
