from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class CatalogProduct(Document):
    """Read-only price source for checkout; maintained by the catalog service."""
    product_id: Indexed(str, unique=True)
    name: str
    price_cents: int
    active: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "products"
