import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from storefront.core.config import get_settings
from storefront.models.audit_log import AuditLog
from storefront.models.failed_job import FailedJob
from storefront.models.order import Order
from storefront.models.product import CatalogProduct
from storefront.models.transaction import Transaction

DOCUMENT_MODELS = [
    Order,
    Transaction,
    CatalogProduct,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client(uri: str) -> AsyncIOMotorClient:
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(uri, **kwargs)


async def init_db(client=None) -> AsyncIOMotorClient:
    """Bind Beanie documents to the configured database; returns the client so the caller owns its lifecycle."""
    settings = get_settings()
    if client is None:
        client = create_client(settings.mongodb_uri)
    await init_beanie(database=client[settings.mongodb_db_name], document_models=DOCUMENT_MODELS)
    return client
