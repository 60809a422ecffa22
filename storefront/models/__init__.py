from storefront.models.audit_log import AuditLog
from storefront.models.failed_job import FailedJob
from storefront.models.order import Address, Customer, LineItem, Order, StatusChange
from storefront.models.product import CatalogProduct
from storefront.models.transaction import StoredCard, Transaction

__all__ = [
    "Address",
    "AuditLog",
    "CatalogProduct",
    "Customer",
    "FailedJob",
    "LineItem",
    "Order",
    "StatusChange",
    "StoredCard",
    "Transaction",
]
