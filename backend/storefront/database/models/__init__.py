"""
Database models package initialization.

Models are imported here to ensure they are registered with the Base metadata
for table creation, Alembic migrations and relationship resolution.
"""

from storefront.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from storefront.database.models.fulfillment import Invoice, Shipment
from storefront.database.models.notification import NotificationKind, NotificationRecord
from storefront.database.models.order import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentFlow,
    PaymentStatus,
)
from storefront.database.models.product import Product
from storefront.database.models.store import (
    Customer,
    PaymentMethod,
    StockIssueHandling,
    StoreSettings,
)

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Customer",
    "FulfillmentStatus",
    "Invoice",
    "NotificationKind",
    "NotificationRecord",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentFlow",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
    "Shipment",
    "StockIssueHandling",
    "StoreSettings",
]
