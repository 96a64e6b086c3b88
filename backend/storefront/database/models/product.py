"""
Product stock ledger model.

Only the stock-related subset of a catalog product lives here. Catalog CRUD
happens elsewhere; ``stock_quantity`` and ``purchase_count`` are written only
by the stock reconciliation engine and the restoration path.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel


class Product(BaseModel):
    """
    Product with stock counters.

    Attributes:
        manage_stock: Whether stock levels are tracked for this product
        infinite_stock: Unlimited availability, never checked or deducted
        stock_quantity: Units on hand, never below zero
        allow_backorders: Accept orders beyond the units on hand
        purchase_count: Number of order lines that bought the product
    """

    __tablename__ = "products"

    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    manage_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    infinite_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_backorders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchase_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("purchase_count >= 0", name="ck_products_purchase_count_non_negative"),
        {"comment": "Product stock ledger"},
    )

    @property
    def tracks_stock(self) -> bool:
        """True when deductions must be checked against the units on hand."""
        return self.manage_stock and not self.infinite_stock
