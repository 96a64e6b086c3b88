"""
Product stock data access with storage-level conditional updates.

Every stock mutation is a single UPDATE statement whose WHERE clause carries
the sufficiency check, so concurrent deductions for the same product can
never drive ``stock_quantity`` below what was actually on hand.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.product import Product

logger = get_logger(__name__)


class InventoryRepositoryError(Exception):
    """Base exception for inventory repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class ProductRepository:
    """
    Repository for product stock counters.

    Args:
        session: Async database session shared with the calling service
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(
        self,
        product_id: uuid.UUID,
        store_id: uuid.UUID,
    ) -> Optional[Product]:
        """
        Load a fresh stock snapshot for a product of the given store.

        Args:
            product_id: Product identifier
            store_id: Store the product must belong to

        Returns:
            Product or None when it does not exist in this store
        """
        stmt = (
            select(Product)
            .where(Product.id == product_id, Product.store_id == store_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load product",
                product_id=str(product_id),
                error=str(e),
            )
            raise InventoryRepositoryError(
                "Failed to load product", product_id=str(product_id)
            ) from e
        return result.scalar_one_or_none()

    async def get_stock_quantity(self, product_id: uuid.UUID) -> Optional[int]:
        result = await self.session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        )
        return result.scalar_one_or_none()

    async def deduct_stock(self, product_id: uuid.UUID, quantity: int) -> bool:
        """
        Deduct stock if sufficient (or backorders allowed), clamped at zero.

        Args:
            product_id: Product identifier
            quantity: Units to deduct

        Returns:
            True if the row was updated, False if stock was insufficient
        """
        remaining = Product.stock_quantity - quantity
        stmt = (
            update(Product)
            .where(
                Product.id == product_id,
                or_(
                    Product.stock_quantity >= quantity,
                    Product.allow_backorders.is_(True),
                ),
            )
            .values(
                stock_quantity=case((remaining < 0, 0), else_=remaining),
                purchase_count=Product.purchase_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt, "deduct_stock", product_id, quantity)

    async def increment_purchase_count(self, product_id: uuid.UUID) -> bool:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(purchase_count=Product.purchase_count + 1)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt, "increment_purchase_count", product_id, 0)

    async def restore_stock(self, product_id: uuid.UUID, quantity: int) -> bool:
        """
        Add units back and decrement the purchase count, floored at zero.

        Args:
            product_id: Product identifier
            quantity: Units to add back

        Returns:
            True if the row was updated
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(
                stock_quantity=Product.stock_quantity + quantity,
                purchase_count=case(
                    (Product.purchase_count > 0, Product.purchase_count - 1),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt, "restore_stock", product_id, quantity)

    async def _execute_update(
        self,
        stmt: Any,
        operation: str,
        product_id: uuid.UUID,
        quantity: int,
    ) -> bool:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Stock update failed",
                operation=operation,
                product_id=str(product_id),
                quantity=quantity,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise InventoryRepositoryError(
                f"Stock update failed: {operation}",
                product_id=str(product_id),
                quantity=quantity,
            ) from e
        return result.rowcount == 1
