"""
Stock reconciliation engine.

Deducts stock for the lines of a confirmed order, one line at a time. A line
that cannot be covered is reported as a shortfall while the remaining lines
are still deducted: a partially fulfillable order is preferable to rejecting
the whole order because of one out-of-stock line.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from storefront.core.logging import get_logger, log_performance
from storefront.database.models.order import OrderItem
from storefront.services.inventory.repository import ProductRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class StockShortfall:
    """An order line whose requested quantity exceeds the units on hand."""

    product_id: uuid.UUID
    sku: Optional[str]
    name: str
    requested: int
    available: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "sku": self.sku,
            "name": self.name,
            "requested": self.requested,
            "available": self.available,
        }

    def describe(self) -> str:
        return f"{self.sku or self.name} (requested: {self.requested}, available: {self.available})"


@dataclass(frozen=True)
class DeductedItem:
    """An order line whose quantity was taken from stock."""

    product_id: uuid.UUID
    sku: Optional[str]
    quantity: int
    old_stock: int
    new_stock: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "sku": self.sku,
            "quantity": self.quantity,
            "old_stock": self.old_stock,
            "new_stock": self.new_stock,
        }


@dataclass
class StockDeductionResult:
    """Outcome of a deduction pass; ``success`` iff no line fell short."""

    shortfalls: list[StockShortfall] = field(default_factory=list)
    deducted: list[DeductedItem] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.shortfalls

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "shortfalls": [s.to_dict() for s in self.shortfalls],
            "deducted": [d.to_dict() for d in self.deducted],
        }


class StockReconciliationEngine:
    """
    Checks and deducts product stock for order lines.

    Args:
        products: Product repository bound to the caller's session
    """

    def __init__(self, products: ProductRepository):
        self.products = products

    async def deduct(
        self,
        store_id: uuid.UUID,
        items: Iterable[OrderItem],
        order_id: Optional[uuid.UUID] = None,
    ) -> StockDeductionResult:
        """
        Deduct stock for each line independently.

        Lines on unmanaged or infinite-stock products only bump the purchase
        count. Lines on tracked products are deducted with a conditional
        update; when that update matches no row the line becomes a shortfall
        and neither stock nor purchase count changes.

        Args:
            store_id: Store the products belong to
            items: Order lines to deduct
            order_id: Order being reconciled, for log correlation

        Returns:
            StockDeductionResult with shortfalls and deducted lines
        """
        result = StockDeductionResult()

        with log_performance(logger, "stock_deduction", order_id=str(order_id)):
            for item in items:
                if item.product_id is None:
                    logger.warning(
                        "Order line without product reference skipped",
                        order_id=str(order_id),
                        product_name=item.product_name,
                    )
                    continue

                product = await self.products.get_product(item.product_id, store_id)
                if product is None:
                    logger.warning(
                        "Product not found for order line, skipping",
                        order_id=str(order_id),
                        product_id=str(item.product_id),
                    )
                    continue

                if not product.tracks_stock:
                    await self.products.increment_purchase_count(product.id)
                    continue

                shortfall = StockShortfall(
                    product_id=product.id,
                    sku=product.sku or item.product_sku,
                    name=product.name or item.product_name,
                    requested=item.quantity,
                    available=product.stock_quantity,
                )

                if product.stock_quantity < item.quantity and not product.allow_backorders:
                    result.shortfalls.append(shortfall)
                    continue

                if not await self.products.deduct_stock(product.id, item.quantity):
                    # Stock moved between the snapshot and the conditional update.
                    available = await self.products.get_stock_quantity(product.id)
                    result.shortfalls.append(
                        StockShortfall(
                            product_id=shortfall.product_id,
                            sku=shortfall.sku,
                            name=shortfall.name,
                            requested=shortfall.requested,
                            available=available or 0,
                        )
                    )
                    continue

                new_stock = await self.products.get_stock_quantity(product.id)
                result.deducted.append(
                    DeductedItem(
                        product_id=product.id,
                        sku=product.sku,
                        quantity=item.quantity,
                        old_stock=product.stock_quantity,
                        new_stock=new_stock if new_stock is not None else 0,
                    )
                )

        if result.success:
            logger.info(
                "Stock deducted for order",
                order_id=str(order_id),
                deducted_count=len(result.deducted),
            )
        else:
            logger.warning(
                "Stock shortfall detected",
                order_id=str(order_id),
                shortfalls=[s.to_dict() for s in result.shortfalls],
                deducted_count=len(result.deducted),
            )

        return result

    async def restore(
        self,
        store_id: uuid.UUID,
        items: Iterable[OrderItem],
        order_id: Optional[uuid.UUID] = None,
    ) -> list[uuid.UUID]:
        """
        Put stock back for the lines of a cancelled or refunded order.

        Only tracked products are touched; the purchase count of each is
        decremented once per line, floored at zero.

        Returns:
            Product ids whose stock was restored
        """
        restored: list[uuid.UUID] = []

        for item in items:
            if item.product_id is None:
                continue

            product = await self.products.get_product(item.product_id, store_id)
            if product is None or not product.tracks_stock:
                continue

            if await self.products.restore_stock(product.id, item.quantity):
                restored.append(product.id)

        logger.info(
            "Stock restored for order",
            order_id=str(order_id),
            restored_count=len(restored),
        )
        return restored
