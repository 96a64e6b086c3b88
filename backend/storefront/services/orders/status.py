"""
Order status changes requested by customers and staff.

Customers may only cancel an unconfirmed order or ask to return a confirmed
one. Staff may set any status. Moving an order that already had its stock
deducted to cancelled or refunded puts the stock back.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order import (
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentStatus,
)
from storefront.services.inventory.reconciliation import StockReconciliationEngine
from storefront.services.inventory.repository import ProductRepository
from storefront.services.orders.repository import OrderNotFoundError, OrderRepository

logger = get_logger(__name__)

CUSTOMER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.RETURN_REQUESTED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.RETURN_REQUESTED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURN_REQUESTED}),
}

RESTORING_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


class StatusTransitionError(Exception):
    """Raised when a requested status change is not allowed."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


def allowed_customer_transitions(status: OrderStatus) -> frozenset[OrderStatus]:
    return CUSTOMER_TRANSITIONS.get(status, frozenset())


class OrderStatusService:
    """
    Applies status changes and the stock restoration they imply.

    Args:
        session: Async database session
    """

    def __init__(self, session: AsyncSession):
        self.orders = OrderRepository(session)
        self.engine = StockReconciliationEngine(ProductRepository(session))

    async def change_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        is_staff: bool,
        store_id: Optional[uuid.UUID] = None,
        customer_email: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Order:
        """
        Change the status of an order.

        Args:
            order_id: Order identifier
            new_status: Requested status
            is_staff: Whether the caller is store staff
            store_id: Restrict the change to orders of this store
            customer_email: For customers, the email the order must belong to
            note: Optional admin note appended to the order

        Returns:
            Updated order

        Raises:
            OrderNotFoundError: If the order does not exist in scope
            StatusTransitionError: If the change is not allowed
        """
        order = await self.orders.get_order_by_id(order_id)
        if order is None or (store_id is not None and order.store_id != store_id):
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        if not is_staff:
            if customer_email is None or customer_email.lower() != order.customer_email.lower():
                raise OrderNotFoundError("Order not found", order_id=str(order_id))
            if new_status not in allowed_customer_transitions(order.status):
                raise StatusTransitionError(
                    f"Cannot change order from {order.status.value} to {new_status.value}",
                    order_id=str(order_id),
                    current_status=order.status.value,
                    requested_status=new_status.value,
                )

        if new_status == order.status:
            return order

        previous = order.status
        now = datetime.now(timezone.utc)

        if new_status in RESTORING_STATUSES and previous.has_deducted_stock:
            await self._restore_stock(order)

        order.status = new_status
        if new_status == OrderStatus.CANCELLED:
            order.cancelled_at = now
        elif new_status == OrderStatus.REFUNDED:
            order.payment_status = PaymentStatus.REFUNDED
            order.cancelled_at = order.cancelled_at or now
        elif new_status == OrderStatus.SHIPPED:
            order.fulfillment_status = FulfillmentStatus.SHIPPED
            order.shipped_at = order.shipped_at or now
        elif new_status == OrderStatus.DELIVERED:
            order.fulfillment_status = FulfillmentStatus.DELIVERED

        if note:
            order.append_admin_note(note)

        await self.orders.save(order)

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            from_status=previous.value,
            to_status=new_status.value,
            by_staff=is_staff,
        )
        return order

    async def _restore_stock(self, order: Order) -> None:
        if order.fulfillment_status == FulfillmentStatus.STOCK_ISSUE:
            # Short lines were never deducted; restoring every line would overcount.
            order.append_admin_note(
                "Stock not restored automatically for an order with a stock issue. "
                "Please review inventory manually."
            )
            logger.warning(
                "Skipping stock restoration for stock issue order",
                order_id=str(order.id),
            )
            return

        await self.engine.restore(order.store_id, order.items, order_id=order.id)
