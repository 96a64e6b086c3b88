"""
Order data access repository with transaction support.

This module implements the OrderRepository class providing async methods for
creating orders with their lines inside a savepoint, looking orders up by
their provider references, and performing the guarded pending-to-paid
transition as a single conditional UPDATE.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, exists, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.notification import NotificationKind, NotificationRecord
from storefront.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentFlow,
    PaymentStatus,
)

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderCreationError(OrderRepositoryError):
    """Raised when order creation fails."""

    pass


class OrderConflictError(OrderCreationError):
    """Raised when an order already exists for a checkout reference."""

    pass


class OrderUpdateError(OrderRepositoryError):
    """Raised when order update fails."""

    pass


class OrderRepository:
    """
    Repository for order data access operations.

    Args:
        session: Async database session
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_order_with_items(
        self,
        order_data: dict[str, Any],
        items: Sequence[dict[str, Any]],
    ) -> Order:
        """
        Create an order and its lines atomically.

        The inserts run inside a savepoint; any failure rolls back both the
        order row and whatever lines were already written, leaving the outer
        transaction usable.

        Args:
            order_data: Order column values
            items: Order line column values

        Returns:
            Created order with lines loaded

        Raises:
            OrderConflictError: If an order already exists for the reference
            OrderCreationError: If order creation fails
        """
        payment_reference = order_data["payment_reference"]

        try:
            async with self.session.begin_nested():
                order = Order(**order_data)
                self.session.add(order)
                await self.session.flush()

                for item_data in items:
                    self.session.add(OrderItem(order_id=order.id, **item_data))
                await self.session.flush()

        except IntegrityError as e:
            if await self.get_by_payment_reference(payment_reference) is not None:
                logger.warning(
                    "Order already exists for checkout reference",
                    payment_reference=payment_reference,
                )
                raise OrderConflictError(
                    "Order already exists for checkout reference",
                    payment_reference=payment_reference,
                ) from e
            logger.error(
                "Order creation violated a constraint",
                payment_reference=payment_reference,
                error=str(e.orig),
            )
            raise OrderCreationError(
                "Failed to create order",
                payment_reference=payment_reference,
            ) from e

        except SQLAlchemyError as e:
            logger.error(
                "Failed to create order",
                payment_reference=payment_reference,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise OrderCreationError(
                "Failed to create order",
                payment_reference=payment_reference,
            ) from e

        await self.session.refresh(order, ["items"])

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            payment_reference=payment_reference,
            item_count=len(order.items),
        )
        return order

    async def get_order_by_id(self, order_id: uuid.UUID) -> Optional[Order]:
        """
        Get order by ID with its lines.

        Args:
            order_id: Order identifier

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        return await self._fetch_one(
            select(Order).where(Order.id == order_id),
            order_id=str(order_id),
        )

    async def get_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        return await self._fetch_one(
            select(Order).where(Order.payment_reference == payment_reference),
            payment_reference=payment_reference,
        )

    async def find_by_references(
        self,
        payment_reference: Optional[str],
        payment_intent_id: Optional[str] = None,
    ) -> Optional[Order]:
        """
        Look an order up by checkout reference, then by payment intent.

        Args:
            payment_reference: Provider checkout session id
            payment_intent_id: Provider payment intent id

        Returns:
            Matching order or None
        """
        if payment_reference:
            order = await self.get_by_payment_reference(payment_reference)
            if order is not None:
                return order

        if payment_intent_id:
            return await self._fetch_one(
                select(Order)
                .where(Order.stripe_payment_intent_id == payment_intent_id)
                .limit(1),
                payment_intent_id=payment_intent_id,
            )

        return None

    async def mark_confirmed(
        self,
        order_id: uuid.UUID,
        payment_intent_id: Optional[str] = None,
    ) -> bool:
        """
        Transition an order from pending/pending to processing/paid.

        The source-state check lives in the WHERE clause, so among concurrent
        callers exactly one sees a matched row.

        Args:
            order_id: Order identifier
            payment_intent_id: Provider payment intent to record

        Returns:
            True if this call performed the transition
        """
        values: dict[str, Any] = {
            "status": OrderStatus.PROCESSING,
            "payment_status": PaymentStatus.PAID,
        }
        if payment_intent_id:
            values["stripe_payment_intent_id"] = payment_intent_id

        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to confirm order",
                order_id=str(order_id),
                error=str(e),
            )
            raise OrderUpdateError("Failed to confirm order", order_id=str(order_id)) from e

        return result.rowcount == 1

    async def save(self, order: Order) -> Order:
        """
        Flush pending changes of an order loaded in this session.

        Raises:
            OrderUpdateError: If the flush fails
        """
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to update order", order_id=str(order.id), error=str(e))
            raise OrderUpdateError("Failed to update order", order_id=str(order.id)) from e
        return order

    async def reload(self, order: Order) -> Order:
        """Re-read an order after conditional updates issued behind the ORM."""
        await self.session.refresh(order)
        await self.session.refresh(order, ["items"])
        return order

    async def list_stale_pending_orders(
        self,
        created_before: datetime,
        limit: int,
        created_after: Optional[datetime] = None,
    ) -> list[Order]:
        """
        Find online orders still awaiting confirmation.

        Only orders without a confirmation notification record are returned,
        oldest first.

        Args:
            created_before: Upper bound of the creation window
            limit: Maximum number of orders
            created_after: Optional lower bound of the creation window
        """
        confirmation_sent = exists().where(
            and_(
                NotificationRecord.order_id == Order.id,
                NotificationRecord.kind == NotificationKind.ORDER_CONFIRMATION,
            )
        )
        stmt = (
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
                Order.payment_flow == PaymentFlow.ONLINE,
                Order.created_at < created_before,
                ~confirmation_sent,
            )
            .order_by(Order.created_at)
            .limit(limit)
        )
        if created_after is not None:
            stmt = stmt.where(Order.created_at >= created_after)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to list pending orders", error=str(e))
            raise OrderRepositoryError("Failed to list pending orders") from e
        return list(result.scalars().all())

    async def _fetch_one(self, stmt: Any, **context: Any) -> Optional[Order]:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", error=str(e), **context)
            raise OrderRepositoryError("Failed to fetch order", **context) from e
        return result.scalar_one_or_none()
