"""
Read-only access to store configuration, payment methods and customers.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order import PaymentFlow
from storefront.database.models.store import (
    Customer,
    PaymentMethod,
    StockIssueHandling,
    StoreSettings,
)

logger = get_logger(__name__)


class StoreRepositoryError(Exception):
    """Base exception for store repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


def default_store_settings(store_id: uuid.UUID) -> StoreSettings:
    """Settings used for stores that never saved any."""
    return StoreSettings(
        store_id=store_id,
        name="Store",
        currency="USD",
        stock_issue_handling=StockIssueHandling.MANUAL_REVIEW,
        auto_invoice_enabled=False,
        auto_invoice_pdf_enabled=False,
        auto_ship_enabled=False,
    )


class StoreRepository:
    """
    Repository for store-scoped configuration.

    Args:
        session: Async database session
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_settings(self, store_id: uuid.UUID) -> StoreSettings:
        """
        Load the settings of a store, falling back to defaults.

        Args:
            store_id: Store identifier

        Returns:
            Persisted or default StoreSettings (defaults are not added to the session)
        """
        try:
            settings = await self.session.get(StoreSettings, store_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load store settings", store_id=str(store_id), error=str(e))
            raise StoreRepositoryError(
                "Failed to load store settings", store_id=str(store_id)
            ) from e

        if settings is None:
            logger.debug("Store settings not found, using defaults", store_id=str(store_id))
            return default_store_settings(store_id)
        return settings

    async def resolve_payment_flow(
        self,
        store_id: uuid.UUID,
        payment_method_id: Optional[uuid.UUID],
    ) -> PaymentFlow:
        """
        Classify the payment flow from the store's payment method record.

        Unknown or missing methods default to the online flow so that no
        order is treated as paid without provider confirmation.
        """
        if payment_method_id is None:
            return PaymentFlow.ONLINE

        result = await self.session.execute(
            select(PaymentMethod.payment_flow).where(
                PaymentMethod.id == payment_method_id,
                PaymentMethod.store_id == store_id,
            )
        )
        flow = result.scalar_one_or_none()
        if flow is None:
            logger.warning(
                "Payment method not found, defaulting to online flow",
                store_id=str(store_id),
                payment_method_id=str(payment_method_id),
            )
            return PaymentFlow.ONLINE
        return flow

    async def get_customer(
        self,
        store_id: uuid.UUID,
        customer_id: uuid.UUID,
    ) -> Optional[Customer]:
        """
        Load a store's customer inside a savepoint.

        Raises:
            StoreRepositoryError: If the lookup fails; the outer transaction stays usable
        """
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    select(Customer).where(
                        Customer.id == customer_id,
                        Customer.store_id == store_id,
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to load customer",
                store_id=str(store_id),
                customer_id=str(customer_id),
                error=str(e),
            )
            raise StoreRepositoryError(
                "Failed to load customer",
                store_id=str(store_id),
                customer_id=str(customer_id),
            ) from e
