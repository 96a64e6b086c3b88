"""
Periodic re-verification of pending online orders.

Webhooks can be lost and customers can close the browser before the
finalize call. The sweeper asks the provider about every online order that
has been pending for a few minutes and confirms the paid ones through the
same guarded transition the webhooks use.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.database.connection import get_session
from storefront.services.inventory.repository import InventoryRepositoryError
from storefront.services.orders.repository import OrderRepository, OrderRepositoryError
from storefront.services.payments.confirmation import (
    PaymentConfirmationError,
    PaymentConfirmationProcessor,
)
from storefront.services.payments.followup import PostConfirmationWorkflow
from storefront.services.payments.stripe_client import StripeClient
from storefront.services.stores.repository import StoreRepositoryError

logger = get_logger(__name__)


@dataclass
class SweepResult:
    checked: int = 0
    confirmed: int = 0
    already_settled: int = 0
    unpaid: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "confirmed": self.confirmed,
            "already_settled": self.already_settled,
            "unpaid": self.unpaid,
            "failed": self.failed,
        }


class PendingOrderSweeper:
    """
    Confirms paid orders whose confirmation never arrived.

    Args:
        stripe_client: Stripe client
        followup: Post-confirmation workflow run for each newly confirmed order
        session_factory: Session factory, defaults to the process-wide one
        min_age_minutes: Only orders older than this are checked
        max_age_hours: Orders older than this are no longer checked
        batch_size: Maximum number of orders per run
    """

    def __init__(
        self,
        stripe_client: StripeClient,
        followup: PostConfirmationWorkflow,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        min_age_minutes: int = 3,
        max_age_hours: int = 24,
        batch_size: int = 100,
    ):
        self.stripe_client = stripe_client
        self.followup = followup
        self.session_factory = session_factory
        self.min_age = timedelta(minutes=min_age_minutes)
        self.max_age = timedelta(hours=max_age_hours)
        self.batch_size = batch_size

    @classmethod
    def from_settings(
        cls,
        stripe_client: StripeClient,
        followup: PostConfirmationWorkflow,
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> "PendingOrderSweeper":
        settings = settings or get_settings()
        return cls(
            stripe_client,
            followup,
            session_factory=session_factory,
            min_age_minutes=settings.pending_order_min_age_minutes,
            max_age_hours=settings.pending_order_max_age_hours,
            batch_size=settings.pending_order_batch_size,
        )

    async def run_once(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Verify one batch of stale pending orders.

        Each order is confirmed in its own transaction so one failure does
        not hold back the rest of the batch.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            SweepResult with per-outcome counts
        """
        now = now or datetime.now(timezone.utc)
        result = SweepResult()

        async with get_session(self.session_factory) as session:
            orders = await OrderRepository(session).list_stale_pending_orders(
                created_before=now - self.min_age,
                created_after=now - self.max_age,
                limit=self.batch_size,
            )
            candidates = [(order.id, order.payment_reference, order.store_id) for order in orders]

        with log_performance(logger, "pending_order_sweep", candidates=len(candidates)):
            for order_id, reference, store_id in candidates:
                result.checked += 1
                try:
                    async with get_session(self.session_factory) as session:
                        processor = PaymentConfirmationProcessor(session, self.stripe_client)
                        finalized = await processor.finalize(reference, store_id)
                except (
                    PaymentConfirmationError,
                    OrderRepositoryError,
                    InventoryRepositoryError,
                    StoreRepositoryError,
                ) as e:
                    result.failed += 1
                    logger.warning(
                        "Pending order verification failed",
                        order_id=str(order_id),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue

                if not finalized.success:
                    result.unpaid += 1
                    continue

                outcome = finalized.outcome
                if outcome is None or outcome.already_settled:
                    result.already_settled += 1
                    continue

                result.confirmed += 1
                await self.followup.run(outcome)

        logger.info("Pending order sweep finished", **result.to_dict())
        return result
