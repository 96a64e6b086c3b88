"""
Celery tasks for background payment reconciliation.

This module implements the periodic pending order sweep. Every task run
builds its own database engine because ``asyncio.run`` starts a new event
loop and pooled asyncpg connections cannot cross loops.
"""

import asyncio
from typing import Any

from celery import Task, shared_task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.database.connection import create_engine
from storefront.services.notifications.service import EmailService
from storefront.services.payments.followup import PostConfirmationWorkflow
from storefront.services.payments.stripe_client import StripeClient
from storefront.services.payments.sweeper import PendingOrderSweeper

logger = get_logger(__name__)

FINALIZE_PENDING_ORDERS_TASK = "orders.finalize_pending_orders"


class ReconciliationTask(Task):
    """
    Base task class for reconciliation tasks.

    Logs failures, retries and successes with structured context.
    """

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.error(
            "Reconciliation task failed",
            task_id=task_id,
            task_name=self.name,
            exception=str(exc),
            exc_info=einfo,
        )

    def on_retry(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.warning(
            "Reconciliation task retrying",
            task_id=task_id,
            task_name=self.name,
            exception=str(exc),
            retry_count=self.request.retries,
        )

    def on_success(
        self,
        retval: Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
    ) -> None:
        logger.info(
            "Reconciliation task completed",
            task_id=task_id,
            task_name=self.name,
            result=retval,
        )


async def sweep_pending_orders() -> dict[str, int]:
    """Run one pending order sweep against a task-scoped engine."""
    settings = get_settings()
    engine = create_engine(settings.database_url)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    try:
        stripe_client = StripeClient.from_settings(settings)
        followup = PostConfirmationWorkflow(
            stripe_client,
            EmailService.from_settings(settings),
            session_factory=session_factory,
        )
        sweeper = PendingOrderSweeper.from_settings(
            stripe_client,
            followup,
            settings=settings,
            session_factory=session_factory,
        )
        result = await sweeper.run_once()
        return result.to_dict()
    finally:
        await engine.dispose()


@shared_task(
    bind=True,
    base=ReconciliationTask,
    name=FINALIZE_PENDING_ORDERS_TASK,
    ignore_result=False,
)
def finalize_pending_orders_task(self: Task) -> dict[str, int]:
    """
    Confirm paid orders whose webhook or finalize call never arrived.

    Returns:
        Sweep counts
    """
    logger.info("Starting pending order sweep", task_id=self.request.id)
    return asyncio.run(sweep_pending_orders())
