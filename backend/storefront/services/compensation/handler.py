"""
Stock shortfall compensation.

When a confirmed order cannot be fulfilled from stock, the order is flagged,
the customer and the store owner are told, and, for stores that opted in,
the payment is refunded automatically. Each email is best effort on its own;
a failed email never blocks the refund and a failed refund only leaves a
note for staff. Refunds never put stock back: the lines that were deducted
were legitimately sold.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.notification import NotificationKind
from storefront.database.models.order import (
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentStatus,
)
from storefront.database.models.store import StockIssueHandling, StoreSettings
from storefront.services.inventory.reconciliation import StockShortfall
from storefront.services.notifications.dispatcher import (
    DispatchOutcome,
    NotificationDispatcher,
    order_email_variables,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.payments.refunds import RefundGateway, RefundResult

logger = get_logger(__name__)

REFUND_REASON = "stock_issue"


def format_shortfall_lines(shortfalls: list[StockShortfall]) -> str:
    return "\n".join(
        f"- {s.name} (SKU: {s.sku or 'N/A'}): Requested {s.requested}, Available {s.available}"
        for s in shortfalls
    )


@dataclass
class CompensationOutcome:
    policy: StockIssueHandling
    notifications: list[DispatchOutcome] = field(default_factory=list)
    refund: Optional[RefundResult] = None

    @property
    def refunded(self) -> bool:
        return self.refund is not None and self.refund.success


class CompensationHandler:
    """
    Applies the store's shortfall policy to a confirmed order.

    Args:
        session: Async database session
        dispatcher: Notification dispatcher bound to the same session
        refund_gateway: Refund gateway
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher,
        refund_gateway: RefundGateway,
    ):
        self.orders = OrderRepository(session)
        self.dispatcher = dispatcher
        self.refund_gateway = refund_gateway

    async def handle(
        self,
        order: Order,
        store: StoreSettings,
        shortfalls: list[StockShortfall],
        payment_intent_id: Optional[str] = None,
        stripe_account: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> CompensationOutcome:
        """
        Compensate a confirmed order with stock shortfalls.

        Args:
            order: Confirmed order
            store: Settings of the order's store
            shortfalls: Lines that could not be deducted
            payment_intent_id: Payment to refund, defaults to the order's
            stripe_account: Connected account that took the payment
            customer_name: Greeting name for the customer email

        Returns:
            CompensationOutcome
        """
        outcome = CompensationOutcome(policy=store.stock_issue_handling)
        if not shortfalls:
            return outcome

        summary = ", ".join(s.describe() for s in shortfalls)
        order.fulfillment_status = FulfillmentStatus.STOCK_ISSUE
        order.append_admin_note(f"Stock issue detected: {summary}")
        await self.orders.save(order)

        logger.warning(
            "Compensating stock shortfall",
            order_id=str(order.id),
            policy=store.stock_issue_handling.value,
            shortfall_count=len(shortfalls),
        )

        variables: dict[str, Any] = {
            **order_email_variables(order, store, customer_name),
            "stock_issues": [s.to_dict() for s in shortfalls],
            "stock_issue_lines": format_shortfall_lines(shortfalls),
            "auto_refund": store.stock_issue_handling == StockIssueHandling.AUTO_REFUND,
        }

        outcome.notifications.append(
            await self.dispatcher.dispatch(
                order,
                NotificationKind.STOCK_ISSUE_CUSTOMER,
                order.customer_email,
                variables,
            )
        )

        if store.owner_email:
            outcome.notifications.append(
                await self.dispatcher.dispatch(
                    order,
                    NotificationKind.STOCK_ISSUE_ADMIN,
                    store.owner_email,
                    variables,
                )
            )
        else:
            logger.warning("Store has no owner email for stock issue alert", store_id=str(store.store_id))

        if store.stock_issue_handling != StockIssueHandling.AUTO_REFUND:
            return outcome

        refund = await self.refund_gateway.refund_order(
            order,
            REFUND_REASON,
            payment_intent_id=payment_intent_id,
            stripe_account=stripe_account or store.stripe_account_id,
        )
        outcome.refund = refund

        if refund.success:
            order.status = OrderStatus.CANCELLED
            order.payment_status = PaymentStatus.REFUNDED
            order.refund_id = refund.refund_id
            order.cancelled_at = datetime.now(timezone.utc)
            order.append_admin_note(
                f"Auto-refunded due to stock issue via {refund.provider}. "
                f"Refund ID: {refund.refund_id}. Items: {summary}"
            )
            await self.orders.save(order)

            logger.info(
                "Order auto-refunded for stock issue",
                order_id=str(order.id),
                refund_id=refund.refund_id,
            )
            outcome.notifications.append(
                await self.dispatcher.dispatch(
                    order,
                    NotificationKind.STOCK_ISSUE_REFUNDED,
                    order.customer_email,
                    {**variables, "refund_id": refund.refund_id},
                )
            )
        elif refund.requires_manual_refund:
            order.append_admin_note(
                f"Auto-refund not available for {refund.provider} - please process refund manually."
            )
            await self.orders.save(order)
        else:
            order.append_admin_note(
                f"Auto-refund FAILED: {refund.error}. Please process refund manually."
            )
            await self.orders.save(order)

        return outcome
