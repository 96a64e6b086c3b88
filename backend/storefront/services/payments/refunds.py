"""
Refund gateway used by stock-shortfall compensation.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from storefront.core.logging import get_logger
from storefront.database.models.order import Order
from storefront.services.payments.stripe_client import StripeClient, StripeClientError

logger = get_logger(__name__)

REFUNDABLE_PROVIDERS = frozenset({"stripe"})


@dataclass(frozen=True)
class RefundResult:
    """
    Outcome of a refund attempt.

    ``requires_manual_refund`` is set when the provider cannot refund this
    payment automatically at all, as opposed to an attempt that failed.
    """

    success: bool
    provider: str
    refund_id: Optional[str] = None
    error: Optional[str] = None
    requires_manual_refund: bool = False


class RefundGateway:
    """
    Issues full refunds through the provider that collected the payment.

    Args:
        stripe_client: Configured Stripe client
    """

    def __init__(self, stripe_client: StripeClient):
        self.stripe_client = stripe_client

    async def refund_order(
        self,
        order: Order,
        reason: str,
        payment_intent_id: Optional[str] = None,
        stripe_account: Optional[str] = None,
    ) -> RefundResult:
        """
        Refund the full payment of an order.

        Args:
            order: Order whose payment is refunded
            reason: Internal reason, stored in refund metadata
            payment_intent_id: Payment intent, defaults to the one on the order
            stripe_account: Connected account that took the payment

        Returns:
            RefundResult; never raises for provider failures
        """
        provider = order.payment_provider or "stripe"

        if provider not in REFUNDABLE_PROVIDERS:
            logger.warning(
                "Automatic refund not supported for provider",
                order_id=str(order.id),
                provider=provider,
            )
            return RefundResult(success=False, provider=provider, requires_manual_refund=True)

        intent_id = payment_intent_id or order.stripe_payment_intent_id
        if not intent_id:
            return RefundResult(
                success=False,
                provider=provider,
                error="No payment intent recorded for order",
            )

        try:
            refund = await asyncio.to_thread(
                self.stripe_client.create_refund,
                intent_id,
                metadata={
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "reason": reason,
                },
                stripe_account=stripe_account,
                idempotency_key=f"refund-{order.id}-{reason}",
            )
        except StripeClientError as e:
            logger.error(
                "Refund attempt failed",
                order_id=str(order.id),
                payment_intent_id=intent_id,
                error=str(e),
                code=e.code,
            )
            return RefundResult(success=False, provider=provider, error=str(e))

        return RefundResult(success=True, provider=provider, refund_id=refund.id)
