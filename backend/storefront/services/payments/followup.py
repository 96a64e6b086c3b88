"""
Post-confirmation follow-up: shortfall compensation, then order emails.

The follow-up runs after the confirming request has been acknowledged, in a
database session of its own. Its failures are logged and never retried
automatically; the notification log keeps later triggers from sending
anything twice.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.logging import bind_store_id, get_logger, log_performance
from storefront.database.connection import get_session
from storefront.database.models.order import Order
from storefront.services.compensation.handler import CompensationHandler
from storefront.services.notifications.dispatcher import NotificationDispatcher, PdfRenderer
from storefront.services.notifications.invoice_pdf import render_invoice_pdf
from storefront.services.notifications.service import EmailService
from storefront.services.orders.repository import OrderRepository
from storefront.services.payments.confirmation import ConfirmationOutcome
from storefront.services.payments.refunds import RefundGateway
from storefront.services.payments.stripe_client import StripeClient
from storefront.services.stores.repository import StoreRepository

logger = get_logger(__name__)


class PostConfirmationWorkflow:
    """
    Runs compensation and notifications for a confirmation outcome.

    Args:
        stripe_client: Stripe client used for refunds
        email_service: Transactional email service
        session_factory: Session factory, defaults to the process-wide one
        pdf_renderer: Invoice PDF renderer
    """

    def __init__(
        self,
        stripe_client: StripeClient,
        email_service: EmailService,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        pdf_renderer: PdfRenderer = render_invoice_pdf,
    ):
        self.stripe_client = stripe_client
        self.email_service = email_service
        self.session_factory = session_factory
        self.pdf_renderer = pdf_renderer

    async def run(self, outcome: ConfirmationOutcome) -> None:
        """Run the follow-up in a fresh session; errors are logged, not raised."""
        bind_store_id(str(outcome.store_id))
        try:
            with log_performance(logger, "post_confirmation", order_id=str(outcome.order_id)):
                async with get_session(self.session_factory) as session:
                    await self.run_in_session(session, outcome)
        except Exception as e:  # noqa: BLE001
            logger.error(
                "Post-confirmation follow-up failed",
                order_id=str(outcome.order_id),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    async def run_in_session(self, session: AsyncSession, outcome: ConfirmationOutcome) -> None:
        """
        Compensate shortfalls, then send the confirmation chain.

        An order cancelled by an automatic refund gets no confirmation email.
        """
        order = await OrderRepository(session).get_order_by_id(outcome.order_id)
        if order is None:
            logger.warning("Order vanished before follow-up", order_id=str(outcome.order_id))
            return

        stores = StoreRepository(session)
        store = await stores.get_settings(order.store_id)
        customer_name = await self._customer_name(stores, order)
        dispatcher = NotificationDispatcher(session, self.email_service, self.pdf_renderer)

        if outcome.shortfalls:
            handler = CompensationHandler(session, dispatcher, RefundGateway(self.stripe_client))
            compensation = await handler.handle(
                order,
                store,
                outcome.shortfalls,
                payment_intent_id=outcome.payment_intent_id,
                stripe_account=outcome.stripe_account,
                customer_name=customer_name,
            )
            if compensation.refunded:
                return

        await dispatcher.send_confirmation_chain(order, store, customer_name)

    @staticmethod
    async def _customer_name(stores: StoreRepository, order: Order) -> Optional[str]:
        if order.customer_id is None:
            return None
        customer = await stores.get_customer(order.store_id, order.customer_id)
        return (customer.full_name or None) if customer else None
