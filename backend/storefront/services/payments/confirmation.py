"""
Payment confirmation processor.

This module drives an order from pending to processing/paid exactly once,
whichever trigger gets there first: the platform webhook, the connected
account webhook, the client finalize call or the pending order sweep. The
transition is a single conditional UPDATE; only the caller that wins it runs
the stock reconciliation engine. Losers observe an already settled order
and do nothing except let the (deduplicated) notification follow-up run.
"""

import asyncio
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import bind_store_id, get_logger
from storefront.database.models.order import (
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentFlow,
    PaymentStatus,
)
from storefront.services.inventory.reconciliation import (
    StockDeductionResult,
    StockReconciliationEngine,
    StockShortfall,
)
from storefront.services.inventory.repository import ProductRepository
from storefront.services.orders.intake import generate_order_number
from storefront.services.orders.repository import OrderConflictError, OrderRepository
from storefront.services.payments.currency import from_minor_units, to_decimal
from storefront.services.payments.events import (
    CheckoutSessionCompleted,
    PaymentEvent,
    PaymentIntentSucceeded,
    UnhandledEvent,
    as_dict,
    checkout_session_from_object,
    get_field,
)
from storefront.services.payments.stripe_client import StripeClient, StripeClientError
from storefront.services.stores.repository import StoreRepository

logger = get_logger(__name__)


class PaymentConfirmationError(Exception):
    """Base exception for payment confirmation errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class PaymentVerificationError(PaymentConfirmationError):
    """Raised when a checkout session cannot be verified with the provider."""

    pass


class PaymentEventValidationError(PaymentConfirmationError):
    """Raised when a provider event or finalize request is missing data."""

    pass


@dataclass
class ConfirmationOutcome:
    """
    What a confirmation attempt did, handed to the post-confirmation follow-up.

    ``transitioned`` is True only for the single caller that moved the order
    out of pending; only that caller carries a deduction result.
    """

    order_id: uuid.UUID
    store_id: uuid.UUID
    order_number: str
    transitioned: bool
    deduction: Optional[StockDeductionResult] = None
    payment_intent_id: Optional[str] = None
    stripe_account: Optional[str] = None

    @property
    def already_settled(self) -> bool:
        return not self.transitioned

    @property
    def shortfalls(self) -> list[StockShortfall]:
        return self.deduction.shortfalls if self.deduction else []


@dataclass
class FinalizeResult:
    success: bool
    payment_status: str
    already_finalized: bool = False
    outcome: Optional[ConfirmationOutcome] = None


def _parse_store_id(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError) as e:
        raise PaymentEventValidationError("Invalid store_id", store_id=value) from e


def _optional_uuid(value: Any) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value)) if value else None
    except ValueError:
        return None


class PaymentConfirmationProcessor:
    """
    Confirms orders from provider events and client finalize calls.

    Args:
        session: Async database session of the current request or task
        stripe_client: Stripe client used to verify sessions and read line items
    """

    def __init__(self, session: AsyncSession, stripe_client: StripeClient):
        self.stripe_client = stripe_client
        self.orders = OrderRepository(session)
        self.stores = StoreRepository(session)
        self.engine = StockReconciliationEngine(ProductRepository(session))

    async def handle_event(self, event: PaymentEvent) -> Optional[ConfirmationOutcome]:
        """
        Process a decoded provider event.

        Args:
            event: Decoded webhook event

        Returns:
            ConfirmationOutcome when an order was confirmed or found settled,
            None when the event required no action

        Raises:
            PaymentEventValidationError: If a completed session lacks store metadata
        """
        if isinstance(event, CheckoutSessionCompleted):
            if not event.is_paid:
                logger.info(
                    "Checkout session completed without payment, awaiting async payment",
                    event_id=event.event_id,
                    session_id=event.session_id,
                    payment_status=event.payment_status,
                )
                return None
            if not event.store_id:
                raise PaymentEventValidationError(
                    "Missing store_id in checkout session metadata",
                    event_id=event.event_id,
                    session_id=event.session_id,
                )
            return await self.confirm_checkout_session(event)

        if isinstance(event, PaymentIntentSucceeded):
            return await self._handle_payment_intent(event)

        if isinstance(event, UnhandledEvent):
            logger.info(
                "Ignoring unhandled payment event",
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return None

        raise TypeError(f"Unknown payment event: {type(event).__name__}")

    async def finalize(self, session_id: Optional[str], store_id: Any) -> FinalizeResult:
        """
        Confirm an order from the client after the checkout redirect.

        The checkout session is re-read from the provider; the client's word
        is never taken as proof of payment.

        Args:
            session_id: Provider checkout session id
            store_id: Store the session belongs to

        Returns:
            FinalizeResult describing the settlement state

        Raises:
            PaymentEventValidationError: If either argument is missing
            PaymentVerificationError: If the provider cannot verify the session
        """
        if not session_id or not store_id:
            raise PaymentEventValidationError("session_id and store_id are required")

        store_uuid = _parse_store_id(store_id)
        bind_store_id(str(store_uuid))
        settings = await self.stores.get_settings(store_uuid)
        account = settings.stripe_account_id

        try:
            session = await asyncio.to_thread(
                self.stripe_client.retrieve_checkout_session,
                session_id,
                stripe_account=account,
            )
        except StripeClientError as e:
            raise PaymentVerificationError(
                "Could not verify checkout session",
                session_id=session_id,
                code=e.code,
            ) from e

        completed = checkout_session_from_object(session, account=account)
        if completed.store_id and completed.store_id != str(store_uuid):
            raise PaymentVerificationError(
                "Checkout session does not belong to this store",
                session_id=session_id,
                store_id=str(store_uuid),
            )

        if not completed.is_paid:
            logger.info(
                "Finalize called for unpaid checkout session",
                session_id=session_id,
                payment_status=completed.payment_status,
            )
            return FinalizeResult(success=False, payment_status=completed.payment_status)

        outcome = await self.confirm_checkout_session(replace(completed, store_id=str(store_uuid)))
        return FinalizeResult(
            success=True,
            payment_status=PaymentStatus.PAID.value,
            already_finalized=outcome.already_settled,
            outcome=outcome,
        )

    async def confirm_checkout_session(
        self,
        completed: CheckoutSessionCompleted,
    ) -> ConfirmationOutcome:
        """
        Confirm the order of a paid checkout session.

        Looks the order up by checkout reference, then by payment intent. A
        missing order is rebuilt from the session's line items directly in
        the confirmed state.

        Args:
            completed: Paid checkout session carrying ``store_id``

        Returns:
            ConfirmationOutcome
        """
        store_id = _parse_store_id(completed.store_id)
        bind_store_id(str(store_id))

        order = await self.orders.find_by_references(
            completed.session_id,
            completed.payment_intent_id,
        )
        if order is None:
            return await self._create_confirmed_order(completed, store_id)

        if order.store_id != store_id:
            logger.warning(
                "Checkout session store differs from order store",
                order_id=str(order.id),
                order_store_id=str(order.store_id),
                session_store_id=str(store_id),
            )

        return await self.confirm_order(
            order,
            payment_intent_id=completed.payment_intent_id,
            stripe_account=completed.account,
        )

    async def confirm_order(
        self,
        order: Order,
        payment_intent_id: Optional[str] = None,
        stripe_account: Optional[str] = None,
    ) -> ConfirmationOutcome:
        """
        Run the guarded transition for an existing order.

        Only the caller whose conditional update matched runs the stock
        engine, in the same transaction as the transition.
        """
        transitioned = await self.orders.mark_confirmed(order.id, payment_intent_id)
        await self.orders.reload(order)

        outcome = ConfirmationOutcome(
            order_id=order.id,
            store_id=order.store_id,
            order_number=order.order_number,
            transitioned=transitioned,
            payment_intent_id=payment_intent_id or order.stripe_payment_intent_id,
            stripe_account=stripe_account,
        )

        if not transitioned:
            logger.info(
                "Order already settled, skipping stock reconciliation",
                order_id=str(order.id),
                status=order.status.value,
                payment_status=order.payment_status.value,
            )
            return outcome

        logger.info(
            "Order payment confirmed",
            order_id=str(order.id),
            order_number=order.order_number,
            payment_intent_id=outcome.payment_intent_id,
        )
        outcome.deduction = await self._deduct(order)
        return outcome

    async def _handle_payment_intent(
        self,
        event: PaymentIntentSucceeded,
    ) -> Optional[ConfirmationOutcome]:
        try:
            session = await asyncio.to_thread(
                self.stripe_client.find_checkout_session_for_payment_intent,
                event.payment_intent_id,
                stripe_account=event.account,
            )
        except StripeClientError as e:
            raise PaymentVerificationError(
                "Could not look up checkout session for payment intent",
                payment_intent_id=event.payment_intent_id,
                code=e.code,
            ) from e

        if session is None:
            order = await self.orders.find_by_references(None, event.payment_intent_id)
            if order is None:
                logger.info(
                    "No checkout session or order for payment intent",
                    payment_intent_id=event.payment_intent_id,
                )
                return None
            return await self.confirm_order(
                order,
                payment_intent_id=event.payment_intent_id,
                stripe_account=event.account,
            )

        completed = checkout_session_from_object(
            session,
            event_id=event.event_id,
            account=event.account,
        )
        if not completed.store_id:
            completed = replace(completed, store_id=event.store_id)
        if not completed.store_id:
            raise PaymentEventValidationError(
                "Missing store_id for payment intent",
                payment_intent_id=event.payment_intent_id,
            )
        if completed.payment_intent_id is None:
            completed = replace(completed, payment_intent_id=event.payment_intent_id)

        return await self.confirm_checkout_session(completed)

    async def _create_confirmed_order(
        self,
        completed: CheckoutSessionCompleted,
        store_id: uuid.UUID,
    ) -> ConfirmationOutcome:
        logger.warning(
            "No order for paid checkout session, creating from session line items",
            session_id=completed.session_id,
            store_id=str(store_id),
        )

        try:
            line_items = await asyncio.to_thread(
                self.stripe_client.list_checkout_session_line_items,
                completed.session_id,
                stripe_account=completed.account,
            )
        except StripeClientError as e:
            raise PaymentVerificationError(
                "Could not read checkout session line items",
                session_id=completed.session_id,
                code=e.code,
            ) from e

        currency = completed.currency.upper()
        items = [self._item_from_line(line, currency) for line in line_items]
        totals = completed.total_details
        subtotal = (
            from_minor_units(completed.amount_subtotal, currency)
            if completed.amount_subtotal is not None
            else to_decimal(sum((item["line_total"] for item in items), Decimal("0")))
        )

        order_data = {
            "store_id": store_id,
            "order_number": generate_order_number(),
            "payment_reference": completed.session_id,
            "stripe_payment_intent_id": completed.payment_intent_id,
            "status": OrderStatus.PROCESSING,
            "payment_status": PaymentStatus.PAID,
            "fulfillment_status": FulfillmentStatus.PENDING,
            "payment_flow": PaymentFlow.ONLINE,
            "currency": currency,
            "subtotal": subtotal,
            "tax_amount": from_minor_units(totals.get("amount_tax"), currency),
            "shipping_amount": from_minor_units(totals.get("amount_shipping"), currency),
            "discount_amount": from_minor_units(totals.get("amount_discount"), currency),
            "total_amount": (
                from_minor_units(completed.amount_total, currency)
                if completed.amount_total is not None
                else subtotal
            ),
            "customer_email": completed.customer_email or "",
            "shipping_address": {},
            "billing_address": {},
        }

        try:
            order = await self.orders.create_order_with_items(order_data, items)
        except OrderConflictError:
            # A concurrent trigger created it first and owns the deduction.
            order = await self.orders.get_by_payment_reference(completed.session_id)
            return await self.confirm_order(
                order,
                payment_intent_id=completed.payment_intent_id,
                stripe_account=completed.account,
            )

        outcome = ConfirmationOutcome(
            order_id=order.id,
            store_id=order.store_id,
            order_number=order.order_number,
            transitioned=True,
            payment_intent_id=completed.payment_intent_id,
            stripe_account=completed.account,
        )
        outcome.deduction = await self._deduct(order)
        return outcome

    @staticmethod
    def _item_from_line(line: Any, currency: str) -> dict[str, Any]:
        price = get_field(line, "price")
        product = get_field(price, "product")
        if isinstance(product, str):
            product = None
        product_metadata = as_dict(get_field(product, "metadata"))
        quantity = int(get_field(line, "quantity", 1))
        line_total = from_minor_units(
            get_field(line, "amount_subtotal", get_field(line, "amount_total", 0)),
            currency,
        )

        return {
            "product_id": _optional_uuid(product_metadata.get("product_id")),
            "quantity": quantity,
            "unit_price": from_minor_units(get_field(price, "unit_amount", 0), currency),
            "line_total": line_total,
            "selected_options": [],
            "product_name": (
                get_field(product, "name") or get_field(line, "description") or "Product"
            ),
            "product_sku": product_metadata.get("sku") or None,
            "product_image": None,
        }

    async def _deduct(self, order: Order) -> StockDeductionResult:
        deduction = await self.engine.deduct(order.store_id, order.items, order_id=order.id)
        if not deduction.success:
            order.fulfillment_status = FulfillmentStatus.STOCK_ISSUE
            await self.orders.save(order)
        return deduction
