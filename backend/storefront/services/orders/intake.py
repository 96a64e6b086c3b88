"""
Checkout intake creating pending orders before payment completes.

This module implements CheckoutIntake, which writes exactly one Order and
its lines per provider checkout reference at checkout time, so that payment
confirmation later only has to update an existing row. Online orders are
created pending and leave stock untouched; offline (pay on fulfillment)
orders are created processing and have their stock deducted immediately.
"""

import asyncio
import secrets
import string
import time
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order import (
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentFlow,
    PaymentStatus,
)
from storefront.services.inventory.reconciliation import (
    StockReconciliationEngine,
    StockShortfall,
)
from storefront.services.inventory.repository import ProductRepository
from storefront.services.orders.repository import OrderRepository
from storefront.services.payments.currency import to_decimal, to_minor_units
from storefront.services.payments.stripe_client import StripeClient
from storefront.services.stores.repository import StoreRepository, StoreRepositoryError

logger = get_logger(__name__)

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
ZERO = Decimal("0.00")


class CheckoutIntakeError(Exception):
    """Base exception for checkout intake errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class CheckoutValidationError(CheckoutIntakeError):
    """Raised when a checkout request is malformed."""

    pass


def generate_document_number(prefix: str, suffix_length: int) -> str:
    """Generate a number like ``ORD-1718000000000-K3QZ8A`` from a prefix and epoch millis."""
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(suffix_length))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def generate_order_number() -> str:
    return generate_document_number("ORD", 6)


def generate_offline_reference() -> str:
    return f"offline_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class CheckoutLine:
    """One cart line as submitted at checkout."""

    product_id: uuid.UUID
    quantity: int
    unit_price: Decimal
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    product_image: Optional[str] = None
    selected_options: tuple[dict[str, Any], ...] = ()

    @property
    def options_price(self) -> Decimal:
        return sum(
            (to_decimal(option.get("price") or 0) for option in self.selected_options),
            ZERO,
        )

    @property
    def line_total(self) -> Decimal:
        return to_decimal((to_decimal(self.unit_price) + self.options_price) * self.quantity)


@dataclass(frozen=True)
class CheckoutRequest:
    """Everything intake needs to create one order."""

    store_id: uuid.UUID
    customer_email: str
    lines: tuple[CheckoutLine, ...]
    shipping_address: dict[str, Any] = field(default_factory=dict)
    billing_address: Optional[dict[str, Any]] = None
    payment_reference: Optional[str] = None
    payment_flow: Optional[PaymentFlow] = None
    payment_method_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    currency: Optional[str] = None
    tax_amount: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    payment_fee_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    coupon_code: Optional[str] = None
    delivery_preferences: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    payment_fee_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal


@dataclass
class IntakeResult:
    """Created order plus any shortfalls found by an immediate deduction."""

    order: Order
    shortfalls: list[StockShortfall] = field(default_factory=list)
    checkout_url: Optional[str] = None


def calculate_totals(
    lines: tuple[CheckoutLine, ...],
    tax_amount: Decimal = ZERO,
    shipping_amount: Decimal = ZERO,
    payment_fee_amount: Decimal = ZERO,
    discount_amount: Decimal = ZERO,
) -> OrderTotals:
    """
    Compute order totals in Decimal major units.

    The total is ``subtotal + tax + shipping + fee - discount``, clamped at zero.
    """
    subtotal = to_decimal(sum((line.line_total for line in lines), ZERO))
    tax = to_decimal(tax_amount)
    shipping = to_decimal(shipping_amount)
    fee = to_decimal(payment_fee_amount)
    discount = to_decimal(discount_amount)
    total = max(subtotal + tax + shipping + fee - discount, ZERO)
    return OrderTotals(
        subtotal=subtotal,
        tax_amount=tax,
        shipping_amount=shipping,
        payment_fee_amount=fee,
        discount_amount=discount,
        total_amount=to_decimal(total),
    )


def build_provider_line_items(
    lines: tuple[CheckoutLine, ...],
    currency: str,
) -> list[dict[str, Any]]:
    """Translate checkout lines to Stripe ``price_data`` line items in minor units."""
    line_items = []
    for line in lines:
        unit_amount = to_decimal(line.unit_price) + line.options_price
        line_items.append(
            {
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": to_minor_units(unit_amount, currency),
                    "product_data": {
                        "name": line.product_name or "Product",
                        "metadata": {
                            "product_id": str(line.product_id),
                            "sku": line.product_sku or "",
                        },
                    },
                },
                "quantity": line.quantity,
            }
        )
    return line_items


class CheckoutIntake:
    """
    Creates pending orders at checkout time.

    Attributes:
        orders: Order repository
        stores: Store configuration repository
        products: Product repository used for line snapshots
        engine: Stock engine used for offline orders
    """

    def __init__(self, session: AsyncSession):
        self.orders = OrderRepository(session)
        self.stores = StoreRepository(session)
        self.products = ProductRepository(session)
        self.engine = StockReconciliationEngine(self.products)

    async def open_checkout(
        self,
        request: CheckoutRequest,
        stripe_client: StripeClient,
        success_url: str,
        cancel_url: str,
    ) -> IntakeResult:
        """
        Create the provider checkout session when needed, then the order.

        Online flows get a Stripe Checkout Session (on the store's connected
        account when one is configured) whose id becomes the order's
        checkout reference. Offline flows get a generated reference.

        Args:
            request: Checkout request without a payment reference
            stripe_client: Stripe client
            success_url: Redirect after payment
            cancel_url: Redirect after abandonment

        Returns:
            IntakeResult with the provider checkout URL for online flows
        """
        self._validate(request, require_reference=False)
        flow = await self._resolve_flow(request)
        settings = await self.stores.get_settings(request.store_id)
        currency = (request.currency or settings.currency).upper()

        if flow == PaymentFlow.OFFLINE:
            return await self.create_order(
                replace(
                    request,
                    payment_reference=generate_offline_reference(),
                    payment_flow=flow,
                    currency=currency,
                )
            )

        session = await asyncio.to_thread(
            stripe_client.create_checkout_session,
            build_provider_line_items(request.lines, currency),
            customer_email=request.customer_email,
            metadata={"store_id": str(request.store_id)},
            success_url=success_url,
            cancel_url=cancel_url,
            stripe_account=settings.stripe_account_id,
        )
        result = await self.create_order(
            replace(request, payment_reference=session.id, payment_flow=flow, currency=currency)
        )
        result.checkout_url = session.url
        return result

    async def create_order(self, request: CheckoutRequest) -> IntakeResult:
        """
        Create the order for a checkout reference.

        Args:
            request: Checkout request carrying the provider checkout reference

        Returns:
            IntakeResult with the created order

        Raises:
            CheckoutValidationError: If the request is malformed
            OrderConflictError: If an order already exists for the reference
            OrderCreationError: If persisting the order fails
        """
        self._validate(request, require_reference=True)

        flow = await self._resolve_flow(request)
        customer_id = await self._resolve_customer_id(request)
        currency = request.currency
        if currency is None:
            currency = (await self.stores.get_settings(request.store_id)).currency

        totals = calculate_totals(
            request.lines,
            tax_amount=request.tax_amount,
            shipping_amount=request.shipping_amount,
            payment_fee_amount=request.payment_fee_amount,
            discount_amount=request.discount_amount,
        )

        order_data = {
            "store_id": request.store_id,
            "order_number": generate_order_number(),
            "payment_reference": request.payment_reference,
            "status": OrderStatus.PROCESSING if flow == PaymentFlow.OFFLINE else OrderStatus.PENDING,
            "payment_status": PaymentStatus.PENDING,
            "fulfillment_status": FulfillmentStatus.PENDING,
            "payment_flow": flow,
            "payment_method_id": request.payment_method_id,
            "currency": currency.upper(),
            "subtotal": totals.subtotal,
            "tax_amount": totals.tax_amount,
            "shipping_amount": totals.shipping_amount,
            "payment_fee_amount": totals.payment_fee_amount,
            "discount_amount": totals.discount_amount,
            "total_amount": totals.total_amount,
            "customer_email": request.customer_email,
            "customer_id": customer_id,
            "shipping_address": request.shipping_address,
            "billing_address": request.billing_address or request.shipping_address,
            "delivery_preferences": request.delivery_preferences,
            "coupon_code": request.coupon_code,
        }

        items = [await self._snapshot_line(request.store_id, line) for line in request.lines]
        order = await self.orders.create_order_with_items(order_data, items)

        result = IntakeResult(order=order)
        if flow == PaymentFlow.OFFLINE:
            deduction = await self.engine.deduct(order.store_id, order.items, order_id=order.id)
            if not deduction.success:
                order.fulfillment_status = FulfillmentStatus.STOCK_ISSUE
                order.append_admin_note(
                    "Stock issue detected: "
                    + ", ".join(s.describe() for s in deduction.shortfalls)
                )
                await self.orders.save(order)
            result.shortfalls = deduction.shortfalls

        logger.info(
            "Checkout intake completed",
            order_id=str(order.id),
            order_number=order.order_number,
            payment_flow=flow.value,
            total_amount=str(totals.total_amount),
            shortfall_count=len(result.shortfalls),
        )
        return result

    def _validate(self, request: CheckoutRequest, require_reference: bool) -> None:
        if request.store_id is None:
            raise CheckoutValidationError("store_id is required")
        if not request.customer_email:
            raise CheckoutValidationError("customer_email is required")
        if require_reference and not request.payment_reference:
            raise CheckoutValidationError("payment_reference is required")
        if not request.lines:
            raise CheckoutValidationError("At least one line item is required")

        for line in request.lines:
            if line.quantity <= 0:
                raise CheckoutValidationError(
                    "Line quantity must be positive",
                    product_id=str(line.product_id),
                    quantity=line.quantity,
                )
            if to_decimal(line.unit_price) < ZERO:
                raise CheckoutValidationError(
                    "Line unit price must not be negative",
                    product_id=str(line.product_id),
                )

        for name in ("tax_amount", "shipping_amount", "payment_fee_amount", "discount_amount"):
            if to_decimal(getattr(request, name)) < ZERO:
                raise CheckoutValidationError(f"{name} must not be negative")

    async def _resolve_flow(self, request: CheckoutRequest) -> PaymentFlow:
        if request.payment_flow is not None:
            return request.payment_flow
        return await self.stores.resolve_payment_flow(request.store_id, request.payment_method_id)

    async def _resolve_customer_id(self, request: CheckoutRequest) -> Optional[uuid.UUID]:
        """
        Keep a supplied customer id only when it belongs to the order email.

        A mismatch, unknown customer or failed lookup degrades to guest checkout.
        """
        if request.customer_id is None:
            return None

        try:
            customer = await self.stores.get_customer(request.store_id, request.customer_id)
        except (StoreRepositoryError, SQLAlchemyError) as e:
            logger.warning(
                "Customer lookup failed, continuing as guest checkout",
                store_id=str(request.store_id),
                customer_id=str(request.customer_id),
                error=str(e),
            )
            return None

        if customer is None:
            logger.warning(
                "Customer not found, continuing as guest checkout",
                store_id=str(request.store_id),
                customer_id=str(request.customer_id),
            )
            return None

        if customer.email.strip().lower() != request.customer_email.strip().lower():
            logger.warning(
                "Customer email mismatch, continuing as guest checkout",
                store_id=str(request.store_id),
                customer_id=str(request.customer_id),
            )
            return None

        return customer.id

    async def _snapshot_line(self, store_id: uuid.UUID, line: CheckoutLine) -> dict[str, Any]:
        product = await self.products.get_product(line.product_id, store_id)
        return {
            "product_id": line.product_id,
            "quantity": line.quantity,
            "unit_price": to_decimal(line.unit_price),
            "line_total": line.line_total,
            "selected_options": list(line.selected_options),
            "product_name": (product.name if product else None) or line.product_name or "Product",
            "product_sku": (product.sku if product else None) or line.product_sku,
            "product_image": (product.image_url if product else None) or line.product_image,
        }
