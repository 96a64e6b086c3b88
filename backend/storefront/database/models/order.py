"""
Order and order line models for payment reconciliation.

An Order is written once at checkout intake, keyed by the provider checkout
reference, and afterwards only updated: by the payment confirmation guard,
the stock engine (fulfillment status), the compensation handler and staff
status changes. Order lines snapshot product data so that later catalog edits
or deletions never alter a placed order.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import BaseModel, JSONType


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    Attributes:
        PENDING: Created at checkout, payment not yet confirmed
        PROCESSING: Payment confirmed (or collected on fulfillment)
        SHIPPED: Handed to the carrier
        DELIVERED: Received by the customer
        CANCELLED: Cancelled by the customer, staff or auto-refund
        REFUNDED: Refunded after payment
        RETURN_REQUESTED: Customer asked to return a shipped order
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    RETURN_REQUESTED = "return_requested"

    @property
    def has_deducted_stock(self) -> bool:
        """Statuses an order can only reach after its stock was deducted."""
        return self in (
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        )


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class FulfillmentStatus(str, Enum):
    """Fulfillment status enumeration."""

    PENDING = "pending"
    STOCK_ISSUE = "stock_issue"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class PaymentFlow(str, Enum):
    """
    How the payment for an order is collected.

    ONLINE orders need external confirmation from the payment provider;
    OFFLINE orders (cash or bank transfer on delivery) are confirmed at
    placement.
    """

    ONLINE = "online"
    OFFLINE = "offline"


class Order(BaseModel):
    """
    Storefront order keyed by the provider checkout reference.

    Attributes:
        store_id: Tenant store owning the order
        order_number: Human-readable order number
        payment_reference: Provider checkout session id (idempotency key)
        stripe_payment_intent_id: Provider payment intent, when known
        status: Order lifecycle status
        payment_status: Payment status
        fulfillment_status: Fulfillment status
        payment_flow: Online or offline payment collection
        customer_email: Email the order is bound to
        customer_id: Registered customer, only when it matched the email
        admin_notes: Operator-facing notes appended on exceptional paths
    """

    __tablename__ = "orders"

    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Tenant store identifier",
    )

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    payment_reference: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Provider checkout reference, unique per order",
    )

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Provider payment intent identifier",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
        comment="Current payment status",
    )

    fulfillment_status: Mapped[FulfillmentStatus] = mapped_column(
        SQLEnum(
            FulfillmentStatus,
            name="fulfillment_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=FulfillmentStatus.PENDING,
        comment="Current fulfillment status",
    )

    payment_flow: Mapped[PaymentFlow] = mapped_column(
        SQLEnum(
            PaymentFlow,
            name="payment_flow",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PaymentFlow.ONLINE,
        comment="Online or offline payment collection",
    )

    payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Store payment method selected at checkout",
    )

    payment_provider: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="stripe",
        comment="Payment provider handling the order",
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        comment="ISO 4217 currency code",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Sum of line totals",
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    shipping_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    payment_fee_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Total charged to the customer",
    )

    customer_email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Customer email the order is bound to",
    )

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
        comment="Registered customer, validated against the email",
    )

    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    billing_address: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    delivery_preferences: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
    )

    coupon_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    admin_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Operator notes appended on exceptional paths",
    )

    refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    __table_args__ = (
        Index("ix_orders_store_status", "store_id", "status", "payment_status"),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_amount_non_negative"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("discount_amount >= 0", name="ck_orders_discount_non_negative"),
        {"comment": "Storefront orders keyed by provider checkout reference"},
    )

    def append_admin_note(self, note: str) -> None:
        self.admin_notes = f"{self.admin_notes}\n{note}" if self.admin_notes else note


class OrderItem(BaseModel):
    """
    Order line with a denormalized product snapshot.

    ``product_id`` is deliberately not a foreign key: the line must survive
    deletion of the product it was bought from.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    line_total: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
    )

    selected_options: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Selected add-ons, opaque structured data",
    )

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    product_image: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
        {"comment": "Order lines with product snapshot"},
    )
