"""
Store-scoped configuration read by the reconciliation services.

Stores, their payment methods and customers are managed by other parts of
the platform; this service only reads them.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import (
    Boolean,
    Enum as SQLEnum,
    Index,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base, BaseModel, TimestampMixin
from storefront.database.models.order import PaymentFlow


class StockIssueHandling(str, enum.Enum):
    """What to do when a confirmed order cannot be fulfilled from stock."""

    MANUAL_REVIEW = "manual_review"
    AUTO_REFUND = "auto_refund"


class StoreSettings(Base, TimestampMixin):
    """
    Per-store settings consumed by compensation and notification dispatch.

    Attributes:
        store_id: Tenant store identifier (primary key)
        owner_email: Address receiving actionable stock issue emails
        stripe_account_id: Connected payment account of the store
        stock_issue_handling: Shortfall policy
        auto_invoice_enabled: Send the invoice email after confirmation
        auto_invoice_pdf_enabled: Attach a PDF invoice to that email
        auto_ship_enabled: Send the shipment email and mark the order shipped
    """

    __tablename__ = "store_settings"

    store_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    stripe_account_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Connected payment account of the store",
    )

    stock_issue_handling: Mapped[StockIssueHandling] = mapped_column(
        SQLEnum(
            StockIssueHandling,
            name="stock_issue_handling",
            native_enum=False,
            length=32,
            values_callable=lambda values: [v.value for v in values],
        ),
        nullable=False,
        default=StockIssueHandling.MANUAL_REVIEW,
    )

    auto_invoice_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_invoice_pdf_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_ship_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = ({"comment": "Store settings read by reconciliation"},)


class PaymentMethod(BaseModel):
    """Payment method offered by a store, classifying its payment flow."""

    __tablename__ = "payment_methods"

    store_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    payment_flow: Mapped[PaymentFlow] = mapped_column(
        SQLEnum(
            PaymentFlow,
            name="payment_method_flow",
            native_enum=False,
            length=16,
            values_callable=lambda values: [v.value for v in values],
        ),
        nullable=False,
        default=PaymentFlow.ONLINE,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Customer(BaseModel):
    """Registered storefront customer."""

    __tablename__ = "customers"

    store_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_customers_store_email", "store_id", "email", unique=True),
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
