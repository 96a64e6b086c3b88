"""
Notification record model, the idempotency oracle for order emails.

Each committed row states that one email of one kind went to one recipient
for one order. Rows are never updated or deleted. The partial unique index on
``(order_id, kind)`` for non-resend rows guarantees that automatic dispatch
sends each kind at most once per order; explicit staff resends are logged
with ``is_resend`` set and fall outside the index.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    String,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base, UUIDMixin


class NotificationKind(str, enum.Enum):
    """Notification kinds sent for an order, named after their templates."""

    ORDER_CONFIRMATION = "order_confirmation"
    INVOICE = "invoice"
    SHIPMENT = "shipment"
    STOCK_ISSUE_CUSTOMER = "stock_issue_customer"
    STOCK_ISSUE_ADMIN = "stock_issue_admin"
    STOCK_ISSUE_REFUNDED = "stock_issue_refunded"

    @property
    def is_resendable(self) -> bool:
        """Kinds staff may resend manually."""
        return self in (
            NotificationKind.ORDER_CONFIRMATION,
            NotificationKind.INVOICE,
            NotificationKind.SHIPMENT,
        )


class NotificationRecord(Base, UUIDMixin):
    """
    Append-only log of sent order notifications.

    Attributes:
        order_id: Order the notification belongs to
        store_id: Tenant store that sent it
        kind: Notification kind
        recipient: Email address it was sent to
        sent_at: When the send was recorded
        is_resend: True for explicit staff resends
        provider_message_id: Message id returned by the email provider
    """

    __tablename__ = "notification_records"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    store_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
    )

    kind: Mapped[NotificationKind] = mapped_column(
        SQLEnum(
            NotificationKind,
            name="notification_kind",
            native_enum=False,
            length=50,
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        nullable=False,
    )

    recipient: Mapped[str] = mapped_column(String(255), nullable=False)

    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    is_resend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index(
            "uq_notification_records_order_kind",
            "order_id",
            "kind",
            unique=True,
            postgresql_where=text("is_resend = false"),
            sqlite_where=text("is_resend = 0"),
        ),
        {"comment": "Append-only log of sent order notifications"},
    )
