"""
Order management schemas.

This module defines Pydantic schemas for status changes and manual
notification resends.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.database.models.order import (
    FulfillmentStatus,
    OrderStatus,
    PaymentFlow,
    PaymentStatus,
)


class OrderStatusUpdateRequest(BaseModel):
    """Request schema for changing an order's status."""

    status: OrderStatus
    customer_email: Optional[str] = Field(
        None,
        max_length=255,
        description="Email the order belongs to, required for customer requests",
    )
    note: Optional[str] = Field(None, max_length=2000)


class OrderResponse(BaseModel):
    """Response schema for an order."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    order_number: str
    payment_reference: str
    status: OrderStatus
    payment_status: PaymentStatus
    fulfillment_status: FulfillmentStatus
    payment_flow: PaymentFlow
    currency: str
    total_amount: Decimal
    customer_email: str
    admin_notes: Optional[str] = None
    refund_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None


class NotificationResendResponse(BaseModel):
    """Response schema for a manual notification resend."""

    order_id: UUID
    kind: str
    recipient: str
    message_id: Optional[str] = None
