"""
Checkout schemas.

This module defines Pydantic schemas for opening a checkout: the cart lines
and addresses submitted by the storefront, and the created order returned
with the provider checkout URL.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.database.models.order import PaymentFlow


class SelectedOption(BaseModel):
    """Add-on selected for a cart line."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., max_length=255)
    price: Decimal = Field(default=Decimal("0"), ge=0)


class CheckoutLineItem(BaseModel):
    """Cart line submitted at checkout."""

    product_id: UUID
    quantity: int = Field(..., gt=0, le=10000)
    unit_price: Decimal = Field(..., ge=0)
    product_name: Optional[str] = Field(None, max_length=255)
    product_sku: Optional[str] = Field(None, max_length=100)
    product_image: Optional[str] = Field(None, max_length=1024)
    selected_options: list[SelectedOption] = Field(default_factory=list)


class CheckoutSessionRequest(BaseModel):
    """Request schema for opening a checkout."""

    store_id: UUID
    customer_email: str = Field(..., max_length=255)
    items: list[CheckoutLineItem] = Field(..., min_length=1)
    shipping_address: dict[str, Any] = Field(default_factory=dict)
    billing_address: Optional[dict[str, Any]] = None
    payment_method_id: Optional[UUID] = Field(
        None,
        description="Store payment method; classifies the flow as online or offline",
    )
    payment_flow: Optional[PaymentFlow] = Field(
        None,
        description="Explicit flow, overrides the payment method classification",
    )
    customer_id: Optional[UUID] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    payment_fee_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    coupon_code: Optional[str] = Field(None, max_length=100)
    delivery_preferences: Optional[dict[str, Any]] = None

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate and normalize email format."""
        email = v.strip().lower()
        if "@" not in email or "." not in email.split("@")[1]:
            raise ValueError("Invalid email format")
        return email

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class StockShortfallResponse(BaseModel):
    product_id: UUID
    sku: Optional[str] = None
    name: str
    requested: int
    available: int


class CheckoutSessionResponse(BaseModel):
    """Response schema for an opened checkout."""

    order_id: UUID
    order_number: str
    payment_reference: str
    payment_flow: PaymentFlow
    status: str
    checkout_url: Optional[str] = None
    shortfalls: list[StockShortfallResponse] = Field(default_factory=list)
