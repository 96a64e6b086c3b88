"""
Payment confirmation schemas.

This module defines Pydantic schemas for the webhook acknowledgement and
the client finalize call.
"""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True


class FinalizeRequest(BaseModel):
    """
    Request schema for the client finalize call.

    Both fields are optional at the schema level so that a missing value is
    reported as a 400 by the confirmation processor.
    """

    session_id: Optional[str] = Field(None, max_length=255)
    store_id: Optional[str] = Field(None, max_length=64)


class FinalizeResponse(BaseModel):
    """Settlement state of a checkout session."""

    success: bool
    payment_status: str
    already_finalized: bool = False
    order_id: Optional[UUID] = None
    order_number: Optional[str] = None
