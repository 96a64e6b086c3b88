"""
Payment confirmation API endpoints for Stripe integration.

This module exposes the three confirmation triggers: the platform webhook,
the connected-account webhook and the client finalize call made after the
checkout redirect. Each one commits the guarded transition before the
response and leaves compensation and notifications to a background task.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request, status

from storefront.api.deps import (
    DatabaseSession,
    FollowupDep,
    StripeClientDep,
    limiter,
)
from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.schemas.payments import (
    FinalizeRequest,
    FinalizeResponse,
    WebhookAckResponse,
)
from storefront.services.payments.confirmation import (
    PaymentConfirmationProcessor,
    PaymentEventValidationError,
    PaymentVerificationError,
)
from storefront.services.payments.events import decode_event
from storefront.services.payments.stripe_client import (
    StripeClientError,
    WebhookChannel,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _finalize_rate_limit() -> str:
    return get_settings().finalize_rate_limit


async def _process_webhook(
    channel: WebhookChannel,
    request: Request,
    signature: Optional[str],
    db: DatabaseSession,
    stripe_client: StripeClientDep,
    followup: FollowupDep,
    background_tasks: BackgroundTasks,
) -> WebhookAckResponse:
    if not signature:
        logger.warning("Webhook received without signature", channel=channel.value)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Missing Stripe-Signature header", "code": "MISSING_SIGNATURE"},
        )

    payload = await request.body()

    try:
        event = stripe_client.construct_webhook_event(payload, signature, channel)
    except StripeClientError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": e.code or "INVALID_WEBHOOK"},
        )

    decoded = decode_event(event)
    processor = PaymentConfirmationProcessor(db, stripe_client)

    try:
        outcome = await processor.handle_event(decoded)
        await db.commit()

    except PaymentEventValidationError as e:
        logger.warning(
            "Webhook event rejected",
            channel=channel.value,
            error=str(e),
            context=e.context,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "VALIDATION_ERROR"},
        )

    except PaymentVerificationError as e:
        logger.error(
            "Webhook event could not be verified",
            channel=channel.value,
            error=str(e),
            context=e.context,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to process webhook", "code": "PROCESSING_ERROR"},
        )

    if outcome is not None:
        background_tasks.add_task(followup.run, outcome)
        logger.info(
            "Webhook processed",
            channel=channel.value,
            order_id=str(outcome.order_id),
            transitioned=outcome.transitioned,
        )

    return WebhookAckResponse(received=True)


@router.post(
    "/webhook",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    summary="Platform webhook",
    description="Receive Stripe events for the platform account",
)
async def platform_webhook(
    request: Request,
    db: DatabaseSession,
    stripe_client: StripeClientDep,
    followup: FollowupDep,
    background_tasks: BackgroundTasks,
    stripe_signature: Annotated[Optional[str], Header(alias="Stripe-Signature")] = None,
) -> WebhookAckResponse:
    """
    Handle platform-level Stripe webhook events.

    Raises:
        HTTPException: 400 for a missing or invalid signature, a malformed
            payload or a completed session without store metadata
    """
    return await _process_webhook(
        WebhookChannel.PLATFORM,
        request,
        stripe_signature,
        db,
        stripe_client,
        followup,
        background_tasks,
    )


@router.post(
    "/webhook/connect",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    summary="Connected account webhook",
    description="Receive Stripe events for stores' connected accounts",
)
async def connect_webhook(
    request: Request,
    db: DatabaseSession,
    stripe_client: StripeClientDep,
    followup: FollowupDep,
    background_tasks: BackgroundTasks,
    stripe_signature: Annotated[Optional[str], Header(alias="Stripe-Signature")] = None,
) -> WebhookAckResponse:
    """Handle connected-account Stripe webhook events, verified with the connect secret."""
    return await _process_webhook(
        WebhookChannel.CONNECT,
        request,
        stripe_signature,
        db,
        stripe_client,
        followup,
        background_tasks,
    )


@router.post(
    "/finalize",
    response_model=FinalizeResponse,
    status_code=status.HTTP_200_OK,
    summary="Finalize checkout",
    description="Confirm an order after the checkout redirect, re-verified with Stripe",
)
@limiter.limit(_finalize_rate_limit)
async def finalize_checkout(
    request: Request,
    payload: FinalizeRequest,
    db: DatabaseSession,
    stripe_client: StripeClientDep,
    followup: FollowupDep,
    background_tasks: BackgroundTasks,
) -> FinalizeResponse:
    """
    Finalize a checkout session from the client.

    Args:
        request: HTTP request, used for rate limiting
        payload: Checkout session id and store id
        db: Database session
        stripe_client: Stripe client
        followup: Post-confirmation workflow
        background_tasks: Background task queue

    Returns:
        Settlement state of the session

    Raises:
        HTTPException: 400 for missing or unverifiable input
    """
    processor = PaymentConfirmationProcessor(db, stripe_client)

    try:
        result = await processor.finalize(payload.session_id, payload.store_id)
        await db.commit()

    except PaymentEventValidationError as e:
        logger.warning("Finalize request rejected", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "VALIDATION_ERROR"},
        )

    except PaymentVerificationError as e:
        logger.warning("Finalize verification failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "VERIFICATION_FAILED"},
        )

    outcome = result.outcome
    if outcome is not None:
        background_tasks.add_task(followup.run, outcome)

    return FinalizeResponse(
        success=result.success,
        payment_status=result.payment_status,
        already_finalized=result.already_finalized,
        order_id=outcome.order_id if outcome else None,
        order_number=outcome.order_number if outcome else None,
    )
