"""
Checkout API endpoints.

Opens a checkout for a cart: online flows get a Stripe Checkout Session and a
pending order keyed by the session id, offline flows get an order that is
processed and deducted from stock immediately.
"""

from fastapi import APIRouter, HTTPException, status

from storefront.api.deps import DatabaseSession, StripeClientDep
from storefront.core.config import get_settings
from storefront.core.logging import bind_store_id, get_logger
from storefront.schemas.checkout import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    StockShortfallResponse,
)
from storefront.services.orders.intake import (
    CheckoutIntake,
    CheckoutLine,
    CheckoutRequest,
    CheckoutValidationError,
)
from storefront.services.orders.repository import (
    OrderConflictError,
    OrderCreationError,
)
from storefront.services.payments.stripe_client import StripeClientError

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _to_checkout_request(request: CheckoutSessionRequest) -> CheckoutRequest:
    return CheckoutRequest(
        store_id=request.store_id,
        customer_email=request.customer_email,
        lines=tuple(
            CheckoutLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                product_name=item.product_name,
                product_sku=item.product_sku,
                product_image=item.product_image,
                selected_options=tuple(
                    option.model_dump(mode="json") for option in item.selected_options
                ),
            )
            for item in request.items
        ),
        shipping_address=request.shipping_address,
        billing_address=request.billing_address,
        payment_flow=request.payment_flow,
        payment_method_id=request.payment_method_id,
        customer_id=request.customer_id,
        currency=request.currency,
        tax_amount=request.tax_amount,
        shipping_amount=request.shipping_amount,
        payment_fee_amount=request.payment_fee_amount,
        discount_amount=request.discount_amount,
        coupon_code=request.coupon_code,
        delivery_preferences=request.delivery_preferences,
    )


@router.post(
    "/sessions",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open checkout",
    description="Create the order for a cart and, for online payment, the hosted checkout session",
)
async def open_checkout(
    request: CheckoutSessionRequest,
    db: DatabaseSession,
    stripe_client: StripeClientDep,
) -> CheckoutSessionResponse:
    """
    Open a checkout for a cart.

    Args:
        request: Cart lines, addresses and payment selection
        db: Database session
        stripe_client: Stripe client

    Returns:
        Created order with the provider checkout URL for online flows

    Raises:
        HTTPException: 400 for validation errors, 409 for a duplicate checkout
            reference, 502 when the payment provider fails, 500 otherwise
    """
    bind_store_id(str(request.store_id))
    settings = get_settings()
    intake = CheckoutIntake(db)

    logger.info(
        "Opening checkout",
        item_count=len(request.items),
        payment_method_id=str(request.payment_method_id) if request.payment_method_id else None,
    )

    try:
        result = await intake.open_checkout(
            _to_checkout_request(request),
            stripe_client,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
        )
        await db.commit()

    except CheckoutValidationError as e:
        logger.warning("Checkout validation failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "VALIDATION_ERROR"},
        )

    except OrderConflictError as e:
        logger.warning("Checkout reference already has an order", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(e), "code": "ORDER_CONFLICT"},
        )

    except OrderCreationError as e:
        logger.error("Order creation failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to create order", "code": "ORDER_CREATION_ERROR"},
        )

    except StripeClientError as e:
        logger.error("Checkout session creation failed", error=str(e), code=e.code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Payment provider unavailable", "code": "PROVIDER_ERROR"},
        )

    order = result.order
    return CheckoutSessionResponse(
        order_id=order.id,
        order_number=order.order_number,
        payment_reference=order.payment_reference,
        payment_flow=order.payment_flow,
        status=order.status.value,
        checkout_url=result.checkout_url,
        shortfalls=[StockShortfallResponse(**s.to_dict()) for s in result.shortfalls],
    )
