"""
Order management API endpoints.

Status changes are open to store staff (Bearer token) and to customers who
prove ownership with the order email. Manual notification resends are staff
only.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from storefront.api.deps import (
    CurrentStaff,
    DatabaseSession,
    EmailServiceDep,
    OptionalStaff,
)
from storefront.core.logging import get_logger
from storefront.database.models.notification import NotificationKind
from storefront.schemas.orders import (
    NotificationResendResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
)
from storefront.services.notifications.dispatcher import NotificationDispatcher
from storefront.services.notifications.service import (
    NotificationDeliveryError,
    NotificationValidationError,
)
from storefront.services.orders.repository import OrderNotFoundError, OrderRepository
from storefront.services.orders.status import OrderStatusService, StatusTransitionError
from storefront.services.stores.repository import StoreRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    status_code=status.HTTP_200_OK,
    summary="Change order status",
    description="Change an order's status, restoring stock on cancellation or refund",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    db: DatabaseSession,
    staff: OptionalStaff,
) -> OrderResponse:
    """
    Change the status of an order.

    Args:
        order_id: Order identifier
        request: Requested status, and the order email for customers
        db: Database session
        staff: Staff principal when a Bearer token was sent

    Returns:
        Updated order

    Raises:
        HTTPException: 400 for a disallowed transition, 404 if the order is
            not found in the caller's scope
    """
    service = OrderStatusService(db)

    try:
        order = await service.change_status(
            order_id,
            request.status,
            is_staff=staff is not None,
            store_id=staff.scope_store_id() if staff else None,
            customer_email=request.customer_email,
            note=request.note,
        )
        await db.commit()

    except OrderNotFoundError as e:
        logger.warning("Order not found for status change", order_id=str(order_id))
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(e), "code": "ORDER_NOT_FOUND"},
        )

    except StatusTransitionError as e:
        logger.warning("Status change rejected", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "INVALID_TRANSITION"},
        )

    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/notifications/{kind}/resend",
    response_model=NotificationResendResponse,
    status_code=status.HTTP_200_OK,
    summary="Resend notification",
    description="Resend an order email, bypassing the duplicate check",
)
async def resend_notification(
    order_id: UUID,
    kind: NotificationKind,
    db: DatabaseSession,
    staff: CurrentStaff,
    email_service: EmailServiceDep,
) -> NotificationResendResponse:
    """
    Resend an order notification on staff request.

    Raises:
        HTTPException: 400 for a kind that cannot be resent, 404 if the order
            is not found in the staff member's scope, 502 if sending fails
    """
    orders = OrderRepository(db)
    order = await orders.get_order_by_id(order_id)
    scope = staff.scope_store_id()
    if order is None or (scope is not None and order.store_id != scope):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Order not found", "code": "ORDER_NOT_FOUND"},
        )

    stores = StoreRepository(db)
    store = await stores.get_settings(order.store_id)
    customer = (
        await stores.get_customer(order.store_id, order.customer_id)
        if order.customer_id
        else None
    )
    dispatcher = NotificationDispatcher(db, email_service)

    try:
        outcome = await dispatcher.resend(
            order,
            kind,
            store,
            customer_name=customer.full_name if customer else None,
        )

    except NotificationValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "code": "VALIDATION_ERROR"},
        )

    except NotificationDeliveryError as e:
        logger.error("Notification resend failed", error=str(e), context=e.context)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": "Failed to send notification", "code": "DELIVERY_ERROR"},
        )

    logger.info(
        "Notification resent",
        order_id=str(order.id),
        kind=kind.value,
        staff=staff.subject,
    )
    return NotificationResendResponse(
        order_id=order.id,
        kind=kind.value,
        recipient=outcome.recipient,
        message_id=outcome.message_id,
    )
