"""
Idempotent order notification dispatcher.

Before an email goes out, a NotificationRecord row is claimed inside a
savepoint. The partial unique index on ``(order_id, kind)`` lets exactly one
claim per order and kind succeed; a losing claim means the email was already
sent and the send is skipped. A failed send rolls the savepoint back, so the
claim disappears and a later trigger may try again. Successful sends are
committed immediately so the record outlives any later failure in the same
unit of work.
"""

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.fulfillment import Invoice, Shipment
from storefront.database.models.notification import NotificationKind, NotificationRecord
from storefront.database.models.order import FulfillmentStatus, Order, OrderStatus
from storefront.database.models.store import StoreSettings
from storefront.services.notifications.email_client import EmailAttachment
from storefront.services.notifications.invoice_pdf import render_invoice_pdf
from storefront.services.notifications.service import (
    EmailService,
    NotificationDeliveryError,
    NotificationValidationError,
)
from storefront.services.orders.intake import generate_document_number

logger = get_logger(__name__)

PdfRenderer = Callable[[Order, StoreSettings, str], bytes]


class DispatchStatus(str, enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchOutcome:
    kind: NotificationKind
    status: DispatchStatus
    recipient: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status == DispatchStatus.SENT


def order_email_variables(
    order: Order,
    store: StoreSettings,
    customer_name: Optional[str] = None,
) -> dict[str, Any]:
    """Template variables shared by every order email."""
    return {
        "store_name": store.name,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "order_date": order.created_at,
        "customer_email": order.customer_email,
        "customer_name": customer_name or order.customer_email,
        "currency": order.currency,
        "items": [
            {
                "name": item.product_name,
                "sku": item.product_sku,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "line_total": item.line_total,
            }
            for item in order.items
        ],
        "subtotal": order.subtotal,
        "shipping_amount": order.shipping_amount,
        "tax_amount": order.tax_amount,
        "payment_fee_amount": order.payment_fee_amount,
        "discount_amount": order.discount_amount,
        "total_amount": order.total_amount,
        "shipping_address": order.shipping_address or {},
    }


class NotificationDispatcher:
    """
    Sends order notifications at most once per order and kind.

    Args:
        session: Async database session the claims are written in
        email_service: Transactional email service
        pdf_renderer: Invoice PDF renderer
    """

    def __init__(
        self,
        session: AsyncSession,
        email_service: EmailService,
        pdf_renderer: PdfRenderer = render_invoice_pdf,
    ):
        self.session = session
        self.email_service = email_service
        self.pdf_renderer = pdf_renderer

    async def dispatch(
        self,
        order: Order,
        kind: NotificationKind,
        recipient: Optional[str],
        variables: dict[str, Any],
        attachments: Optional[list[EmailAttachment]] = None,
        is_resend: bool = False,
    ) -> DispatchOutcome:
        """
        Send one notification unless it was already sent.

        Args:
            order: Order the notification is about
            kind: Notification kind
            recipient: Recipient email address
            variables: Template variables
            attachments: Optional attachments
            is_resend: Explicit resend, bypasses deduplication

        Returns:
            DispatchOutcome; delivery failures are reported, not raised
        """
        log = logger.bind(order_id=str(order.id), kind=kind.value, is_resend=is_resend)

        if not recipient:
            log.warning("No recipient for notification, skipping")
            return DispatchOutcome(kind, DispatchStatus.FAILED, error="No recipient")

        record = NotificationRecord(
            order_id=order.id,
            store_id=order.store_id,
            kind=kind,
            recipient=recipient,
            is_resend=is_resend,
        )

        try:
            async with self.session.begin_nested():
                self.session.add(record)
                await self.session.flush()

                message_id = await self.email_service.send_transactional_email(
                    order.store_id,
                    kind,
                    recipient,
                    variables,
                    attachments=attachments,
                )
                record.provider_message_id = message_id
                await self.session.flush()

        except IntegrityError:
            log.info("Notification already sent, skipping")
            return DispatchOutcome(kind, DispatchStatus.SKIPPED, recipient=recipient)

        except NotificationDeliveryError as e:
            log.error("Notification delivery failed", error=str(e), context=e.context)
            return DispatchOutcome(kind, DispatchStatus.FAILED, recipient=recipient, error=str(e))

        await self.session.commit()
        log.info("Notification sent", message_id=message_id)
        return DispatchOutcome(kind, DispatchStatus.SENT, recipient=recipient, message_id=message_id)

    async def send_confirmation_chain(
        self,
        order: Order,
        store: StoreSettings,
        customer_name: Optional[str] = None,
    ) -> list[DispatchOutcome]:
        """
        Send the order confirmation, then invoice and shipment.

        The follow-on steps run once the confirmation is known to have gone
        out, on this trigger or an earlier one, so a later trigger retries an
        invoice or shipment email that failed before. Steps whose email was
        already sent are not attempted again.

        Args:
            order: Confirmed order with lines loaded
            store: Store settings controlling the chained steps
            customer_name: Greeting name, defaults to the email

        Returns:
            Outcomes of the attempted sends, in order
        """
        variables = order_email_variables(order, store, customer_name)
        confirmation = await self.dispatch(
            order,
            NotificationKind.ORDER_CONFIRMATION,
            order.customer_email,
            variables,
        )
        outcomes = [confirmation]
        if confirmation.status == DispatchStatus.FAILED:
            return outcomes

        if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            logger.info(
                "Order closed, skipping invoice and shipment",
                order_id=str(order.id),
                status=order.status.value,
            )
            return outcomes

        if store.auto_invoice_enabled and not await self._already_sent(
            order, NotificationKind.INVOICE
        ):
            outcomes.append(await self._send_invoice(order, store, variables))

        if store.auto_ship_enabled:
            if order.fulfillment_status == FulfillmentStatus.STOCK_ISSUE:
                logger.info("Skipping automatic shipment for stock issue order", order_id=str(order.id))
            elif order.status == OrderStatus.PROCESSING:
                outcomes.append(await self._send_shipment(order, variables))

        return outcomes

    async def resend(
        self,
        order: Order,
        kind: NotificationKind,
        store: StoreSettings,
        customer_name: Optional[str] = None,
    ) -> DispatchOutcome:
        """
        Resend a notification on explicit staff request.

        Raises:
            NotificationValidationError: If the kind cannot be resent
            NotificationDeliveryError: If the resend fails
        """
        if not kind.is_resendable:
            raise NotificationValidationError(
                f"Notification kind {kind.value} cannot be resent",
                kind=kind.value,
            )

        variables = order_email_variables(order, store, customer_name)
        if kind == NotificationKind.INVOICE:
            variables["invoice_number"] = await self._latest_number(
                Invoice.invoice_number, Invoice, order
            ) or generate_document_number("INV", 4)
        elif kind == NotificationKind.SHIPMENT:
            variables["shipment_number"] = await self._latest_number(
                Shipment.shipment_number, Shipment, order
            ) or generate_document_number("SHIP", 4)

        outcome = await self.dispatch(order, kind, order.customer_email, variables, is_resend=True)
        if not outcome.sent:
            raise NotificationDeliveryError(
                "Failed to resend notification",
                order_id=str(order.id),
                kind=kind.value,
                error=outcome.error,
            )
        return outcome

    async def _send_invoice(
        self,
        order: Order,
        store: StoreSettings,
        variables: dict[str, Any],
    ) -> DispatchOutcome:
        invoice_number = generate_document_number("INV", 4)
        attachments = None

        if store.auto_invoice_pdf_enabled:
            try:
                pdf = await asyncio.to_thread(self.pdf_renderer, order, store, invoice_number)
                attachments = [EmailAttachment(f"{invoice_number}.pdf", pdf)]
            except Exception as e:  # noqa: BLE001
                logger.error(
                    "Invoice PDF rendering failed, sending without attachment",
                    order_id=str(order.id),
                    error=str(e),
                    exc_info=True,
                )

        outcome = await self.dispatch(
            order,
            NotificationKind.INVOICE,
            order.customer_email,
            {**variables, "invoice_number": invoice_number, "pdf_attached": bool(attachments)},
            attachments=attachments,
        )
        if outcome.sent:
            self.session.add(
                Invoice(
                    order_id=order.id,
                    store_id=order.store_id,
                    invoice_number=invoice_number,
                    customer_email=order.customer_email,
                    pdf_attached=bool(attachments),
                )
            )
            await self.session.commit()
        return outcome

    async def _send_shipment(self, order: Order, variables: dict[str, Any]) -> DispatchOutcome:
        shipment_number = generate_document_number("SHIP", 4)
        outcome = await self.dispatch(
            order,
            NotificationKind.SHIPMENT,
            order.customer_email,
            {**variables, "shipment_number": shipment_number},
        )
        if outcome.sent:
            self.session.add(
                Shipment(
                    order_id=order.id,
                    store_id=order.store_id,
                    shipment_number=shipment_number,
                    customer_email=order.customer_email,
                )
            )
            if order.status == OrderStatus.PROCESSING:
                order.status = OrderStatus.SHIPPED
                order.fulfillment_status = FulfillmentStatus.SHIPPED
                order.shipped_at = datetime.now(timezone.utc)
            await self.session.commit()
        return outcome

    async def _latest_number(self, column: Any, model: Any, order: Order) -> Optional[str]:
        result = await self.session.execute(
            select(column)
            .where(model.order_id == order.id)
            .order_by(model.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _already_sent(self, order: Order, kind: NotificationKind) -> bool:
        result = await self.session.execute(
            select(NotificationRecord.id)
            .where(
                NotificationRecord.order_id == order.id,
                NotificationRecord.kind == kind,
                NotificationRecord.is_resend.is_(False),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None
