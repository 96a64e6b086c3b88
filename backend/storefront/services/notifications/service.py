"""
Transactional email service.

This module provides EmailService, the narrow interface the dispatcher uses
to render a notification kind and hand it to SES. It knows nothing about
deduplication; callers decide whether a send should happen at all.
"""

import asyncio
import uuid
from typing import Any, Optional

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.database.models.notification import NotificationKind
from storefront.services.notifications.email_client import (
    EmailAttachment,
    EmailClientError,
    SESEmailClient,
)
from storefront.services.notifications.templates import TemplateEngine, TemplateEngineError

logger = get_logger(__name__)


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class NotificationDeliveryError(NotificationServiceError):
    """Exception for notification delivery failures."""

    pass


class NotificationValidationError(NotificationServiceError):
    """Exception for notification requests that are not allowed."""

    pass


class EmailService:
    """
    Renders and sends order emails.

    Args:
        email_client: SES email client
        template_engine: Template engine for the notification kinds
    """

    def __init__(self, email_client: SESEmailClient, template_engine: TemplateEngine) -> None:
        self.email_client = email_client
        self.template_engine = template_engine

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EmailService":
        settings = settings or get_settings()
        return cls(
            email_client=SESEmailClient.from_settings(settings),
            template_engine=TemplateEngine(settings.email_template_dir),
        )

    async def send_transactional_email(
        self,
        store_id: uuid.UUID,
        kind: NotificationKind,
        recipient: str,
        variables: dict[str, Any],
        attachments: Optional[list[EmailAttachment]] = None,
    ) -> str:
        """
        Render a notification kind and send it.

        Args:
            store_id: Store sending the email
            kind: Notification kind, selects the templates
            recipient: Recipient email address
            variables: Template variables
            attachments: Optional file attachments

        Returns:
            Provider message id

        Raises:
            NotificationDeliveryError: If rendering or sending fails
        """
        try:
            rendered = self.template_engine.render_email(kind.value, variables)
        except TemplateEngineError as e:
            raise NotificationDeliveryError(
                "Failed to render email",
                store_id=str(store_id),
                kind=kind.value,
                error=str(e),
            ) from e

        try:
            with log_performance(logger, "send_email", kind=kind.value):
                message_id = await asyncio.to_thread(
                    self.email_client.send_email,
                    recipient,
                    rendered["subject"],
                    rendered.get("text_body") or rendered["html_body"],
                    rendered["html_body"],
                    attachments,
                )
        except EmailClientError as e:
            raise NotificationDeliveryError(
                "Failed to send email",
                store_id=str(store_id),
                kind=kind.value,
                error=str(e),
            ) from e

        return message_id
