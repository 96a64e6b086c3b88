"""
AWS SES client wrapper with error handling.

This module provides the SES email client used for transactional order
email, with retry on throttling and connection errors and raw MIME sending
when attachments (such as invoice PDFs) are present.
"""

import time
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
)

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

NON_RETRYABLE_SES_ERRORS = frozenset(
    {
        "MessageRejected",
        "MailFromDomainNotVerified",
        "ConfigurationSetDoesNotExist",
    }
)


class EmailClientError(Exception):
    """Raised when an email could not be handed to SES."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class EmailAttachment:
    """In-memory file attached to an outgoing email."""

    def __init__(self, filename: str, content: bytes, mime_subtype: str = "pdf"):
        self.filename = filename
        self.content = content
        self.mime_subtype = mime_subtype


class SESEmailClient:
    """
    AWS SES client wrapper with error handling and retry logic.

    Args:
        from_address: Default sender address
        client: Preconfigured boto3 SES client, created from settings if omitted
        max_retries: Maximum number of send attempts
        retry_backoff: Initial backoff time in seconds for retries
    """

    def __init__(
        self,
        from_address: str,
        client: Any = None,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ) -> None:
        self.from_address = from_address
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SESEmailClient":
        settings = settings or get_settings()
        client = boto3.client(
            "ses",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        return cls(from_address=settings.ses_from_email, client=client)

    def send_email(
        self,
        to_address: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        attachments: Optional[list[EmailAttachment]] = None,
        reply_to: Optional[str] = None,
    ) -> str:
        """
        Send email via AWS SES with retry logic.

        Args:
            to_address: Recipient email address
            subject: Email subject
            body_text: Plain text email body
            body_html: HTML email body (optional)
            attachments: Files to attach; switches to a raw MIME send
            reply_to: Reply-to address (optional)

        Returns:
            SES message id

        Raises:
            EmailClientError: If email sending fails after retries
        """
        if not to_address:
            raise EmailClientError("Recipient email address is required")

        if attachments:
            raw = self._build_raw_message(
                to_address, subject, body_text, body_html, attachments, reply_to
            )
            send = lambda: self._client.send_raw_email(  # noqa: E731
                Source=self.from_address,
                Destinations=[to_address],
                RawMessage={"Data": raw},
            )
        else:
            message: dict[str, Any] = {
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": body_text, "Charset": "UTF-8"}},
            }
            if body_html:
                message["Body"]["Html"] = {"Data": body_html, "Charset": "UTF-8"}
            params: dict[str, Any] = {
                "Source": self.from_address,
                "Destination": {"ToAddresses": [to_address]},
                "Message": message,
            }
            if reply_to:
                params["ReplyToAddresses"] = [reply_to]
            send = lambda: self._client.send_email(**params)  # noqa: E731

        last_exception: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                response = send()
                message_id = response["MessageId"]
                logger.info(
                    "Email sent via SES",
                    message_id=message_id,
                    subject=subject,
                    attachments=len(attachments or []),
                )
                return message_id

            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code", "Unknown")
                error_message = e.response.get("Error", {}).get("Message", str(e))
                last_exception = e

                logger.warning(
                    "SES client error",
                    attempt=attempt + 1,
                    error_code=error_code,
                    error_message=error_message,
                )

                if error_code in NON_RETRYABLE_SES_ERRORS:
                    raise EmailClientError(
                        f"SES error: {error_message}",
                        error_code=error_code,
                    ) from e

            except (BotoConnectionError, EndpointConnectionError, BotoCoreError) as e:
                last_exception = e
                logger.warning("SES connection error", attempt=attempt + 1, error=str(e))

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_backoff * (2**attempt))

        raise EmailClientError(
            f"Failed to send email after {self.max_retries} attempts",
            last_error=str(last_exception),
        ) from last_exception

    def _build_raw_message(
        self,
        to_address: str,
        subject: str,
        body_text: str,
        body_html: Optional[str],
        attachments: list[EmailAttachment],
        reply_to: Optional[str],
    ) -> bytes:
        message = MIMEMultipart("mixed")
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = to_address
        if reply_to:
            message["Reply-To"] = reply_to

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(body_text, "plain", "utf-8"))
        if body_html:
            body.attach(MIMEText(body_html, "html", "utf-8"))
        message.attach(body)

        for attachment in attachments:
            part = MIMEApplication(attachment.content, _subtype=attachment.mime_subtype)
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            message.attach(part)

        return message.as_bytes()
