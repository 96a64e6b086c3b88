"""
Stripe API client wrapper with error handling and retry logic.

This module wraps the Stripe SDK calls the reconciliation flow needs:
checkout sessions, session line items, refunds and webhook verification for
both the platform account and connected store accounts. Transient provider
failures are retried with exponential backoff; everything else is mapped to
StripeClientError subclasses.
"""

import enum
import json
import time
from typing import Any, Callable, Optional

import stripe
from stripe import (
    APIConnectionError,
    APIError,
    AuthenticationError,
    CardError,
    IdempotencyError,
    InvalidRequestError,
    RateLimitError,
    SignatureVerificationError,
    StripeError,
)

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)


class WebhookChannel(str, enum.Enum):
    """Webhook endpoint a Stripe event arrived on; each has its own secret."""

    PLATFORM = "platform"
    CONNECT = "connect"


class StripeClientError(Exception):
    """Base exception for Stripe client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stripe_error: Optional[StripeError] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.stripe_error = stripe_error
        self.context = context


class StripePaymentError(StripeClientError):
    """Exception for payment processing errors."""

    pass


class StripeAuthenticationError(StripeClientError):
    """Exception for authentication errors."""

    pass


class StripeRateLimitError(StripeClientError):
    """Exception for rate limit errors."""

    pass


class StripeConnectionError(StripeClientError):
    """Exception for connection errors."""

    pass


class StripeClient:
    """
    Stripe API client with error handling and retry logic.

    The API key is passed on every call instead of being assigned to the
    SDK's module-level ``stripe.api_key``.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        connect_webhook_secret: str,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        max_backoff: float = 32.0,
        backoff_multiplier: float = 2.0,
    ):
        """
        Initialize Stripe client with configuration.

        Args:
            api_key: Stripe platform secret API key
            webhook_secret: Signing secret of the platform webhook endpoint
            connect_webhook_secret: Signing secret of the connected-account endpoint
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
        """
        self.api_key = api_key
        self.webhook_secrets = {
            WebhookChannel.PLATFORM: webhook_secret,
            WebhookChannel.CONNECT: connect_webhook_secret,
        }
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "StripeClient":
        settings = settings or get_settings()
        return cls(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            connect_webhook_secret=settings.stripe_connect_webhook_secret,
        )

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _request_options(self, stripe_account: Optional[str]) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self.api_key}
        if stripe_account:
            options["stripe_account"] = stripe_account
        return options

    def _execute_with_retry(
        self,
        operation: str,
        func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute Stripe API call with exponential backoff retry logic.

        Connection errors, rate limits and 5xx API errors are retried; all
        other Stripe errors fail immediately.

        Args:
            operation: Operation name for logging
            func: Stripe API function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from Stripe API call

        Raises:
            StripeClientError: If operation fails after all retries
        """
        last_error: Optional[StripeError] = None

        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Stripe operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result

            except AuthenticationError as e:
                logger.error("Stripe authentication error", operation=operation, error=str(e))
                raise StripeAuthenticationError(
                    f"Authentication failed: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except CardError as e:
                logger.warning(
                    "Stripe card error",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripePaymentError(
                    f"Card error: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except (InvalidRequestError, IdempotencyError) as e:
                logger.error(
                    "Stripe request rejected",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                )
                raise StripeClientError(
                    f"Invalid request: {e.user_message or str(e)}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except (RateLimitError, APIConnectionError, APIError) as e:
                last_error = e
                if attempt >= self.max_retries:
                    break

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Transient Stripe error, retrying",
                    operation=operation,
                    error_type=type(e).__name__,
                    attempt=attempt,
                    backoff_seconds=backoff,
                )
                time.sleep(backoff)

            except StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    f"Stripe error: {e.user_message or str(e)}",
                    code=getattr(e, "code", None),
                    stripe_error=e,
                ) from e

        logger.error(
            "Stripe operation failed after all retries",
            operation=operation,
            max_retries=self.max_retries,
            last_error=str(last_error),
        )
        if isinstance(last_error, RateLimitError):
            raise StripeRateLimitError(
                "Rate limit exceeded", code="RATE_LIMITED", stripe_error=last_error
            )
        if isinstance(last_error, APIConnectionError):
            raise StripeConnectionError(
                "Connection error", code="CONNECTION_ERROR", stripe_error=last_error
            )
        raise StripeClientError(
            f"Operation failed after {self.max_retries} retries",
            stripe_error=last_error,
        )

    def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        stripe_account: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.checkout.Session:
        """
        Create a hosted checkout session.

        Args:
            line_items: Stripe ``line_items`` with ``price_data`` in minor units
            customer_email: Prefilled customer email
            metadata: Session metadata, must carry ``store_id``
            success_url: Redirect after payment
            cancel_url: Redirect after abandonment
            stripe_account: Connected account to create the session on
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe Checkout Session
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "customer_email": customer_email,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "success_url": success_url,
            "cancel_url": cancel_url,
            **self._request_options(stripe_account),
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        session = self._execute_with_retry(
            "create_checkout_session",
            stripe.checkout.Session.create,
            **params,
        )

        logger.info(
            "Checkout session created",
            session_id=session.id,
            stripe_account=stripe_account,
        )
        return session

    def retrieve_checkout_session(
        self,
        session_id: str,
        stripe_account: Optional[str] = None,
    ) -> stripe.checkout.Session:
        return self._execute_with_retry(
            "retrieve_checkout_session",
            stripe.checkout.Session.retrieve,
            session_id,
            **self._request_options(stripe_account),
        )

    def list_checkout_session_line_items(
        self,
        session_id: str,
        stripe_account: Optional[str] = None,
    ) -> list[Any]:
        """
        List all line items of a checkout session.

        Args:
            session_id: Checkout session identifier
            stripe_account: Connected account owning the session

        Returns:
            Line item objects with ``price.product`` expanded
        """
        page = self._execute_with_retry(
            "list_checkout_session_line_items",
            stripe.checkout.Session.list_line_items,
            session_id,
            limit=100,
            expand=["data.price.product"],
            **self._request_options(stripe_account),
        )
        return list(page.auto_paging_iter())

    def find_checkout_session_for_payment_intent(
        self,
        payment_intent_id: str,
        stripe_account: Optional[str] = None,
    ) -> Optional[stripe.checkout.Session]:
        page = self._execute_with_retry(
            "list_checkout_sessions",
            stripe.checkout.Session.list,
            payment_intent=payment_intent_id,
            limit=1,
            **self._request_options(stripe_account),
        )
        return page.data[0] if page.data else None

    def create_refund(
        self,
        payment_intent_id: str,
        metadata: Optional[dict[str, str]] = None,
        stripe_account: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.Refund:
        """
        Refund a payment intent in full.

        Args:
            payment_intent_id: Payment intent to refund
            metadata: Refund metadata
            stripe_account: Connected account that took the payment
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe Refund object
        """
        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "reason": "requested_by_customer",
            "metadata": metadata or {},
            **self._request_options(stripe_account),
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        refund = self._execute_with_retry("create_refund", stripe.Refund.create, **params)

        logger.info(
            "Refund created",
            refund_id=refund.id,
            payment_intent_id=payment_intent_id,
            status=refund.status,
        )
        return refund

    def construct_webhook_event(
        self,
        payload: bytes,
        signature: str,
        channel: WebhookChannel = WebhookChannel.PLATFORM,
    ) -> dict[str, Any]:
        """
        Construct and verify a webhook event from Stripe.

        Verification includes the SDK's timestamp tolerance, which rejects
        replayed deliveries.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe signature header value
            channel: Endpoint the event arrived on, selects the secret

        Returns:
            Verified event payload as a plain dict

        Raises:
            StripeClientError: If webhook verification fails
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secrets[channel],
            )
        except ValueError as e:
            logger.error("Invalid webhook payload", channel=channel.value, error=str(e))
            raise StripeClientError(
                "Invalid webhook payload",
                code="INVALID_PAYLOAD",
            ) from e
        except SignatureVerificationError as e:
            logger.error(
                "Webhook signature verification failed",
                channel=channel.value,
                error=str(e),
            )
            raise StripeClientError(
                "Webhook signature verification failed",
                code="INVALID_SIGNATURE",
                stripe_error=e,
            ) from e

        logger.info(
            "Webhook event verified",
            channel=channel.value,
            event_id=event.id,
            event_type=event.type,
        )
        return json.loads(payload)
