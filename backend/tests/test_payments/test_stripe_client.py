"""
Test suite for the Stripe API client wrapper.

Covers retry and backoff behaviour, error mapping, per-call API keys and
connected accounts, and webhook signature verification for both the
platform and the connected-account endpoints. No real Stripe calls are made.
"""

import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from storefront.services.payments.stripe_client import (
    StripeAuthenticationError,
    StripeClient,
    StripeClientError,
    StripeConnectionError,
    StripeRateLimitError,
    WebhookChannel,
)

PLATFORM_SECRET = "whsec_unit_platform"
CONNECT_SECRET = "whsec_unit_connect"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def client() -> StripeClient:
    """
    Create a StripeClient with fast backoff.

    Returns:
        Configured StripeClient for testing
    """
    return StripeClient(
        api_key="sk_test_unit",
        webhook_secret=PLATFORM_SECRET,
        connect_webhook_secret=CONNECT_SECRET,
        max_retries=2,
        initial_backoff=0.1,
        max_backoff=1.0,
        backoff_multiplier=2.0,
    )


@pytest.fixture
def no_sleep():
    with patch("storefront.services.payments.stripe_client.time.sleep") as sleep:
        yield sleep


# ============================================================================
# Unit Tests - Retry Logic
# ============================================================================


class TestRetry:
    """Tests for _execute_with_retry."""

    def test_transient_error_is_retried(self, client, no_sleep):
        """Test that a connection error is retried until the call succeeds."""
        func = MagicMock(side_effect=[stripe.APIConnectionError("reset"), "ok"])

        assert client._execute_with_retry("op", func) == "ok"
        assert func.call_count == 2
        no_sleep.assert_called_once_with(0.1)

    def test_backoff_is_exponential_and_capped(self, client):
        """Test the backoff schedule."""
        assert [client._calculate_backoff(n) for n in range(6)] == [0.1, 0.2, 0.4, 0.8, 1.0, 1.0]

    def test_rate_limit_exhausts_retries(self, client, no_sleep):
        """Test that persistent rate limiting surfaces as StripeRateLimitError."""
        func = MagicMock(side_effect=stripe.RateLimitError("slow down"))

        with pytest.raises(StripeRateLimitError) as exc_info:
            client._execute_with_retry("op", func)

        assert exc_info.value.code == "RATE_LIMITED"
        assert func.call_count == 3

    def test_connection_error_exhausts_retries(self, client, no_sleep):
        """Test that persistent connection errors surface as StripeConnectionError."""
        func = MagicMock(side_effect=stripe.APIConnectionError("down"))

        with pytest.raises(StripeConnectionError):
            client._execute_with_retry("op", func)

    def test_invalid_request_is_not_retried(self, client, no_sleep):
        """Test that client errors fail immediately."""
        func = MagicMock(
            side_effect=stripe.InvalidRequestError("No such session", param="id", code="resource_missing")
        )

        with pytest.raises(StripeClientError) as exc_info:
            client._execute_with_retry("op", func)

        assert exc_info.value.code == "resource_missing"
        assert func.call_count == 1
        no_sleep.assert_not_called()

    def test_authentication_error(self, client, no_sleep):
        """Test that a bad API key is reported as an authentication error."""
        func = MagicMock(side_effect=stripe.AuthenticationError("bad key"))

        with pytest.raises(StripeAuthenticationError):
            client._execute_with_retry("op", func)


# ============================================================================
# Unit Tests - API Calls
# ============================================================================


class TestApiCalls:
    """Tests for the wrapped Stripe operations."""

    def test_retrieve_session_on_connected_account(self, client):
        """Test that the API key and connected account are passed per call."""
        with patch("stripe.checkout.Session.retrieve", return_value="session") as retrieve:
            assert client.retrieve_checkout_session("cs_1", stripe_account="acct_9") == "session"

        retrieve.assert_called_once_with("cs_1", api_key="sk_test_unit", stripe_account="acct_9")

    def test_platform_call_has_no_account(self, client):
        """Test that platform calls omit the stripe_account option."""
        with patch("stripe.checkout.Session.retrieve", return_value="session") as retrieve:
            client.retrieve_checkout_session("cs_1")

        assert "stripe_account" not in retrieve.call_args.kwargs

    def test_create_checkout_session_params(self, client):
        """Test checkout session creation parameters."""
        session = SimpleNamespace(id="cs_new", url="https://checkout.test/cs_new")
        with patch("stripe.checkout.Session.create", return_value=session) as create:
            result = client.create_checkout_session(
                [{"price_data": {}, "quantity": 1}],
                customer_email="buyer@example.com",
                metadata={"store_id": "s1"},
                success_url="https://shop.test/ok",
                cancel_url="https://shop.test/cart",
            )

        assert result is session
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["metadata"] == {"store_id": "s1"}
        assert kwargs["payment_intent_data"] == {"metadata": {"store_id": "s1"}}

    def test_create_refund_with_idempotency_key(self, client):
        """Test full refunds carry metadata and an idempotency key."""
        refund = SimpleNamespace(id="re_1", status="succeeded")
        with patch("stripe.Refund.create", return_value=refund) as create:
            client.create_refund(
                "pi_1",
                metadata={"reason": "stock_issue"},
                idempotency_key="refund-1",
            )

        kwargs = create.call_args.kwargs
        assert kwargs["payment_intent"] == "pi_1"
        assert kwargs["idempotency_key"] == "refund-1"
        assert kwargs["metadata"] == {"reason": "stock_issue"}

    def test_find_session_for_payment_intent(self, client):
        """Test the session lookup by payment intent."""
        with patch("stripe.checkout.Session.list", return_value=SimpleNamespace(data=[])):
            assert client.find_checkout_session_for_payment_intent("pi_none") is None

        with patch(
            "stripe.checkout.Session.list",
            return_value=SimpleNamespace(data=["cs_found"]),
        ):
            assert client.find_checkout_session_for_payment_intent("pi_1") == "cs_found"


# ============================================================================
# Unit Tests - Webhook Verification
# ============================================================================


class TestWebhookVerification:
    """Tests for construct_webhook_event."""

    @pytest.fixture
    def payload(self) -> bytes:
        return json.dumps(
            {
                "id": "evt_unit",
                "object": "event",
                "type": "checkout.session.completed",
                "data": {"object": {"id": "cs_unit", "metadata": {"store_id": "s1"}}},
            }
        ).encode()

    def test_valid_platform_signature(self, client, payload, sign_webhook):
        """Test that a correctly signed payload is returned as a dict."""
        event = client.construct_webhook_event(payload, sign_webhook(payload, PLATFORM_SECRET))

        assert event["id"] == "evt_unit"
        assert event["data"]["object"]["metadata"] == {"store_id": "s1"}

    def test_connect_channel_uses_connect_secret(self, client, payload, sign_webhook):
        """Test that connected-account events verify against their own secret."""
        signature = sign_webhook(payload, CONNECT_SECRET)

        event = client.construct_webhook_event(payload, signature, WebhookChannel.CONNECT)
        assert event["type"] == "checkout.session.completed"

        with pytest.raises(StripeClientError) as exc_info:
            client.construct_webhook_event(payload, signature, WebhookChannel.PLATFORM)
        assert exc_info.value.code == "INVALID_SIGNATURE"

    def test_tampered_payload_is_rejected(self, client, payload, sign_webhook):
        """Test that a modified body fails verification."""
        signature = sign_webhook(payload, PLATFORM_SECRET)

        with pytest.raises(StripeClientError) as exc_info:
            client.construct_webhook_event(payload.replace(b"s1", b"s2"), signature)

        assert exc_info.value.code == "INVALID_SIGNATURE"

    def test_replayed_delivery_is_rejected(self, client, payload, sign_webhook):
        """Test that a signature outside the timestamp tolerance fails."""
        signature = sign_webhook(payload, PLATFORM_SECRET, timestamp=int(time.time()) - 3600)

        with pytest.raises(StripeClientError) as exc_info:
            client.construct_webhook_event(payload, signature)

        assert exc_info.value.code == "INVALID_SIGNATURE"
