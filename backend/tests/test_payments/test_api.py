"""
HTTP tests for the checkout, webhook and finalize endpoints.

Requests go through the ASGI app with the database bound to the in-memory
engine. The Stripe client and the post-confirmation workflow are replaced by
test doubles, except in the webhook tests, which verify real signatures with
a StripeClient configured with the test secrets.
"""

import uuid
from types import SimpleNamespace

import pytest

from storefront.database.models import OrderStatus, PaymentStatus
from storefront.services.payments.stripe_client import StripeClient

PLATFORM_SECRET = "whsec_test_platform"
CONNECT_SECRET = "whsec_test_connect"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def verifying_stripe_client(api_client) -> StripeClient:
    """Replace the Stripe double with a client that verifies signatures."""
    from storefront.api.deps import get_stripe_client
    from storefront.main import app

    client = StripeClient(
        api_key="sk_test_api",
        webhook_secret=PLATFORM_SECRET,
        connect_webhook_secret=CONNECT_SECRET,
    )
    app.dependency_overrides[get_stripe_client] = lambda: client
    return client


def checkout_body(store_id, product, quantity: int = 1, **overrides) -> dict:
    body = {
        "store_id": str(store_id),
        "customer_email": "Buyer@Example.com",
        "items": [
            {
                "product_id": str(product.id),
                "quantity": quantity,
                "unit_price": "12.50",
                "product_name": product.name,
                "product_sku": product.sku,
            }
        ],
        "shipping_address": {"line1": "1 Harbour Road", "city": "Bristol"},
        "payment_flow": "online",
    }
    body.update(overrides)
    return body


# ============================================================================
# Integration Tests - Checkout
# ============================================================================


class TestCheckoutEndpoint:
    """Tests for POST /api/v1/checkout/sessions."""

    async def test_online_checkout(self, api_client, make_store, make_product, stripe_client):
        """Test that an online checkout returns the provider URL and a pending order."""
        store = await make_store()
        product = await make_product(store.store_id)
        stripe_client.create_checkout_session.return_value = SimpleNamespace(
            id="cs_test_api_1", url="https://checkout.stripe.test/cs_test_api_1"
        )

        response = await api_client.post(
            "/api/v1/checkout/sessions", json=checkout_body(store.store_id, product, 2)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["payment_reference"] == "cs_test_api_1"
        assert data["checkout_url"] == "https://checkout.stripe.test/cs_test_api_1"
        assert data["status"] == "pending"
        assert data["shortfalls"] == []

    async def test_duplicate_reference_conflicts(
        self, api_client, make_store, make_product, stripe_client
    ):
        """Test that a second order for the same provider session is rejected."""
        store = await make_store()
        product = await make_product(store.store_id)
        stripe_client.create_checkout_session.return_value = SimpleNamespace(
            id="cs_test_api_dup", url="https://checkout.stripe.test/cs_test_api_dup"
        )
        body = checkout_body(store.store_id, product)

        first = await api_client.post("/api/v1/checkout/sessions", json=body)
        second = await api_client.post("/api/v1/checkout/sessions", json=body)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["detail"]["code"] == "ORDER_CONFLICT"

    async def test_offline_checkout_reports_shortfall(
        self, api_client, make_store, make_product, stripe_client, stock_of
    ):
        """Test that an offline checkout deducts at once and lists shortfalls."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=1)

        response = await api_client.post(
            "/api/v1/checkout/sessions",
            json=checkout_body(store.store_id, product, 3, payment_flow="offline"),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "processing"
        assert data["checkout_url"] is None
        assert data["shortfalls"][0]["requested"] == 3
        assert data["shortfalls"][0]["available"] == 1
        stripe_client.create_checkout_session.assert_not_called()
        assert await stock_of(product.id) == (1, 0)

    async def test_provider_failure(self, api_client, make_store, make_product, stripe_client):
        """Test that a provider outage maps to 502."""
        from storefront.services.payments.stripe_client import StripeClientError

        store = await make_store()
        product = await make_product(store.store_id)
        stripe_client.create_checkout_session.side_effect = StripeClientError("down")

        response = await api_client.post(
            "/api/v1/checkout/sessions", json=checkout_body(store.store_id, product)
        )

        assert response.status_code == 502

    async def test_invalid_email_is_rejected(self, api_client, make_store, make_product):
        """Test request validation of the customer email."""
        store = await make_store()
        product = await make_product(store.store_id)

        response = await api_client.post(
            "/api/v1/checkout/sessions",
            json=checkout_body(store.store_id, product, customer_email="not-an-email"),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "Validation Error"


# ============================================================================
# Integration Tests - Webhooks
# ============================================================================


class TestWebhookEndpoints:
    """Tests for the platform and connected-account webhooks."""

    async def test_missing_signature(self, api_client, verifying_stripe_client):
        """Test that unsigned deliveries are rejected."""
        response = await api_client.post("/api/v1/payments/webhook", content=b"{}")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "MISSING_SIGNATURE"

    async def test_invalid_signature(self, api_client, verifying_stripe_client, sign_webhook):
        """Test that a signature made with the wrong secret is rejected."""
        payload = b'{"id": "evt_x", "type": "checkout.session.completed"}'

        response = await api_client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, "whsec_wrong")},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"

    async def test_signed_event_confirms_order(
        self,
        api_client,
        verifying_stripe_client,
        make_store,
        make_product,
        make_order,
        paid_session,
        webhook_event,
        encode_event,
        sign_webhook,
        followup,
        load_order,
        stock_of,
    ):
        """Test that a valid webhook confirms, deducts and schedules the follow-up."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=5)
        order = await make_order(store.store_id, [(product, 3)])
        payload = encode_event(
            webhook_event(
                "checkout.session.completed",
                paid_session(order.payment_reference, store.store_id),
            )
        )

        response = await api_client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, PLATFORM_SECRET)},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        reloaded = await load_order(order.id)
        assert reloaded.status == OrderStatus.PROCESSING
        assert reloaded.payment_status == PaymentStatus.PAID
        assert await stock_of(product.id) == (2, 1)
        followup.run.assert_awaited_once()

    async def test_connect_webhook_uses_connect_secret(
        self,
        api_client,
        verifying_stripe_client,
        make_store,
        make_product,
        make_order,
        paid_session,
        webhook_event,
        encode_event,
        sign_webhook,
        followup,
    ):
        """Test that the connect endpoint accepts events signed with its own secret."""
        store = await make_store(stripe_account_id="acct_store_2")
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])
        payload = encode_event(
            webhook_event(
                "checkout.session.completed",
                paid_session(order.payment_reference, store.store_id),
                account="acct_store_2",
            )
        )

        rejected = await api_client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, CONNECT_SECRET)},
        )
        accepted = await api_client.post(
            "/api/v1/payments/webhook/connect",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, CONNECT_SECRET)},
        )

        assert rejected.status_code == 400
        assert accepted.status_code == 200
        assert followup.run.await_args.args[0].stripe_account == "acct_store_2"

    async def test_session_without_store_is_rejected(
        self, api_client, verifying_stripe_client, paid_session, webhook_event, encode_event, sign_webhook
    ):
        """Test that a completed session without store metadata is a 400."""
        payload = encode_event(
            webhook_event(
                "checkout.session.completed",
                paid_session("cs_test_orphan", uuid.uuid4(), metadata={}),
            )
        )

        response = await api_client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, PLATFORM_SECRET)},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_unhandled_event_is_acknowledged(
        self, api_client, verifying_stripe_client, webhook_event, encode_event, sign_webhook, followup
    ):
        """Test that events outside the confirmation flow are acknowledged and ignored."""
        payload = encode_event(webhook_event("charge.refunded", {"id": "ch_1"}))

        response = await api_client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, PLATFORM_SECRET)},
        )

        assert response.status_code == 200
        followup.run.assert_not_awaited()


# ============================================================================
# Integration Tests - Finalize
# ============================================================================


class TestFinalizeEndpoint:
    """Tests for POST /api/v1/payments/finalize."""

    @pytest.mark.parametrize(
        "body",
        [{}, {"session_id": "cs_test_1"}, {"store_id": str(uuid.uuid4())}],
        ids=["empty", "no-store", "no-session"],
    )
    async def test_missing_fields(self, api_client, body):
        """Test that a finalize call without both ids is a 400."""
        response = await api_client.post("/api/v1/payments/finalize", json=body)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_paid_session(
        self, api_client, make_store, make_product, make_order, stripe_client, paid_session, followup
    ):
        """Test that a paid session is confirmed and reported."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])
        stripe_client.retrieve_checkout_session.return_value = paid_session(
            order.payment_reference, store.store_id
        )

        response = await api_client.post(
            "/api/v1/payments/finalize",
            json={"session_id": order.payment_reference, "store_id": str(store.store_id)},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["already_finalized"] is False
        assert data["order_number"] == order.order_number
        followup.run.assert_awaited_once()

    async def test_unpaid_session(self, api_client, make_store, make_product, make_order, stripe_client, paid_session):
        """Test that an unpaid session reports success false without confirming."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])
        stripe_client.retrieve_checkout_session.return_value = paid_session(
            order.payment_reference, store.store_id, payment_status="unpaid"
        )

        response = await api_client.post(
            "/api/v1/payments/finalize",
            json={"session_id": order.payment_reference, "store_id": str(store.store_id)},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["payment_status"] == "unpaid"


