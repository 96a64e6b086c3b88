"""
HTTP tests for order status changes and manual notification resends.
"""

import uuid

from storefront.core.security import create_access_token
from storefront.database.models import OrderStatus, PaymentStatus
from storefront.services.notifications.service import NotificationDeliveryError


# ============================================================================
# Test Fixtures
# ============================================================================


def staff_headers(role: str = "store_owner", store_id=None) -> dict[str, str]:
    token = create_access_token("staff-1", role, store_id=store_id)
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Integration Tests - Orders
# ============================================================================


class TestOrderStatusEndpoint:
    """Tests for PATCH /api/v1/orders/{id}/status."""

    async def test_customer_cancels_pending_order(self, api_client, make_store, make_product, make_order):
        """Test that the order's customer can cancel before payment."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])

        response = await api_client.patch(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "cancelled", "customer_email": "buyer@example.com"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    async def test_customer_with_wrong_email(self, api_client, make_store, make_product, make_order):
        """Test that another email cannot see the order."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])

        response = await api_client.patch(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "cancelled", "customer_email": "someone@example.com"},
        )

        assert response.status_code == 404

    async def test_staff_cancel_restores_stock(
        self, api_client, make_store, make_product, make_order, stock_of
    ):
        """Test that a staff cancellation of a paid order puts stock back."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=3)
        order = await make_order(
            store.store_id,
            [(product, 2)],
            status=OrderStatus.PROCESSING,
            payment_status=PaymentStatus.PAID,
        )

        response = await api_client.patch(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "cancelled"},
            headers=staff_headers(store_id=store.store_id),
        )

        assert response.status_code == 200
        assert await stock_of(product.id) == (5, 0)

    async def test_disallowed_transition(self, api_client, make_store, make_product, make_order):
        """Test that a customer cannot move an order outside their transitions."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])

        response = await api_client.patch(
            f"/api/v1/orders/{order.id}/status",
            json={"status": "delivered", "customer_email": "buyer@example.com"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"


class TestResendEndpoint:
    """Tests for POST /api/v1/orders/{id}/notifications/{kind}/resend."""

    async def test_requires_token(self, api_client, make_store, make_product, make_order):
        """Test that resends are staff only."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/notifications/order_confirmation/resend"
        )

        assert response.status_code == 401

    async def test_resend_confirmation(self, api_client, make_store, make_product, make_order, email_service):
        """Test that a resend goes out even though nothing deduplicates it."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])
        headers = staff_headers(store_id=store.store_id)
        url = f"/api/v1/orders/{order.id}/notifications/order_confirmation/resend"

        first = await api_client.post(url, headers=headers)
        second = await api_client.post(url, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["recipient"] == "buyer@example.com"
        assert email_service.send_transactional_email.await_count == 2

    async def test_stock_issue_kinds_cannot_be_resent(self, api_client, make_store, make_product, make_order):
        """Test that only customer-facing order kinds can be resent."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/notifications/stock_issue_customer/resend",
            headers=staff_headers(role="admin"),
        )

        assert response.status_code == 400

    async def test_other_store_cannot_resend(self, api_client, make_store, make_product, make_order):
        """Test that a store owner only sees orders of their own store."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/notifications/invoice/resend",
            headers=staff_headers(store_id=uuid.uuid4()),
        )

        assert response.status_code == 404

    async def test_delivery_failure(self, api_client, make_store, make_product, make_order, email_service):
        """Test that a failed resend maps to 502."""
        store = await make_store()
        product = await make_product(store.store_id)
        order = await make_order(store.store_id, [(product, 1)])
        email_service.send_transactional_email.side_effect = NotificationDeliveryError("ses down")

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/notifications/shipment/resend",
            headers=staff_headers(role="admin"),
        )

        assert response.status_code == 502
