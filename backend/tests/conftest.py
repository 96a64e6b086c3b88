"""
Pytest configuration and shared test fixtures.

This module provides the in-memory database, model factories, provider and
email doubles, and the HTTP client used across the test suite. The
environment is switched to ``test`` before any application module is
imported so cached settings pick it up.
"""

import hashlib
import hmac
import json
import os
import time
import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Optional
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_STRIPE_WEBHOOK_SECRET", "whsec_test_platform")
os.environ.setdefault("APP_STRIPE_CONNECT_WEBHOOK_SECRET", "whsec_test_connect")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from storefront.database.models import (
    Base,
    Customer,
    Order,
    OrderStatus,
    PaymentFlow,
    PaymentMethod,
    PaymentStatus,
    Product,
    StockIssueHandling,
    StoreSettings,
)
from storefront.services.notifications.service import EmailService
from storefront.services.orders.repository import OrderRepository
from storefront.services.payments.stripe_client import StripeClient

PLATFORM_SECRET = "whsec_test_platform"
CONNECT_SECRET = "whsec_test_connect"


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create an in-memory SQLite engine with the full schema.

    The driver's implicit transaction handling is disabled and BEGIN is
    emitted explicitly so SAVEPOINTs behave as on PostgreSQL.
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def stock_of(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """Read a product's current stock and purchase count in a fresh session."""

    async def _stock_of(product_id: uuid.UUID) -> tuple[int, int]:
        async with session_factory() as session:
            row = (
                await session.execute(
                    select(Product.stock_quantity, Product.purchase_count).where(
                        Product.id == product_id
                    )
                )
            ).one()
            return row.stock_quantity, row.purchase_count

    return _stock_of


@pytest.fixture
def load_order(session_factory: async_sessionmaker[AsyncSession]) -> Callable:
    """Load an order with its lines in a fresh session."""

    async def _load_order(order_id: uuid.UUID) -> Order:
        async with session_factory() as session:
            return await OrderRepository(session).get_order_by_id(order_id)

    return _load_order


# ============================================================================
# Model factories
# ============================================================================


@pytest.fixture
def make_store(db_session: AsyncSession) -> Callable:
    async def _make_store(**overrides: Any) -> StoreSettings:
        values: dict[str, Any] = {
            "store_id": uuid.uuid4(),
            "name": "Corner Shop",
            "owner_email": "owner@corner.example",
            "currency": "USD",
            "stripe_account_id": None,
            "stock_issue_handling": StockIssueHandling.MANUAL_REVIEW,
            "auto_invoice_enabled": False,
            "auto_invoice_pdf_enabled": False,
            "auto_ship_enabled": False,
        }
        values.update(overrides)
        store = StoreSettings(**values)
        db_session.add(store)
        await db_session.commit()
        return store

    return _make_store


@pytest.fixture
def make_product(db_session: AsyncSession) -> Callable:
    async def _make_product(store_id: uuid.UUID, **overrides: Any) -> Product:
        values: dict[str, Any] = {
            "store_id": store_id,
            "name": "Ceramic Mug",
            "sku": f"MUG-{uuid.uuid4().hex[:6].upper()}",
            "price": Decimal("12.50"),
            "manage_stock": True,
            "infinite_stock": False,
            "allow_backorders": False,
            "stock_quantity": 5,
            "purchase_count": 0,
        }
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        await db_session.commit()
        return product

    return _make_product


@pytest.fixture
def make_payment_method(db_session: AsyncSession) -> Callable:
    async def _make_payment_method(
        store_id: uuid.UUID,
        flow: PaymentFlow,
        code: str = "card",
    ) -> PaymentMethod:
        method = PaymentMethod(store_id=store_id, code=code, name=code.title(), payment_flow=flow)
        db_session.add(method)
        await db_session.commit()
        return method

    return _make_payment_method


@pytest.fixture
def make_customer(db_session: AsyncSession) -> Callable:
    async def _make_customer(store_id: uuid.UUID, email: str, **overrides: Any) -> Customer:
        customer = Customer(store_id=store_id, email=email, **overrides)
        db_session.add(customer)
        await db_session.commit()
        return customer

    return _make_customer


@pytest.fixture
def make_order(db_session: AsyncSession) -> Callable:
    """Create a pending online order with one line per (product, quantity) pair."""

    async def _make_order(
        store_id: uuid.UUID,
        lines: list[tuple[Product, int]],
        payment_reference: Optional[str] = None,
        **overrides: Any,
    ) -> Order:
        subtotal = sum((product.price * quantity for product, quantity in lines), Decimal("0"))
        order_data: dict[str, Any] = {
            "store_id": store_id,
            "order_number": f"ORD-{uuid.uuid4().hex[:10].upper()}",
            "payment_reference": payment_reference or f"cs_test_{uuid.uuid4().hex}",
            "status": OrderStatus.PENDING,
            "payment_status": PaymentStatus.PENDING,
            "payment_flow": PaymentFlow.ONLINE,
            "currency": "USD",
            "subtotal": subtotal,
            "total_amount": subtotal,
            "customer_email": "buyer@example.com",
            "shipping_address": {"line1": "1 Harbour Road", "city": "Bristol"},
            "billing_address": {},
        }
        order_data.update(overrides)
        items = [
            {
                "product_id": product.id,
                "quantity": quantity,
                "unit_price": product.price,
                "line_total": product.price * quantity,
                "selected_options": [],
                "product_name": product.name,
                "product_sku": product.sku,
            }
            for product, quantity in lines
        ]
        order = await OrderRepository(db_session).create_order_with_items(order_data, items)
        await db_session.commit()
        return order

    return _make_order


# ============================================================================
# Provider and email doubles
# ============================================================================


@pytest.fixture
def stripe_client() -> MagicMock:
    """Stripe client double; provider calls are configured per test."""
    client = MagicMock(spec=StripeClient)
    client.find_checkout_session_for_payment_intent.return_value = None
    return client


@pytest.fixture
def email_service() -> MagicMock:
    """Email service double returning a fresh message id per send."""
    service = MagicMock(spec=EmailService)
    counter = {"sent": 0}

    async def _send(*args: Any, **kwargs: Any) -> str:
        counter["sent"] += 1
        return f"ses-message-{counter['sent']}"

    service.send_transactional_email = AsyncMock(side_effect=_send)
    return service


@pytest.fixture
def paid_session() -> Callable:
    """Build a Stripe checkout session payload."""

    def _paid_session(
        session_id: str,
        store_id: uuid.UUID,
        payment_status: str = "paid",
        payment_intent: str = "pi_test_123",
        **overrides: Any,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": payment_status,
            "payment_intent": payment_intent,
            "customer_email": "buyer@example.com",
            "currency": "usd",
            "amount_subtotal": 3750,
            "amount_total": 3750,
            "total_details": {"amount_tax": 0, "amount_shipping": 0, "amount_discount": 0},
            "metadata": {"store_id": str(store_id)},
        }
        payload.update(overrides)
        return payload

    return _paid_session


@pytest.fixture
def webhook_event() -> Callable:
    def _webhook_event(
        event_type: str,
        obj: dict[str, Any],
        account: Optional[str] = None,
    ) -> dict[str, Any]:
        return {
            "id": f"evt_{uuid.uuid4().hex[:12]}",
            "object": "event",
            "type": event_type,
            "account": account,
            "data": {"object": obj},
        }

    return _webhook_event


@pytest.fixture
def sign_webhook() -> Callable:
    """Produce a Stripe-Signature header for a payload."""

    def _sign(payload: bytes, secret: str = PLATFORM_SECRET, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp if timestamp is not None else int(time.time())
        signed = f"{timestamp}.".encode() + payload
        signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def encode_event() -> Callable:
    def _encode(event_payload: dict[str, Any]) -> bytes:
        return json.dumps(event_payload).encode()

    return _encode


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
def followup() -> MagicMock:
    workflow = MagicMock()
    workflow.run = AsyncMock(return_value=None)
    return workflow


@pytest.fixture
async def api_client(
    session_factory: async_sessionmaker[AsyncSession],
    stripe_client: MagicMock,
    email_service: MagicMock,
    followup: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous client for the application.

    The database dependency is bound to the in-memory engine and the
    provider, email and follow-up dependencies to test doubles.
    """
    from storefront.api.deps import (
        get_email_service,
        get_followup,
        get_stripe_client,
        limiter,
    )
    from storefront.database.connection import get_db
    from storefront.main import app

    async def _get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_stripe_client] = lambda: stripe_client
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_followup] = lambda: followup
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
