"""
Test suite for the stock reconciliation engine.

Covers per-line deduction against the product stock ledger, non-blocking
shortfalls, products that do not track stock, backorders and restoration
of cancelled orders.
"""

import uuid
from decimal import Decimal

import pytest

from storefront.database.models import OrderItem
from storefront.services.inventory.reconciliation import (
    StockReconciliationEngine,
    StockShortfall,
)
from storefront.services.inventory.repository import ProductRepository


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def engine_for(db_session):
    return StockReconciliationEngine(ProductRepository(db_session))


def line(product, quantity: int) -> OrderItem:
    """Unsaved order line for a product."""
    return OrderItem(
        product_id=product.id,
        quantity=quantity,
        unit_price=product.price,
        line_total=product.price * quantity,
        product_name=product.name,
        product_sku=product.sku,
        selected_options=[],
    )


# ============================================================================
# Unit Tests - Deduction
# ============================================================================


class TestDeduct:
    """Tests for StockReconciliationEngine.deduct."""

    async def test_deducts_available_stock(self, db_session, engine_for, make_store, make_product, stock_of):
        """Test that a covered line reduces stock and bumps the purchase count."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=5)

        result = await engine_for.deduct(store.store_id, [line(product, 3)])
        await db_session.commit()

        assert result.success is True
        assert result.shortfalls == []
        assert len(result.deducted) == 1
        assert result.deducted[0].old_stock == 5
        assert result.deducted[0].new_stock == 2
        assert await stock_of(product.id) == (2, 1)

    async def test_shortfall_does_not_block_other_lines(
        self, db_session, engine_for, make_store, make_product, stock_of
    ):
        """Test that one short line leaves the other lines deducted."""
        store = await make_store()
        scarce = await make_product(store.store_id, name="Teapot", sku="TEA-1", stock_quantity=2)
        plenty = await make_product(store.store_id, name="Spoon", sku="SPN-1", stock_quantity=10)

        result = await engine_for.deduct(
            store.store_id, [line(scarce, 10), line(plenty, 4)]
        )
        await db_session.commit()

        assert result.success is False
        assert result.shortfalls == [
            StockShortfall(
                product_id=scarce.id,
                sku="TEA-1",
                name="Teapot",
                requested=10,
                available=2,
            )
        ]
        assert [d.product_id for d in result.deducted] == [plenty.id]
        assert await stock_of(scarce.id) == (2, 0)
        assert await stock_of(plenty.id) == (6, 1)

    @pytest.mark.parametrize(
        "flags",
        [
            {"manage_stock": False},
            {"infinite_stock": True},
            {"manage_stock": False, "infinite_stock": True},
        ],
    )
    async def test_untracked_products_only_count_purchases(
        self, db_session, engine_for, make_store, make_product, stock_of, flags
    ):
        """Test that unmanaged and infinite stock products keep their stock level."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=1, **flags)

        result = await engine_for.deduct(store.store_id, [line(product, 50)])
        await db_session.commit()

        assert result.success is True
        assert result.deducted == []
        assert await stock_of(product.id) == (1, 1)

    async def test_backorders_clamp_stock_at_zero(
        self, db_session, engine_for, make_store, make_product, stock_of
    ):
        """Test that backorderable products accept excess quantity without going negative."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=2, allow_backorders=True)

        result = await engine_for.deduct(store.store_id, [line(product, 5)])
        await db_session.commit()

        assert result.success is True
        assert result.deducted[0].new_stock == 0
        assert await stock_of(product.id) == (0, 1)

    async def test_missing_product_is_skipped(self, db_session, engine_for, make_store):
        """Test that a line for a deleted product is neither deducted nor a shortfall."""
        store = await make_store()
        ghost = OrderItem(
            product_id=uuid.uuid4(),
            quantity=1,
            unit_price=Decimal("5.00"),
            line_total=Decimal("5.00"),
            product_name="Discontinued",
            selected_options=[],
        )

        result = await engine_for.deduct(store.store_id, [ghost])

        assert result.success is True
        assert result.deducted == []

    async def test_product_of_other_store_is_not_touched(
        self, db_session, engine_for, make_store, make_product, stock_of
    ):
        """Test that deduction is scoped to the order's store."""
        store = await make_store()
        other = await make_store()
        product = await make_product(other.store_id, stock_quantity=5)

        result = await engine_for.deduct(store.store_id, [line(product, 2)])
        await db_session.commit()

        assert result.deducted == []
        assert await stock_of(product.id) == (5, 0)

    async def test_exact_stock_is_sold_out(self, db_session, engine_for, make_store, make_product, stock_of):
        """Test that requesting exactly the units on hand succeeds."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=4)

        result = await engine_for.deduct(store.store_id, [line(product, 4)])
        await db_session.commit()

        assert result.success is True
        assert await stock_of(product.id) == (0, 1)


# ============================================================================
# Unit Tests - Restoration
# ============================================================================


class TestRestore:
    """Tests for StockReconciliationEngine.restore."""

    async def test_restores_tracked_lines(self, db_session, engine_for, make_store, make_product, stock_of):
        """Test that stock comes back and the purchase count goes down once per line."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=5)
        await engine_for.deduct(store.store_id, [line(product, 3)])

        restored = await engine_for.restore(store.store_id, [line(product, 3)])
        await db_session.commit()

        assert restored == [product.id]
        assert await stock_of(product.id) == (5, 0)

    async def test_untracked_lines_are_not_restored(
        self, db_session, engine_for, make_store, make_product, stock_of
    ):
        """Test that infinite stock products are left alone."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=0, infinite_stock=True)

        restored = await engine_for.restore(store.store_id, [line(product, 2)])
        await db_session.commit()

        assert restored == []
        assert await stock_of(product.id) == (0, 0)

    async def test_purchase_count_floors_at_zero(
        self, db_session, engine_for, make_store, make_product, stock_of
    ):
        """Test that restoring a never-counted line does not go below zero."""
        store = await make_store()
        product = await make_product(store.store_id, stock_quantity=1, purchase_count=0)

        await engine_for.restore(store.store_id, [line(product, 1)])
        await db_session.commit()

        assert await stock_of(product.id) == (2, 0)


class TestStockShortfall:
    """Tests for shortfall formatting."""

    def test_describe_prefers_sku(self):
        """Test the admin note fragment for a shortfall."""
        shortfall = StockShortfall(uuid.uuid4(), "MUG-1", "Mug", requested=3, available=1)

        assert shortfall.describe() == "MUG-1 (requested: 3, available: 1)"

    def test_describe_falls_back_to_name(self):
        """Test the fragment for a product without SKU."""
        shortfall = StockShortfall(uuid.uuid4(), None, "Mug", requested=3, available=0)

        assert shortfall.describe() == "Mug (requested: 3, available: 0)"
