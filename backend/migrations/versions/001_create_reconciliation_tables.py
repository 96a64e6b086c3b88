"""
Alembic migration: Create the payment reconciliation schema.

This migration creates store configuration, product stock, order, order item,
notification log, invoice and shipment tables. The partial unique index on
notification_records enforces at most one non-resend notification per order
and kind.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'pending',
    'processing',
    'shipped',
    'delivered',
    'cancelled',
    'refunded',
    'return_requested',
)
PAYMENT_STATUSES = ('pending', 'paid', 'refunded')
FULFILLMENT_STATUSES = ('pending', 'stock_issue', 'shipped', 'delivered')
PAYMENT_FLOWS = ('online', 'offline')


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=True),
        nullable=False,
        comment='Unique identifier for the record',
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
    ]


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        nullable=nullable,
        server_default=None if nullable else sa.text('0'),
    )


def upgrade() -> None:
    """
    Upgrade database schema to the reconciliation tables.

    Order statuses are native PostgreSQL enums; store policies, payment
    method flows and notification kinds are stored as checked strings.
    """
    op.create_table(
        'store_settings',
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=True),
        sa.Column('owner_email', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column(
            'stripe_account_id',
            sa.String(length=255),
            nullable=True,
            comment='Connected payment account of the store',
        ),
        sa.Column(
            'stock_issue_handling',
            sa.String(length=32),
            nullable=False,
            server_default='manual_review',
        ),
        sa.Column('auto_invoice_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_invoice_pdf_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_ship_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('store_id', name='pk_store_settings'),
        sa.CheckConstraint(
            "stock_issue_handling IN ('manual_review', 'auto_refund')",
            name='ck_store_settings_stock_issue_handling',
        ),
        comment='Store settings read by reconciliation',
    )

    op.create_table(
        'payment_methods',
        _id_column(),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('payment_flow', sa.String(length=16), nullable=False, server_default='online'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_payment_methods'),
        sa.CheckConstraint(
            "payment_flow IN ('online', 'offline')",
            name='ck_payment_methods_payment_flow',
        ),
    )
    op.create_index('ix_payment_methods_store_id', 'payment_methods', ['store_id'])

    op.create_table(
        'customers',
        _id_column(),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
    )
    op.create_index('ix_customers_store_email', 'customers', ['store_id', 'email'], unique=True)

    op.create_table(
        'products',
        _id_column(),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        _money('price'),
        sa.Column('manage_stock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('infinite_stock', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('allow_backorders', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchase_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('purchase_count >= 0', name='ck_products_purchase_count_non_negative'),
        comment='Product stock ledger',
    )
    op.create_index('ix_products_store_id', 'products', ['store_id'])
    op.create_index('ix_products_sku', 'products', ['sku'])

    op.create_table(
        'orders',
        _id_column(),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column(
            'payment_reference',
            sa.String(length=255),
            nullable=False,
            comment='Provider checkout reference, unique per order',
        ),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column(
            'status',
            sa.Enum(*ORDER_STATUSES, name='order_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column(
            'payment_status',
            sa.Enum(*PAYMENT_STATUSES, name='payment_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column(
            'fulfillment_status',
            sa.Enum(*FULFILLMENT_STATUSES, name='fulfillment_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column(
            'payment_flow',
            sa.Enum(*PAYMENT_FLOWS, name='payment_flow'),
            nullable=False,
            server_default='online',
        ),
        sa.Column('payment_method_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('payment_provider', sa.String(length=50), nullable=False, server_default='stripe'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        _money('subtotal'),
        _money('tax_amount'),
        _money('shipping_amount'),
        _money('payment_fee_amount'),
        _money('discount_amount'),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            'shipping_address',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            'billing_address',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column('delivery_preferences', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('coupon_code', sa.String(length=100), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('refund_id', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.UniqueConstraint('payment_reference', name='uq_orders_payment_reference'),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_total_amount_non_negative'),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('discount_amount >= 0', name='ck_orders_discount_non_negative'),
        comment='Storefront orders keyed by provider checkout reference',
    )
    op.create_index('ix_orders_store_id', 'orders', ['store_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_stripe_payment_intent_id', 'orders', ['stripe_payment_intent_id'])
    op.create_index('ix_orders_store_status', 'orders', ['store_id', 'status', 'payment_status'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('line_total', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column(
            'selected_options',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=100), nullable=True),
        sa.Column('product_image', sa.String(length=1024), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_order_items_order_id',
            ondelete='CASCADE',
        ),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price_non_negative'),
        comment='Order lines with product snapshot',
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'notification_records',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.String(length=50), nullable=False),
        sa.Column('recipient', sa.String(length=255), nullable=False),
        sa.Column(
            'sent_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column('is_resend', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('provider_message_id', sa.String(length=255), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_notification_records'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_notification_records_order_id',
            ondelete='CASCADE',
        ),
        comment='Append-only log of sent order notifications',
    )
    op.create_index('ix_notification_records_order_id', 'notification_records', ['order_id'])
    op.create_index('ix_notification_records_store_id', 'notification_records', ['store_id'])
    op.create_index(
        'uq_notification_records_order_kind',
        'notification_records',
        ['order_id', 'kind'],
        unique=True,
        postgresql_where=sa.text('is_resend = false'),
    )

    op.create_table(
        'invoices',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('invoice_number', sa.String(length=50), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('pdf_attached', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            'sent_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_invoice_number'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_invoices_order_id',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_invoices_order_id', 'invoices', ['order_id'])

    op.create_table(
        'shipments',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('shipment_number', sa.String(length=50), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('tracking_number', sa.String(length=255), nullable=True),
        sa.Column('carrier', sa.String(length=100), nullable=True),
        sa.Column(
            'sent_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint('id', name='pk_shipments'),
        sa.UniqueConstraint('shipment_number', name='uq_shipments_shipment_number'),
        sa.ForeignKeyConstraint(
            ['order_id'],
            ['orders.id'],
            name='fk_shipments_order_id',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_shipments_order_id', 'shipments', ['order_id'])


def downgrade() -> None:
    """Drop the reconciliation schema."""
    op.drop_table('shipments')
    op.drop_table('invoices')
    op.drop_index('uq_notification_records_order_kind', table_name='notification_records')
    op.drop_table('notification_records')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
    op.drop_table('customers')
    op.drop_table('payment_methods')
    op.drop_table('store_settings')

    op.execute('DROP TYPE IF EXISTS payment_flow')
    op.execute('DROP TYPE IF EXISTS fulfillment_status')
    op.execute('DROP TYPE IF EXISTS payment_status')
    op.execute('DROP TYPE IF EXISTS order_status')
