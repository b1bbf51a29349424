"""
Alembic migration: Initial delivery order schema.

Creates products, orders, order_items, order_notes and payment_transactions.
Status columns are stored as constrained strings rather than native enums so
new states only need a constraint change.

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = ('placed', 'received', 'in_progress', 'out_for_delivery', 'delivered', 'cancelled')
PAYMENT_STATUSES = ('pending', 'completed', 'failed')
TRANSACTION_STATUSES = ('pending', 'verified', 'failed', 'refunded')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """
    Create the catalog, order and payment tables.
    """
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True, comment='Product identifier'),
        sa.Column('name', sa.String(255), nullable=False, comment='Product name'),
        sa.Column('description', sa.Text(), nullable=True, comment='Product description'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, comment='Current unit price'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0', comment='Units in stock'),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column(
            'is_active',
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
            comment='Whether the product can be ordered',
        ),
        *_timestamps(),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        comment='Catalog products with price and stock',
    )
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), primary_key=True, comment='Unique identifier for the record'),
        sa.Column('customer_id', sa.String(64), nullable=False, comment='Chat platform user identifier'),
        sa.Column('customer_username', sa.String(255), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('delivery_address', sa.Text(), nullable=False),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, comment='Order total'),
        sa.Column(
            'status',
            sa.Enum(*ORDER_STATUSES, name='order_status', native_enum=False, create_constraint=True),
            nullable=False,
        ),
        sa.Column(
            'payment_status',
            sa.Enum(*PAYMENT_STATUSES, name='order_payment_status', native_enum=False, create_constraint=True),
            nullable=False,
        ),
        sa.Column('location_token', sa.String(32), nullable=True),
        sa.Column(
            'inventory_token',
            sa.String(32),
            nullable=True,
            unique=True,
            comment='Inventory reservation token consumed by this order',
        ),
        sa.Column(
            'payment_token',
            sa.String(32),
            nullable=True,
            unique=True,
            comment='Payment transaction token consumed by this order',
        ),
        *_timestamps(),
        sa.CheckConstraint('total_amount > 0', name='ck_orders_total_amount_positive'),
        comment='Customer orders',
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_customer_created', 'orders', ['customer_id', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price >= 0', name='ck_order_items_unit_price_non_negative'),
        sa.CheckConstraint('total_price >= 0', name='ck_order_items_total_price_non_negative'),
        comment='Order line items with price snapshots',
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'order_notes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('from_status', sa.String(32), nullable=True),
        sa.Column('to_status', sa.String(32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        comment='Append-only order log',
    )
    op.create_index('ix_order_notes_order_id', 'order_notes', ['order_id'])

    op.create_table(
        'payment_transactions',
        sa.Column('transaction_id', sa.String(32), primary_key=True),
        sa.Column('order_reference', sa.String(64), nullable=False),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('payment_id', sa.String(255), nullable=False),
        sa.Column('amount_usd', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount_stars', sa.Integer(), nullable=False),
        sa.Column('exchange_rate', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(32), nullable=False),
        sa.Column(
            'status',
            sa.Enum(
                *TRANSACTION_STATUSES,
                name='payment_transaction_status',
                native_enum=False,
                create_constraint=True,
            ),
            nullable=False,
        ),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('integrity_hash', sa.String(64), nullable=False),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('amount_usd > 0', name='ck_payment_transactions_amount_positive'),
        sa.CheckConstraint('amount_stars > 0', name='ck_payment_transactions_stars_positive'),
        comment='Payment transaction records with integrity hashes',
    )
    op.create_index('ix_payment_transactions_order_id', 'payment_transactions', ['order_id'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])


def downgrade() -> None:
    """
    Drop all delivery order tables.
    """
    op.drop_table('payment_transactions')
    op.drop_table('order_notes')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
