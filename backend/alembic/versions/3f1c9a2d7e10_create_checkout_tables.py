"""Create checkout tables

Revision ID: 3f1c9a2d7e10
Revises: 
Create Date: 2026-10-19 10:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers used by Alembic
revision: str = '3f1c9a2d7e10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Stock can never go negative, even under racing confirmations
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('selling_price', sa.Numeric(12, 2), sa.CheckConstraint('selling_price >= 0'), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), sa.CheckConstraint('stock_quantity >= 0'), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_products_id', 'products', ['id'])
    op.create_index('ix_products_title', 'products', ['title'])
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])
    op.create_index('ix_products_status', 'products', ['status'])

    op.create_table(
        'carts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_carts_id', 'carts', ['id'])
    op.create_index('ix_carts_user_id', 'carts', ['user_id'])
    op.create_index('ix_carts_status', 'carts', ['status'])

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cart_id', sa.Integer(), sa.ForeignKey('carts.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('unit_price_snapshot', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_stock', sa.Integer(), nullable=False),
        sa.UniqueConstraint('cart_id', 'product_id', name='uq_cartitem_cart_product'),
    )
    op.create_index('ix_cart_items_id', 'cart_items', ['id'])
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'])
    op.create_index('ix_cart_items_product_id', 'cart_items', ['product_id'])

    op.create_table(
        'pending_orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('order_number', sa.String(), nullable=False, unique=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('delivery_address', sa.JSON(), nullable=False),
        sa.Column('price_breakdown', sa.JSON(), nullable=True),
        sa.Column('gateway_order_id', sa.String(), nullable=False),
        sa.Column('payment_link_id', sa.String(), nullable=True),
        sa.Column('payment_link_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_pending_orders_id', 'pending_orders', ['id'])
    op.create_index('ix_pending_orders_user_id', 'pending_orders', ['user_id'])
    op.create_index('ix_pending_orders_status', 'pending_orders', ['status'])
    op.create_index('ix_pending_orders_gateway_order_id', 'pending_orders', ['gateway_order_id'])
    op.create_index('ix_pending_orders_payment_link_id', 'pending_orders', ['payment_link_id'])

    # One confirmed order per pending order and per external payment
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('order_number', sa.String(), nullable=False, unique=True),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('payment_status', sa.String(), nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('items_snapshot', sa.JSON(), nullable=False),
        sa.Column('delivery_address', sa.JSON(), nullable=False),
        sa.Column('price_breakdown', sa.JSON(), nullable=True),
        sa.Column('pending_order_id', sa.Integer(), sa.ForeignKey('pending_orders.id'), nullable=False, unique=True),
        sa.Column('gateway_order_id', sa.String(), nullable=True),
        sa.Column('external_payment_id', sa.String(), nullable=False, unique=True),
        sa.Column('verification_method', sa.String(), nullable=False),
        sa.Column('assurance', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_gateway_order_id', 'orders', ['gateway_order_id'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('seller_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('fulfillment_status', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('order_id', 'product_id', name='uq_orderitem_order_product'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])
    op.create_index('ix_order_items_seller_id', 'order_items', ['seller_id'])

    op.create_table(
        'logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ts', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('action', sa.String(50), nullable=True),
        sa.Column('resource', sa.String(50), nullable=True),
        sa.Column('status', sa.String(20), nullable=True),
        sa.Column('ip', sa.String(64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
    )
    op.create_index('ix_logs_id', 'logs', ['id'])
    op.create_index('ix_logs_ts', 'logs', ['ts'])
    op.create_index('ix_logs_action', 'logs', ['action'])
    op.create_index('ix_logs_resource', 'logs', ['resource'])
    op.create_index('ix_logs_status', 'logs', ['status'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('logs')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('pending_orders')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('products')
    op.drop_table('users')
