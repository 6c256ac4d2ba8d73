"""initial_bookstore_schema

Revision ID: b7e1c2a9d401
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'b7e1c2a9d401'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

ENUMS = {
    'inventory_action_enum': ('restock', 'reserve', 'release', 'sale', 'adjustment'),
    'cart_status_enum': ('active', 'converted', 'abandoned'),
    'order_status_enum': (
        'pending', 'confirmed', 'paid', 'cancelled', 'shipped', 'delivered', 'refunded'
    ),
    'payment_method_enum': ('vnpay', 'momo', 'cod'),
    'discount_type_enum': ('percentage', 'fixed', 'free_shipping'),
    'store_audit_entity_type_enum': ('inventory', 'order', 'promotion'),
    'payment_gateway_enum': ('vnpay', 'momo', 'cod'),
    'payment_status_enum': (
        'initiated', 'pending', 'succeeded', 'failed', 'refund_requested', 'refunded'
    ),
    'refund_status_enum': ('requested', 'approved', 'rejected', 'succeeded', 'failed'),
    'webhook_outcome_enum': (
        'succeeded', 'failed', 'invalid_signature', 'amount_mismatch', 'unknown_payment'
    ),
    'notification_type_enum': ('order_status', 'payment', 'promotion_removed', 'system_alert'),
    'notification_priority_enum': ('low', 'normal', 'high'),
    'notification_channel_enum': ('in_app', 'email'),
    'notification_delivery_status_enum': ('pending', 'sent', 'failed'),
}


def _enum(name: str) -> sa.Enum:
    # Types are created up front so tables sharing one do not race to create it
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False).with_variant(
        sa.Enum(*ENUMS[name], name=name), 'sqlite'
    )


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema - Create catalog, inventory, order, payment, notification and account tables."""
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # Catalog
    op.create_table(
        'books',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('author', sa.String(length=255), nullable=True),
        sa.Column('isbn', sa.String(length=20), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('isbn'),
    )
    op.create_table(
        'warehouses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('province', sa.String(length=100), nullable=True),
        sa.Column('latitude', sa.Numeric(9, 6), nullable=True),
        sa.Column('longitude', sa.Numeric(9, 6), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    # Inventory
    op.create_table(
        'warehouse_inventory',
        sa.Column('warehouse_id', sa.Uuid(), nullable=False),
        sa.Column('book_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('reserved', sa.Integer(), server_default='0', nullable=False),
        sa.Column('alert_threshold', sa.Integer(), server_default='10', nullable=False),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('last_restocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_quantity_non_negative'),
        sa.CheckConstraint(
            'reserved >= 0 AND reserved <= quantity',
            name='ck_inventory_reserved_within_quantity',
        ),
        sa.ForeignKeyConstraint(['book_id'], ['books.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('warehouse_id', 'book_id'),
    )
    op.create_index('ix_warehouse_inventory_book', 'warehouse_inventory', ['book_id'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), nullable=False),
        sa.Column('book_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_reservation_positive_quantity'),
        sa.ForeignKeyConstraint(['book_id'], ['books.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'order_id', 'warehouse_id', 'book_id', name='uq_reservation_order_line'
        ),
    )
    op.create_index('ix_reservations_order_id', 'reservations', ['order_id'])
    op.create_index('ix_reservations_expires_at', 'reservations', ['expires_at'])

    op.create_table(
        'inventory_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), nullable=False),
        sa.Column('book_id', sa.Uuid(), nullable=False),
        sa.Column('action', _enum('inventory_action_enum'), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('reserved_delta', sa.Integer(), nullable=False),
        sa.Column('old_quantity', sa.Integer(), nullable=True),
        sa.Column('new_quantity', sa.Integer(), nullable=True),
        sa.Column('old_reserved', sa.Integer(), nullable=True),
        sa.Column('new_reserved', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('performed_by', sa.String(length=255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_inventory_audit_logs_stock', 'inventory_audit_logs', ['warehouse_id', 'book_id']
    )
    op.create_index('ix_inventory_audit_logs_order', 'inventory_audit_logs', ['order_id'])

    # Promotions
    op.create_table(
        'promotions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', _enum('discount_type_enum'), nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('max_discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('min_order_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('max_uses_per_user', sa.Integer(), server_default='1', nullable=False),
        sa.Column('current_uses', sa.Integer(), server_default='0', nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        *_timestamps(),
        sa.CheckConstraint('expires_at > starts_at', name='ck_promotion_window'),
        sa.CheckConstraint('discount_value >= 0', name='ck_promotion_value_non_negative'),
        sa.CheckConstraint('current_uses >= 0', name='ck_promotion_uses_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )
    op.create_table(
        'promotion_usage',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('promotion_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
    )
    op.create_index(
        'ix_promotion_usage_promotion_user', 'promotion_usage', ['promotion_id', 'user_id']
    )

    # Carts
    op.create_table(
        'carts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('session_id', sa.String(length=255), nullable=True),
        sa.Column('status', _enum('cart_status_enum'), server_default='active', nullable=True),
        sa.Column('applied_promotion_id', sa.Uuid(), nullable=True),
        sa.Column('promo_code', sa.String(length=50), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'user_id IS NOT NULL OR session_id IS NOT NULL', name='ck_cart_one_owner'
        ),
        sa.ForeignKeyConstraint(
            ['applied_promotion_id'], ['promotions.id'], ondelete='SET NULL'
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_carts_user_id', 'carts', ['user_id'])
    op.create_index('ix_carts_session_id', 'carts', ['session_id'])
    op.create_index('ix_carts_user_id_status', 'carts', ['user_id', 'status'])

    op.create_table(
        'cart_items',
        sa.Column('cart_id', sa.Uuid(), nullable=False),
        sa.Column('book_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_snapshot', sa.Numeric(12, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('quantity > 0', name='ck_cart_item_positive_quantity'),
        sa.ForeignKeyConstraint(['book_id'], ['books.id']),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('cart_id', 'book_id'),
    )

    # Orders
    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('user_email', sa.String(length=255), nullable=True),
        sa.Column('status', _enum('order_status_enum'), server_default='pending', nullable=False),
        sa.Column('payment_method', _enum('payment_method_enum'), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping_fee', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('promotion_id', sa.Uuid(), nullable=True),
        sa.Column('promo_code', sa.String(length=50), nullable=True),
        sa.Column('shipping_address', JSON, nullable=False),
        sa.Column('customer_note', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('total >= 0', name='ck_order_total_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status_created_at', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('book_id', sa.Uuid(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_item_positive_quantity'),
        sa.ForeignKeyConstraint(['book_id'], ['books.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id']),
        sa.PrimaryKeyConstraint('order_id', 'book_id'),
    )
    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('changed_by', sa.String(length=255), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    op.create_table(
        'order_sequences',
        sa.Column('day', sa.String(length=8), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('day'),
    )
    op.create_table(
        'store_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', _enum('store_audit_entity_type_enum'), nullable=False),
        sa.Column('entity_id', sa.String(length=100), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('old_value', JSON, nullable=True),
        sa.Column('new_value', JSON, nullable=True),
        sa.Column('performed_by', sa.String(length=255), nullable=False),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_audit_logs_entity', 'store_audit_logs', ['entity_type', 'entity_id']
    )

    # Payments
    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('method', _enum('payment_gateway_enum'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', _enum('payment_status_enum'), nullable=False),
        sa.Column('gateway_txn_ref', sa.String(length=64), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=False),
        sa.Column('transaction_no', sa.String(length=64), nullable=True),
        sa.Column('redirect_url', sa.Text(), nullable=True),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_code', sa.String(length=32), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('gateway_response', JSON, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_gateway_txn_ref', 'payments', ['gateway_txn_ref'], unique=True)
    op.create_index('ix_payments_order_method', 'payments', ['order_id', 'method'])

    op.create_table(
        'payment_webhook_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('gateway', _enum('payment_gateway_enum'), nullable=False),
        sa.Column('txn_ref', sa.String(length=64), nullable=True),
        sa.Column('transaction_no', sa.String(length=64), nullable=True),
        sa.Column('payload', JSON, nullable=False),
        sa.Column('signature_valid', sa.Boolean(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('outcome', _enum('webhook_outcome_enum'), nullable=True),
        sa.Column('response_code', sa.Integer(), nullable=False),
        sa.Column('response_body', JSON, nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_webhook_logs_txn_ref', 'payment_webhook_logs', ['txn_ref'])
    # At most one processed callback per gateway transaction
    op.create_index(
        'uq_webhook_logs_processed',
        'payment_webhook_logs',
        ['gateway', 'txn_ref'],
        unique=True,
        postgresql_where=sa.text('processed'),
        sqlite_where=sa.text('processed = 1'),
    )

    op.create_table(
        'refunds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('status', _enum('refund_status_enum'), nullable=False),
        sa.Column('requested_by', sa.String(length=255), nullable=False),
        sa.Column('approved_by', sa.String(length=255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.String(length=255), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('gateway_refund_id', sa.String(length=64), nullable=True),
        sa.Column('gateway_response', JSON, nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refunds_payment_id', 'refunds', ['payment_id'])
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])

    op.create_table(
        'payment_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('performed_by', sa.String(length=255), nullable=False),
        sa.Column('old_value', JSON, nullable=True),
        sa.Column('new_value', JSON, nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_audit_logs_entity_id', 'payment_audit_logs', ['entity_id'])

    # Notifications
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('type', _enum('notification_type_enum'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', JSON, nullable=True),
        sa.Column('priority', _enum('notification_priority_enum'), nullable=False),
        sa.Column('channels', JSON, nullable=False),
        sa.Column('recipient_email', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=128), nullable=True),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_sent', sa.Boolean(), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('ix_notifications_unsent', 'notifications', ['is_sent', 'created_at'])

    op.create_table(
        'notification_deliveries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('notification_id', sa.Uuid(), nullable=False),
        sa.Column('channel', _enum('notification_channel_enum'), nullable=False),
        sa.Column('recipient', sa.String(length=255), nullable=False),
        sa.Column('status', _enum('notification_delivery_status_enum'), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('provider_message_id', sa.String(length=255), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['notification_id'], ['notifications.id'], ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_notification_deliveries_notification_id',
        'notification_deliveries',
        ['notification_id'],
    )
    op.create_index(
        'ix_notification_deliveries_retry',
        'notification_deliveries',
        ['status', 'next_retry_at'],
    )

    # Accounts
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('auth_id', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('verification_token', sa.String(length=128), nullable=True),
        sa.Column('verification_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verification_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reset_token', sa.String(length=128), nullable=True),
        sa.Column('reset_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('verification_token'),
        sa.UniqueConstraint('reset_token'),
    )
    op.create_index('ix_users_auth_id', 'users', ['auth_id'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)


def downgrade() -> None:
    """Downgrade schema - Drop every bookstore table and enum type."""
    for table in (
        'users',
        'notification_deliveries',
        'notifications',
        'payment_audit_logs',
        'refunds',
        'payment_webhook_logs',
        'payments',
        'store_audit_logs',
        'order_sequences',
        'order_status_history',
        'order_items',
        'orders',
        'cart_items',
        'carts',
        'promotion_usage',
        'promotions',
        'inventory_audit_logs',
        'reservations',
        'warehouse_inventory',
        'warehouses',
        'books',
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
