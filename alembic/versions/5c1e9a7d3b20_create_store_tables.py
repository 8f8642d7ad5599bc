"""create_store_tables

Revision ID: 5c1e9a7d3b20
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5c1e9a7d3b20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


region_enum = postgresql.ENUM('us', 'eu', name='store_region_enum', create_type=False)
order_status_enum = postgresql.ENUM(
    'pending', 'awaiting_capture', 'paid', 'shipped', 'delivered',
    'payment_failed', 'cancelled', 'refunded',
    name='store_order_status_enum', create_type=False,
)
payment_status_enum = postgresql.ENUM(
    'pending', 'processing', 'completed', 'failed', 'refunded',
    name='store_payment_status_enum', create_type=False,
)
ledger_stage_enum = postgresql.ENUM(
    'none', 'reserved', 'confirmed', 'released', 'restored',
    name='store_ledger_stage_enum', create_type=False,
)
reservation_status_enum = postgresql.ENUM(
    'pending', 'confirmed', 'released', 'restored',
    name='store_reservation_status_enum', create_type=False,
)
movement_type_enum = postgresql.ENUM(
    'restock', 'sale', 'reservation', 'release', 'adjustment', 'return',
    name='store_inventory_movement_type_enum', create_type=False,
)
refund_status_enum = postgresql.ENUM(
    'pending', 'completed', 'failed',
    name='store_refund_status_enum', create_type=False,
)
webhook_outcome_enum = postgresql.ENUM(
    'received', 'processed', 'ignored', 'conflict', 'deferred',
    name='store_webhook_outcome_enum', create_type=False,
)
audit_entity_enum = postgresql.ENUM(
    'product', 'inventory', 'order',
    name='store_audit_entity_type_enum', create_type=False,
)

ALL_ENUMS = (
    region_enum,
    order_status_enum,
    payment_status_enum,
    ledger_stage_enum,
    reservation_status_enum,
    movement_type_enum,
    refund_status_enum,
    webhook_outcome_enum,
    audit_entity_enum,
)


def upgrade() -> None:
    """Upgrade schema - Create store catalog, order, inventory and payment tables."""
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    # Catalog
    op.create_table(
        'store_products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('images', postgresql.JSONB(), nullable=False),
        sa.Column('region', region_enum, nullable=False),
        sa.Column('stock', sa.Integer(), server_default='0', nullable=False),
        sa.Column('low_stock_threshold', sa.Integer(), server_default='5', nullable=False),
        sa.Column('backorders_allowed', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('pairing_id', sa.Uuid(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', 'region', name='unique_sku_region'),
    )
    op.create_index('ix_store_products_pairing_id', 'store_products', ['pairing_id'])

    op.create_table(
        'store_product_variations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('tracks_stock', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['store_products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_product_variations_product_id', 'store_product_variations', ['product_id']
    )

    op.create_table(
        'store_variation_options',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('variation_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('price_adjustment', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=True),
        sa.Column('reserved_quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('low_stock_threshold', sa.Integer(), server_default='5', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('reserved_quantity >= 0', name='option_reserved_non_negative'),
        sa.CheckConstraint(
            'stock_quantity IS NULL OR reserved_quantity <= stock_quantity',
            name='option_reserved_within_stock',
        ),
        sa.ForeignKeyConstraint(
            ['variation_id'], ['store_product_variations.id'], ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_variation_options_variation_id', 'store_variation_options', ['variation_id']
    )

    # Orders
    op.create_table(
        'store_orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_number', sa.String(length=20), nullable=False),
        sa.Column('region', region_enum, nullable=False),
        sa.Column('member_auth_id', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('refunded_total', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('coupon_code', sa.String(length=50), nullable=True),
        sa.Column('status', order_status_enum, server_default='pending', nullable=False),
        sa.Column('payment_status', payment_status_enum, server_default='pending', nullable=False),
        sa.Column('ledger_stage', ledger_stage_enum, server_default='none', nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('refunded_total >= 0', name='order_refunded_non_negative'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_store_orders_order_number', 'store_orders', ['order_number'], unique=True)
    op.create_index('ix_store_orders_member_auth_id', 'store_orders', ['member_auth_id'])
    op.create_index('ix_store_orders_status_created_at', 'store_orders', ['status', 'created_at'])

    op.create_table(
        'store_order_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('option_ids', postgresql.JSONB(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('option_names', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity > 0', name='item_positive_quantity'),
        sa.ForeignKeyConstraint(['order_id'], ['store_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['store_products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_store_order_items_order_id', 'store_order_items', ['order_id'])

    op.create_table(
        'store_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', audit_entity_enum, nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('old_value', postgresql.JSONB(), nullable=True),
        sa.Column('new_value', postgresql.JSONB(), nullable=True),
        sa.Column('performed_by', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_store_audit_logs_entity_id', 'store_audit_logs', ['entity_id'])

    # Inventory
    op.create_table(
        'store_stock_reservations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('order_item_id', sa.Uuid(), nullable=True),
        sa.Column('option_id', sa.Uuid(), nullable=True),
        sa.Column('product_id', sa.Uuid(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', reservation_status_enum, server_default='pending', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity > 0', name='reservation_positive_quantity'),
        sa.CheckConstraint(
            '(option_id IS NULL) <> (product_id IS NULL)', name='reservation_single_target'
        ),
        sa.ForeignKeyConstraint(['order_id'], ['store_orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(
            ['order_item_id'], ['store_order_items.id'], ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(['option_id'], ['store_variation_options.id']),
        sa.ForeignKeyConstraint(['product_id'], ['store_products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_stock_reservations_order_id', 'store_stock_reservations', ['order_id']
    )
    op.create_index(
        'ix_store_stock_reservations_option_id', 'store_stock_reservations', ['option_id']
    )

    op.create_table(
        'store_inventory_movements',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('option_id', sa.Uuid(), nullable=True),
        sa.Column('product_id', sa.Uuid(), nullable=True),
        sa.Column('movement_type', movement_type_enum, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=30), nullable=True),
        sa.Column('reference_id', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['option_id'], ['store_variation_options.id'], ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(['product_id'], ['store_products.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_inventory_movements_option_id', 'store_inventory_movements', ['option_id']
    )
    op.create_index(
        'ix_store_inventory_movements_product_id', 'store_inventory_movements', ['product_id']
    )

    # Payments
    op.create_table(
        'store_payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('transaction_id', sa.String(length=128), nullable=True),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('status', payment_status_enum, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['store_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id'),
    )
    op.create_index('ix_store_payments_order_id', 'store_payments', ['order_id'])

    op.create_table(
        'store_refunds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('gateway_refund_id', sa.String(length=128), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', refund_status_enum, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['payment_id'], ['store_payments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['store_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_refund_id'),
    )
    op.create_index('ix_store_refunds_order_id', 'store_refunds', ['order_id'])

    op.create_table(
        'store_webhook_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_id', sa.String(length=128), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('outcome', webhook_outcome_enum, nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['store_orders.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_webhook_events_event_id', 'store_webhook_events', ['event_id'], unique=True
    )


def downgrade() -> None:
    """Downgrade schema - Drop store tables."""
    op.drop_index('ix_store_webhook_events_event_id', table_name='store_webhook_events')
    op.drop_table('store_webhook_events')
    op.drop_index('ix_store_refunds_order_id', table_name='store_refunds')
    op.drop_table('store_refunds')
    op.drop_index('ix_store_payments_order_id', table_name='store_payments')
    op.drop_table('store_payments')
    op.drop_index('ix_store_inventory_movements_product_id', table_name='store_inventory_movements')
    op.drop_index('ix_store_inventory_movements_option_id', table_name='store_inventory_movements')
    op.drop_table('store_inventory_movements')
    op.drop_index('ix_store_stock_reservations_option_id', table_name='store_stock_reservations')
    op.drop_index('ix_store_stock_reservations_order_id', table_name='store_stock_reservations')
    op.drop_table('store_stock_reservations')
    op.drop_index('ix_store_audit_logs_entity_id', table_name='store_audit_logs')
    op.drop_table('store_audit_logs')
    op.drop_index('ix_store_order_items_order_id', table_name='store_order_items')
    op.drop_table('store_order_items')
    op.drop_index('ix_store_orders_status_created_at', table_name='store_orders')
    op.drop_index('ix_store_orders_member_auth_id', table_name='store_orders')
    op.drop_index('ix_store_orders_order_number', table_name='store_orders')
    op.drop_table('store_orders')
    op.drop_index('ix_store_variation_options_variation_id', table_name='store_variation_options')
    op.drop_table('store_variation_options')
    op.drop_index('ix_store_product_variations_product_id', table_name='store_product_variations')
    op.drop_table('store_product_variations')
    op.drop_index('ix_store_products_pairing_id', table_name='store_products')
    op.drop_table('store_products')

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
