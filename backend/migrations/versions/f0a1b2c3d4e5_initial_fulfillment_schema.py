"""initial fulfillment schema

Revision ID: f0a1b2c3d4e5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete fulfillment schema:
- users: acting users (customers and staff), authenticated upstream
- products / bundles / bundle_items: catalog and bundle composition
- inventory_records / inventory_movements: stock with reservations + audit trail
- payment_accounts / payment_account_transactions: rotation pool and usage ledger
- remittance_types: corridors, pricing and commission
- orders / order_items / order_status_history
- remittances / remittance_status_history
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'f0a1b2c3d4e5'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # users
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])

    # ============================================================================
    # catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'bundles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'bundle_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bundle_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['bundle_id'], ['bundles.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bundle_id', 'product_id', name='uq_bundle_items_bundle_product'),
        sa.CheckConstraint('quantity > 0', name='ck_bundle_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bundle_items_bundle_id', 'bundle_items', ['bundle_id'])
    op.create_index('ix_bundle_items_product_id', 'bundle_items', ['product_id'])

    # ============================================================================
    # inventory
    # ============================================================================
    op.create_table(
        'inventory_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', name='uq_inventory_records_product'),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_quantity_non_negative'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_inventory_reserved_non_negative'),
        sa.CheckConstraint('reserved_quantity <= quantity', name='ck_inventory_reserved_le_quantity'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_record_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('reserved_delta', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('reserved_after', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['inventory_record_id'], ['inventory_records.id']),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_movements_movement_type', 'inventory_movements', ['movement_type'])
    op.create_index('ix_invmov_record_occurred', 'inventory_movements', ['inventory_record_id', 'occurred_at'])
    op.create_index('ix_invmov_reference', 'inventory_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # payment accounts (rotation pool)
    # ============================================================================
    op.create_table(
        'payment_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('bank_name', sa.String(length=128), nullable=True),
        sa.Column('account_holder', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('for_products', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('for_remittances', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('daily_limit_cents', sa.Integer(), nullable=True),
        sa.Column('monthly_limit_cents', sa.Integer(), nullable=True),
        sa.Column('security_limit_cents', sa.Integer(), nullable=True),
        sa.Column('current_daily_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_monthly_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_reset_date', sa.Date(), nullable=True),
        sa.Column('last_monthly_reset_date', sa.Date(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('current_daily_cents >= 0', name='ck_payment_accounts_daily_non_negative'),
        sa.CheckConstraint('current_monthly_cents >= 0', name='ck_payment_accounts_monthly_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_accounts_rotation', 'payment_accounts', ['is_active', 'priority', 'last_used_at'])

    op.create_table(
        'payment_account_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_account_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('reference_type', sa.String(length=16), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('counters_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('validated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['payment_account_id'], ['payment_accounts.id']),
        sa.ForeignKeyConstraint(['validated_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_account_transactions_status', 'payment_account_transactions', ['status'])
    op.create_index('ix_pat_account_created', 'payment_account_transactions', ['payment_account_id', 'created_at'])
    op.create_index('ix_pat_reference', 'payment_account_transactions', ['reference_type', 'reference_id'])

    # ============================================================================
    # remittance types
    # ============================================================================
    op.create_table(
        'remittance_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('currency_code', sa.String(length=10), nullable=False),
        sa.Column('delivery_currency', sa.String(length=10), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('commission_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('commission_fixed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_amount_cents', sa.Integer(), nullable=False),
        sa.Column('max_amount_cents', sa.Integer(), nullable=True),
        sa.Column('delivery_method', sa.String(length=32), nullable=False, server_default='cash'),
        sa.Column('max_delivery_days', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('exchange_rate > 0', name='ck_remittance_types_rate_positive'),
        sa.CheckConstraint('min_amount_cents > 0', name='ck_remittance_types_min_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_remittance_types_is_active', 'remittance_types', ['is_active'])

    # ============================================================================
    # orders
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shipping_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=8), nullable=False),
        sa.Column('recipient_info', sa.JSON(), nullable=True),
        sa.Column('shipping_address', sa.Text(), nullable=True),
        sa.Column('delivery_instructions', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=False, server_default='zelle'),
        sa.Column('payment_pending_since', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_proof_ref', sa.String(length=512), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('payment_proof_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('payment_rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tracking_info', sa.String(length=255), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_proof_ref', sa.String(length=512), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('payment_account_id', sa.Integer(), nullable=True),
        sa.Column('payment_account_transaction_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['validated_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['cancelled_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['payment_account_id'], ['payment_accounts.id']),
        sa.ForeignKeyConstraint(['payment_account_transaction_id'], ['payment_account_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.CheckConstraint('total_cents >= 0', name='ck_orders_total_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_payment_account_id', 'orders', ['payment_account_id'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_type', sa.String(length=16), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('item_name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.Column('inventory_record_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['inventory_record_id'], ['inventory_records.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.String(length=16), nullable=True),
        sa.Column('new_status', sa.String(length=16), nullable=False),
        sa.Column('previous_payment_status', sa.String(length=16), nullable=True),
        sa.Column('new_payment_status', sa.String(length=16), nullable=True),
        sa.Column('changed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['changed_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # ============================================================================
    # remittances
    # ============================================================================
    op.create_table(
        'remittances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('remittance_number', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('remittance_type_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='CREATED'),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('commission_fixed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('commission_percentage_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('commission_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_charged_cents', sa.Integer(), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('amount_to_deliver', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency_sent', sa.String(length=10), nullable=False),
        sa.Column('currency_delivered', sa.String(length=10), nullable=False),
        sa.Column('delivery_method', sa.String(length=32), nullable=False),
        sa.Column('recipient_name', sa.String(length=255), nullable=False),
        sa.Column('recipient_phone', sa.String(length=32), nullable=False),
        sa.Column('recipient_address', sa.Text(), nullable=True),
        sa.Column('recipient_province', sa.String(length=128), nullable=True),
        sa.Column('recipient_id_number', sa.String(length=64), nullable=True),
        sa.Column('recipient_token', sa.String(length=64), nullable=False),
        sa.Column('delivery_notes', sa.Text(), nullable=True),
        sa.Column('payment_proof_ref', sa.String(length=512), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('payment_proof_notes', sa.Text(), nullable=True),
        sa.Column('payment_proof_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('payment_validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_validation_notes', sa.Text(), nullable=True),
        sa.Column('payment_rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_notes', sa.Text(), nullable=True),
        sa.Column('max_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_by_user_id', sa.Integer(), nullable=True),
        sa.Column('delivery_confirmed_by', sa.String(length=16), nullable=True),
        sa.Column('delivery_proof_ref', sa.String(length=512), nullable=True),
        sa.Column('bank_transfer_reference', sa.String(length=128), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completion_notes', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('payment_account_id', sa.Integer(), nullable=True),
        sa.Column('payment_account_transaction_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['remittance_type_id'], ['remittance_types.id']),
        sa.ForeignKeyConstraint(['validated_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['delivered_by_user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['payment_account_id'], ['payment_accounts.id']),
        sa.ForeignKeyConstraint(['payment_account_transaction_id'], ['payment_account_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('remittance_number', name='uq_remittances_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_remittances_status', 'remittances', ['status'])
    op.create_index('ix_remittances_remittance_type_id', 'remittances', ['remittance_type_id'])
    op.create_index('ix_remittances_payment_account_id', 'remittances', ['payment_account_id'])
    op.create_index('ix_remittances_status_created', 'remittances', ['status', 'created_at'])
    op.create_index('ix_remittances_user_created', 'remittances', ['user_id', 'created_at'])

    op.create_table(
        'remittance_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('remittance_id', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.String(length=16), nullable=True),
        sa.Column('new_status', sa.String(length=16), nullable=False),
        sa.Column('changed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['remittance_id'], ['remittances.id']),
        sa.ForeignKeyConstraint(['changed_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_remittance_status_history_remittance_id', 'remittance_status_history', ['remittance_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('remittance_status_history')
    op.drop_table('remittances')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('remittance_types')
    op.drop_table('payment_account_transactions')
    op.drop_table('payment_accounts')
    op.drop_table('inventory_movements')
    op.drop_table('inventory_records')
    op.drop_table('bundle_items')
    op.drop_table('bundles')
    op.drop_table('products')
    op.drop_table('users')
