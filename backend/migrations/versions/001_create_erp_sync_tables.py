"""create catalog, order and erp sync tables

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create catalog, inventory, order, erp_configuration and sync_log tables."""

    # Catalog
    op.create_table(
        'category',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('external_category_id', sa.Text, nullable=True, comment='ERP category id'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('slug', sa.Text, nullable=False),
        sa.Column('parent_id', UUID(as_uuid=True), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )
    op.create_index('uq_category_external_id', 'category', ['external_category_id'], unique=True)
    op.create_index('uq_category_slug', 'category', ['slug'], unique=True)

    op.create_table(
        'product',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('external_product_id', sa.Text, nullable=True,
                  comment='ERP product id, optionally warehouse-prefixed'),
        sa.Column('name', sa.Text, nullable=False),
        sa.Column('slug', sa.Text, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('sku', sa.Text, nullable=True),
        sa.Column('ean', sa.Text, nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('weight', sa.Numeric(10, 3), nullable=True),
        sa.Column('tax_rate', sa.Integer, nullable=False, server_default='23'),
        sa.Column('tags', JSONB, nullable=True, comment='List of tag names (wholesaler names among them)'),
        sa.Column('category_id', UUID(as_uuid=True), sa.ForeignKey('category.id', ondelete='SET NULL'), nullable=True),
        sa.Column('active', sa.Boolean, nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )
    op.create_index('uq_product_external_id', 'product', ['external_product_id'], unique=True)
    op.create_index('ix_product_category', 'product', ['category_id'])

    op.create_table(
        'product_variant',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('product.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_variant_id', sa.Text, nullable=True,
                  comment='ERP variant id (None for default variants)'),
        sa.Column('name', sa.Text, nullable=True),
        sa.Column('sku', sa.Text, nullable=True),
        sa.Column('barcode', sa.Text, nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('weight', sa.Numeric(10, 3), nullable=True),
        sa.Column('is_default', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )
    op.create_index('ix_product_variant_product', 'product_variant', ['product_id'])
    op.create_index('uq_product_variant_external_id', 'product_variant', ['external_variant_id'], unique=True)

    op.create_table(
        'product_image',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('product.id', ondelete='CASCADE'), nullable=False),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )
    op.create_index('ix_product_image_product', 'product_image', ['product_id', 'position'])

    op.create_table(
        'inventory',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('variant_id', UUID(as_uuid=True), sa.ForeignKey('product_variant.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('reserved', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )
    op.create_index('uq_inventory_variant', 'inventory', ['variant_id'], unique=True)

    # Orders
    op.create_table(
        'shop_order',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('number', sa.Text, nullable=False, unique=True),
        sa.Column('customer_email', sa.Text, nullable=False),
        sa.Column('customer_phone', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='OPEN'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='PLN'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('shipping_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('shipping_method', sa.Text, nullable=True, comment='Shipping method code, e.g. inpost_paczkomat'),
        sa.Column('payment_method', sa.Text, nullable=True, comment='Payment method code, e.g. payu, cod'),
        sa.Column('shipping_address', JSONB, nullable=True),
        sa.Column('billing_address', JSONB, nullable=True),
        sa.Column('want_invoice', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('package_shipping', JSONB, nullable=True),
        sa.Column('parcel_locker_code', sa.Text, nullable=True),
        sa.Column('parcel_locker_address', sa.Text, nullable=True),
        sa.Column('customer_notes', sa.Text, nullable=True),
        sa.Column('tracking_number', sa.Text, nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_order_id', sa.Text, nullable=True, unique=True, comment='ERP order id, assigned once'),
        sa.Column('external_push_started_at', sa.DateTime(timezone=True), nullable=True,
                  comment='Set before addOrder is sent; lets a retry detect an unrecorded ERP order'),
        sa.Column('external_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('external_sync_error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint(
            "status IN ('OPEN', 'CONFIRMED', 'PROCESSING', 'SHIPPED', 'DELIVERED', 'CANCELLED', 'REFUNDED')",
            name='ck_shop_order_status'
        ),
        sa.CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'FAILED', 'REFUNDED', 'CANCELLED')",
            name='ck_shop_order_payment_status'
        )
    )
    op.create_index('idx_shop_order_payment_status', 'shop_order', ['payment_status', 'status'])
    op.create_index('idx_shop_order_created', 'shop_order', ['created_at'])

    op.create_table(
        'order_line',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('shop_order.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('variant_id', UUID(as_uuid=True), sa.ForeignKey('product_variant.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('product_name', sa.Text, nullable=False),
        sa.Column('sku', sa.Text, nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('quantity > 0', name='ck_order_line_quantity')
    )
    op.create_index('idx_order_line_order', 'order_line', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('shop_order.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('payment_status', sa.String(20), nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='local', comment='local|payment|erp|admin'),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()'))
    )
    op.create_index('idx_order_status_history_order', 'order_status_history', ['order_id', 'created_at'])

    # ERP integration
    op.create_table(
        'erp_configuration',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('inventory_id', sa.Text, nullable=False, comment='Default ERP inventory id (catalog id)'),
        sa.Column('token_ciphertext', sa.Text, nullable=False, comment='Encrypted API token (hex)'),
        sa.Column('token_iv', sa.String(32), nullable=False, comment='AES-GCM IV (hex, 16 bytes)'),
        sa.Column('token_auth_tag', sa.String(32), nullable=False, comment='AES-GCM auth tag (hex, 16 bytes)'),
        sa.Column('sync_enabled', sa.Boolean, nullable=False, server_default='true'),
        sa.Column('sync_interval_minutes', sa.Integer, nullable=False, server_default='60'),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('sync_interval_minutes > 0', name='ck_erp_configuration_interval')
    )
    op.create_index('uq_erp_configuration_inventory', 'erp_configuration', ['inventory_id'], unique=True)
    op.create_index('idx_erp_configuration_enabled', 'erp_configuration', ['sync_enabled', 'created_at'])

    op.create_table(
        'sync_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('sync_type', sa.String(20), nullable=False,
                  comment='FULL|PRODUCTS|CATEGORIES|STOCK|IMAGES|ORDER_STATUS|ORDERS'),
        sa.Column('mode', sa.String(20), nullable=True, comment='new_only|update_only (catalog syncs)'),
        sa.Column('status', sa.String(20), nullable=False, server_default='RUNNING'),
        sa.Column('items_processed', sa.Integer, nullable=False, server_default='0'),
        sa.Column('items_changed', sa.Integer, nullable=False, server_default='0'),
        sa.Column('errors', JSONB, nullable=True, comment='List of error messages collected during the run'),
        sa.Column('triggered_by', sa.Text, nullable=False, server_default='schedule',
                  comment='schedule|admin:<user>|system'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('RUNNING', 'SUCCESS', 'FAILED', 'CANCELLED')",
            name='ck_sync_log_status'
        )
    )
    op.create_index('idx_sync_log_type_started', 'sync_log', ['sync_type', 'started_at'])

    # At most one RUNNING row per sync type
    op.create_index(
        'uq_sync_log_running_type',
        'sync_log',
        ['sync_type'],
        unique=True,
        postgresql_where=sa.text("status = 'RUNNING'")
    )


def downgrade() -> None:
    """Drop all tables created in upgrade, children first."""
    op.drop_index('uq_sync_log_running_type', table_name='sync_log')
    op.drop_index('idx_sync_log_type_started', table_name='sync_log')
    op.drop_table('sync_log')

    op.drop_index('idx_erp_configuration_enabled', table_name='erp_configuration')
    op.drop_index('uq_erp_configuration_inventory', table_name='erp_configuration')
    op.drop_table('erp_configuration')

    op.drop_index('idx_order_status_history_order', table_name='order_status_history')
    op.drop_table('order_status_history')
    op.drop_index('idx_order_line_order', table_name='order_line')
    op.drop_table('order_line')
    op.drop_index('idx_shop_order_created', table_name='shop_order')
    op.drop_index('idx_shop_order_payment_status', table_name='shop_order')
    op.drop_table('shop_order')

    op.drop_index('uq_inventory_variant', table_name='inventory')
    op.drop_table('inventory')
    op.drop_index('ix_product_image_product', table_name='product_image')
    op.drop_table('product_image')
    op.drop_index('uq_product_variant_external_id', table_name='product_variant')
    op.drop_index('ix_product_variant_product', table_name='product_variant')
    op.drop_table('product_variant')
    op.drop_index('ix_product_category', table_name='product')
    op.drop_index('uq_product_external_id', table_name='product')
    op.drop_table('product')
    op.drop_index('uq_category_slug', table_name='category')
    op.drop_index('uq_category_external_id', table_name='category')
    op.drop_table('category')
