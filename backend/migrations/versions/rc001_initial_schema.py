"""Initial schema: tenants, catalog, inventory ledger, mobile orders, sessions

MULTI-TENANT MIGRATION:
1. Creates 'tenants' as the tenant root and every tenant-owned table
2. Adds the per-tenant unique constraints (idempotency key, order number,
   SKU, username, customer phone)
3. PostgreSQL only: enables and forces row-level security with a
   'tenant_isolation' policy on business tables, keyed on the
   app.current_tenant_id setting that the data access layer sets with
   SET LOCAL per transaction. FORCE makes the policies bind the role that
   owns the tables too, which is usually the application role

Identity tables (tenants, users, customers, session_tokens) are read while
resolving a request's tenant, before any tenant context exists, so they are
left without policies.

Revision ID: rc001_initial_schema
Revises:
Create Date: 2026-10-16
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'rc001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


RLS_TABLES = (
    'warehouses',
    'shop_settings',
    'categories',
    'products',
    'inventory_records',
    'inventory_movements',
    'orders',
    'order_items',
    'order_status_history',
)


def _id_column():
    return sa.Column('id', sa.String(length=64), nullable=False)


def _tenant_column(**kwargs):
    return sa.Column('tenant_id', sa.String(length=64), sa.ForeignKey('tenants.id'), nullable=False, **kwargs)


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    # ==========================================================================
    # STEP 1: Tenant root and identity tables
    # ==========================================================================
    op.create_table('tenants',
        _id_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)
    op.create_index('ix_tenants_is_active', 'tenants', ['is_active'])

    op.create_table('users',
        _id_column(),
        _tenant_column(),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'username', name='uq_users_tenant_username')
    )
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])

    op.create_table('customers',
        _id_column(),
        _tenant_column(),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'phone', name='uq_customers_tenant_phone')
    )
    op.create_index('ix_customers_tenant_id', 'customers', ['tenant_id'])

    op.create_table('session_tokens',
        _id_column(),
        _tenant_column(),
        sa.Column('subject_type', sa.String(length=16), nullable=False),
        sa.Column('user_id', sa.String(length=64), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('customer_id', sa.String(length=64), sa.ForeignKey('customers.id'), nullable=True),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        _timestamp('last_used_at'),
        _timestamp('expires_at'),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('revoked_at', nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_session_tokens_tenant_id', 'session_tokens', ['tenant_id'])
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_customer_id', 'session_tokens', ['customer_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ==========================================================================
    # STEP 2: Locations, settings and catalog
    # ==========================================================================
    op.create_table('warehouses',
        _id_column(),
        _tenant_column(),
        sa.Column('branch_id', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_warehouses_tenant_name')
    )
    op.create_index('ix_warehouses_tenant_id', 'warehouses', ['tenant_id'])
    op.create_index('ix_warehouses_tenant_branch', 'warehouses', ['tenant_id', 'branch_id'])

    op.create_table('shop_settings',
        sa.Column('tenant_id', sa.String(length=64), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('delivery_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('free_delivery_above', sa.Numeric(12, 2), nullable=True),
        sa.Column('minimum_order_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('estimated_delivery_minutes', sa.Integer(), nullable=True),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('tenant_id')
    )

    op.create_table('categories',
        _id_column(),
        _tenant_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_categories_tenant_name')
    )
    op.create_index('ix_categories_tenant_id', 'categories', ['tenant_id'])

    op.create_table('products',
        _id_column(),
        _tenant_column(),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category_id', sa.String(length=64), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('retail_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('mobile_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('mobile_visible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('mobile_description', sa.String(length=1000), nullable=True),
        sa.Column('mobile_sort_order', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'sku', name='uq_products_tenant_sku')
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_tenant_active', 'products', ['tenant_id', 'is_active'])
    op.create_index('ix_products_tenant_created', 'products', ['tenant_id', 'created_at'])

    # ==========================================================================
    # STEP 3: Inventory counters and movement ledger
    # ==========================================================================
    op.create_table('inventory_records',
        _id_column(),
        _tenant_column(),
        sa.Column('product_id', sa.String(length=64), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('warehouse_id', sa.String(length=64), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_reserved', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'product_id', 'warehouse_id', name='uq_inventory_tenant_product_wh')
    )
    op.create_index('ix_inventory_records_tenant_id', 'inventory_records', ['tenant_id'])
    op.create_index('ix_inventory_records_product_id', 'inventory_records', ['product_id'])
    op.create_index('ix_inventory_records_warehouse_id', 'inventory_records', ['warehouse_id'])

    op.create_table('inventory_movements',
        _id_column(),
        _tenant_column(),
        sa.Column('product_id', sa.String(length=64), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('warehouse_id', sa.String(length=64), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_inventory_movements_tenant_id', 'inventory_movements', ['tenant_id'])
    op.create_index('ix_inventory_movements_tenant_product', 'inventory_movements',
                    ['tenant_id', 'product_id', 'created_at'])
    op.create_index('ix_inventory_movements_reference', 'inventory_movements', ['tenant_id', 'reference_id'])

    # ==========================================================================
    # STEP 4: Mobile orders
    # ==========================================================================
    op.create_table('orders',
        _id_column(),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        _tenant_column(),
        sa.Column('customer_id', sa.String(length=64), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('branch_id', sa.String(length=64), nullable=True),
        sa.Column('warehouse_id', sa.String(length=64), sa.ForeignKey('warehouses.id'), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Pending'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('delivery_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('grand_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(length=30), nullable=False, server_default='COD'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='Unpaid'),
        sa.Column('delivery_address', sa.String(length=500), nullable=True),
        sa.Column('delivery_lat', sa.Float(), nullable=True),
        sa.Column('delivery_lng', sa.Float(), nullable=True),
        sa.Column('delivery_notes', sa.String(length=500), nullable=True),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('pos_synced', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('pos_synced_at', nullable=True),
        _timestamp('delivered_at', nullable=True),
        _timestamp('cancelled_at', nullable=True),
        sa.Column('cancelled_by', sa.String(length=16), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'idempotency_key', name='uq_orders_tenant_idempotency_key'),
        sa.UniqueConstraint('tenant_id', 'order_number', name='uq_orders_tenant_order_number')
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_tenant_customer_created', 'orders', ['tenant_id', 'customer_id', 'created_at', 'id'])
    op.create_index('ix_orders_tenant_status_created', 'orders', ['tenant_id', 'status', 'created_at'])
    op.create_index('ix_orders_tenant_pos_synced', 'orders', ['tenant_id', 'pos_synced'])

    op.create_table('order_items',
        _id_column(),
        _tenant_column(),
        sa.Column('order_id', sa.String(length=64), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('product_id', sa.String(length=64), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('stock_tracked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('line_number', sa.Integer(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_items_tenant_id', 'order_items', ['tenant_id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table('order_status_history',
        _id_column(),
        _tenant_column(),
        sa.Column('order_id', sa.String(length=64), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=False),
        sa.Column('changed_by', sa.String(length=64), nullable=False),
        sa.Column('changed_by_type', sa.String(length=16), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_order_status_history_order', 'order_status_history',
                    ['tenant_id', 'order_id', 'created_at'])

    # ==========================================================================
    # STEP 5: Row-level security (PostgreSQL only)
    # ==========================================================================
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for table_name in RLS_TABLES:
            op.execute(f'ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY')
            op.execute(f'ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY')
            op.execute(
                f"CREATE POLICY tenant_isolation ON {table_name} "
                f"USING (tenant_id = current_setting('app.current_tenant_id', true)) "
                f"WITH CHECK (tenant_id = current_setting('app.current_tenant_id', true))"
            )


def downgrade():
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for table_name in RLS_TABLES:
            op.execute(f'DROP POLICY IF EXISTS tenant_isolation ON {table_name}')
            op.execute(f'ALTER TABLE {table_name} NO FORCE ROW LEVEL SECURITY')
            op.execute(f'ALTER TABLE {table_name} DISABLE ROW LEVEL SECURITY')

    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('inventory_movements')
    op.drop_table('inventory_records')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('shop_settings')
    op.drop_table('warehouses')
    op.drop_table('session_tokens')
    op.drop_table('customers')
    op.drop_table('users')
    op.drop_table('tenants')
