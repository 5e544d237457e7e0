"""Initial schema: catalog, customers, operators, events, sales, stock movements

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

Money columns are whole currency units (BIGINT); discounts are basis points.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True):
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def _soft_delete():
    return [
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        *_timestamps(),
        *_soft_delete(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_categories_name', 'categories', ['name'])
    op.create_index('ix_categories_is_deleted', 'categories', ['is_deleted'])

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('cost_price', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('sale_price', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('image_path', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode', name='uq_products_barcode'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_category_name', 'products', ['category_id', 'name'])
    op.create_index('ix_products_is_deleted', 'products', ['is_deleted'])

    # ==========================================================================
    # 2. PEOPLE
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        *_timestamps(),
        *_soft_delete(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_is_deleted', 'customers', ['is_deleted'])

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='PETUGAS'),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        *_timestamps(),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        *_soft_delete(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_users_username', 'users', ['username'])
    op.create_index('ix_users_is_deleted', 'users', ['is_deleted'])

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)

    # ==========================================================================
    # 3. EVENTS
    # ==========================================================================
    op.create_table('events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        *_soft_delete(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_events_window', 'events', ['starts_at', 'ends_at'])
    op.create_index('ix_events_is_deleted', 'events', ['is_deleted'])

    op.create_table('event_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('discount_bps', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(['event_id'], ['events.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('discount_bps >= 0 AND discount_bps <= 10000', name='ck_event_products_discount_range'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_event_products_event_id', 'event_products', ['event_id'])
    op.create_index('ix_event_products_product_id', 'event_products', ['product_id'])
    op.create_index('ix_event_products_event_product', 'event_products', ['event_id', 'product_id'])
    op.create_index('ix_event_products_is_deleted', 'event_products', ['is_deleted'])

    # ==========================================================================
    # 4. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('subtotal', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('customer_discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('adjustment', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('net_total', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('amount_tendered', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('change', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        *_soft_delete(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_user_id', 'sales', ['user_id'])
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])
    op.create_index('ix_sales_sold_at', 'sales', ['sold_at'])
    op.create_index('ix_sales_customer_sold_at', 'sales', ['customer_id', 'sold_at'])
    op.create_index('ix_sales_is_deleted', 'sales', ['is_deleted'])

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('event_product_id', sa.Integer(), nullable=True),
        sa.Column('unit_price', sa.BigInteger(), nullable=False),
        sa.Column('unit_cost', sa.BigInteger(), nullable=False),
        sa.Column('item_discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('event_discount_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_subtotal', sa.BigInteger(), nullable=False),
        sa.Column('line_total', sa.BigInteger(), nullable=False),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(updated=False),
        *_soft_delete(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['event_product_id'], ['event_products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])
    op.create_index('ix_sale_lines_product_sold_at', 'sale_lines', ['product_id', 'sold_at'])
    op.create_index('ix_sale_lines_is_deleted', 'sale_lines', ['is_deleted'])

    # ==========================================================================
    # 5. STOCK MOVEMENTS (append-only)
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('stock_in', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_out', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('stock_in >= 0 AND stock_out >= 0', name='ck_stock_movements_non_negative'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_product_created', 'stock_movements', ['product_id', 'created_at'])


def downgrade():
    op.drop_table('stock_movements')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('event_products')
    op.drop_table('events')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('customers')
    op.drop_table('products')
    op.drop_table('categories')
