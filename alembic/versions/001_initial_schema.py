"""Initial schema - stores, licenses, catalogue, stock movements and row-level security

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Tables whose rows are visible only to the store bound by
# SELECT set_config('app.current_store_id', ..., true)
TENANT_TABLES = ['categories', 'products', 'store_config', 'stock_movements']


def upgrade() -> None:
    op.create_table(
        'stores',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('owner_email', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'store_config',
        sa.Column('store_id', sa.String(), nullable=False),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', sa.String(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('store_id', 'key'),
    )

    op.create_table(
        'licenses',
        sa.Column('serial', sa.String(), nullable=False),
        sa.Column('plan', sa.String(), nullable=False, server_default='free'),
        sa.Column('status', sa.String(), nullable=False, server_default='generated'),
        sa.Column('store_id', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_products', sa.Integer(), nullable=True),
        sa.Column('max_orders', sa.Integer(), nullable=True),
        sa.Column('owner_email', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('serial'),
    )
    op.create_index('idx_licenses_store', 'licenses', ['store_id'])
    op.create_index('idx_licenses_status', 'licenses', ['status'])

    op.create_table(
        'categories',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('store_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_categories_store_id', 'categories', ['store_id'])
    op.create_index('idx_categories_store_slug', 'categories', ['store_id', 'slug'])

    op.create_table(
        'products',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('store_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category_id', sa.String(), nullable=True),
        sa.Column('subcategory', sa.String(), nullable=True),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('original_price', sa.Integer(), nullable=True),
        sa.Column('transfer_price', sa.Integer(), nullable=True),
        sa.Column('image', sa.String(), nullable=True),
        sa.Column('images', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('sizes', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('colors', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('variants_stock', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('stock_status', sa.String(), nullable=True),
        sa.Column('is_best_seller', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_new', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_on_sale', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('order_num', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_products_store', 'products', ['store_id'])
    op.create_index('idx_products_store_order', 'products', ['store_id', 'order_num', 'created_at'])
    op.create_index('idx_products_category', 'products', ['category_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('store_id', sa.String(), nullable=False),
        sa.Column('product_id', sa.String(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=50), nullable=False),
        sa.Column('order_id', sa.String(), nullable=True),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_stock_movements_store_product', 'stock_movements', ['store_id', 'product_id'])
    op.create_index('idx_stock_movements_store_created', 'stock_movements', ['store_id', 'created_at'])

    # Row-level security. FORCE applies the policy to the table owner too;
    # a missing setting yields NULL and therefore no rows.
    for table in TENANT_TABLES:
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')
        op.execute(f'ALTER TABLE {table} FORCE ROW LEVEL SECURITY')
        op.execute(
            f"CREATE POLICY {table}_store_isolation ON {table} "
            f"USING (store_id = current_setting('app.current_store_id', true)) "
            f"WITH CHECK (store_id = current_setting('app.current_store_id', true))"
        )


def downgrade() -> None:
    for table in reversed(TENANT_TABLES):
        op.execute(f'DROP POLICY IF EXISTS {table}_store_isolation ON {table}')
        op.execute(f'ALTER TABLE {table} DISABLE ROW LEVEL SECURITY')

    op.drop_index('idx_stock_movements_store_created', table_name='stock_movements')
    op.drop_index('idx_stock_movements_store_product', table_name='stock_movements')
    op.drop_table('stock_movements')
    op.drop_index('idx_products_category', table_name='products')
    op.drop_index('idx_products_store_order', table_name='products')
    op.drop_index('idx_products_store', table_name='products')
    op.drop_table('products')
    op.drop_index('idx_categories_store_slug', table_name='categories')
    op.drop_index('ix_categories_store_id', table_name='categories')
    op.drop_table('categories')
    op.drop_index('idx_licenses_status', table_name='licenses')
    op.drop_index('idx_licenses_store', table_name='licenses')
    op.drop_table('licenses')
    op.drop_table('store_config')
    op.drop_table('stores')
