"""create storefronts, canonical products, storefront links and sync runs

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b901'
down_revision = None
branch_labels = None
depends_on = None


JSONType = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'storefronts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('marketplace', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('client_id', sa.String(length=255), nullable=True),
        sa.Column('api_key', sa.String(length=512), nullable=True),
        sa.Column('business_id', sa.String(length=64), nullable=True),
        sa.Column('campaign_id', sa.String(length=64), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_storefronts')),
    )
    op.create_index(op.f('ix_storefronts_code'), 'storefronts', ['code'], unique=True)

    op.create_table(
        'canonical_products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vendor_code', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=1024), nullable=False),
        sa.Column('name_is_placeholder', sa.Boolean(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('images', JSONType, nullable=True),
        sa.Column('category', sa.String(length=512), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_canonical_products')),
    )
    op.create_index(op.f('ix_canonical_products_vendor_code'), 'canonical_products', ['vendor_code'], unique=True)

    op.create_table(
        'storefront_links',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('storefront_code', sa.String(length=64), nullable=False),
        sa.Column('offer_id', sa.String(length=255), nullable=False),
        sa.Column('primary_id', sa.String(length=255), nullable=True),
        sa.Column('sku', sa.String(length=255), nullable=True),
        sa.Column('price', sa.Numeric(14, 2), nullable=True),
        sa.Column('old_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('currency', sa.String(length=8), nullable=True),
        sa.Column('stock_available', sa.Integer(), nullable=True),
        sa.Column('stock_reserved', sa.Integer(), nullable=True),
        sa.Column('has_stock', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(length=64), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['product_id'], ['canonical_products.id'],
            name=op.f('fk_storefront_links_product_id_canonical_products'), ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_storefront_links')),
        sa.UniqueConstraint('product_id', 'storefront_code', name='uq_storefront_links_product_storefront'),
        sa.UniqueConstraint('storefront_code', 'offer_id', name='uq_storefront_links_storefront_offer'),
    )
    op.create_index(op.f('ix_storefront_links_product_id'), 'storefront_links', ['product_id'])
    op.create_index('idx_storefront_links_storefront_stock', 'storefront_links', ['storefront_code', 'stock_available'])

    op.create_table(
        'catalog_sync_runs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('trigger', sa.String(length=32), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('total', sa.Integer(), nullable=False),
        sa.Column('synced', sa.Integer(), nullable=False),
        sa.Column('errors', sa.Integer(), nullable=False),
        sa.Column('failed_batches', sa.Integer(), nullable=False),
        sa.Column('storefronts_processed', sa.Integer(), nullable=False),
        sa.Column('failed_storefronts', JSONType, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_catalog_sync_runs')),
    )
    op.create_index('idx_catalog_sync_run_status', 'catalog_sync_runs', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_catalog_sync_run_status', table_name='catalog_sync_runs')
    op.drop_table('catalog_sync_runs')
    op.drop_index('idx_storefront_links_storefront_stock', table_name='storefront_links')
    op.drop_index(op.f('ix_storefront_links_product_id'), table_name='storefront_links')
    op.drop_table('storefront_links')
    op.drop_index(op.f('ix_canonical_products_vendor_code'), table_name='canonical_products')
    op.drop_table('canonical_products')
    op.drop_index(op.f('ix_storefronts_code'), table_name='storefronts')
    op.drop_table('storefronts')
