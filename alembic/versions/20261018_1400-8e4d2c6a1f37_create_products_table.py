"""create_products_table

Revision ID: 8e4d2c6a1f37
Revises: 3c1f9a2b7d10
Create Date: 2026-10-18 14:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8e4d2c6a1f37'
down_revision: Union[str, None] = '3c1f9a2b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False, comment='商品ID'),
        sa.Column('seller_id', sa.String(length=64), nullable=False, comment='卖家ID'),
        sa.Column('name', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, comment='单价'),
        sa.Column('seller_discount_pct', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0',
                  comment='卖家折扣百分比'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_id', 'products', ['id'])
    op.create_index('ix_products_product_id', 'products', ['product_id'], unique=True)
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])


def downgrade() -> None:
    op.drop_index('ix_products_seller_id', table_name='products')
    op.drop_index('ix_products_product_id', table_name='products')
    op.drop_index('ix_products_id', table_name='products')
    op.drop_table('products')
