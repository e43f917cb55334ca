"""create_checkout_payment_tables

Revision ID: 3c1f9a2b7d10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.String(length=100), nullable=False, comment='交易号'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='支付网关: datafast/deuna/simulation'),
        sa.Column('checkout_id', sa.String(length=200), nullable=True, comment='网关结账/会话ID'),
        sa.Column('provider_ref', sa.String(length=200), nullable=True, comment='网关交易ID'),
        sa.Column('checkout_session_id', sa.String(length=200), nullable=True, comment='结账快照键'),
        sa.Column('payment_method', sa.String(length=50), nullable=True, comment='支付方式'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='支付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='状态: pending/processing/completed/failed/cancelled/refunded'),
        sa.Column('order_id', sa.Integer(), nullable=True, comment='关联订单ID（完成后写入）'),
        sa.Column('error_code', sa.String(length=100), nullable=True, comment='错误码'),
        sa.Column('error_message', sa.Text(), nullable=True, comment='错误信息'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_records_id', 'payment_records', ['id'])
    op.create_index('ix_payment_records_transaction_id', 'payment_records', ['transaction_id'], unique=True)
    op.create_index('ix_payment_records_user_id', 'payment_records', ['user_id'])
    op.create_index('ix_payment_records_provider', 'payment_records', ['provider'])
    op.create_index('ix_payment_records_status', 'payment_records', ['status'])
    op.create_index('ix_payment_records_status_created', 'payment_records', ['status', 'created_at'])
    op.create_index('ix_payment_records_provider_checkout', 'payment_records', ['provider', 'checkout_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_number', sa.String(length=40), nullable=False, comment='订单号'),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='用户ID'),
        sa.Column('payment_transaction_id', sa.String(length=100), nullable=False, comment='支付交易号'),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='paid'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('subtotal_original', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('subtotal_with_discounts', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('coupon_code', sa.String(length=50), nullable=True),
        sa.Column('coupon_discount_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('iva_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('total', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('shipping_data', sa.JSON(), nullable=False),
        sa.Column('billing_data', sa.JSON(), nullable=False),
        sa.Column('shipping_breakdown', sa.JSON(), nullable=True, comment='卖家运费分成（用于结算）'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        # 同一笔支付最多一个订单
        sa.UniqueConstraint('payment_transaction_id', name='uq_orders_payment_transaction_id'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('seller_id', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('final_unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('seller_discount_pct', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('volume_discount_pct', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0'),
        sa.Column('attributes', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_seller_id', 'order_items', ['seller_id'])

    op.create_table(
        'discount_codes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False, comment='折扣码（大写）'),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('scope', sa.String(length=20), nullable=False, comment='feedback/coupon'),
        sa.Column('owner_user_id', sa.String(length=64), nullable=True),
        sa.Column('single_use', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('used_by', sa.String(length=64), nullable=True),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('product_ids', sa.JSON(), nullable=True),
        sa.Column('seller_ids', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_discount_codes_id', 'discount_codes', ['id'])
    op.create_index('ix_discount_codes_code', 'discount_codes', ['code'], unique=True)
    op.create_index('ix_discount_codes_owner_user_id', 'discount_codes', ['owner_user_id'])


def downgrade() -> None:
    op.drop_index('ix_discount_codes_owner_user_id', table_name='discount_codes')
    op.drop_index('ix_discount_codes_code', table_name='discount_codes')
    op.drop_index('ix_discount_codes_id', table_name='discount_codes')
    op.drop_table('discount_codes')

    op.drop_index('ix_order_items_seller_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_index('ix_order_items_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_created_at', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_payment_records_provider_checkout', table_name='payment_records')
    op.drop_index('ix_payment_records_status_created', table_name='payment_records')
    op.drop_index('ix_payment_records_status', table_name='payment_records')
    op.drop_index('ix_payment_records_provider', table_name='payment_records')
    op.drop_index('ix_payment_records_user_id', table_name='payment_records')
    op.drop_index('ix_payment_records_transaction_id', table_name='payment_records')
    op.drop_index('ix_payment_records_id', table_name='payment_records')
    op.drop_table('payment_records')
