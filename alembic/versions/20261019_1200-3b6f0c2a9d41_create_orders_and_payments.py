"""create_orders_and_payments

Revision ID: 3b6f0c2a9d41
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b6f0c2a9d41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # orders 表由订单子系统拥有，这里只建支付核心读写的列
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True, comment='用户ID'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='订单总额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='UZS', comment='货币代码'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING', comment='履约状态'),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='PENDING', comment='支付状态'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='订单ID'),
        sa.Column('transaction_id', sa.String(length=100), nullable=False, comment='交易关联ID（渠道回调键）'),
        sa.Column('method', sa.String(length=32), nullable=False, comment='支付方式: CLICK/PAYME/UZUM/CASH'),
        sa.Column('provider_ref', sa.String(length=200), nullable=True, comment='渠道侧交易ID'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='支付金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='UZS', comment='货币代码 ISO-4217'),
        sa.Column('refunded_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='已退款金额'),
        sa.Column('pending_refund_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='在途退款预留金额'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING', comment='支付状态'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('provider_time', sa.DateTime(timezone=True), nullable=True, comment='渠道创建时间'),
        sa.Column('create_time', sa.DateTime(timezone=True), nullable=True, comment='交易创建时间'),
        sa.Column('perform_time', sa.DateTime(timezone=True), nullable=True, comment='交易完成时间'),
        sa.Column('cancel_time', sa.DateTime(timezone=True), nullable=True, comment='交易取消时间'),
        sa.Column('cancel_reason', sa.Integer(), nullable=True, comment='取消原因码（Payme）'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='更新时间'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('exchanges', sa.JSON(), nullable=False, comment='网关交换事件列表'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='版本号'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_payments_order_id_orders'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('transaction_id', name='uq_payments_transaction_id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'], unique=False)
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=False)
    op.create_index('ix_payments_method', 'payments', ['method'], unique=False)
    op.create_index('ix_payments_provider_ref', 'payments', ['provider_ref'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False)
    op.create_index('ix_payments_order_method', 'payments', ['order_id', 'method'], unique=False)
    op.create_index('ix_payments_method_status_created', 'payments', ['method', 'status', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payments_method_status_created', table_name='payments')
    op.drop_index('ix_payments_order_method', table_name='payments')
    op.drop_index('ix_payments_created_at', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_provider_ref', table_name='payments')
    op.drop_index('ix_payments_method', table_name='payments')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_index('ix_payments_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_orders_payment_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_index('ix_orders_id', table_name='orders')
    op.drop_table('orders')
