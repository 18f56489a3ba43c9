"""Create settlement core tables

Revision ID: settlement_core
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'settlement_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create orders, balances, promotions, referrals and audit tables"""

    # 订单
    op.create_table('orders',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_number', sa.String(length=40), nullable=False, comment='对外订单号'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='下单用户（认证服务的用户 ID）'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='confirmed'),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('discount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('shipping_cost', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('promotion_code', sa.String(length=64), nullable=True),
        sa.Column('gift_card_code', sa.String(length=32), nullable=True),
        sa.Column('gift_card_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('user_credit_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('payment_provider', sa.String(length=32), nullable=False, server_default='stripe'),
        sa.Column('payment_id', sa.String(length=255), nullable=False),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='completed'),
        sa.Column('is_digital', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('shipping_address', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('courier', sa.String(length=32), nullable=True),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_reason', sa.Text(), nullable=True, comment='进入人工审核的原因'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sa.UniqueConstraint('payment_provider', 'payment_id', name='uq_orders_payment_reference'),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('discount >= 0', name='ck_orders_discount_non_negative'),
        sa.CheckConstraint('shipping_cost >= 0', name='ck_orders_shipping_non_negative'),
        sa.CheckConstraint('total >= 0', name='ck_orders_total_non_negative'),
        sa.CheckConstraint(
            "status IN ('confirmed', 'processing', 'shipped', 'delivered', 'manual_review')",
            name='ck_orders_status'
        ),
    )
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('size', sa.String(length=32), nullable=False, server_default='Standard'),
        sa.Column('color', sa.String(length=32), nullable=False, server_default='Standard'),
        sa.Column('weight_grams', sa.Integer(), nullable=True),
        sa.Column('unit_measure', sa.String(length=8), nullable=False, server_default='pz'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('product_price >= 0', name='ck_order_items_price_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    op.create_table('cart_items',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('size', sa.String(length=32), nullable=True),
        sa.Column('color', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cart_items_user_id', 'cart_items', ['user_id'], unique=False)

    # 礼品卡
    op.create_table('gift_cards',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False, comment='兑换码'),
        sa.Column('redemption_token', sa.String(length=64), nullable=False, comment='二维码查询令牌'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False, comment='面值'),
        sa.Column('balance', sa.Numeric(10, 2), nullable=False, comment='当前余额'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('recipient_name', sa.String(length=120), nullable=True),
        sa.Column('recipient_email', sa.String(length=255), nullable=True),
        sa.Column('sender_name', sa.String(length=120), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('template', sa.String(length=32), nullable=False, server_default='elegant'),
        sa.Column('purchased_by', sa.String(length=64), nullable=True, comment='购买人用户 ID'),
        sa.Column('order_id', sa.BigInteger(), nullable=True, comment='购买订单'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.UniqueConstraint('redemption_token'),
        sa.CheckConstraint('amount > 0', name='ck_gift_cards_amount_positive'),
        sa.CheckConstraint('balance >= 0', name='ck_gift_cards_balance_non_negative'),
        sa.CheckConstraint('balance <= amount', name='ck_gift_cards_balance_within_amount'),
    )
    op.create_index('ix_gift_cards_order_id', 'gift_cards', ['order_id'], unique=False)

    op.create_table('used_gift_card_codes',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('redemption_token', sa.String(length=64), nullable=True),
        sa.Column('gift_card_id', sa.BigInteger(), nullable=True),
        sa.Column('reason', sa.String(length=20), nullable=False, server_default='generated'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.UniqueConstraint('redemption_token'),
        sa.CheckConstraint(
            "reason IN ('generated', 'reserved', 'admin_blocked')",
            name='ck_used_gift_card_codes_reason'
        ),
    )

    # 促销
    op.create_table('promotions',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True, comment='大写存储'),
        sa.Column('discount_type', sa.String(length=16), nullable=False, comment='percentage | fixed'),
        sa.Column('discount_value', sa.Numeric(10, 2), nullable=False),
        sa.Column('min_purchase', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('max_discount', sa.Numeric(10, 2), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('per_user_limit', sa.Integer(), nullable=True),
        sa.Column('applies_to', sa.String(length=16), nullable=False, server_default='all', comment='all | category | product'),
        sa.Column('applies_to_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='[]'),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.CheckConstraint("discount_type IN ('percentage', 'fixed')", name='ck_promotions_discount_type'),
        sa.CheckConstraint('usage_count >= 0', name='ck_promotions_usage_count_non_negative'),
        sa.CheckConstraint(
            'usage_limit IS NULL OR usage_count <= usage_limit',
            name='ck_promotions_usage_within_limit'
        ),
    )

    op.create_table('promotion_redemptions',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('promotion_id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['promotion_id'], ['promotions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('promotion_id', 'order_id', name='uq_promotion_redemptions_order'),
    )
    op.create_index('ix_promotion_redemptions_user', 'promotion_redemptions', ['promotion_id', 'user_id'], unique=False)

    # 用户余额
    op.create_table('user_credits',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='账户所属用户'),
        sa.Column('balance', sa.Numeric(10, 2), nullable=False, server_default='0.00', comment='当前余额'),
        sa.Column('total_earned', sa.Numeric(10, 2), nullable=False, server_default='0.00', comment='累计获得'),
        sa.Column('total_spent', sa.Numeric(10, 2), nullable=False, server_default='0.00', comment='累计使用'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='乐观锁版本号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.CheckConstraint('balance >= 0', name='ck_user_credits_balance_non_negative'),
    )

    op.create_table('credit_transactions',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('transaction_type', sa.String(length=32), nullable=False, comment='purchase/referral_reward/refund/adjustment'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False, comment='变动金额（正=增加，负=扣减）'),
        sa.Column('balance_before', sa.Numeric(10, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(10, 2), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True, comment='order / referral'),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_credit_transactions_user_created', 'credit_transactions', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_credit_transactions_reference', 'credit_transactions', ['reference_type', 'reference_id'], unique=False)

    # 推荐
    op.create_table('referrals',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('referrer_id', sa.String(length=64), nullable=False),
        sa.Column('referee_id', sa.String(length=64), nullable=False, comment='被推荐人只能被推荐一次'),
        sa.Column('referral_code', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('reward_amount', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('reward_credited', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('converted_order_id', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referee_id'),
        sa.CheckConstraint("status IN ('pending', 'converted', 'revoked')", name='ck_referrals_status'),
    )
    op.create_index('ix_referrals_referrer_id', 'referrals', ['referrer_id'], unique=False)
    op.create_index('ix_referrals_ip_converted', 'referrals', ['ip_address', 'converted_at'], unique=False)

    op.create_table('user_referral_codes',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.Numeric(10, 2), nullable=False, server_default='0.00'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.UniqueConstraint('code'),
    )

    # 审计日志
    op.create_table('audit_logs',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('actor', sa.String(length=64), nullable=False, server_default='system', comment='操作者（system 或管理员标识）'),
        sa.Column('module', sa.String(length=50), nullable=False, comment='模块名（settlement/courier/referral/ledger）'),
        sa.Column('action', sa.String(length=50), nullable=False, comment='操作类型（order_shipped/side_effect_failed 等）'),
        sa.Column('record_type', sa.String(length=50), nullable=False, comment='记录类型（order/referral/gift_card）'),
        sa.Column('record_id', sa.String(length=100), nullable=False, comment='记录ID'),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='详情'),
        sa.Column('request_id', sa.String(length=100), nullable=True, comment='trace_id'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_module', 'audit_logs', ['module'], unique=False)
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'], unique=False)
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'], unique=False)
    op.create_index('idx_audit_logs_record_lookup', 'audit_logs', ['record_type', 'record_id'], unique=False)
    op.create_index('idx_audit_logs_module_time', 'audit_logs', ['module', 'created_at'], unique=False)


def downgrade() -> None:
    """Drop settlement core tables"""
    op.drop_table('audit_logs')
    op.drop_table('user_referral_codes')
    op.drop_index('ix_referrals_ip_converted', table_name='referrals')
    op.drop_index('ix_referrals_referrer_id', table_name='referrals')
    op.drop_table('referrals')
    op.drop_table('credit_transactions')
    op.drop_table('user_credits')
    op.drop_table('promotion_redemptions')
    op.drop_table('promotions')
    op.drop_table('used_gift_card_codes')
    op.drop_table('gift_cards')
    op.drop_table('cart_items')
    op.drop_table('order_items')
    op.drop_table('orders')
