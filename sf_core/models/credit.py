"""
用户余额（store credit）数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, Text, Numeric, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, utcnow


class UserCredit(Base):
    """用户余额账户 - 每个用户一条"""
    __tablename__ = "user_credits"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, comment="账户所属用户")

    balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="当前余额")
    total_earned: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="累计获得")
    total_spent: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"), comment="累计使用")

    # 版本号（乐观锁）
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="乐观锁版本号")

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),
    )


class CreditTransaction(Base):
    """余额流水 - 只追加，余额可由流水重建"""
    __tablename__ = "credit_transactions"

    TYPE_PURCHASE = "purchase"
    TYPE_REFERRAL_REWARD = "referral_reward"
    TYPE_REFUND = "refund"
    TYPE_ADJUSTMENT = "adjustment"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False, comment="purchase/referral_reward/refund/adjustment")
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, comment="变动金额（正=增加，负=扣减）")
    balance_before: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    reference_type: Mapped[Optional[str]] = mapped_column(String(32), comment="order / referral")
    reference_id: Mapped[Optional[str]] = mapped_column(String(64))
    description: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
        Index("ix_credit_transactions_reference", "reference_type", "reference_id"),
    )
