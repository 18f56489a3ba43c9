"""
礼品卡数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, String, Boolean, Integer, Text, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, utcnow


class GiftCard(Base):
    """礼品卡

    不变量：0 <= balance <= amount，is_active 当且仅当 balance > 0。
    """
    __tablename__ = "gift_cards"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, comment="兑换码")
    redemption_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, comment="二维码查询令牌")

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, comment="面值")
    balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, comment="当前余额")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    recipient_name: Mapped[Optional[str]] = mapped_column(String(120))
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255))
    sender_name: Mapped[Optional[str]] = mapped_column(String(120))
    message: Mapped[Optional[str]] = mapped_column(Text)
    template: Mapped[str] = mapped_column(String(32), nullable=False, default="elegant")

    purchased_by: Mapped[Optional[str]] = mapped_column(String(64), comment="购买人用户 ID")
    order_id: Mapped[Optional[int]] = mapped_column(BigInteger, index=True, comment="购买订单")

    # 乐观锁
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_gift_cards_amount_positive"),
        CheckConstraint("balance >= 0", name="ck_gift_cards_balance_non_negative"),
        CheckConstraint("balance <= amount", name="ck_gift_cards_balance_within_amount"),
    )


class UsedGiftCardCode(Base):
    """已发放兑换码黑名单，码的唯一性以此表唯一约束为准"""
    __tablename__ = "used_gift_card_codes"

    REASON_GENERATED = "generated"
    REASON_RESERVED = "reserved"
    REASON_ADMIN_BLOCKED = "admin_blocked"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    redemption_token: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    gift_card_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    reason: Mapped[str] = mapped_column(String(20), nullable=False, default=REASON_GENERATED)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "reason IN ('generated', 'reserved', 'admin_blocked')",
            name="ck_used_gift_card_codes_reason",
        ),
    )
