"""
推荐关系数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, String, Boolean, Integer, Numeric, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, utcnow


class ReferralStatus:
    PENDING = "pending"
    CONVERTED = "converted"
    REVOKED = "revoked"


class Referral(Base):
    """推荐记录：pending → converted 只允许发生一次"""
    __tablename__ = "referrals"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    referee_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, comment="被推荐人只能被推荐一次")
    referral_code: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ReferralStatus.PENDING)

    reward_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    reward_credited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))

    converted_at: Mapped[Optional[datetime]] = mapped_column()
    converted_order_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'converted', 'revoked')", name="ck_referrals_status"),
        Index("ix_referrals_ip_converted", "ip_address", "converted_at"),
    )


class UserReferralCode(Base):
    """推荐人统计"""
    __tablename__ = "user_referral_codes"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    total_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
