"""
促销数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    BigInteger, String, Boolean, Integer, Numeric, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, JSONType, utcnow


class Promotion(Base):
    """促销 / 折扣码

    code 为空表示自动应用的促销。usage_limit 为空表示不限次数。
    """
    __tablename__ = "promotions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(64), unique=True, comment="大写存储")

    discount_type: Mapped[str] = mapped_column(String(16), nullable=False, comment="percentage | fixed")
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min_purchase: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    max_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))

    usage_limit: Mapped[Optional[int]] = mapped_column(Integer)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    per_user_limit: Mapped[Optional[int]] = mapped_column(Integer)

    applies_to: Mapped[str] = mapped_column(String(16), nullable=False, default="all", comment="all | category | product")
    applies_to_ids: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)

    starts_at: Mapped[Optional[datetime]] = mapped_column()
    ends_at: Mapped[Optional[datetime]] = mapped_column()
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("discount_type IN ('percentage', 'fixed')", name="ck_promotions_discount_type"),
        CheckConstraint("usage_count >= 0", name="ck_promotions_usage_count_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_promotions_usage_within_limit",
        ),
    )


class PromotionRedemption(Base):
    """促销使用记录，每个订单对同一促销最多一条"""
    __tablename__ = "promotion_redemptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    promotion_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False
    )
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("promotion_id", "order_id", name="uq_promotion_redemptions_order"),
        Index("ix_promotion_redemptions_user", "promotion_id", "user_id"),
    )
