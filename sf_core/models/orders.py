"""
订单相关数据模型
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import (
    BigInteger, String, Boolean, Integer, Text, Numeric,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK, JSONType, utcnow


class OrderStatus:
    """订单状态"""
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    MANUAL_REVIEW = "manual_review"

    ALL = (CONFIRMED, PROCESSING, SHIPPED, DELIVERED, MANUAL_REVIEW)
    # 允许发起快递下单的状态（人工审核后可重试）
    DISPATCHABLE = (CONFIRMED, PROCESSING, MANUAL_REVIEW)


class Order(Base):
    """订单主表

    每个支付引用（provider + payment_id）只对应一个订单；
    创建后仅状态与物流字段可变。
    """
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True, comment="对外订单号")
    user_id: Mapped[Optional[str]] = mapped_column(String(64), comment="下单用户（认证服务的用户 ID）")

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OrderStatus.CONFIRMED)

    # 金额（两位小数，total = subtotal - discount + shipping_cost）
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # 折扣来源明细（客户端回传，仅用于副作用，不参与金额计算）
    promotion_code: Mapped[Optional[str]] = mapped_column(String(64))
    gift_card_code: Mapped[Optional[str]] = mapped_column(String(32))
    gift_card_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    user_credit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # 支付引用（幂等键）
    payment_provider: Mapped[str] = mapped_column(String(32), nullable=False, default="stripe")
    payment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="completed")

    is_digital: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shipping_address: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # 物流（发货前均为空）
    courier: Mapped[Optional[str]] = mapped_column(String(32))
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    shipped_at: Mapped[Optional[datetime]] = mapped_column()
    review_reason: Mapped[Optional[str]] = mapped_column(Text, comment="进入人工审核的原因")

    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", lazy="raise"
    )

    __table_args__ = (
        UniqueConstraint("payment_provider", "payment_id", name="uq_orders_payment_reference"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("discount >= 0", name="ck_orders_discount_non_negative"),
        CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_non_negative"),
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint(
            "status IN ('confirmed', 'processing', 'shipped', 'delivered', 'manual_review')",
            name="ck_orders_status",
        ),
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status", "status"),
    )

    @property
    def payment_reference(self) -> str:
        return f"{self.payment_provider}:{self.payment_id}"

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, number={self.order_number}, status={self.status})>"


class OrderItem(Base):
    """订单行"""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    size: Mapped[str] = mapped_column(String(32), nullable=False, default="Standard")
    color: Mapped[str] = mapped_column(String(32), nullable=False, default="Standard")
    weight_grams: Mapped[Optional[int]] = mapped_column(Integer)
    unit_measure: Mapped[str] = mapped_column(String(8), nullable=False, default="pz")

    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        CheckConstraint("product_price >= 0", name="ck_order_items_price_non_negative"),
    )


class CartItem(Base):
    """购物车条目（结算成功后清空）"""
    __tablename__ = "cart_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    size: Mapped[Optional[str]] = mapped_column(String(32))
    color: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
