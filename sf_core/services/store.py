"""
结算持久层

订单、礼品卡、促销、余额、推荐的读写都集中在这里，所有方法接收调用方的会话，
事务边界由调用方控制。竞争资源（促销计数、余额、推荐状态）只通过单条条件 UPDATE 修改。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.models import (
    CartItem,
    CreditTransaction,
    GiftCard,
    Order,
    OrderItem,
    OrderStatus,
    Promotion,
    PromotionRedemption,
    Referral,
    ReferralStatus,
    UsedGiftCardCode,
    UserCredit,
    UserReferralCode,
)
from sf_core.models.base import utcnow
from sf_core.schemas.checkout import OrderLine
from sf_core.services.base import RepositoryMixin
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)


class SettlementStore(RepositoryMixin):
    """结算相关的存储操作"""

    # ---- 订单 ----

    async def find_order_by_payment_reference(
        self,
        session: AsyncSession,
        payment_provider: str,
        payment_id: str
    ) -> Optional[Order]:
        """幂等检查：按支付引用查找订单"""
        stmt = select(Order).where(
            Order.payment_provider == payment_provider,
            Order.payment_id == payment_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_order(self, session: AsyncSession, **fields: Any) -> Order:
        return await self.create(session, Order, fields)

    async def create_order_items(
        self,
        session: AsyncSession,
        order_id: int,
        lines: Sequence[OrderLine]
    ) -> List[OrderItem]:
        items = [
            OrderItem(
                order_id=order_id,
                product_id=line.product_id,
                product_name=line.product_name,
                product_price=line.product_price,
                quantity=line.quantity,
                size=line.size,
                color=line.color,
                weight_grams=line.weight_grams,
                unit_measure=line.unit_measure,
            )
            for line in lines
        ]
        session.add_all(items)
        await session.flush()
        return items

    async def is_order_number_taken(self, session: AsyncSession, order_number: str) -> bool:
        return await self.exists(session, Order, order_number=order_number)

    async def get_order(self, session: AsyncSession, order_id: int) -> Optional[Order]:
        return await self.get_by_id(session, Order, order_id)

    async def get_order_items(self, session: AsyncSession, order_id: int) -> List[OrderItem]:
        result = await session.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
        return list(result.scalars().all())

    async def update_order_shipping_status(
        self,
        session: AsyncSession,
        order_id: int,
        status: str,
        expected_statuses: Iterable[str] = OrderStatus.DISPATCHABLE,
        courier: Optional[str] = None,
        tracking_number: Optional[str] = None,
        review_reason: Optional[str] = None,
    ) -> bool:
        """
        条件更新订单物流状态

        Returns:
            订单当前状态在 expected_statuses 中且已更新时返回 True
        """
        values: Dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if status == OrderStatus.SHIPPED:
            values.update(courier=courier, tracking_number=tracking_number, shipped_at=utcnow(), review_reason=None)
        elif status == OrderStatus.MANUAL_REVIEW:
            values.update(courier=courier, review_reason=review_reason)

        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status.in_(list(expected_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def list_confirmed_order_ids(
        self,
        session: AsyncSession,
        created_before: datetime,
        limit: int = 20
    ) -> List[int]:
        """已确认、未发货的实物订单（按创建时间先后）"""
        stmt = (
            select(Order.id)
            .where(
                Order.status == OrderStatus.CONFIRMED,
                Order.is_digital.is_(False),
                Order.created_at <= created_before,
            )
            .order_by(Order.created_at, Order.id)
            .limit(limit)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def clear_cart(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        return result.rowcount or 0

    async def count_completed_orders(
        self,
        session: AsyncSession,
        user_id: str,
        exclude_order_id: Optional[int] = None
    ) -> int:
        """统计用户已完成支付的商品订单数（礼品卡订单不计入）"""
        stmt = select(func.count(Order.id)).where(
            Order.user_id == user_id,
            Order.payment_status == "completed",
            Order.is_digital.is_(False),
        )
        if exclude_order_id is not None:
            stmt = stmt.where(Order.id != exclude_order_id)
        return (await session.execute(stmt)).scalar_one()

    # ---- 礼品卡 ----

    async def create_gift_card(self, session: AsyncSession, **fields: Any) -> GiftCard:
        return await self.create(session, GiftCard, fields)

    async def register_gift_card_code(
        self,
        session: AsyncSession,
        code: str,
        redemption_token: Optional[str],
        gift_card_id: Optional[int],
        reason: str = UsedGiftCardCode.REASON_GENERATED,
    ) -> UsedGiftCardCode:
        """登记兑换码到黑名单，重复登记由唯一约束拒绝"""
        return await self.create(session, UsedGiftCardCode, {
            "code": code,
            "redemption_token": redemption_token,
            "gift_card_id": gift_card_id,
            "reason": reason,
        })

    async def is_gift_card_code_taken(self, session: AsyncSession, code: str) -> bool:
        if await self.exists(session, UsedGiftCardCode, code=code):
            return True
        return await self.exists(session, GiftCard, code=code)

    async def get_gift_card_by_code(self, session: AsyncSession, code: str) -> Optional[GiftCard]:
        stmt = select(GiftCard).where(func.upper(GiftCard.code) == code.upper()).execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def swap_gift_card_balance(
        self,
        session: AsyncSession,
        gift_card_id: int,
        expected_version: int,
        new_balance: Decimal
    ) -> bool:
        """CAS 更新礼品卡余额，余额归零即停用"""
        stmt = (
            update(GiftCard)
            .where(GiftCard.id == gift_card_id, GiftCard.version == expected_version)
            .values(
                balance=new_balance,
                is_active=new_balance > 0,
                version=expected_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    # ---- 用户余额 ----

    async def get_user_credit(self, session: AsyncSession, user_id: str) -> Optional[UserCredit]:
        stmt = select(UserCredit).where(UserCredit.user_id == user_id).execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def create_user_credit(self, session: AsyncSession, user_id: str) -> UserCredit:
        return await self.create(session, UserCredit, {
            "user_id": user_id,
            "balance": Decimal("0.00"),
            "total_earned": Decimal("0.00"),
            "total_spent": Decimal("0.00"),
            "version": 0,
        })

    async def swap_user_credit_balance(
        self,
        session: AsyncSession,
        account_id: int,
        expected_version: int,
        new_balance: Decimal,
        earned: Decimal = Decimal("0"),
        spent: Decimal = Decimal("0"),
    ) -> bool:
        """CAS 更新用户余额，同时累加获得/使用统计"""
        stmt = (
            update(UserCredit)
            .where(UserCredit.id == account_id, UserCredit.version == expected_version)
            .values(
                balance=new_balance,
                total_earned=UserCredit.total_earned + earned,
                total_spent=UserCredit.total_spent + spent,
                version=expected_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def insert_credit_transaction(
        self,
        session: AsyncSession,
        user_id: str,
        transaction_type: str,
        amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> CreditTransaction:
        return await self.create(session, CreditTransaction, {
            "user_id": user_id,
            "transaction_type": transaction_type,
            "amount": amount,
            "balance_before": balance_before,
            "balance_after": balance_after,
            "reference_type": reference_type,
            "reference_id": reference_id,
            "description": description,
        })

    # ---- 促销 ----

    async def increment_promotion_usage(
        self,
        session: AsyncSession,
        code: str,
        user_id: Optional[str] = None
    ) -> bool:
        """
        原子递增促销使用次数

        计数、全局上限、单用户上限在同一条 UPDATE 中判断，
        并发兑换同一个限量码时只有未超限的那一次能成功。

        Returns:
            是否递增成功（促销不存在、已停用或已达上限返回 False）
        """
        conditions = [
            func.upper(Promotion.code) == code.upper(),
            Promotion.is_active.is_(True),
            or_(Promotion.usage_limit.is_(None), Promotion.usage_count < Promotion.usage_limit),
        ]
        if user_id is not None:
            redeemed_by_user = (
                select(func.count(PromotionRedemption.id))
                .where(
                    PromotionRedemption.promotion_id == Promotion.id,
                    PromotionRedemption.user_id == user_id,
                )
                .scalar_subquery()
            )
            conditions.append(or_(Promotion.per_user_limit.is_(None), redeemed_by_user < Promotion.per_user_limit))

        stmt = (
            update(Promotion)
            .where(*conditions)
            .values(usage_count=Promotion.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def get_promotion_id(self, session: AsyncSession, code: str) -> Optional[int]:
        stmt = select(Promotion.id).where(func.upper(Promotion.code) == code.upper())
        return (await session.execute(stmt)).scalar_one_or_none()

    async def record_promotion_redemption(
        self,
        session: AsyncSession,
        promotion_id: int,
        order_id: int,
        user_id: Optional[str]
    ) -> PromotionRedemption:
        return await self.create(session, PromotionRedemption, {
            "promotion_id": promotion_id,
            "order_id": order_id,
            "user_id": user_id,
        })

    # ---- 推荐 ----

    async def get_pending_referral(self, session: AsyncSession, referee_id: str) -> Optional[Referral]:
        stmt = (
            select(Referral)
            .where(Referral.referee_id == referee_id, Referral.status == ReferralStatus.PENDING)
            .with_for_update()
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def count_rewarded_conversions_from_ip(
        self,
        session: AsyncSession,
        ip_address: str,
        since: datetime
    ) -> int:
        stmt = select(func.count(Referral.id)).where(
            Referral.ip_address == ip_address,
            Referral.status == ReferralStatus.CONVERTED,
            Referral.reward_credited.is_(True),
            Referral.converted_at >= since,
        )
        return (await session.execute(stmt)).scalar_one()

    async def mark_referral_converted(
        self,
        session: AsyncSession,
        referral_id: int,
        order_id: int,
        reward_amount: Decimal,
        reward_credited: bool,
    ) -> bool:
        """
        CAS: pending → converted

        Returns:
            只有真正完成状态转换的调用返回 True
        """
        stmt = (
            update(Referral)
            .where(Referral.id == referral_id, Referral.status == ReferralStatus.PENDING)
            .values(
                status=ReferralStatus.CONVERTED,
                converted_at=utcnow(),
                converted_order_id=order_id,
                reward_amount=reward_amount,
                reward_credited=reward_credited,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    async def bump_referrer_stats(self, session: AsyncSession, referrer_id: str, reward: Decimal) -> bool:
        stmt = (
            update(UserReferralCode)
            .where(UserReferralCode.user_id == referrer_id)
            .values(
                total_conversions=UserReferralCode.total_conversions + 1,
                total_earned=UserReferralCode.total_earned + reward,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1
