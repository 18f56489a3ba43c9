"""
推荐转化

被推荐人完成首单时，将 pending 推荐记录转为 converted（仅一次），
满足门槛时给推荐人发放余额奖励。
"""
from dataclasses import dataclass, asdict
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sf_core.models import CreditTransaction
from sf_core.models.base import utcnow
from sf_core.services.base import BaseService
from sf_core.services.ledger_service import AccountRef, BalanceLedger
from sf_core.services.store import SettlementStore


@dataclass
class ReferralConversion:
    """推荐转化结果"""
    converted: bool
    reward_credited: bool = False
    reason: Optional[str] = None
    referral_id: Optional[int] = None
    referrer_id: Optional[str] = None
    reward_amount: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reward_amount"] = str(self.reward_amount)
        return data


class ReferralConversionResolver(BaseService):
    """推荐转化判定"""

    NO_PENDING_REFERRAL = "no_pending_referral"
    ORDER_NOT_FOUND = "order_not_found"
    NOT_FIRST_ORDER = "not_first_order"
    SELF_REFERRAL = "self_referral"
    ALREADY_CONVERTED = "already_converted"
    MINIMUM_ORDER_NOT_MET = "minimum_order_not_met"
    IP_LIMIT_EXCEEDED = "ip_limit_exceeded"

    def __init__(
        self,
        *args,
        ledger: Optional[BalanceLedger] = None,
        store: Optional[SettlementStore] = None,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.store = store or SettlementStore()
        self.ledger = ledger or BalanceLedger(self.settings, self.db_manager, store=self.store)

    async def try_convert(self, referee_id: str, order_id: int) -> ReferralConversion:
        """
        尝试转化被推荐人的推荐记录

        前置条件（同一事务内检查）：存在 pending 推荐记录，且该订单是被推荐人的首个已支付商品订单。
        状态转换使用 CAS，并发或重复触发时只有一次成功。

        Args:
            referee_id: 被推荐人用户 ID
            order_id: 触发转化的订单 ID

        Returns:
            ReferralConversion
        """
        async with self.db_manager.get_transaction() as session:
            referral = await self.store.get_pending_referral(session, referee_id)
            if referral is None:
                return ReferralConversion(converted=False, reason=self.NO_PENDING_REFERRAL)

            if referral.referrer_id == referee_id:
                return ReferralConversion(converted=False, reason=self.SELF_REFERRAL, referral_id=referral.id)

            order = await self.store.get_order(session, order_id)
            if order is None or order.user_id != referee_id:
                return ReferralConversion(converted=False, reason=self.ORDER_NOT_FOUND, referral_id=referral.id)

            previous_orders = await self.store.count_completed_orders(session, referee_id, exclude_order_id=order_id)
            if previous_orders > 0:
                return ReferralConversion(converted=False, reason=self.NOT_FIRST_ORDER, referral_id=referral.id)

            reward = self.settings.referral_reward_amount
            reason = None
            if order.subtotal < self.settings.referral_minimum_order:
                reason = self.MINIMUM_ORDER_NOT_MET
            elif referral.ip_address:
                since = utcnow() - timedelta(hours=24)
                ip_conversions = await self.store.count_rewarded_conversions_from_ip(
                    session, referral.ip_address, since
                )
                if ip_conversions >= self.settings.referral_max_per_ip_daily:
                    reason = self.IP_LIMIT_EXCEEDED

            credit_reward = reason is None
            converted = await self.store.mark_referral_converted(
                session,
                referral.id,
                order_id,
                reward_amount=reward if credit_reward else Decimal("0.00"),
                reward_credited=credit_reward,
            )
            if not converted:
                return ReferralConversion(converted=False, reason=self.ALREADY_CONVERTED, referral_id=referral.id)

            if credit_reward:
                await self.ledger.credit(
                    AccountRef.user_credit(referral.referrer_id),
                    reward,
                    transaction_type=CreditTransaction.TYPE_REFERRAL_REWARD,
                    reference_type="referral",
                    reference_id=str(referral.id),
                    description=f"Bonus referral: ordine #{order.order_number}",
                    session=session,
                )
                await self.store.bump_referrer_stats(session, referral.referrer_id, reward)

            result = ReferralConversion(
                converted=True,
                reward_credited=credit_reward,
                reason=reason,
                referral_id=referral.id,
                referrer_id=referral.referrer_id,
                reward_amount=reward if credit_reward else Decimal("0.00"),
            )

        if credit_reward:
            self.logger.info(
                f"推荐转化并发放奖励: referral_id={result.referral_id}, "
                f"referrer={result.referrer_id}, reward={result.reward_amount}"
            )
        else:
            self.logger.info(f"推荐转化（无奖励）: referral_id={result.referral_id}, reason={reason}")
        return result
