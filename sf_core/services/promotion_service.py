"""
促销使用计数
"""
from typing import Optional

from sf_core.services.base import BaseService
from sf_core.services.store import SettlementStore


class PromotionService(BaseService):
    """促销兑换：原子递增使用次数并记录兑换，单个订单只计一次"""

    def __init__(self, *args, store: Optional[SettlementStore] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.store = store or SettlementStore()

    async def redeem(self, code: str, order_id: int, user_id: Optional[str] = None) -> bool:
        """
        记录一次促销使用

        递增与兑换记录在同一事务；同一订单重复兑换时兑换记录的唯一约束使整个事务回滚，
        计数不会被重复递增。

        Args:
            code: 促销码（不区分大小写）
            order_id: 订单 ID
            user_id: 用户 ID（用于单用户上限）

        Returns:
            是否成功计数；促销不存在或已达上限返回 False
        """
        code = code.upper()
        async with self.db_manager.get_transaction() as session:
            # 先执行写操作，竞争在数据库层面按行锁串行化
            if not await self.store.increment_promotion_usage(session, code, user_id):
                self.logger.warning(f"促销未计数（不存在、已停用或已达上限）: code={code}, order_id={order_id}")
                return False

            promotion_id = await self.store.get_promotion_id(session, code)
            await self.store.record_promotion_redemption(session, promotion_id, order_id, user_id)

        self.logger.info(f"促销使用次数 +1: code={code}, order_id={order_id}")
        return True
