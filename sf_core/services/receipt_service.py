"""
收据查询

买家查看订单对应的 Stripe 收据链接。
"""
from typing import Any, Dict, Optional

from sf_core.services.base import BaseService
from sf_core.services.store import SettlementStore
from sf_core.services.stripe_client import StripeClient
from sf_core.utils.errors import BadRequestError, ForbiddenError, NotFoundError


class ReceiptService(BaseService):
    """收据链接查询"""

    def __init__(self, *args, stripe_client: Optional[StripeClient] = None,
                 store: Optional[SettlementStore] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.stripe_client = stripe_client or StripeClient(self.settings)
        self.store = store or SettlementStore()

    async def get_receipt_url(self, order_id: int, user_id: str) -> str:
        """
        获取订单收据链接

        Args:
            order_id: 订单 ID
            user_id: 当前登录用户

        Returns:
            Stripe 收据 URL

        Raises:
            NotFoundError: 订单不存在或 Stripe 没有收据
            ForbiddenError: 订单不属于当前用户
            BadRequestError: 订单未完成支付或非 Stripe 支付
        """
        async with self.db_manager.get_session() as session:
            order = await self.store.get_order(session, order_id)

        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        if order.user_id != user_id:
            raise ForbiddenError(code="ORDER_NOT_OWNED", detail="Order belongs to another user")
        if order.payment_status != "completed":
            raise BadRequestError(code="PAYMENT_NOT_COMPLETED", detail="Receipt is only available for completed payments")
        if order.payment_provider != "stripe" or not order.payment_id:
            raise BadRequestError(code="RECEIPT_UNSUPPORTED", detail="Receipt is only available for Stripe payments")

        payment_intent = await self.stripe_client.retrieve_payment_intent(order.payment_id)
        receipt_url = self._receipt_url(payment_intent)
        if not receipt_url:
            self.logger.info(f"Stripe 未返回收据链接: order_id={order_id}")
            raise NotFoundError(code="RECEIPT_NOT_FOUND", resource=f"Receipt for order {order_id}")
        return receipt_url

    @staticmethod
    def _receipt_url(payment_intent: Dict[str, Any]) -> Optional[str]:
        charge = payment_intent.get("latest_charge")
        if isinstance(charge, dict):
            return charge.get("receipt_url")
        return None
