"""
快递发货服务

订单发货状态机：confirmed → shipped（成功）或 confirmed → manual_review（未配置或下单失败）。
每次发货尝试结束后订单都处于需要人处理或已完成的状态，不会停留在 confirmed。
"""
from typing import Any, Dict, List, Optional

from sf_core.models import Order, OrderStatus
from sf_core.services.audit_service import AuditService
from sf_core.services.base import BaseService, ServiceResult
from sf_core.services.courier_client import CourierClient
from sf_core.services.notification_service import (
    OrderEmailNotifier,
    TelegramNotifier,
    format_manual_review_message,
)
from sf_core.services.store import SettlementStore
from sf_core.utils.errors import ConflictError, NotFoundError


class CourierDispatchService(BaseService):
    """快递下单与发货状态流转"""

    def __init__(
        self,
        *args,
        client: Optional[CourierClient] = None,
        notifier: Optional[TelegramNotifier] = None,
        email_notifier: Optional[OrderEmailNotifier] = None,
        store: Optional[SettlementStore] = None,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.client = client or CourierClient(timeout=self.settings.http_timeout_seconds)
        self.notifier = notifier or TelegramNotifier(self.settings)
        self.email_notifier = email_notifier or OrderEmailNotifier(self.settings)
        self.store = store or SettlementStore()

    def _sender(self) -> Dict[str, Any]:
        return {
            "name": self.settings.sender_name,
            "address": self.settings.sender_address,
            "city": self.settings.sender_city,
            "postalCode": self.settings.sender_postal_code,
            "country": self.settings.sender_country,
        }

    def _parcels(self, weights_grams: List[Optional[int]]) -> List[Dict[str, Any]]:
        known = [w for w in weights_grams if w]
        weight_kg = round(sum(known) / 1000, 3) if known else self.settings.parcel_default_weight_kg
        return [{
            "weight": weight_kg,
            "length": self.settings.parcel_length_cm,
            "width": self.settings.parcel_width_cm,
            "height": self.settings.parcel_height_cm,
        }]

    async def submit(self, order_id: int, courier_name: Optional[str] = None) -> ServiceResult[Dict[str, Any]]:
        """
        提交订单到承运商

        Args:
            order_id: 订单 ID
            courier_name: 承运商（默认使用配置的默认承运商）

        Returns:
            成功时 data 含 tracking_number/courier；失败时订单已转入 manual_review，error 为原因

        Raises:
            NotFoundError: 订单不存在
            ConflictError: 数字订单或订单当前状态不可发货
        """
        courier = (courier_name or self.settings.default_courier).lower()

        async with self.db_manager.get_session() as session:
            order = await self.store.get_order(session, order_id)
            if order is None:
                raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
            if order.is_digital:
                raise ConflictError(code="ORDER_NOT_SHIPPABLE", detail="Digital orders are not shipped")
            if order.status not in OrderStatus.DISPATCHABLE:
                raise ConflictError(
                    code="ORDER_NOT_DISPATCHABLE",
                    detail=f"Order {order.order_number} is {order.status}",
                )
            items = await self.store.get_order_items(session, order_id)
            weights = [item.weight_grams for item in items]

        config = self.settings.get_courier_config(courier)
        if config is None:
            return await self._flag_manual_review(order, courier, f"Courier {courier} not configured")

        try:
            tracking_number = await self.client.submit_shipment(
                config,
                reference=order.order_number,
                sender=self._sender(),
                recipient=order.shipping_address,
                parcels=self._parcels(weights),
            )
        except Exception as e:
            # 任何失败（网络、非 2xx、响应异常、客户端缺陷）都转人工
            return await self._flag_manual_review(order, courier, f"Courier API error: {e}")

        async with self.db_manager.get_transaction() as session:
            updated = await self.store.update_order_shipping_status(
                session,
                order.id,
                OrderStatus.SHIPPED,
                courier=courier,
                tracking_number=tracking_number,
            )
        if not updated:
            # 下单期间订单已被其他操作改变状态，运单已创建，交给人工核对
            self.logger.error(
                f"运单已创建但订单状态已变化: order_id={order.id}, tracking={tracking_number}"
            )
            raise ConflictError(
                code="ORDER_STATE_CHANGED",
                detail=f"Order {order.order_number} changed state during dispatch (tracking {tracking_number})",
            )

        self.logger.info(f"订单已发货: order={order.order_number}, courier={courier}, tracking={tracking_number}")
        await AuditService.log_action(
            self.db_manager,
            module="courier",
            action="order_shipped",
            record_type="order",
            record_id=str(order.id),
            details={"courier": courier, "tracking_number": tracking_number},
        )
        self.email_notifier.send_status_email_detached(order.id, OrderStatus.SHIPPED)

        return ServiceResult.ok({
            "order_id": order.id,
            "status": OrderStatus.SHIPPED,
            "courier": courier,
            "tracking_number": tracking_number,
        })

    async def _flag_manual_review(self, order: Order, courier: str, reason: str) -> ServiceResult[Dict[str, Any]]:
        async with self.db_manager.get_transaction() as session:
            updated = await self.store.update_order_shipping_status(
                session,
                order.id,
                OrderStatus.MANUAL_REVIEW,
                courier=courier,
                review_reason=reason,
            )
        if not updated:
            raise ConflictError(
                code="ORDER_STATE_CHANGED",
                detail=f"Order {order.order_number} changed state during dispatch",
            )

        self.logger.warning(f"订单转人工审核: order={order.order_number}, reason={reason}")
        await AuditService.log_action(
            self.db_manager,
            module="courier",
            action="manual_review",
            record_type="order",
            record_id=str(order.id),
            details={"courier": courier},
            notes=reason,
        )
        self.notifier.notify_detached(format_manual_review_message(order.order_number, courier, reason))

        return ServiceResult.error(
            reason,
            error_code="MANUAL_REVIEW",
            metadata={"order_id": order.id, "status": OrderStatus.MANUAL_REVIEW, "courier": courier},
        )
