"""
快递发货任务
"""
from datetime import timedelta
from typing import Any, Dict, Optional

from sf_core.config import Settings, get_settings
from sf_core.models.base import utcnow
from sf_core.services.courier_service import CourierDispatchService
from sf_core.services.store import SettlementStore
from sf_core.tasks.background import drain_background_tasks
from sf_core.utils.errors import SettleFlowException
from sf_core.utils.logger import get_logger

from .base import task_with_context

logger = get_logger(__name__)


@task_with_context(name="sf.courier.submit_order")
async def submit_order(self, order_id: int, courier: Optional[str] = None) -> Dict[str, Any]:
    """提交单个订单到承运商（运营手动排队）"""
    return await _submit_order_async(CourierDispatchService(get_settings()), order_id, courier)


@task_with_context(name="sf.courier.dispatch_confirmed")
async def dispatch_confirmed(self) -> Dict[str, Any]:
    """定期发货：已确认超过宽限期、尚未发货的实物订单交给默认承运商"""
    settings = get_settings()
    if not settings.courier_auto_dispatch_enabled:
        return {"skipped": True}
    return await _dispatch_confirmed_async(CourierDispatchService(settings), settings)


async def _submit_order_async(
    service: CourierDispatchService,
    order_id: int,
    courier: Optional[str] = None
) -> Dict[str, Any]:
    result = await service.submit(order_id, courier)
    # 事件循环随任务结束，等待后台通知发送完
    await drain_background_tasks(timeout=service.settings.http_timeout_seconds)
    return {
        "success": result.success,
        "data": result.data,
        "error": result.error,
        "metadata": result.metadata,
    }


async def _dispatch_confirmed_async(
    service: CourierDispatchService,
    settings: Settings,
    store: Optional[SettlementStore] = None
) -> Dict[str, Any]:
    """
    批量发货

    Args:
        service: 发货服务
        settings: 提供宽限期与批量上限
        store: 查询待发货订单

    Returns:
        shipped / manual_review / skipped 计数
    """
    store = store or SettlementStore()
    cutoff = utcnow() - timedelta(minutes=settings.courier_dispatch_grace_minutes)
    async with service.db_manager.get_session() as session:
        order_ids = await store.list_confirmed_order_ids(
            session, created_before=cutoff, limit=settings.courier_dispatch_batch_size
        )

    shipped, manual_review, skipped = 0, 0, 0
    for order_id in order_ids:
        try:
            result = await service.submit(order_id)
        except SettleFlowException as e:
            # 订单状态在查询后已变化
            logger.info(f"跳过订单 {order_id}: {e.code}")
            skipped += 1
            continue
        if result.success:
            shipped += 1
        else:
            manual_review += 1

    await drain_background_tasks(timeout=settings.http_timeout_seconds)
    logger.info(f"定期发货完成: shipped={shipped}, manual_review={manual_review}, skipped={skipped}")
    return {"shipped": shipped, "manual_review": manual_review, "skipped": skipped}
