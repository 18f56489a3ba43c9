"""
订单 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from sf_core.services import CourierDispatchService, ReceiptService
from sf_core.utils.logger import get_logger
from .auth import get_current_user_id, require_admin_key
from .deps import get_courier_service, get_receipt_service

router = APIRouter()
logger = get_logger(__name__)


class DispatchRequest(BaseModel):
    """发货请求"""
    courier: Optional[str] = Field(None, description="承运商（brt/dhl/gls），默认使用配置")
    queue: bool = Field(False, description="交给 Celery 异步执行")


@router.get("/{order_id}/receipt")
async def get_order_receipt(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    receipt_service: ReceiptService = Depends(get_receipt_service),
):
    """获取订单的 Stripe 收据链接"""
    receipt_url = await receipt_service.get_receipt_url(order_id, user_id)
    return {"ok": True, "data": {"order_id": order_id, "receipt_url": receipt_url}}


@router.post("/{order_id}/dispatch", dependencies=[Depends(require_admin_key)])
async def dispatch_order(
    order_id: int,
    body: DispatchRequest,
    courier_service: CourierDispatchService = Depends(get_courier_service),
):
    """提交订单到承运商；失败时订单转人工审核"""
    if body.queue:
        from sf_core.tasks.courier_tasks import submit_order

        task = submit_order.delay(order_id, body.courier)
        logger.info(f"发货任务已排队: order_id={order_id}, task_id={task.id}")
        return {"ok": True, "data": {"order_id": order_id, "queued": True, "task_id": task.id}}

    result = await courier_service.submit(order_id, body.courier)
    if result.success:
        return {"ok": True, "data": result.data}
    return {
        "ok": True,
        "data": {**(result.metadata or {}), "review_reason": result.error},
    }
