"""
结账补偿路由

买家从支付页返回早于回调到达时，由前端主动触发结算。
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from sf_core.services import SettlementService
from .auth import get_current_user_id
from .deps import get_settlement_service

router = APIRouter()


class CompleteCheckoutRequest(BaseModel):
    """结账完成请求"""
    session_id: str = Field(..., min_length=1, description="Stripe Checkout Session ID")


@router.post("/checkout/complete")
async def complete_checkout(
    body: CompleteCheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    settlement_service: SettlementService = Depends(get_settlement_service),
):
    """按 Checkout Session 完成结算（按支付引用幂等）"""
    outcome = await settlement_service.complete_checkout(body.session_id, user_id)
    return {"ok": True, "data": outcome.to_dict()}
