"""
支付回调路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from sf_core.services import SettlementService
from sf_core.utils.logger import get_logger
from .deps import get_settlement_service

router = APIRouter()
logger = get_logger(__name__)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    settlement_service: SettlementService = Depends(get_settlement_service),
):
    """Stripe 回调：验签后结算 checkout.session.completed"""
    # 签名基于原始字节，不能先解析 JSON
    raw_body = await request.body()
    outcome = await settlement_service.handle_webhook(raw_body, stripe_signature)
    return {"ok": True, "data": outcome.to_dict()}
