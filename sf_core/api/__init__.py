"""
SettleFlow API 路由模块
"""

from fastapi import APIRouter

from .webhooks import router as webhooks_router
from .checkout import router as checkout_router
from .orders import router as orders_router

# 创建主路由器
api_router = APIRouter()

api_router.include_router(webhooks_router, tags=["Webhooks"])
api_router.include_router(checkout_router, tags=["Checkout"])
api_router.include_router(orders_router, prefix="/orders", tags=["Orders"])
