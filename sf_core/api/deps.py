"""
应用级依赖

配置与数据库管理器由 create_app 放在 app.state 上，路由依赖只从这里取，
不读取进程级单例。
"""
from fastapi import Depends, Request

from sf_core.config import Settings
from sf_core.database import DatabaseManager
from sf_core.services import CourierDispatchService, ReceiptService, SettlementService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_app_db_manager(request: Request) -> DatabaseManager:
    return request.app.state.db_manager


async def get_settlement_service(
    settings: Settings = Depends(get_app_settings),
    db_manager: DatabaseManager = Depends(get_app_db_manager),
) -> SettlementService:
    """依赖注入：获取结算服务"""
    return SettlementService(settings, db_manager)


async def get_receipt_service(
    settings: Settings = Depends(get_app_settings),
    db_manager: DatabaseManager = Depends(get_app_db_manager),
) -> ReceiptService:
    """依赖注入：获取收据服务"""
    return ReceiptService(settings, db_manager)


async def get_courier_service(
    settings: Settings = Depends(get_app_settings),
    db_manager: DatabaseManager = Depends(get_app_db_manager),
) -> CourierDispatchService:
    """依赖注入：获取发货服务"""
    return CourierDispatchService(settings, db_manager)
