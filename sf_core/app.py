"""
SettleFlow FastAPI 主应用
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from sf_core.config import Settings, get_settings
from sf_core.utils.logger import setup_logging, get_logger
from sf_core.utils.errors import SettleFlowException, InternalServerError
from sf_core.database import DatabaseManager
from sf_core.middleware import LoggingMiddleware
from sf_core.tasks.background import drain_background_tasks
from sf_core.api import api_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    settings: Settings = app.state.settings
    db_manager: DatabaseManager = app.state.db_manager

    logger.info("Starting SettleFlow application", version=settings.api_version)

    db_healthy = await db_manager.check_connection()
    if not db_healthy:
        logger.error("Database connection check failed")
        raise RuntimeError("Database connection failed")

    logger.info("SettleFlow application started successfully")

    yield  # 应用运行期间

    logger.info("Shutting down SettleFlow application")

    try:
        # 等待尚未发出的通知
        await drain_background_tasks(timeout=settings.http_timeout_seconds)
        await db_manager.close()
        logger.info("SettleFlow application shutdown complete")
    except Exception:
        logger.error("Error during application shutdown", exc_info=True)


def create_app(
    settings: Optional[Settings] = None,
    db_manager: Optional[DatabaseManager] = None
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        settings: 应用配置，默认读取环境变量
        db_manager: 数据库管理器，默认按 settings 新建；路由依赖与生命周期共用同一个实例
    """
    settings = settings or get_settings()

    # 设置日志
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format
    )

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="SettleFlow Payment Settlement API",
        docs_url="/docs" if settings.api_debug else None,
        redoc_url="/redoc" if settings.api_debug else None,
        openapi_url="/openapi.json" if settings.api_debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db_manager = db_manager or DatabaseManager(settings)

    # 日志中间件
    app.add_middleware(LoggingMiddleware)

    # 添加路由
    app.include_router(api_router, prefix=settings.api_prefix)

    # 异常处理器
    @app.exception_handler(SettleFlowException)
    async def settleflow_exception_handler(request: Request, exc: SettleFlowException):
        """处理 SettleFlow 自定义异常"""
        if exc.status >= 500:
            logger.error(f"请求失败: {exc.code} - {exc.detail}", path=request.url.path)
        return exc.to_response(request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理 Pydantic 验证异常"""
        logger.warning(f"验证错误 - URL: {request.url.path}", errors=exc.errors())
        return JSONResponse(
            status_code=422,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": "Validation Error",
                    "status": 422,
                    "detail": "Request validation failed",
                    "code": "VALIDATION_ERROR",
                    "validation_errors": jsonable_errors(exc),
                }
            }
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理 FastAPI HTTP 异常"""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "ok": False,
                "error": {
                    "type": "about:blank",
                    "title": str(exc.detail),
                    "status": exc.status_code,
                    "detail": str(exc.detail),
                    "code": f"HTTP_{exc.status_code}"
                }
            }
        )

    @app.exception_handler(Exception)
    async def internal_server_error_handler(request: Request, exc: Exception):
        """处理未捕获的服务器错误"""
        logger.error("Unhandled server error", path=request.url.path, exc_info=exc)
        return InternalServerError(
            code="INTERNAL_SERVER_ERROR",
            detail="An internal server error occurred"
        ).to_response(request)

    # 健康检查端点
    @app.get("/healthz")
    async def health_check():
        """健康检查端点"""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """验证错误转为可序列化结构（ctx 中可能含异常对象）"""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "sf_core.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        log_level=settings.log_level.lower(),
        access_log=False,  # 使用自定义日志中间件
    )
