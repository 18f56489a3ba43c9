"""
基础服务类
"""
from typing import TypeVar, Generic, Optional, Dict, Any
from dataclasses import dataclass
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.config import Settings, get_settings
from sf_core.database import DatabaseManager, get_db_manager
from sf_core.utils.logger import get_logger

T = TypeVar('T')


@dataclass
class ServiceResult(Generic[T]):
    """服务执行结果"""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> "ServiceResult[T]":
        """成功结果"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def error(cls, error: str, error_code: Optional[str] = None,
              metadata: Optional[Dict[str, Any]] = None) -> "ServiceResult[T]":
        """失败结果"""
        return cls(success=False, error=error, error_code=error_code, metadata=metadata)


class BaseService:
    """基础服务类

    配置与数据库管理器在构造时显式注入，未注入时使用进程级单例。
    """

    def __init__(self, settings: Optional[Settings] = None, db_manager: Optional[DatabaseManager] = None):
        self.settings = settings or get_settings()
        if db_manager is None:
            db_manager = DatabaseManager(settings) if settings is not None else get_db_manager()
        self.db_manager = db_manager
        self.logger = get_logger(self.__class__.__name__)


class RepositoryMixin:
    """仓储混入类 - 提供常用的数据库操作"""

    async def get_by_id(
        self,
        session: AsyncSession,
        model_class,
        record_id: int
    ) -> Optional[Any]:
        """根据ID获取记录"""
        return await session.get(model_class, record_id)

    async def create(
        self,
        session: AsyncSession,
        model_class,
        data: Dict[str, Any]
    ) -> Any:
        """创建记录"""
        instance = model_class(**data)
        session.add(instance)
        await session.flush()  # 获取生成的ID
        return instance

    async def exists(
        self,
        session: AsyncSession,
        model_class,
        **filters
    ) -> bool:
        """检查记录是否存在"""
        stmt = select(model_class.id)
        for field, value in filters.items():
            stmt = stmt.where(getattr(model_class, field) == value)

        result = await session.execute(stmt.limit(1))
        return result.scalar_one_or_none() is not None
