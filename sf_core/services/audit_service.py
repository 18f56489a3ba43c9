"""
审计日志服务
记录结算副作用失败、发货、转人工审核等需要事后追溯的操作
"""
from typing import Optional, Dict, Any

from sf_core.database import DatabaseManager
from sf_core.models.audit_log import AuditLog
from sf_core.models.base import utcnow
from sf_core.utils.logger import get_logger, trace_id_var

logger = get_logger(__name__)


class AuditService:
    """
    审计日志服务

    审计写入使用独立事务，失败只记日志，不阻塞主流程。

    使用示例：
        await AuditService.log_action(
            db_manager,
            module="courier",
            action="order_shipped",
            record_type="order",
            record_id=str(order.id),
            details={"courier": "brt", "tracking_number": "BRT123"},
        )
    """

    @staticmethod
    async def log_action(
        db_manager: DatabaseManager,
        module: str,
        action: str,
        record_type: str,
        record_id: str,
        details: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
        actor: str = "system",
    ) -> Optional[AuditLog]:
        """
        记录一条审计日志

        Args:
            db_manager: 数据库管理器
            module: 模块名（settlement/courier/referral）
            action: 操作类型（order_shipped/manual_review/side_effect_failed）
            record_type: 记录类型（order/referral/gift_card）
            record_id: 记录ID
            details: 详情
            notes: 备注信息
            actor: 操作者

        Returns:
            AuditLog；写入失败返回 None
        """
        try:
            async with db_manager.get_transaction() as db:
                audit_log = AuditLog(
                    actor=actor,
                    module=module,
                    action=action,
                    record_type=record_type,
                    record_id=record_id,
                    details=details,
                    request_id=trace_id_var.get(),
                    notes=notes,
                    created_at=utcnow(),
                )
                db.add(audit_log)
                await db.flush()

            logger.info(f"审计日志已记录: module={module}, action={action}, record={record_type}:{record_id}")
            return audit_log

        except Exception as e:
            # 审计日志失败不应阻塞主流程，仅记录错误
            logger.error(
                f"审计日志记录失败: {str(e)}",
                audit_module=module,
                audit_action=action,
                record_id=record_id,
                exc_info=True,
            )
            return None
