"""
审计日志模型
记录结算、余额、发货等模块的关键操作与隔离失败
"""
from sqlalchemy import Column, String, DateTime, Text, Index

from .base import Base, BigIntPK, JSONType, utcnow


class AuditLog(Base):
    """
    审计日志表

    记录内容包括：
    - 订单发货 / 转人工审核
    - 结算副作用失败（清空购物车、扣减余额、促销计数、推荐奖励）
    - 推荐奖励发放
    """
    __tablename__ = "audit_logs"

    id = Column(BigIntPK, primary_key=True)

    actor = Column(String(64), nullable=False, default="system", comment="操作者（system 或管理员标识）")

    module = Column(String(50), nullable=False, index=True, comment="模块名（settlement/courier/referral/ledger）")
    action = Column(String(50), nullable=False, index=True, comment="操作类型（order_shipped/side_effect_failed 等）")

    record_type = Column(String(50), nullable=False, comment="记录类型（order/referral/gift_card）")
    record_id = Column(String(100), nullable=False, comment="记录ID")

    # 示例: {"side_effect": "promotion_usage", "error": "TimeoutError"}
    details = Column(JSONType, nullable=True, comment="详情")
    request_id = Column(String(100), nullable=True, comment="trace_id")
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_audit_logs_record_lookup", "record_type", "record_id"),
        Index("idx_audit_logs_module_time", "module", "created_at"),
    )
