"""
SettleFlow 实用工具模块
"""

from .logger import get_logger, LogContext, setup_logging
from .errors import SettleFlowException, ValidationError, NotFoundError

__all__ = [
    "get_logger",
    "LogContext",
    "setup_logging",
    "SettleFlowException",
    "ValidationError",
    "NotFoundError",
]
