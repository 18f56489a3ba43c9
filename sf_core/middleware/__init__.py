"""
SettleFlow 中间件
"""
from .logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
