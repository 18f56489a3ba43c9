"""
外部 API 计时工具

用于记录外部 API 调用（Stripe、快递、Telegram）的耗时，方便性能分析和监控。
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from .logger import get_logger

logger = get_logger("external_api_timing")


def log_external_api_timing(
    service: str,
    method: str,
    endpoint: str,
    elapsed_ms: float,
    extra_info: Optional[str] = None
) -> None:
    """
    记录外部 API 调用计时

    Args:
        service: 服务名称（如 Stripe, BRT, Telegram）
        method: HTTP 方法（GET, POST 等）
        endpoint: API 端点
        elapsed_ms: 耗时（毫秒）
        extra_info: 额外信息（如 order_id, error 等）
    """
    msg = f"{service} | {method} {endpoint} | {elapsed_ms:.1f}ms"
    if extra_info:
        msg += f" | {extra_info}"
    logger.info(msg)


class ExternalAPITimer:
    """
    外部 API 计时器

    用法:
        with ExternalAPITimer("BRT", "POST", "/shipments", order_id=42):
            # ... 执行 HTTP 请求 ...
    """

    def __init__(
        self,
        service: str,
        method: str,
        endpoint: str,
        **extra_kwargs
    ):
        self.service = service
        self.method = method
        self.endpoint = endpoint
        self.extra_kwargs = extra_kwargs
        self._start_time: Optional[float] = None
        self._elapsed_ms: Optional[float] = None

    def start(self) -> None:
        """开始计时"""
        self._start_time = time.perf_counter()

    def stop(self, error: Optional[str] = None) -> float:
        """
        停止计时并记录日志

        Args:
            error: 错误信息（可选）

        Returns:
            耗时（毫秒）
        """
        if self._start_time is None:
            raise RuntimeError("Timer not started")

        self._elapsed_ms = (time.perf_counter() - self._start_time) * 1000

        extra_parts = [f"{key}={value}" for key, value in self.extra_kwargs.items()]
        if error:
            extra_parts.append(f"ERROR={error}")

        log_external_api_timing(
            self.service,
            self.method,
            self.endpoint,
            self._elapsed_ms,
            " | ".join(extra_parts) if extra_parts else None
        )

        return self._elapsed_ms

    @property
    def elapsed_ms(self) -> Optional[float]:
        """获取耗时（毫秒），如果还未停止则返回 None"""
        return self._elapsed_ms

    def __enter__(self) -> "ExternalAPITimer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop(error=exc_type.__name__ if exc_type is not None else None)


@asynccontextmanager
async def timed_external_api(
    service: str,
    method: str,
    endpoint: str,
    **extra_kwargs
):
    """
    异步上下文管理器，用于计时外部 API 调用

    用法:
        async with timed_external_api("Stripe", "GET", "/v1/checkout/sessions"):
            response = await client.get(url)
    """
    timer = ExternalAPITimer(service, method, endpoint, **extra_kwargs)
    timer.start()
    try:
        yield timer
    except Exception as e:
        timer.stop(error=type(e).__name__)
        raise
    else:
        timer.stop()
