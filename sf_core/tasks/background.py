"""
进程内后台任务

用于不等待结果的副作用（通知）。任务保存在模块级集合中持有强引用，
完成回调负责记录异常，调用方永远不会收到这些任务的错误。
"""
import asyncio
from typing import Any, Coroutine, Optional, Set

from sf_core.utils.logger import get_logger

logger = get_logger(__name__)

_background_tasks: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.info(f"Background task cancelled: {task.get_name()}")
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            f"Background task failed: {task.get_name()}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def spawn_background(coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
    """启动一个脱离调用方的后台任务，调用方不等待其完成"""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_background_tasks() -> int:
    return len(_background_tasks)


async def drain_background_tasks(timeout: Optional[float] = None) -> None:
    """等待当前所有后台任务结束（应用关闭与测试使用），超时后取消剩余任务"""
    if not _background_tasks:
        return
    tasks = list(_background_tasks)
    done, pending = await asyncio.wait(tasks, timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        logger.warning(f"Cancelled {len(pending)} background task(s) on drain")
