"""
Celery 应用配置
"""
from celery import Celery

from sf_core.config import get_settings
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)

settings = get_settings()

celery_app = Celery(
    "settleflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "sf_core.tasks.courier_tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],

    timezone=settings.celery_timezone,
    enable_utc=True,

    task_default_queue=settings.celery_task_default_queue,
    task_routes={
        "sf.courier.*": {"queue": "sf_courier"},
    },

    result_expires=3600,
    task_ignore_result=False,

    # Worker 配置
    worker_prefetch_multiplier=1,  # 公平调度
    task_acks_late=True,  # 任务完成后确认
    worker_max_tasks_per_child=1000,

    task_default_retry_delay=60,
    task_max_retries=5,

    # 任务超时配置（防止僵尸任务）
    task_soft_time_limit=120,
    task_time_limit=180,
)

# 定期任务：把已确认但尚未发货的订单提交给默认承运商
celery_app.conf.beat_schedule = {
    "dispatch-confirmed-orders": {
        "task": "sf.courier.dispatch_confirmed",
        "schedule": settings.courier_dispatch_interval_seconds,
    },
}
