"""
SettleFlow 任务模块
- background: 进程内后台任务（不等待的通知）
- celery_app / courier_tasks: 基于 Celery 的异步发货任务
"""
