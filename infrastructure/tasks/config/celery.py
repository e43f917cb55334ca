"""Celery 应用：支付对账重试与过期清理"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger

from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)

# 重试对账影响用户看到的订单状态，优先于批量清理
RECONCILE_QUEUE = "reconcile"
MAINTENANCE_QUEUE = "maintenance"

_broker = settings.redis.url or os.getenv("CELERY_BROKER_URL")

celery_app = Celery("checkout_engine", broker=_broker, backend=_broker)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 对账失败可以安全重放，worker 中断时交还队列
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_default_queue=RECONCILE_QUEUE,
    task_queues=(Queue(RECONCILE_QUEUE), Queue(MAINTENANCE_QUEUE)),
    task_routes={
        "payments.reconcile_retry": {"queue": RECONCILE_QUEUE},
        "payments.cleanup_expired": {"queue": MAINTENANCE_QUEUE},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=TASK_PACKAGES,
)

if settings.ENVIRONMENT.lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        eager=bool(sender.conf.task_always_eager),
        queues=[q.name for q in sender.conf.task_queues],
    )
