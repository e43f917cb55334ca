"""支付任务基类：统一记录任务生命周期，日志携带 transaction_id"""
from __future__ import annotations

from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)


def _context(task: Task, task_id, kwargs) -> dict:
    ctx = {"task_id": task_id, "task_name": task.name}
    if kwargs and kwargs.get("transaction_id"):
        ctx["transaction_id"] = kwargs["transaction_id"]
    return ctx


class BaseTask(Task):

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error("payment_task_failed", error=str(exc), **_context(self, task_id, kwargs))
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.info(
            "payment_task_retry_scheduled",
            attempt=self.request.retries + 1,
            **_context(self, task_id, kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("payment_task_done", **_context(self, task_id, kwargs))
        super().on_success(retval, task_id, args, kwargs)
