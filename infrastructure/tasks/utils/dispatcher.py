"""把对账重试投递给 Celery，应用层只依赖一个可调用对象"""
from __future__ import annotations

from core.logging_config import get_logger
from core.settings import payment_settings

from ..config.celery import celery_app

logger = get_logger(__name__)


class TaskDispatcher:

    def schedule_reconcile_retry(self, transaction_id: str) -> None:
        """可重试的对账结果稍后由 worker 重新核验"""
        countdown = payment_settings.reconciliation.retry_countdown_seconds
        celery_app.send_task(
            "payments.reconcile_retry",
            kwargs={"transaction_id": transaction_id},
            countdown=countdown,
        )
        logger.info("payment_reconcile_retry_enqueued", transaction_id=transaction_id, countdown=countdown)
