"""
Celery tasks for payment compensation workflows: stale cleanup and reconcile retries.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from celery import shared_task

from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.database import engine
from infrastructure.external.cache import get_redis_client, init_redis_client, shutdown_redis_client

from ..utils.base_task import BaseTask


logger = get_logger(__name__)


def _run_with_service(fn: Callable[[Any], Awaitable[Any]]) -> Any:
    """
    每个任务在独立事件循环中执行；Redis 客户端与数据库连接池随循环创建和关闭

    asyncpg 连接绑定在创建它的事件循环上，循环结束前必须 dispose
    """
    from infrastructure.bootstrap import build_payment_service

    async def _run():
        owned = get_redis_client() is None
        cache = await init_redis_client()
        service = build_payment_service(cache)
        try:
            return await fn(service)
        finally:
            try:
                await service.aclose()
                if owned:
                    await shutdown_redis_client()
            finally:
                await engine.dispose()

    return asyncio.run(_run())


@shared_task(name="payments.cleanup_expired", bind=True, base=BaseTask)
def cleanup_expired(self, dry_run: bool = False, older_than_minutes: int | None = None) -> dict:
    """取消超过配置时长仍为 pending 的支付；processing 留给对账重试"""
    cfg = payment_settings.reconciliation
    minutes = older_than_minutes or cfg.cleanup_after_minutes
    summary = _run_with_service(
        lambda service: service.cancel_stale(
            older_than_minutes=minutes,
            batch_size=cfg.cleanup_batch_size,
            dry_run=dry_run,
        )
    )
    if summary["error_count"]:
        logger.warning("payment_cleanup_had_errors", error_count=summary["error_count"])
    return summary


@shared_task(name="payments.reconcile_retry", bind=True, base=BaseTask)
def reconcile_retry(self, transaction_id: str) -> dict:
    cfg = payment_settings.reconciliation
    outcome = _run_with_service(lambda service: service.reverify(transaction_id))
    result = {
        "transaction_id": transaction_id,
        "success": outcome.success,
        "error_code": outcome.error_code,
        "retry_allowed": outcome.retry_allowed,
        "attempt": self.request.retries,
    }
    if outcome.retry_allowed:
        if self.request.retries >= cfg.retry_max_attempts:
            logger.error("payment_reconcile_retry_exhausted", **result)
            return result
        logger.info("payment_reconcile_retry_again", **result)
        raise self.retry(countdown=cfg.retry_countdown_seconds, max_retries=cfg.retry_max_attempts)
    return result
