"""
对账锁实现

- RedisTransactionLocker: 多进程/多实例部署，基于 RedisClient.lock
- LocalTransactionLocker: 单进程（无 Redis 的开发环境与测试），asyncio.Lock 注册表
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.external.cache import CacheInterface, get_redis_client


logger = get_logger(__name__)

LOCK_KEY_TEMPLATE = "payment:reconcile:{transaction_id}"


class RedisTransactionLocker:

    def __init__(self, cache: CacheInterface, *, timeout: float = 30.0, blocking_timeout: float = 10.0) -> None:
        self._cache = cache
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, transaction_id: str) -> AsyncIterator[None]:
        key = LOCK_KEY_TEMPLATE.format(transaction_id=transaction_id)
        async with self._cache.lock(key, timeout=self._timeout, blocking_timeout=self._blocking_timeout):
            yield


class LocalTransactionLocker:
    """进程内锁；锁对象在无人持有和等待时回收"""

    def __init__(self, *, blocking_timeout: float = 10.0) -> None:
        self._blocking_timeout = blocking_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, transaction_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(transaction_id, asyncio.Lock())
        self._waiters[transaction_id] = self._waiters.get(transaction_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._blocking_timeout)
            except asyncio.TimeoutError as exc:
                raise TimeoutError(f"获取锁失败: {transaction_id}") from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[transaction_id] -= 1
            if self._waiters[transaction_id] == 0:
                self._waiters.pop(transaction_id, None)
                self._locks.pop(transaction_id, None)


_local_locker = LocalTransactionLocker(
    blocking_timeout=payment_settings.reconciliation.lock_blocking_timeout_seconds,
)


def get_transaction_locker():
    """Redis 已初始化时使用分布式锁，否则回退到进程内锁"""
    cache = get_redis_client()
    cfg = payment_settings.reconciliation
    if cache is not None:
        return RedisTransactionLocker(
            cache,
            timeout=cfg.lock_timeout_seconds,
            blocking_timeout=cfg.lock_blocking_timeout_seconds,
        )
    return _local_locker
