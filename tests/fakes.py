"""In-memory stand-ins shared by the test-suite."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, List, Optional

from infrastructure.external.cache import CacheInterface


class FrozenClock:
    """可手动推进的时钟"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeCache(CacheInterface):
    """按时钟判断过期的内存缓存，行为与 RedisClient 对齐"""

    def __init__(self, clock: FrozenClock):
        self._clock = clock
        self._data: dict[str, tuple[Any, Optional[datetime]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.fail_writes = False

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        expires = entry[1]
        if expires is not None and self._clock() >= expires:
            self._data.pop(key, None)
            return False
        return True

    def _expiry(self, ttl: Optional[int]) -> Optional[datetime]:
        return self._clock() + timedelta(seconds=ttl) if ttl else None

    async def get(self, key: str, default: Any = None) -> Any:
        if not self._alive(key):
            return default
        return self._data[key][0]

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, nx: bool = False) -> bool:
        if self.fail_writes:
            return False
        if nx and self._alive(key):
            return False
        self._data[key] = (value, self._expiry(ttl))
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[Any]:
        if not self._alive(key):
            return []
        values = list(self._data[key][0])
        return values[start:] if stop == -1 else values[start:stop + 1]

    async def lpush_capped(self, key: str, value: Any, cap: int, ttl: Optional[int] = None) -> bool:
        if self.fail_writes:
            return False
        current = list(self._data[key][0]) if self._alive(key) else []
        current = [value] + [v for v in current if v != value]
        self._data[key] = (current[:cap], self._expiry(ttl))
        return True

    @asynccontextmanager
    async def lock(self, key: str, timeout: float = 10, blocking_timeout: float = 5):
        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=blocking_timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"获取锁失败: {key}") from exc
        try:
            yield lock
        finally:
            lock.release()

    def raw(self, key: str) -> Any:
        return self._data.get(key, (None, None))[0]

    def put_raw(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._data[key] = (value, self._expiry(ttl))
