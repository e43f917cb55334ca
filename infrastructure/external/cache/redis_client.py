"""
Redis 缓存客户端

结账快照、最近会话索引、webhook 去重和对账锁都只依赖 CacheInterface。
读失败记录日志后按未命中处理；写失败返回 False，由调用方决定是否报错。
"""
from __future__ import annotations

import asyncio
import json
import socket
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class CacheInterface(ABC):

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None, nx: bool = False) -> bool:
        """nx=True 时仅在键不存在时写入，用于去重"""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        ...

    @abstractmethod
    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[Any]:
        ...

    @abstractmethod
    async def lpush_capped(self, key: str, value: Any, cap: int, ttl: Optional[int] = None) -> bool:
        """去重后左侧推入并截断到 cap 个元素"""

    @abstractmethod
    def lock(self, key: str, timeout: float = 10, blocking_timeout: float = 5):
        """异步上下文管理器；等待超时抛出 TimeoutError"""


def _encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    # Decimal 金额以字符串保存，读回后由领域层转换
    return json.dumps(value, default=str, ensure_ascii=False)


def _decode(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


class RedisClient(CacheInterface):
    """带命名空间前缀的 Redis 客户端"""

    def __init__(self, client: aioredis.Redis, namespace: str = "", default_ttl: Optional[int] = None):
        self._client = client
        self._namespace = namespace.strip(":")
        self._default_ttl = default_ttl if default_ttl is not None else settings.redis.default_ttl

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}" if self._namespace else key

    async def get(self, key: str, default: Any = None) -> Any:
        name = self._key(key)
        try:
            raw = await self._client.get(name)
        except RedisError as e:
            logger.error("cache_get_failed", key=name, error=str(e))
            return default
        return default if raw is None else _decode(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, nx: bool = False) -> bool:
        name = self._key(key)
        expire = ttl if ttl is not None else self._default_ttl
        try:
            written = await self._client.set(name, _encode(value), ex=expire if expire and expire > 0 else None, nx=nx)
        except RedisError as e:
            logger.error("cache_set_failed", key=name, error=str(e))
            return False
        return bool(written)

    async def delete(self, *keys: str) -> int:
        names = [self._key(k) for k in keys]
        try:
            return await self._client.delete(*names)
        except RedisError as e:
            logger.error("cache_delete_failed", keys=names, error=str(e))
            return 0

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> List[Any]:
        name = self._key(key)
        try:
            values = await self._client.lrange(name, start, stop)
        except RedisError as e:
            logger.error("cache_lrange_failed", key=name, error=str(e))
            return []
        return [_decode(v) for v in values]

    async def lpush_capped(self, key: str, value: Any, cap: int, ttl: Optional[int] = None) -> bool:
        """LREM/LPUSH/LTRIM/EXPIRE 在同一个 MULTI/EXEC 中执行"""
        name = self._key(key)
        payload = _encode(value)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lrem(name, 0, payload)
                pipe.lpush(name, payload)
                pipe.ltrim(name, 0, cap - 1)
                if ttl:
                    pipe.expire(name, ttl)
                await pipe.execute()
        except RedisError as e:
            logger.error("cache_lpush_capped_failed", key=name, error=str(e))
            return False
        return True

    @asynccontextmanager
    async def lock(self, key: str, timeout: float = 10, blocking_timeout: float = 5) -> AsyncIterator[Any]:
        """timeout 防止持有者崩溃后死锁；blocking_timeout 是等待上限"""
        name = f"lock:{self._key(key)}"
        lock = self._client.lock(name, timeout=timeout, blocking_timeout=blocking_timeout)
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            # 连接失败与锁被占用一样按“稍后重试”处理
            logger.error("lock_acquire_failed", key=name, error=str(e))
            raise TimeoutError(f"lock unavailable: {name}") from e
        if not acquired:
            raise TimeoutError(f"lock busy: {name}")
        try:
            yield lock
        finally:
            try:
                await lock.release()
            except RedisError as e:
                logger.warning("lock_release_failed", key=name, error=str(e))

    async def health_check(self) -> bool:
        try:
            return await self._client.ping()
        except RedisError as e:
            logger.error("redis_health_check_failed", error=str(e))
            return False


_raw_client: Optional[aioredis.Redis] = None
_cache: Optional[RedisClient] = None
_init_lock = asyncio.Lock()


def _keepalive_options() -> dict:
    if all(hasattr(socket, name) for name in ("TCP_KEEPIDLE", "TCP_KEEPINTVL", "TCP_KEEPCNT")):
        return {socket.TCP_KEEPIDLE: 1, socket.TCP_KEEPINTVL: 1, socket.TCP_KEEPCNT: 3}
    return {}


async def init_redis_client(namespace: Optional[str] = None) -> RedisClient:
    """初始化全局客户端（幂等）；未配置 REDIS__URL 时抛出 RuntimeError"""
    global _raw_client, _cache

    async with _init_lock:
        if _cache is not None:
            return _cache
        if not settings.redis.url:
            raise RuntimeError("REDIS__URL is not configured")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
            socket_keepalive=True,
            socket_keepalive_options=_keepalive_options(),
        )
        await client.ping()

        ns = namespace or settings.redis.namespace
        _raw_client = client
        _cache = RedisClient(client=client, namespace=ns)
        logger.info("redis_client_initialized", namespace=ns)
        return _cache


def get_redis_client() -> Optional[RedisClient]:
    return _cache


async def shutdown_redis_client() -> None:
    global _raw_client, _cache

    if _raw_client is None:
        return
    try:
        await _raw_client.aclose()
        logger.info("redis_client_closed")
    except RedisError as e:
        logger.error("redis_client_close_failed", error=str(e))
    finally:
        _raw_client = None
        _cache = None


__all__ = [
    "RedisClient",
    "CacheInterface",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
