"""缓存层对外暴露的接口"""
from .redis_client import (
    CacheInterface,
    RedisClient,
    get_redis_client,
    init_redis_client,
    shutdown_redis_client,
)


__all__ = [
    "CacheInterface",
    "RedisClient",
    "init_redis_client",
    "get_redis_client",
    "shutdown_redis_client",
]
