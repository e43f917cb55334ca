"""缓存之上的存储实现"""
from .checkout_snapshot_store import CacheCheckoutSnapshotStore

__all__ = [
    "CacheCheckoutSnapshotStore",
]
