"""
基于缓存的结账快照存储

键布局：
- ``{prefix}{session_id}``            快照本体，TTL 在写入时固定
- ``{prefix}user_sessions_{user_id}`` 用户最近会话列表（最新在前，截断到 cap）
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from core.logging_config import get_logger
from domain.checkout.entity import CheckoutData
from domain.checkout.store import CheckoutSnapshotStore
from domain.common.exceptions import BusinessException, CheckoutNotFoundException
from infrastructure.external.cache import CacheInterface
from shared.codes import BusinessCode


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheCheckoutSnapshotStore(CheckoutSnapshotStore):

    def __init__(
        self,
        cache: CacheInterface,
        *,
        key_prefix: str = "checkout_data_",
        session_cap: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = cache
        self._prefix = key_prefix
        self._cap = session_cap
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    def _index_key(self, user_id: str) -> str:
        return f"{self._prefix}user_sessions_{user_id}"

    async def store(self, snapshot: CheckoutData) -> str:
        # 剩余寿命按 expires_at 计算，读取与重写都不会延长
        remaining = int((snapshot.expires_at - self._clock()).total_seconds())
        if remaining <= 0:
            raise CheckoutNotFoundException(snapshot.session_id)
        ok = await self._cache.set(self._key(snapshot.session_id), snapshot.to_dict(), ttl=remaining)
        if not ok:
            logger.error("checkout_snapshot_store_failed", session_id=snapshot.session_id)
            raise BusinessException(
                code=BusinessCode.SERVICE_UNAVAILABLE,
                message="Unable to save checkout session, please try again",
                error_type="ServiceUnavailable",
            )
        indexed = await self._cache.lpush_capped(
            self._index_key(snapshot.user_id),
            snapshot.session_id,
            cap=self._cap,
            ttl=snapshot.ttl_seconds,
        )
        if not indexed:
            # 索引只用于尽力恢复，失败不影响快照本身
            logger.warning("checkout_session_index_failed", user_id=snapshot.user_id, session_id=snapshot.session_id)
        logger.info(
            "checkout_snapshot_stored",
            session_id=snapshot.session_id,
            user_id=snapshot.user_id,
            ttl=remaining,
            final_total=str(snapshot.final_total),
        )
        return snapshot.session_id

    async def retrieve(self, key: str) -> Optional[CheckoutData]:
        if not key:
            return None
        raw = await self._cache.get(self._key(key))
        if raw is None:
            return None
        try:
            if not isinstance(raw, dict):
                raise TypeError(f"unexpected payload type {type(raw).__name__}")
            snapshot = CheckoutData.from_dict(raw)
        except (BusinessException, TypeError) as exc:
            logger.warning("checkout_snapshot_corrupt", session_id=key, error=str(exc))
            await self._cache.delete(self._key(key))
            return None
        if snapshot.is_expired(self._clock()):
            return None
        return snapshot

    async def delete(self, key: str) -> None:
        await self._cache.delete(self._key(key))
        logger.info("checkout_snapshot_deleted", session_id=key)

    async def sessions_for_user(self, user_id: str) -> list[str]:
        values = await self._cache.lrange(self._index_key(str(user_id)), 0, self._cap - 1)
        return [str(v) for v in values]
