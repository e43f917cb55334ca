"""
结账快照存储接口（易失、带TTL）
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import CheckoutData


class CheckoutSnapshotStore(ABC):
    """快照存储抽象接口 - 丢失快照是预期内的失败模式，不提供持久性保证"""

    @abstractmethod
    async def store(self, snapshot: CheckoutData) -> str:
        """保存快照，TTL 在此时固定，返回快照键（session_id）"""
        pass

    @abstractmethod
    async def retrieve(self, key: str) -> Optional[CheckoutData]:
        """读取快照；过期、不存在、数据损坏一律返回 None"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """删除快照（支付成功后）"""
        pass

    @abstractmethod
    async def sessions_for_user(self, user_id: str) -> list[str]:
        """用户最近的会话键（最新在前，最多保留固定数量），仅用于尽力恢复"""
        pass
