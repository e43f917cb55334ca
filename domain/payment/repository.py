"""
支付记录仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .entity import OPEN_STATUSES, PaymentRecord, PaymentStatus


class PaymentRecordRepository(ABC):
    """支付记录仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def add(self, record: PaymentRecord) -> PaymentRecord:
        """创建支付记录；transaction_id 重复时抛出 PaymentAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_transaction_id(self, transaction_id: str, *, for_update: bool = False) -> Optional[PaymentRecord]:
        """根据交易号获取支付记录"""
        pass

    @abstractmethod
    async def get_by_checkout_id(self, provider: str, checkout_id: str) -> Optional[PaymentRecord]:
        """根据网关结账ID获取支付记录（webhook 只带网关标识时使用）"""
        pass

    @abstractmethod
    async def update(self, record: PaymentRecord) -> PaymentRecord:
        """保存非完成类的状态变化（processing/failed/cancelled/refunded）"""
        pass

    @abstractmethod
    async def complete_if_open(self, record: PaymentRecord) -> bool:
        """
        原子条件更新：仅当库中状态仍为 pending/processing 时写入 completed 与订单号

        Returns:
            True 表示本次调用赢得了完成转换；False 表示已被其他路径抢先
        """
        pass

    @abstractmethod
    async def transition_if_open(
        self, record: PaymentRecord, *, from_statuses: Sequence[PaymentStatus] = OPEN_STATUSES
    ) -> bool:
        """
        原子条件更新：仅当库中状态仍在 from_statuses（默认 pending/processing）中时写入
        record 的新状态（processing/failed/cancelled），并发的清理任务与对账互不覆盖
        """
        pass

    @abstractmethod
    async def list_stale(
        self,
        older_than: datetime,
        statuses: Sequence[PaymentStatus],
        limit: int = 100,
    ) -> List[PaymentRecord]:
        """列出创建时间早于 older_than 且处于给定状态的记录"""
        pass
