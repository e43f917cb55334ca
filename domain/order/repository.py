"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """创建订单及明细；同一支付交易号重复创建会触发唯一约束"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_transaction_id(self, transaction_id: str) -> Optional[Order]:
        """根据支付交易号获取订单"""
        pass
