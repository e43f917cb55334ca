"""
折扣码仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entity import DiscountCode


class DiscountCodeRepository(ABC):
    """折扣码仓储抽象接口"""

    @abstractmethod
    async def add(self, discount_code: DiscountCode) -> DiscountCode:
        """新增折扣码（由审核流程或管理员创建）"""
        pass

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[DiscountCode]:
        """根据码值获取（大小写不敏感）"""
        pass

    @abstractmethod
    async def mark_used(self, code: str, user_id: str, used_at: datetime) -> bool:
        """
        条件更新：仅当单次码尚未使用时标记为已使用

        Returns:
            True 表示本次调用完成了消费；False 表示已被他人消费或不存在
        """
        pass
