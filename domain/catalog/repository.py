"""
商品目录仓储接口
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .entity import Product


class ProductRepository(ABC):

    @abstractmethod
    async def add(self, product: Product) -> Product:
        pass

    @abstractmethod
    async def get(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_many(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """按 product_id 批量读取；不存在的 id 不出现在结果中"""
        pass
