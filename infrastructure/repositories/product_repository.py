"""
商品目录仓储实现
"""
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import Product
from domain.catalog.repository import ProductRepository
from infrastructure.models.product import ProductModel


class SQLAlchemyProductRepository(ProductRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductModel) -> Product:
        return Product(
            product_id=model.product_id,
            seller_id=model.seller_id,
            name=model.name or "",
            price=Decimal(str(model.price)),
            seller_discount_pct=Decimal(str(model.seller_discount_pct or 0)),
            is_active=model.is_active,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def add(self, product: Product) -> Product:
        model = ProductModel(
            product_id=product.product_id,
            seller_id=product.seller_id,
            name=product.name,
            price=product.price,
            seller_discount_pct=product.seller_discount_pct,
            is_active=product.is_active,
        )
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def get(self, product_id: str) -> Optional[Product]:
        result = await self.session.execute(select(ProductModel).where(ProductModel.product_id == product_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_many(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        result = await self.session.execute(select(ProductModel).where(ProductModel.product_id.in_(ids)))
        return {m.product_id: self._to_entity(m) for m in result.scalars().all()}
