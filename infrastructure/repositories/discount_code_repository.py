"""
折扣码仓储实现
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.discount.entity import DiscountCode, DiscountScope
from domain.discount.repository import DiscountCodeRepository
from infrastructure.models.discount_code import DiscountCodeModel


logger = get_logger(__name__)


class SQLAlchemyDiscountCodeRepository(DiscountCodeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: DiscountCodeModel) -> DiscountCode:
        return DiscountCode(
            id=model.id,
            code=model.code,
            percentage=Decimal(str(model.percentage)),
            scope=DiscountScope(model.scope),
            owner_user_id=model.owner_user_id,
            single_use=model.single_use,
            is_used=model.is_used,
            used_by=model.used_by,
            used_at=model.used_at,
            expires_at=model.expires_at,
            product_ids=tuple(model.product_ids or ()),
            seller_ids=tuple(model.seller_ids or ()),
            created_at=model.created_at,
        )

    async def add(self, discount_code: DiscountCode) -> DiscountCode:
        model = DiscountCodeModel(
            code=discount_code.code,
            percentage=discount_code.percentage,
            scope=discount_code.scope.value,
            owner_user_id=discount_code.owner_user_id,
            single_use=discount_code.single_use,
            is_used=discount_code.is_used,
            used_by=discount_code.used_by,
            used_at=discount_code.used_at,
            expires_at=discount_code.expires_at,
            product_ids=list(discount_code.product_ids),
            seller_ids=list(discount_code.seller_ids),
        )
        if discount_code.created_at is not None:
            model.created_at = discount_code.created_at
        self.session.add(model)
        await self.session.flush()
        discount_code.id = model.id
        return discount_code

    async def get_by_code(self, code: str) -> Optional[DiscountCode]:
        normalized = (code or "").strip().upper()
        if not normalized:
            return None
        result = await self.session.execute(select(DiscountCodeModel).where(DiscountCodeModel.code == normalized))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def mark_used(self, code: str, user_id: str, used_at: datetime) -> bool:
        """UPDATE ... WHERE is_used = false（多次使用的码不受限制）"""
        result = await self.session.execute(
            update(DiscountCodeModel)
            .where(
                DiscountCodeModel.code == (code or "").strip().upper(),
                or_(DiscountCodeModel.is_used.is_(False), DiscountCodeModel.single_use.is_(False)),
            )
            .values(is_used=True, used_by=str(user_id), used_at=used_at)
            .execution_options(synchronize_session=False)
        )
        consumed = result.rowcount == 1
        logger.info("discount_code_mark_used", code=code, user_id=user_id, consumed=consumed)
        return consumed
