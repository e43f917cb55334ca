"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.discount_code_repository import SQLAlchemyDiscountCodeRepository
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRecordRepository
from infrastructure.repositories.product_repository import SQLAlchemyProductRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.payment_repository = SQLAlchemyPaymentRecordRepository(self.session)
        self.order_repository = SQLAlchemyOrderRepository(self.session)
        self.discount_code_repository = SQLAlchemyDiscountCodeRepository(self.session)
        self.product_repository = SQLAlchemyProductRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.payment_repository = None
            self.order_repository = None
            self.discount_code_repository = None
            self.product_repository = None

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def uow_factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
    return SQLAlchemyUnitOfWork(readonly=readonly)
