"""
支付记录仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import PaymentAlreadyExistsException
from domain.payment.entity import OPEN_STATUSES, PaymentRecord, PaymentStatus
from domain.payment.repository import PaymentRecordRepository
from infrastructure.models.payment import PaymentRecordModel


logger = get_logger(__name__)

_OPEN_VALUES = [s.value for s in OPEN_STATUSES]


class SQLAlchemyPaymentRecordRepository(PaymentRecordRepository):
    """支付记录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentRecordModel) -> PaymentRecord:
        """将数据库模型转换为领域实体"""
        return PaymentRecord(
            id=model.id,
            transaction_id=model.transaction_id,
            user_id=model.user_id,
            provider=model.provider,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            checkout_id=model.checkout_id,
            provider_ref=model.provider_ref,
            checkout_session_id=model.checkout_session_id,
            payment_method=model.payment_method,
            order_id=model.order_id,
            error_code=model.error_code,
            error_message=model.error_message,
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: PaymentRecord) -> PaymentRecordModel:
        """将领域实体转换为数据库模型"""
        now = datetime.now(timezone.utc)
        return PaymentRecordModel(
            id=entity.id,
            transaction_id=entity.transaction_id,
            user_id=entity.user_id,
            provider=entity.provider,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            checkout_id=entity.checkout_id,
            provider_ref=entity.provider_ref,
            checkout_session_id=entity.checkout_session_id,
            payment_method=entity.payment_method,
            order_id=entity.order_id,
            error_code=entity.error_code,
            error_message=entity.error_message,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
            completed_at=entity.completed_at,
            extra_metadata=entity.metadata,
        )

    async def add(self, record: PaymentRecord) -> PaymentRecord:
        """创建支付记录"""
        db_record = self._to_model(record)
        self.session.add(db_record)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if "transaction_id" in str(e).lower():
                logger.warning("payment_record_conflict", transaction_id=record.transaction_id)
                raise PaymentAlreadyExistsException(record.transaction_id) from e
            raise
        await self.session.refresh(db_record)
        logger.info(
            "payment_record_created",
            transaction_id=db_record.transaction_id,
            provider=db_record.provider,
            amount=str(db_record.amount),
        )
        return self._to_entity(db_record)

    async def get_by_transaction_id(self, transaction_id: str, *, for_update: bool = False) -> Optional[PaymentRecord]:
        """根据交易号获取支付记录"""
        query = select(PaymentRecordModel).where(PaymentRecordModel.transaction_id == transaction_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_record = result.scalar_one_or_none()
        return self._to_entity(db_record) if db_record else None

    async def get_by_checkout_id(self, provider: str, checkout_id: str) -> Optional[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel).where(
                PaymentRecordModel.provider == provider,
                PaymentRecordModel.checkout_id == checkout_id,
            )
        )
        db_record = result.scalars().first()
        return self._to_entity(db_record) if db_record else None

    async def update(self, record: PaymentRecord) -> PaymentRecord:
        """保存非完成类的状态变化"""
        await self.session.execute(
            update(PaymentRecordModel)
            .where(PaymentRecordModel.transaction_id == record.transaction_id)
            .values(
                status=record.status.value,
                checkout_id=record.checkout_id,
                provider_ref=record.provider_ref,
                checkout_session_id=record.checkout_session_id,
                payment_method=record.payment_method,
                error_code=record.error_code,
                error_message=record.error_message,
                updated_at=record.updated_at or datetime.now(timezone.utc),
                extra_metadata=record.metadata,
            )
            .execution_options(synchronize_session=False)
        )
        return record

    async def complete_if_open(self, record: PaymentRecord) -> bool:
        """
        条件更新：UPDATE ... SET status='completed' WHERE status IN ('pending','processing')

        受影响行数为1才算赢得竞争；订单创建必须以此为前提
        """
        now = record.completed_at or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(PaymentRecordModel)
            .where(
                PaymentRecordModel.transaction_id == record.transaction_id,
                PaymentRecordModel.status.in_(_OPEN_VALUES),
            )
            .values(
                status=PaymentStatus.COMPLETED.value,
                order_id=record.order_id,
                provider_ref=record.provider_ref,
                payment_method=record.payment_method,
                error_code=None,
                error_message=None,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if not won:
            logger.info("payment_complete_lost_race", transaction_id=record.transaction_id)
        return won

    async def transition_if_open(
        self, record: PaymentRecord, *, from_statuses: Sequence[PaymentStatus] = OPEN_STATUSES
    ) -> bool:
        if record.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            raise ValueError("use complete_if_open for completion")
        now = record.updated_at or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(PaymentRecordModel)
            .where(
                PaymentRecordModel.transaction_id == record.transaction_id,
                PaymentRecordModel.status.in_([s.value for s in from_statuses]),
            )
            .values(
                status=record.status.value,
                provider_ref=record.provider_ref,
                payment_method=record.payment_method,
                error_code=record.error_code,
                error_message=record.error_message,
                updated_at=now,
                extra_metadata=record.metadata,
            )
            .execution_options(synchronize_session=False)
        )
        moved = result.rowcount == 1
        logger.info(
            "payment_status_transition",
            transaction_id=record.transaction_id,
            status=record.status.value,
            applied=moved,
        )
        return moved

    async def list_stale(
        self,
        older_than: datetime,
        statuses: Sequence[PaymentStatus],
        limit: int = 100,
    ) -> List[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel)
            .where(
                PaymentRecordModel.status.in_([s.value for s in statuses]),
                PaymentRecordModel.created_at < older_than,
            )
            .order_by(PaymentRecordModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
