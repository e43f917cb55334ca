"""
支付对账服务 - 把网关确认变成且仅变成一个订单

回跳、webhook、人工复核三条确认路径都调用 PaymentReconciler.reconcile，
同一交易号在 TransactionLocker 下串行执行；完成转换本身是库里的条件更新，
即使锁失效，也只有一条路径能创建订单。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.payments import ReconcileResult
from application.ports.locking import TransactionLocker
from application.services.pricing_service import price_checkout
from core.logging_config import get_logger
from domain.checkout.entity import CheckoutData
from domain.checkout.source import FromSnapshot
from domain.checkout.store import CheckoutSnapshotStore
from domain.common.exceptions import OrderAlreadyExistsException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.payment.entity import PaymentRecord, PaymentStatus
from domain.payment.verification import PaymentVerificationResult, VerificationStatus
from domain.pricing import PricingEngine


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileOutcome:
    success: bool
    transaction_id: str
    message: str
    order: Optional[dict] = None
    error_code: Optional[str] = None
    retry_allowed: bool = False
    status: Optional[str] = None
    details: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, transaction_id: str, order: dict, message: str) -> "ReconcileOutcome":
        return cls(True, transaction_id, message, order=order, status=PaymentStatus.COMPLETED.value)

    @classmethod
    def failure(
        cls,
        transaction_id: str,
        error_code: str,
        message: str,
        *,
        retry_allowed: bool = False,
        status: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> "ReconcileOutcome":
        return cls(
            False,
            transaction_id,
            message,
            error_code=error_code,
            retry_allowed=retry_allowed,
            status=status,
            details=details or {},
        )

    def to_dto(self) -> ReconcileResult:
        order = self.order or {}
        total = order.get("total")
        return ReconcileResult(
            success=self.success,
            transaction_id=self.transaction_id,
            message=self.message,
            order_id=order.get("order_id"),
            order_number=order.get("order_number"),
            total=Decimal(total) if total is not None else None,
            error_code=self.error_code,
            retry_allowed=self.retry_allowed,
        )


class _LostCompletionRace(Exception):
    """条件更新未命中：其他路径已经完成了这笔支付"""


class _CouponAlreadyConsumed(Exception):
    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


class PaymentReconciler:

    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        snapshot_store: CheckoutSnapshotStore,
        pricing_engine: PricingEngine,
        locker: TransactionLocker,
        amount_tolerance: Decimal = Decimal("0.01"),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._snapshots = snapshot_store
        self._engine = pricing_engine
        self._locker = locker
        self._tolerance = Decimal(str(amount_tolerance))
        self._clock = clock

    async def reconcile(
        self,
        verification: PaymentVerificationResult,
        correlation_key: Optional[str] = None,
    ) -> ReconcileOutcome:
        txn = verification.transaction_id
        try:
            async with self._locker.hold(txn):
                outcome = await self._reconcile_locked(verification, correlation_key)
        except TimeoutError:
            logger.warning("payment_reconcile_lock_timeout", transaction_id=txn)
            return ReconcileOutcome.failure(
                txn,
                "RECONCILE_IN_PROGRESS",
                "This payment is already being processed, please retry shortly",
                retry_allowed=True,
            )
        logger.info(
            "payment_reconcile_finished",
            transaction_id=txn,
            provider=verification.provider,
            success=outcome.success,
            error_code=outcome.error_code,
            retry_allowed=outcome.retry_allowed,
        )
        return outcome

    async def _reconcile_locked(
        self,
        verification: PaymentVerificationResult,
        correlation_key: Optional[str],
    ) -> ReconcileOutcome:
        txn = verification.transaction_id
        record = await self._load(txn)
        if record is None:
            return ReconcileOutcome.failure(txn, "PAYMENT_NOT_FOUND", "Payment not found")
        if not record.is_open:
            return await self._terminal_outcome(record)
        if correlation_key and record.checkout_session_id and correlation_key != record.checkout_session_id:
            # 会话在创建支付时已绑定；调用方给出的其他会话不能改变记录状态
            logger.warning(
                "payment_checkout_session_mismatch",
                transaction_id=txn,
                bound_session=record.checkout_session_id,
                session_id=correlation_key,
            )
            return ReconcileOutcome.failure(
                txn, "CHECKOUT_MISMATCH", "Checkout session does not belong to this payment", status=record.status.value
            )

        if not verification.successful:
            if verification.retryable:
                moved = await self._move(record, PaymentStatus.PROCESSING)
                if moved is not None:
                    return moved
                return ReconcileOutcome.failure(
                    txn,
                    verification.error_code or "PENDING",
                    verification.error_message or "Payment confirmation is still pending, please retry",
                    retry_allowed=True,
                    status=record.status.value,
                )
            moved = await self._move(
                record,
                PaymentStatus.FAILED,
                error_code=verification.error_code,
                error_message=verification.error_message,
            )
            if moved is not None:
                return moved
            return ReconcileOutcome.failure(
                txn,
                record.error_code or "PAYMENT_REJECTED",
                verification.error_message or "Payment was rejected by the gateway",
                status=record.status.value,
            )

        moved = await self._move(record, PaymentStatus.PROCESSING)
        if moved is not None:
            return moved

        snapshot = await self._resolve_snapshot(record, correlation_key)
        if snapshot is None:
            logger.warning(
                "payment_checkout_expired", transaction_id=txn, session_id=record.checkout_session_id or correlation_key
            )
            return ReconcileOutcome.failure(
                txn,
                "CHECKOUT_EXPIRED",
                f"Checkout session expired, contact support with your transaction id {txn}",
                status=record.status.value,
            )
        if snapshot.user_id != record.user_id:
            logger.warning(
                "payment_checkout_user_mismatch",
                transaction_id=txn,
                session_id=snapshot.session_id,
                payment_user=record.user_id,
                checkout_user=snapshot.user_id,
            )
            return ReconcileOutcome.failure(
                txn, "CHECKOUT_MISMATCH", "Checkout session does not belong to this payment", status=record.status.value
            )

        pricing = await price_checkout(
            FromSnapshot(snapshot),
            engine=self._engine,
            uow_factory=self._uow_factory,
            now=snapshot.created_at,
        )
        if pricing.coupon_rejection is not None:
            rejection = pricing.coupon_rejection
            return ReconcileOutcome.failure(
                txn,
                f"COUPON_{rejection.reason.value.upper()}",
                rejection.message,
                status=record.status.value,
                details={"coupon_code": rejection.code},
            )

        expected = pricing.final_total
        received = self._received_amount(verification, record)
        difference = abs(expected - received)
        if difference > self._tolerance:
            logger.warning(
                "payment_amount_discrepancy",
                transaction_id=txn,
                expected=str(expected),
                received=str(received),
                difference=str(difference),
            )
            await self._move(
                record,
                PaymentStatus.FAILED,
                error_code="AMOUNT_MISMATCH",
                error_message="Paid amount differs from checkout total",
            )
            return ReconcileOutcome.failure(
                txn,
                "AMOUNT_MISMATCH",
                "The paid amount does not match the checkout total",
                status=record.status.value,
                details={"expected": str(expected), "received": str(received)},
            )

        now = self._clock()
        order = Order.from_checkout(
            snapshot=snapshot,
            pricing=pricing,
            transaction_id=txn,
            payment_method=verification.payment_method or record.provider,
            now=now,
        )
        try:
            async with self._uow_factory() as uow:
                order = await uow.order_repository.add(order)
                record.mark_completed(order.id, provider_ref=verification.provider_ref, now=now)
                record.payment_method = verification.payment_method or record.payment_method
                if not await uow.payment_repository.complete_if_open(record):
                    raise _LostCompletionRace()
                if pricing.coupon_code:
                    consumed = await uow.discount_code_repository.mark_used(pricing.coupon_code, snapshot.user_id, now)
                    if not consumed:
                        raise _CouponAlreadyConsumed(pricing.coupon_code)
                await uow.commit()
        except (_LostCompletionRace, OrderAlreadyExistsException):
            logger.info("payment_reconcile_lost_race", transaction_id=txn)
            return await self._winner_outcome(txn)
        except _CouponAlreadyConsumed as exc:
            logger.warning("payment_coupon_already_consumed", transaction_id=txn, coupon_code=exc.code)
            return ReconcileOutcome.failure(
                txn,
                "COUPON_USED",
                "This discount code has already been used",
                status=PaymentStatus.PROCESSING.value,
                details={"coupon_code": exc.code},
            )
        except Exception as exc:
            logger.exception("payment_order_creation_failed", transaction_id=txn, error=str(exc))
            return ReconcileOutcome.failure(
                txn,
                "ORDER_CREATION_FAILED",
                "Payment received but the order could not be created, please retry",
                retry_allowed=True,
                status=PaymentStatus.PROCESSING.value,
            )

        # 快照在易失存储中，提交之后删除；删除前崩溃只会让快照自然过期
        await self._snapshots.delete(snapshot.session_id)
        logger.info(
            "payment_reconciled",
            transaction_id=txn,
            order_id=order.id,
            order_number=order.order_number,
            total=str(order.total),
            coupon_code=order.coupon_code,
        )
        return ReconcileOutcome.ok(txn, order.summary(), "Payment confirmed, order created")

    async def _load(self, transaction_id: str) -> Optional[PaymentRecord]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payment_repository.get_by_transaction_id(transaction_id)

    async def _move(
        self,
        record: PaymentRecord,
        target: PaymentStatus,
        *,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[ReconcileOutcome]:
        """
        持久化一次非完成类状态转换

        Returns:
            None 表示转换已写入（或无需写入）；否则记录已被并发终结，返回其终态结果
        """
        if record.status == target:
            return None
        now = self._clock()
        if target == PaymentStatus.PROCESSING:
            record.mark_processing(now)
        else:
            record.mark_failed(error_code, error_message, now)
        async with self._uow_factory() as uow:
            moved = await uow.payment_repository.transition_if_open(record)
        if moved:
            return None
        current = await self._load(record.transaction_id)
        if current is None:
            return ReconcileOutcome.failure(record.transaction_id, "PAYMENT_NOT_FOUND", "Payment not found")
        return await self._terminal_outcome(current)

    @staticmethod
    def _received_amount(verification: PaymentVerificationResult, record: PaymentRecord) -> Decimal:
        if verification.amount is not None:
            return verification.amount
        if verification.status == VerificationStatus.ALREADY_PROCESSED:
            # 网关只确认资源已被消费，不再回传金额：按发起支付时登记的金额核对
            logger.info("payment_already_processed_using_recorded_amount", transaction_id=record.transaction_id)
            return record.amount
        return Decimal("0")

    async def _resolve_snapshot(self, record: PaymentRecord, correlation_key: Optional[str]) -> Optional[CheckoutData]:
        """已绑定的会话是唯一来源；只有未绑定的记录才接受调用方提供的会话或按金额恢复"""
        if record.checkout_session_id:
            return await self._snapshots.retrieve(record.checkout_session_id)
        if correlation_key:
            snapshot = await self._snapshots.retrieve(correlation_key)
            if snapshot is not None:
                return snapshot
        # 尽力恢复：用户最近的会话里找金额一致的快照
        for key in await self._snapshots.sessions_for_user(record.user_id):
            snapshot = await self._snapshots.retrieve(key)
            if snapshot is None or snapshot.user_id != record.user_id:
                continue
            if abs(snapshot.final_total - record.amount) <= self._tolerance:
                logger.info("payment_checkout_recovered", transaction_id=record.transaction_id, session_id=key)
                return snapshot
        return None

    async def _terminal_outcome(self, record: PaymentRecord) -> ReconcileOutcome:
        txn = record.transaction_id
        if record.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            async with self._uow_factory(readonly=True) as uow:
                order = await uow.order_repository.get_by_payment_transaction_id(txn)
            if order is not None and record.status == PaymentStatus.COMPLETED:
                return ReconcileOutcome.ok(txn, order.summary(), "Payment already processed")
            return ReconcileOutcome.failure(
                txn,
                f"PAYMENT_{record.status.value.upper()}",
                f"Payment is {record.status.value}",
                status=record.status.value,
            )
        if record.status == PaymentStatus.FAILED:
            return ReconcileOutcome.failure(
                txn,
                record.error_code or "PAYMENT_FAILED",
                record.error_message or "Payment failed",
                status=record.status.value,
            )
        return ReconcileOutcome.failure(
            txn,
            "PAYMENT_CANCELLED",
            record.error_message or "Payment was cancelled",
            status=record.status.value,
        )

    async def _winner_outcome(self, transaction_id: str) -> ReconcileOutcome:
        record = await self._load(transaction_id)
        if record is None:
            return ReconcileOutcome.failure(transaction_id, "PAYMENT_NOT_FOUND", "Payment not found")
        if record.is_open:
            return ReconcileOutcome.failure(
                transaction_id,
                "RECONCILE_IN_PROGRESS",
                "This payment is already being processed, please retry shortly",
                retry_allowed=True,
                status=record.status.value,
            )
        return await self._terminal_outcome(record)
