"""
Application service orchestrating payment use-cases.

This class depends only on the application ports (PaymentGateway,
CacheInterface-like dedupe store) and DTOs. Gateway implementations are
provided by infrastructure and injected from the composition root (API/tasks)
through ``gateway_factory``, keeping dependencies one-way.

Every confirmation path (redirect verification, webhook, retry task) ends in
``PaymentReconciler.reconcile``.
"""
from __future__ import annotations

import dataclasses
import hashlib
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from application.dtos.payments import (
    SIMULATED_REJECTION,
    CreateGatewayCheckout,
    CustomerInfo,
    GatewayCheckout,
    PaymentStatusView,
    StartPayment,
    VerifyPayment,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.checkout_service import CheckoutService
from application.services.payment_reconciler import PaymentReconciler, ReconcileOutcome
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, PaymentNotFoundException, SimulationDisabledException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentRecord, PaymentStatus
from domain.payment.verification import PaymentVerificationResult


logger = get_logger(__name__)

_RANDOM_ALPHABET = string.ascii_uppercase + string.digits
STALE_CANCEL_REASON = "expired: no confirmation received"


def generate_transaction_id(user_id: str, now: Optional[datetime] = None) -> str:
    """ORDER_{unix_ts}_{user_id}_{random}"""
    ts = int((now or datetime.now(timezone.utc)).timestamp())
    rand = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(8))
    return f"ORDER_{ts}_{user_id}_{rand}"


@dataclass(frozen=True)
class WebhookAck:
    """webhook 总是返回 200，kind 区分处理结果"""

    kind: str  # processed / duplicate / no_user_found / invalid_signature / invalid_payload
    provider: str
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    outcome: Optional[ReconcileOutcome] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "ack": self.kind,
            "provider": self.provider,
            "reference": self.reference,
            "transaction_id": self.transaction_id,
        }
        if self.outcome is not None:
            data.update(
                success=self.outcome.success,
                error_code=self.outcome.error_code,
                retry_allowed=self.outcome.retry_allowed,
            )
        return data


class PaymentService:
    def __init__(
        self,
        *,
        gateway_factory: Callable[[Optional[str]], PaymentGateway],
        uow_factory: Callable[..., AbstractUnitOfWork],
        reconciler: PaymentReconciler,
        checkout: CheckoutService,
        dedupe_cache: Any = None,
        dedupe_ttl_seconds: int = 300,
        simulation_allowed: bool = False,
        default_provider: str = "datafast",
        retry_scheduler: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._gateway_factory = gateway_factory
        self._uow_factory = uow_factory
        self._reconciler = reconciler
        self._checkout = checkout
        self._cache = dedupe_cache
        self._dedupe_ttl = max(60, int(dedupe_ttl_seconds))
        self._simulation_allowed = simulation_allowed
        self._default_provider = default_provider
        self._gateways: dict[str, PaymentGateway] = {}
        self._retry_scheduler = retry_scheduler

    def _gateway(self, provider: Optional[str]) -> PaymentGateway:
        name = (provider or self._default_provider).lower()
        if name not in self._gateways:
            self._gateways[name] = self._gateway_factory(name)
        return self._gateways[name]

    async def start_payment(self, user_id: str, req: StartPayment) -> GatewayCheckout:
        snapshot = await self._checkout.get_snapshot(user_id, req.session_id)
        provider = (req.provider or self._default_provider).lower()
        gateway = self._gateway(provider)
        txn = generate_transaction_id(str(user_id))
        currency = str(snapshot.totals.get("currency") or "USD")

        record = PaymentRecord(
            id=None,
            transaction_id=txn,
            user_id=str(user_id),
            provider=provider,
            amount=snapshot.final_total,
            currency=currency,
            checkout_session_id=snapshot.session_id,
        )
        async with self._uow_factory() as uow:
            record = await uow.payment_repository.add(record)

        logger.info(
            "payment_create_request",
            transaction_id=txn,
            provider=provider,
            amount=str(record.amount),
            session_id=snapshot.session_id,
        )
        try:
            checkout = await gateway.create_checkout(
                CreateGatewayCheckout(
                    transaction_id=txn,
                    user_id=str(user_id),
                    amount=record.amount,
                    currency=currency,
                    customer=CustomerInfo.from_billing(snapshot.billing_data),
                    metadata={"session_id": snapshot.session_id},
                )
            )
        except BusinessException as exc:
            record.mark_cancelled(f"gateway checkout failed: {exc.message}")
            async with self._uow_factory() as uow:
                await uow.payment_repository.transition_if_open(record)
            logger.error("payment_create_failed", transaction_id=txn, provider=provider, error=exc.message)
            raise

        record.checkout_id = checkout.checkout_id
        if checkout.internal_reference:
            record.update_metadata("internal_reference", checkout.internal_reference)
        async with self._uow_factory() as uow:
            await uow.payment_repository.update(record)
        logger.info("payment_create_response", transaction_id=txn, provider=provider, checkout_id=checkout.checkout_id)
        return checkout

    async def verify(self, user_id: str, req: VerifyPayment) -> ReconcileOutcome:
        record = await self._owned_record(user_id, req.transaction_id)
        if req.simulate_success is not None:
            # 真实网关创建的支付不能被模拟结果确认
            if not self._simulation_allowed or record.provider != "simulation":
                raise SimulationDisabledException()
            gateway = self._gateway("simulation")
            resource_path = None if req.simulate_success else SIMULATED_REJECTION
        else:
            gateway = self._gateway(record.provider)
            resource_path = req.resource_path

        logger.info("payment_verify_request", transaction_id=record.transaction_id, provider=gateway.provider)
        verification = await gateway.verify(record, resource_path=resource_path)
        outcome = await self._reconciler.reconcile(verification, req.session_id or record.checkout_session_id)
        self._schedule_retry(outcome)
        return outcome

    async def reverify(self, transaction_id: str) -> ReconcileOutcome:
        """重新向网关查询并对账（重试任务与人工复核使用）"""
        async with self._uow_factory(readonly=True) as uow:
            record = await uow.payment_repository.get_by_transaction_id(transaction_id)
        if record is None:
            return ReconcileOutcome.failure(transaction_id, "PAYMENT_NOT_FOUND", "Payment not found")
        if record.is_terminal:
            # 终态记录不再查询网关，对账直接返回已有结果
            return await self._reconciler.reconcile(PaymentVerificationResult.pending(transaction_id, record.provider))
        verification = await self._gateway(record.provider).verify(record)
        return await self._reconciler.reconcile(verification, record.checkout_session_id)

    async def handle_webhook(self, provider: str, headers: dict, body: bytes) -> WebhookAck:
        try:
            event = self._gateway(provider).parse_webhook(headers, body)
        except BusinessException as exc:
            kind = "invalid_signature" if exc.error_type == "PaymentSignatureError" else "invalid_payload"
            logger.warning("payment_webhook_rejected", provider=provider, kind=kind, error=exc.message)
            return WebhookAck(kind=kind, provider=provider)
        logger.info("payment_webhook_parsed", provider=provider, event_type=event.type, event_id=event.id)

        dedupe_key = None
        if self._cache is not None:
            body_hash = hashlib.sha256(body or b"{}").hexdigest()
            dedupe_key = f"webhook:{provider}:{event.reference}:{body_hash}"
            is_new = await self._cache.set(dedupe_key, 1, ttl=self._dedupe_ttl, nx=True)
            # set 失败（缓存不可用）时 get 也为空，此时照常处理：对账本身是幂等的
            if not is_new and await self._cache.get(dedupe_key) is not None:
                logger.info("webhook_duplicate_ignored", provider=provider, event_id=event.id)
                return WebhookAck(kind="duplicate", provider=provider, reference=event.reference)

        record = await self._find_webhook_record(provider, event.reference)
        if record is None:
            logger.warning("payment_webhook_unknown_reference", provider=provider, reference=event.reference)
            return WebhookAck(kind="no_user_found", provider=provider, reference=event.reference)

        verification = dataclasses.replace(event.verification, transaction_id=record.transaction_id)
        outcome = await self._reconciler.reconcile(verification, record.checkout_session_id)
        if outcome.retry_allowed and dedupe_key is not None:
            # 允许网关重投递时再次处理
            await self._cache.delete(dedupe_key)
        self._schedule_retry(outcome)
        return WebhookAck(
            kind="processed",
            provider=provider,
            reference=event.reference,
            transaction_id=record.transaction_id,
            outcome=outcome,
        )

    async def status(self, user_id: str, transaction_id: str) -> PaymentStatusView:
        record = await self._owned_record(user_id, transaction_id)
        return PaymentStatusView(
            transaction_id=record.transaction_id,
            provider=record.provider,
            status=record.status.value,
            amount=record.amount,
            currency=record.currency,
            checkout_id=record.checkout_id,
            order_id=record.order_id,
            error_code=record.error_code,
            error_message=record.error_message,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
        )

    async def cancel_stale(
        self,
        *,
        older_than_minutes: int,
        batch_size: int = 100,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        取消超时仍为 pending 的支付

        processing 表示网关已经回应过（超时、待确认），这类记录只由对账终结，
        否则稍后到达的成功确认会因为记录已取消而丢单。网关撤销失败（例如用户
        已付款）时保留本地记录，计入 error_count。
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=older_than_minutes)
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payment_repository.list_stale(cutoff, (PaymentStatus.PENDING,), limit=batch_size)

        cancelled, skipped, errors = 0, 0, 0
        for record in stale:
            if dry_run:
                logger.info("payment_cleanup_candidate", transaction_id=record.transaction_id, status=record.status.value)
                continue
            try:
                await self._gateway(record.provider).cancel(record, STALE_CANCEL_REASON)
                record.mark_cancelled(STALE_CANCEL_REASON, now)
                async with self._uow_factory() as uow:
                    moved = await uow.payment_repository.transition_if_open(
                        record, from_statuses=(PaymentStatus.PENDING,)
                    )
            except BusinessException as exc:
                errors += 1
                logger.error("payment_cleanup_failed", transaction_id=record.transaction_id, error=exc.message)
                continue
            if moved:
                cancelled += 1
            else:
                skipped += 1

        summary = {
            "found_count": len(stale),
            "cancelled_count": cancelled,
            "skipped_count": skipped,
            "error_count": errors,
            "dry_run": dry_run,
            "cutoff": cutoff.isoformat(),
        }
        logger.info("payment_cleanup_summary", **summary)
        return summary

    def _schedule_retry(self, outcome: ReconcileOutcome) -> None:
        if not outcome.retry_allowed or self._retry_scheduler is None:
            return
        self._retry_scheduler(outcome.transaction_id)
        logger.info("payment_reconcile_retry_scheduled", transaction_id=outcome.transaction_id, error_code=outcome.error_code)

    async def _owned_record(self, user_id: str, transaction_id: str) -> PaymentRecord:
        async with self._uow_factory(readonly=True) as uow:
            record = await uow.payment_repository.get_by_transaction_id(transaction_id)
        if record is None or record.user_id != str(user_id):
            raise PaymentNotFoundException(transaction_id)
        return record

    async def _find_webhook_record(self, provider: str, reference: str) -> Optional[PaymentRecord]:
        async with self._uow_factory(readonly=True) as uow:
            record = await uow.payment_repository.get_by_checkout_id(provider, reference)
            if record is None:
                record = await uow.payment_repository.get_by_transaction_id(reference)
        return record

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        for gateway in self._gateways.values():
            close = getattr(gateway, "aclose", None)
            if callable(close):
                await close()
        self._gateways.clear()
