"""
服务装配 - API 依赖与 Celery 任务共用的组合根
"""
from __future__ import annotations

from typing import Optional

from application.services.checkout_service import CheckoutService
from application.services.payment_reconciler import PaymentReconciler
from application.services.payment_service import PaymentService
from core.config import settings
from core.settings import payment_settings
from domain.common.exceptions import BusinessException
from domain.pricing import PricingEngine
from infrastructure.cache.checkout_snapshot_store import CacheCheckoutSnapshotStore
from infrastructure.external.cache import CacheInterface, get_redis_client
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import get_transaction_locker
from infrastructure.unit_of_work import uow_factory
from shared.codes import BusinessCode


def _require_cache(cache: Optional[CacheInterface]) -> CacheInterface:
    cache = cache or get_redis_client()
    if cache is None:
        raise BusinessException(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message="Checkout storage is unavailable",
            error_type="ServiceUnavailable",
        )
    return cache


def build_snapshot_store(cache: Optional[CacheInterface] = None) -> CacheCheckoutSnapshotStore:
    cfg = settings.checkout
    return CacheCheckoutSnapshotStore(
        _require_cache(cache),
        key_prefix=cfg.key_prefix,
        session_cap=cfg.session_index_cap,
    )


def build_pricing_engine() -> PricingEngine:
    return PricingEngine(settings.pricing.to_policy())


def build_checkout_service(cache: Optional[CacheInterface] = None) -> CheckoutService:
    return CheckoutService(
        uow_factory=uow_factory,
        snapshot_store=build_snapshot_store(cache),
        pricing_engine=build_pricing_engine(),
        ttl_seconds=settings.checkout.snapshot_ttl_seconds,
        max_seller_discount_pct=settings.pricing.max_seller_discount_pct,
    )


def build_reconciler(cache: Optional[CacheInterface] = None) -> PaymentReconciler:
    return PaymentReconciler(
        uow_factory=uow_factory,
        snapshot_store=build_snapshot_store(cache),
        pricing_engine=build_pricing_engine(),
        locker=get_transaction_locker(),
        amount_tolerance=payment_settings.reconciliation.amount_tolerance,
    )


def _retry_scheduler():
    if not payment_settings.reconciliation.schedule_retries:
        return None
    from infrastructure.tasks.utils.dispatcher import TaskDispatcher

    return TaskDispatcher().schedule_reconcile_retry


def build_payment_service(cache: Optional[CacheInterface] = None) -> PaymentService:
    cache = _require_cache(cache)
    return PaymentService(
        gateway_factory=get_payment_gateway,
        uow_factory=uow_factory,
        reconciler=build_reconciler(cache),
        checkout=build_checkout_service(cache),
        dedupe_cache=cache,
        dedupe_ttl_seconds=payment_settings.webhook.tolerance_seconds,
        simulation_allowed=payment_settings.simulation_allowed,
        default_provider=payment_settings.default_provider,
        retry_scheduler=_retry_scheduler(),
    )
