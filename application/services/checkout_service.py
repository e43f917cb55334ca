"""
结账应用服务 - 服务端重新计价并保存结账快照

购物车行只携带 product_id 与数量；单价、卖家和卖家折扣在这里从商品目录解析，
客户端提交的价格不会进入计价。
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from application.dtos.checkout import CartItemIn, CheckoutIntentResult, CreateCheckoutIntent, QuoteRequest
from application.services.pricing_service import price_checkout
from core.logging_config import get_logger
from domain.checkout.entity import CheckoutData
from domain.checkout.source import FromPersistedCart
from domain.checkout.store import CheckoutSnapshotStore
from domain.common.exceptions import (
    CheckoutNotFoundException,
    CheckoutValidationException,
    CouponRejectedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.discount.entity import CouponRejectionReason
from domain.pricing import CartLineItem, CouponRejection, PricingEngine, PricingResult
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)

COUPON_CODES = {
    CouponRejectionReason.INVALID: PaymentCode.COUPON_INVALID,
    CouponRejectionReason.USED: PaymentCode.COUPON_USED,
    CouponRejectionReason.EXPIRED: PaymentCode.COUPON_EXPIRED,
    CouponRejectionReason.NOT_OWNER: PaymentCode.COUPON_NOT_OWNER,
    CouponRejectionReason.NOT_APPLICABLE: PaymentCode.COUPON_NOT_APPLICABLE,
}


def coupon_exception(rejection: CouponRejection) -> CouponRejectedException:
    return CouponRejectedException(COUPON_CODES[rejection.reason], rejection.message, rejection.code)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutService:
    """结账应用服务 - 编排计价引擎与快照存储"""

    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        snapshot_store: CheckoutSnapshotStore,
        pricing_engine: PricingEngine,
        ttl_seconds: int = 1800,
        max_seller_discount_pct: Decimal = Decimal("90"),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._snapshots = snapshot_store
        self._engine = pricing_engine
        self._ttl = ttl_seconds
        self._max_seller_discount = Decimal(str(max_seller_discount_pct))
        self._clock = clock

    async def quote(self, user_id: str, req: QuoteRequest) -> PricingResult:
        """只计价不落库；优惠券被拒时作为结果的一部分返回"""
        items = await self.resolve_items(req.items)
        source = FromPersistedCart(user_id=str(user_id), items=items, coupon_code=req.discount_code)
        return await price_checkout(source, engine=self._engine, uow_factory=self._uow_factory, now=self._clock())

    async def create_intent(self, user_id: str, req: CreateCheckoutIntent) -> CheckoutIntentResult:
        user_id = str(user_id)
        existing = await self._snapshots.retrieve(req.session_id)
        if existing is not None and existing.user_id != user_id:
            raise CheckoutValidationException("Checkout session id is already in use", field="session_id")

        now = self._clock()
        items = await self.resolve_items(req.items)
        source = FromPersistedCart(user_id=user_id, items=items, coupon_code=req.discount_code)
        pricing = await price_checkout(source, engine=self._engine, uow_factory=self._uow_factory, now=now)
        if pricing.coupon_rejection is not None:
            logger.info(
                "checkout_coupon_rejected",
                user_id=user_id,
                coupon_code=pricing.coupon_rejection.code,
                reason=pricing.coupon_rejection.reason.value,
            )
            raise coupon_exception(pricing.coupon_rejection)

        snapshot = CheckoutData.create(
            session_id=req.session_id,
            user_id=user_id,
            shipping_data=req.shipping_data,
            billing_data=req.billing_data or req.shipping_data,
            items=source.items,
            pricing=pricing,
            ttl_seconds=self._ttl,
            now=now,
        )
        await self._snapshots.store(snapshot)
        logger.info(
            "checkout_intent_created",
            session_id=snapshot.session_id,
            user_id=user_id,
            final_total=str(pricing.final_total),
            item_count=len(snapshot.items),
        )
        return CheckoutIntentResult(
            session_id=snapshot.session_id,
            expires_at=snapshot.expires_at,
            final_total=pricing.final_total,
            currency=pricing.currency,
            totals=snapshot.totals,
        )

    async def resolve_items(self, cart: Sequence[CartItemIn]) -> tuple[CartLineItem, ...]:
        """
        按商品目录解析购物车行

        Raises:
            CheckoutValidationException: 商品不存在、已下架或卖家折扣超出上限
        """
        if not cart:
            return ()
        async with self._uow_factory(readonly=True) as uow:
            products = await uow.product_repository.get_many(i.product_id for i in cart)

        unavailable = sorted(
            {i.product_id for i in cart if i.product_id not in products or not products[i.product_id].is_active}
        )
        if unavailable:
            logger.info("checkout_products_unavailable", product_ids=unavailable)
            raise CheckoutValidationException(
                "Some products are no longer available",
                field="items",
                details={"product_ids": unavailable},
            )

        lines = []
        for item in cart:
            product = products[item.product_id]
            if product.seller_discount_pct > self._max_seller_discount:
                logger.warning(
                    "checkout_seller_discount_over_limit",
                    product_id=product.product_id,
                    seller_discount_pct=str(product.seller_discount_pct),
                )
                raise CheckoutValidationException(
                    f"Seller discount must be at most {self._max_seller_discount}%",
                    field="items",
                    details={"product_ids": [product.product_id]},
                )
            lines.append(product.line_item(item.quantity, item.attributes))
        return tuple(lines)

    async def get_snapshot(self, user_id: str, session_id: Optional[str]) -> CheckoutData:
        snapshot = await self._snapshots.retrieve(session_id) if session_id else None
        if snapshot is None or snapshot.user_id != str(user_id):
            raise CheckoutNotFoundException(session_id)
        return snapshot
