"""
Prices a checkout source against authoritative server data.

Both checkout-intent creation and payment reconciliation go through here, so
the coupon is loaded and the engine is called the same way on every path.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from domain.checkout.source import CheckoutSource
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.pricing import DiscountContext, PricingEngine, PricingResult


async def price_checkout(
    source: CheckoutSource,
    *,
    engine: PricingEngine,
    uow_factory: Callable[..., AbstractUnitOfWork],
    now: datetime,
) -> PricingResult:
    code = (source.coupon_code or "").strip().upper() or None
    coupon = None
    if code:
        async with uow_factory(readonly=True) as uow:
            coupon = await uow.discount_code_repository.get_by_code(code)
    context = DiscountContext(user_id=source.user_id, now=now, coupon_code=code, coupon=coupon)
    return engine.compute_totals(source.items, context)
