"""Builders for checkout snapshots and payment records used across tests."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.catalog.entity import Product
from domain.checkout.entity import CheckoutData
from domain.payment.entity import PaymentRecord, PaymentStatus
from domain.pricing import CartLineItem, DiscountContext, PricingEngine
from infrastructure.unit_of_work import uow_factory


ADDRESS = {
    "name": "Ana Torres",
    "email": "ana@example.com",
    "phone": "0999999999",
    "street": "Av. Amazonas 123",
    "city": "Quito",
    "country": "EC",
    "identification": "1710034065",
}

WORKED_ITEMS = (
    CartLineItem(product_id="p1", seller_id="s1", quantity=12, unit_price=Decimal("10.00")),
    CartLineItem(product_id="p2", seller_id="s1", quantity=3, unit_price=Decimal("20.00")),
)

CATALOG = (
    Product(product_id="p1", seller_id="s1", name="Camiseta", price=Decimal("10.00")),
    Product(product_id="p2", seller_id="s1", name="Gorra", price=Decimal("20.00")),
)

# 购物车请求只带商品与数量，金额来自 CATALOG
CART = [
    {"product_id": "p1", "quantity": 12},
    {"product_id": "p2", "quantity": 3},
]


async def seed_catalog(products=CATALOG):
    async with uow_factory() as uow:
        for product in products:
            await uow.product_repository.add(product)


def make_snapshot(
    engine: PricingEngine,
    now: datetime,
    *,
    session_id: str = "sess_0001",
    user_id: str = "u1",
    ttl: int = 1800,
    items: tuple = WORKED_ITEMS,
    coupon=None,
) -> CheckoutData:
    context = DiscountContext(user_id=user_id, now=now, coupon_code=coupon.code if coupon else None, coupon=coupon)
    pricing = engine.compute_totals(items, context)
    return CheckoutData.create(
        session_id=session_id,
        user_id=user_id,
        shipping_data=ADDRESS,
        billing_data=ADDRESS,
        items=items,
        pricing=pricing,
        ttl_seconds=ttl,
        now=now,
    )


def make_record(
    transaction_id: str = "ORDER_1792324800_u1_ABCD1234",
    *,
    user_id: str = "u1",
    amount: str = "178.88",
    provider: str = "simulation",
    status: PaymentStatus = PaymentStatus.PENDING,
    checkout_id: Optional[str] = None,
    session_id: Optional[str] = "sess_0001",
    created_at: Optional[datetime] = None,
) -> PaymentRecord:
    return PaymentRecord(
        id=None,
        transaction_id=transaction_id,
        user_id=user_id,
        provider=provider,
        amount=Decimal(amount),
        currency="USD",
        status=status,
        checkout_id=checkout_id,
        checkout_session_id=session_id,
        created_at=created_at,
    )
