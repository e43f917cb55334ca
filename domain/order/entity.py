"""
订单实体 - 由对账成功的支付创建，每笔支付最多一个订单
"""
from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from domain.checkout.entity import CheckoutData
from domain.pricing.value_objects import PricingResult


ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-{YYYYmmddHHMMSS}-{4位随机}"""
    ts = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
    return f"ORD-{ts}-{suffix}"


@dataclass
class OrderItem:
    product_id: str
    seller_id: str
    quantity: int
    unit_price: Decimal
    final_unit_price: Decimal
    subtotal: Decimal
    seller_discount_pct: Decimal = Decimal("0")
    volume_discount_pct: Decimal = Decimal("0")
    attributes: dict = field(default_factory=dict)
    id: Optional[int] = None


@dataclass
class Order:
    """
    订单聚合

    金额字段全部取自服务端重新计算的 PricingResult，而不是客户端或网关回传的值。
    """

    id: Optional[int]
    order_number: str
    user_id: str
    payment_transaction_id: str
    payment_method: Optional[str]
    currency: str
    subtotal_original: Decimal
    subtotal_with_discounts: Decimal
    coupon_code: Optional[str]
    coupon_discount_amount: Decimal
    iva_amount: Decimal
    shipping_cost: Decimal
    total: Decimal
    shipping_data: dict
    billing_data: dict
    shipping_breakdown: dict = field(default_factory=dict)
    items: list[OrderItem] = field(default_factory=list)
    status: str = "paid"
    created_at: Optional[datetime] = None

    @classmethod
    def from_checkout(
        cls,
        *,
        snapshot: CheckoutData,
        pricing: PricingResult,
        transaction_id: str,
        payment_method: Optional[str],
        now: Optional[datetime] = None,
    ) -> "Order":
        created = now or datetime.now(timezone.utc)
        attributes = {(i.product_id, i.seller_id): dict(i.attributes) for i in snapshot.items}
        return cls(
            id=None,
            order_number=generate_order_number(created),
            user_id=snapshot.user_id,
            payment_transaction_id=transaction_id,
            payment_method=payment_method,
            currency=pricing.currency,
            subtotal_original=pricing.subtotal_original,
            subtotal_with_discounts=pricing.subtotal_with_discounts,
            coupon_code=pricing.coupon_code,
            coupon_discount_amount=pricing.coupon_discount_amount,
            iva_amount=pricing.iva_amount,
            shipping_cost=pricing.shipping_cost,
            total=pricing.final_total,
            shipping_data=dict(snapshot.shipping_data),
            billing_data=dict(snapshot.billing_data),
            shipping_breakdown=pricing.shipping_breakdown.to_dict(),
            items=[
                OrderItem(
                    product_id=line.product_id,
                    seller_id=line.seller_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    final_unit_price=line.final_unit_price,
                    subtotal=line.subtotal,
                    seller_discount_pct=line.seller_discount_pct,
                    volume_discount_pct=line.volume_discount_pct,
                    attributes=attributes.get((line.product_id, line.seller_id), {}),
                )
                for line in pricing.items
            ],
            created_at=created,
        )

    def summary(self) -> dict:
        return {
            "order_id": self.id,
            "order_number": self.order_number,
            "total": str(self.total),
            "currency": self.currency,
            "status": self.status,
        }
