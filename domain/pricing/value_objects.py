"""
Pricing value objects: engine inputs, policy and the itemized result.

Money is carried as Decimal. Values inside the engine stay unrounded; only
the aggregate fields of PricingResult are quantized to minor units.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional

from domain.common.exceptions import DomainValidationException
from domain.discount.entity import (
    CouponRejectionReason,
    DiscountCode,
    REJECTION_MESSAGES,
)


CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLineItem:
    product_id: str
    seller_id: str
    quantity: int
    unit_price: Decimal
    seller_discount_pct: Decimal = ZERO
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "product_id", str(self.product_id))
        object.__setattr__(self, "seller_id", str(self.seller_id))
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        object.__setattr__(self, "seller_discount_pct", to_decimal(self.seller_discount_pct))
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool) or self.quantity <= 0:
            raise DomainValidationException(
                f"Quantity must be a positive integer: {self.quantity}",
                field="quantity",
            )
        if self.unit_price < 0:
            raise DomainValidationException(f"Unit price must not be negative: {self.unit_price}", field="unit_price")
        if self.seller_discount_pct < 0 or self.seller_discount_pct > HUNDRED:
            raise DomainValidationException(
                f"Seller discount out of range: {self.seller_discount_pct}",
                field="seller_discount_pct",
            )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "seller_id": self.seller_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "seller_discount_pct": str(self.seller_discount_pct),
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartLineItem":
        return cls(
            product_id=data["product_id"],
            seller_id=data["seller_id"],
            quantity=int(data["quantity"]),
            unit_price=to_decimal(data["unit_price"]),
            seller_discount_pct=to_decimal(data.get("seller_discount_pct", "0")),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True)
class VolumeTier:
    min_quantity: int
    percentage: Decimal

    def __post_init__(self):
        object.__setattr__(self, "percentage", to_decimal(self.percentage))
        if self.min_quantity <= 0:
            raise DomainValidationException("Tier threshold must be positive", field="min_quantity")
        if self.percentage < 0 or self.percentage > HUNDRED:
            raise DomainValidationException("Tier percentage out of range", field="percentage")


@dataclass(frozen=True)
class ShippingPolicy:
    enabled: bool = True
    default_cost: Decimal = Decimal("5.00")
    free_threshold: Optional[Decimal] = Decimal("50.00")
    single_seller_pct: Decimal = Decimal("80")
    multi_seller_pct: Decimal = Decimal("40")


@dataclass(frozen=True)
class PricingPolicy:
    """Configuration inputs to the engine; built from settings at the edges."""

    tax_rate: Decimal = Decimal("15")
    volume_tiers: tuple[VolumeTier, ...] = ()
    shipping: ShippingPolicy = field(default_factory=ShippingPolicy)
    currency: str = "USD"


@dataclass(frozen=True)
class DiscountContext:
    """
    Per-call discount inputs.

    ``coupon`` is the code as loaded by the caller (None when ``coupon_code``
    does not exist); ``now`` is the instant against which expiry is judged,
    which keeps the engine free of clocks.
    """

    user_id: Optional[str]
    now: datetime
    coupon_code: Optional[str] = None
    coupon: Optional[DiscountCode] = None


@dataclass(frozen=True)
class CouponRejection:
    code: str
    reason: CouponRejectionReason

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self.reason]

    def to_dict(self) -> dict:
        return {"code": self.code, "reason": self.reason.value, "message": self.message}


@dataclass(frozen=True)
class ItemBreakdown:
    product_id: str
    seller_id: str
    quantity: int
    unit_price: Decimal
    seller_discount_pct: Decimal
    volume_discount_pct: Decimal
    final_unit_price: Decimal
    subtotal: Decimal
    seller_savings: Decimal
    volume_savings: Decimal

    @property
    def total_savings(self) -> Decimal:
        return self.seller_savings + self.volume_savings

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "seller_id": self.seller_id,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "seller_discount_pct": str(self.seller_discount_pct),
            "volume_discount_pct": str(self.volume_discount_pct),
            "final_unit_price": str(self.final_unit_price),
            "subtotal": str(self.subtotal),
            "seller_savings": str(self.seller_savings),
            "volume_savings": str(self.volume_savings),
            "total_savings": str(self.total_savings),
        }


@dataclass(frozen=True)
class SellerShippingShare:
    seller_id: str
    amount: Decimal


@dataclass(frozen=True)
class ShippingBreakdown:
    total: Decimal
    seller_count: int
    seller_percentage: Decimal
    shares: tuple[SellerShippingShare, ...]
    seller_amount: Decimal
    platform_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "total": str(self.total),
            "seller_count": self.seller_count,
            "seller_percentage": str(self.seller_percentage),
            "shares": [{"seller_id": s.seller_id, "amount": str(s.amount)} for s in self.shares],
            "seller_amount": str(self.seller_amount),
            "platform_amount": str(self.platform_amount),
        }


@dataclass(frozen=True)
class PricingResult:
    currency: str
    subtotal_original: Decimal
    subtotal_with_discounts: Decimal
    seller_discount_total: Decimal
    volume_discount_total: Decimal
    coupon_code: Optional[str]
    coupon_discount_percentage: Decimal
    coupon_discount_amount: Decimal
    iva_rate: Decimal
    iva_amount: Decimal
    shipping_cost: Decimal
    shipping_breakdown: ShippingBreakdown
    final_total: Decimal
    items: tuple[ItemBreakdown, ...]
    coupon_rejection: Optional[CouponRejection] = None

    @property
    def total_savings(self) -> Decimal:
        return self.seller_discount_total + self.volume_discount_total + self.coupon_discount_amount

    def to_dict(self) -> dict:
        return {
            "currency": self.currency,
            "subtotal_original": str(self.subtotal_original),
            "subtotal_with_discounts": str(self.subtotal_with_discounts),
            "seller_discount_total": str(self.seller_discount_total),
            "volume_discount_total": str(self.volume_discount_total),
            "coupon_code": self.coupon_code,
            "coupon_discount_percentage": str(self.coupon_discount_percentage),
            "coupon_discount_amount": str(self.coupon_discount_amount),
            "iva_rate": str(self.iva_rate),
            "iva_amount": str(self.iva_amount),
            "shipping_cost": str(self.shipping_cost),
            "shipping_breakdown": self.shipping_breakdown.to_dict(),
            "final_total": str(self.final_total),
            "total_savings": str(self.total_savings),
            "items": [i.to_dict() for i in self.items],
            "coupon_rejection": self.coupon_rejection.to_dict() if self.coupon_rejection else None,
        }
