"""Pricing domain exports."""
from .engine import PricingEngine
from .value_objects import (
    CartLineItem,
    CouponRejection,
    DiscountContext,
    ItemBreakdown,
    PricingPolicy,
    PricingResult,
    ShippingBreakdown,
    ShippingPolicy,
    VolumeTier,
)

__all__ = [
    "PricingEngine",
    "CartLineItem",
    "CouponRejection",
    "DiscountContext",
    "ItemBreakdown",
    "PricingPolicy",
    "PricingResult",
    "ShippingBreakdown",
    "ShippingPolicy",
    "VolumeTier",
]
