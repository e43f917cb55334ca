"""
Where the items of a checkout come from, resolved once at the entry point.

Pricing operates on the resulting item list the same way regardless of the
variant, so downstream code never inspects payload shapes to guess.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from domain.checkout.entity import CheckoutData
from domain.pricing.value_objects import CartLineItem


@dataclass(frozen=True)
class FromSnapshot:
    snapshot: CheckoutData

    @property
    def user_id(self) -> str:
        return self.snapshot.user_id

    @property
    def items(self) -> tuple[CartLineItem, ...]:
        return self.snapshot.items

    @property
    def coupon_code(self) -> Optional[str]:
        return self.snapshot.discount_code


@dataclass(frozen=True)
class FromPersistedCart:
    user_id: str
    items: tuple[CartLineItem, ...]
    coupon_code: Optional[str] = None


CheckoutSource = Union[FromSnapshot, FromPersistedCart]
