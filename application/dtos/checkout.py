"""
Checkout DTOs (Pydantic v2): cart input validation happens here, before the
pricing engine ever sees an item.

A cart line only names a product and a quantity. Price, seller and seller
discount come from the product catalog; anything else a client sends on an
item (price, seller_id, discounts) is ignored.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from core.config import settings


class CartItemIn(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(ge=1)
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("quantity")
    @classmethod
    def _max_quantity(cls, v: int) -> int:
        limit = settings.checkout.max_quantity_per_item
        if v > limit:
            raise ValueError(f"quantity must be at most {limit}")
        return v


def _check_item_count(items: list[CartItemIn]) -> list[CartItemIn]:
    limit = settings.checkout.max_items
    if len(items) > limit:
        raise ValueError(f"a cart holds at most {limit} items")
    return items


class QuoteRequest(BaseModel):
    items: list[CartItemIn] = Field(default_factory=list)
    discount_code: Optional[str] = Field(default=None, max_length=64)

    @field_validator("items")
    @classmethod
    def _items_limit(cls, v: list[CartItemIn]) -> list[CartItemIn]:
        return _check_item_count(v)


class CreateCheckoutIntent(BaseModel):
    session_id: str = Field(min_length=8, max_length=128, pattern=r"^[A-Za-z0-9_\-]+$")
    items: list[CartItemIn] = Field(min_length=1)
    shipping_data: dict[str, Any]
    billing_data: Optional[dict[str, Any]] = None  # 缺省时与收货信息相同
    discount_code: Optional[str] = Field(default=None, max_length=64)

    @field_validator("items")
    @classmethod
    def _items_limit(cls, v: list[CartItemIn]) -> list[CartItemIn]:
        return _check_item_count(v)


class CheckoutIntentResult(BaseModel):
    session_id: str
    expires_at: datetime
    final_total: Decimal
    currency: str
    totals: dict[str, Any]
