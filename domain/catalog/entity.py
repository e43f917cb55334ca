"""
商品目录实体 - 结账时的单价、卖家与卖家折扣只从这里读取
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.pricing.value_objects import CartLineItem, to_decimal


HUNDRED = Decimal("100")


@dataclass
class Product:
    product_id: str
    seller_id: str
    price: Decimal
    name: str = ""
    seller_discount_pct: Decimal = Decimal("0")
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.price = to_decimal(self.price)
        self.seller_discount_pct = to_decimal(self.seller_discount_pct)
        if self.price <= 0:
            raise DomainValidationException(f"Product price must be positive: {self.price}", field="price")
        if not (0 <= self.seller_discount_pct <= HUNDRED):
            raise DomainValidationException(
                f"Seller discount out of range: {self.seller_discount_pct}", field="seller_discount_pct"
            )

    def line_item(self, quantity: int, attributes: Optional[dict[str, Any]] = None) -> CartLineItem:
        return CartLineItem(
            product_id=self.product_id,
            seller_id=self.seller_id,
            quantity=quantity,
            unit_price=self.price,
            seller_discount_pct=self.seller_discount_pct,
            attributes=dict(attributes or {}),
        )
