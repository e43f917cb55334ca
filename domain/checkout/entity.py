"""
结账快照实体 - CheckoutData

一次结账尝试对应一个不可变快照：服务端重新计价后的商品、收货/账单信息
与价格明细，带有固定的过期时间（创建时间 + 固定窗口）。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from domain.common.exceptions import CheckoutValidationException, DomainValidationException
from domain.pricing.value_objects import CartLineItem, PricingResult


ADDRESS_REQUIRED_FIELDS = ("name", "email", "phone", "street", "city", "country", "identification")


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_address(payload: Mapping[str, Any], kind: str) -> dict:
    """校验收货/账单地址必填字段，返回浅拷贝"""
    if not isinstance(payload, Mapping):
        raise CheckoutValidationException(f"{kind} must be an object", field=kind)
    missing = [f for f in ADDRESS_REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
    if missing:
        raise CheckoutValidationException(
            f"Missing required {kind} fields: {', '.join(missing)}",
            field=kind,
            details={"missing": missing},
        )
    return dict(payload)


@dataclass(frozen=True)
class CheckoutData:
    """
    结账快照（不可变）

    业务规则：
    1. 创建后不可修改；新的结账尝试创建新的快照
    2. expires_at 在创建时确定，读取不会延长
    3. 支付成功或过期后删除
    """

    session_id: str
    user_id: str
    shipping_data: dict
    billing_data: dict
    items: tuple[CartLineItem, ...]
    totals: dict
    created_at: datetime
    expires_at: datetime
    discount_code: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.session_id:
            raise DomainValidationException("Checkout session id is required", field="session_id")
        if not self.items:
            raise CheckoutValidationException("Checkout must contain at least one item", field="items")
        for key in ("final_total", "subtotal_with_discounts", "iva_amount", "shipping_cost"):
            if key not in self.totals:
                raise CheckoutValidationException(f"Checkout totals missing {key}", field="totals")
        object.__setattr__(self, "created_at", _ensure_utc(self.created_at))
        object.__setattr__(self, "expires_at", _ensure_utc(self.expires_at))

    @classmethod
    def create(
        cls,
        *,
        session_id: str,
        user_id: str,
        shipping_data: Mapping[str, Any],
        billing_data: Mapping[str, Any],
        items: tuple[CartLineItem, ...],
        pricing: PricingResult,
        ttl_seconds: int,
        now: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> "CheckoutData":
        created = _ensure_utc(now or datetime.now(timezone.utc))
        return cls(
            session_id=session_id,
            user_id=str(user_id),
            shipping_data=validate_address(shipping_data, "shipping_data"),
            billing_data=validate_address(billing_data, "billing_data"),
            items=tuple(items),
            totals=pricing.to_dict(),
            created_at=created,
            expires_at=created + timedelta(seconds=ttl_seconds),
            discount_code=pricing.coupon_code,
            metadata=dict(metadata or {}),
        )

    @property
    def final_total(self) -> Decimal:
        return Decimal(str(self.totals["final_total"]))

    @property
    def ttl_seconds(self) -> int:
        return max(0, int((self.expires_at - self.created_at).total_seconds()))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _ensure_utc(now or datetime.now(timezone.utc)) >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "shipping_data": self.shipping_data,
            "billing_data": self.billing_data,
            "items": [i.to_dict() for i in self.items],
            "totals": self.totals,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "discount_code": self.discount_code,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CheckoutData":
        """从缓存数据恢复；结构损坏时抛出 DomainValidationException"""
        try:
            return cls(
                session_id=str(data["session_id"]),
                user_id=str(data["user_id"]),
                shipping_data=dict(data["shipping_data"]),
                billing_data=dict(data["billing_data"]),
                items=tuple(CartLineItem.from_dict(i) for i in data["items"]),
                totals=dict(data["totals"]),
                created_at=datetime.fromisoformat(data["created_at"]),
                expires_at=datetime.fromisoformat(data["expires_at"]),
                discount_code=data.get("discount_code"),
                metadata=dict(data.get("metadata") or {}),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise DomainValidationException(f"Corrupt checkout data: {exc}", field="checkout_data") from exc
