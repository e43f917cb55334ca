"""
折扣码实体 - feedback 奖励码与管理员优惠券
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class DiscountScope(str, Enum):
    """折扣码来源"""
    FEEDBACK = "feedback"  # 用户反馈审核通过后生成，仅限本人使用
    COUPON = "coupon"      # 管理员发放，任何用户可用


class CouponRejectionReason(str, Enum):
    INVALID = "invalid"
    USED = "used"
    EXPIRED = "expired"
    NOT_OWNER = "not_owner"
    NOT_APPLICABLE = "not_applicable"


REJECTION_MESSAGES = {
    CouponRejectionReason.INVALID: "Invalid discount code",
    CouponRejectionReason.USED: "This discount code has already been used",
    CouponRejectionReason.EXPIRED: "This discount code has expired",
    CouponRejectionReason.NOT_OWNER: "This discount code is not valid for your account",
    CouponRejectionReason.NOT_APPLICABLE: "This discount code does not apply to the items in your cart",
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class DiscountCode:
    """
    折扣码聚合

    业务规则：
    1. 百分比必须在 (0, 100] 区间
    2. feedback 码只能由所属用户使用
    3. 单次使用的码被标记使用后不可再次使用
    4. 过期时间之后不可使用
    """

    id: Optional[int]
    code: str
    percentage: Decimal
    scope: DiscountScope
    owner_user_id: Optional[str] = None
    single_use: bool = True
    is_used: bool = False
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    product_ids: tuple[str, ...] = field(default_factory=tuple)
    seller_ids: tuple[str, ...] = field(default_factory=tuple)
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.code = (self.code or "").strip().upper()
        if not self.code:
            raise DomainValidationException("Discount code must not be empty", field="code")
        self.percentage = Decimal(str(self.percentage))
        if self.percentage <= 0 or self.percentage > 100:
            raise DomainValidationException(
                f"Discount percentage out of range: {self.percentage}",
                field="percentage",
            )
        self.scope = DiscountScope(self.scope)
        if self.scope == DiscountScope.FEEDBACK and not self.owner_user_id:
            raise DomainValidationException("Feedback codes require an owner", field="owner_user_id")
        self.product_ids = tuple(str(p) for p in self.product_ids or ())
        self.seller_ids = tuple(str(s) for s in self.seller_ids or ())
        self.expires_at = _ensure_utc(self.expires_at)
        self.used_at = _ensure_utc(self.used_at)
        self.created_at = _ensure_utc(self.created_at)

    @property
    def is_scoped(self) -> bool:
        return bool(self.product_ids or self.seller_ids)

    def applies_to(self, product_id: str, seller_id: str) -> bool:
        if not self.is_scoped:
            return True
        return product_id in self.product_ids or seller_id in self.seller_ids

    def check_usable(self, user_id: Optional[str], now: datetime) -> Optional[CouponRejectionReason]:
        """Return the rejection reason, or None when the code can be applied."""
        if self.single_use and self.is_used:
            return CouponRejectionReason.USED
        if self.expires_at is not None and _ensure_utc(now) >= self.expires_at:
            return CouponRejectionReason.EXPIRED
        if self.scope == DiscountScope.FEEDBACK and str(user_id) != str(self.owner_user_id):
            return CouponRejectionReason.NOT_OWNER
        return None

    def mark_used(self, user_id: str, now: Optional[datetime] = None) -> None:
        if self.single_use and self.is_used:
            raise DomainValidationException(
                REJECTION_MESSAGES[CouponRejectionReason.USED],
                field="code",
            )
        self.is_used = True
        self.used_by = str(user_id)
        self.used_at = _ensure_utc(now) or datetime.now(timezone.utc)
