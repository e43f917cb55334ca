"""
支付领域实体 - 支付记录聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException, InvalidPaymentTransitionException


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"           # 已创建网关结账，等待支付
    PROCESSING = "processing"     # 对账进行中
    COMPLETED = "completed"       # 已完成并关联订单
    FAILED = "failed"             # 网关拒绝
    CANCELLED = "cancelled"       # 超时清理或用户取消
    REFUNDED = "refunded"         # 已退款


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.PROCESSING: frozenset(
        {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class PaymentRecord:
    """
    支付记录聚合根 - 一次支付尝试的状态机

    业务规则：
    1. transaction_id 全局唯一，由调用方生成
    2. 金额必须大于0
    3. 状态只能按 ALLOWED_TRANSITIONS 转换，状态变化是唯一的修改途径
    4. completed 必须关联订单；failed 记录错误码与信息
    5. completed/failed/cancelled 之后对账为无副作用的空操作
    """

    id: Optional[int]
    transaction_id: str
    user_id: str
    provider: str  # datafast, deuna, simulation
    amount: Decimal
    currency: str  # ISO-4217
    status: PaymentStatus = PaymentStatus.PENDING

    # 网关侧标识
    checkout_id: Optional[str] = None      # 网关结账/会话ID
    provider_ref: Optional[str] = None     # 网关交易ID
    checkout_session_id: Optional[str] = None  # 结账快照键
    payment_method: Optional[str] = None

    order_id: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.transaction_id:
            raise DomainValidationException("交易号不能为空", field="transaction_id")
        self.amount = Decimal(str(self.amount))
        if self.amount <= 0:
            raise DomainValidationException(f"支付金额必须大于0: {self.amount}", field="amount")
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"无效的货币代码: {self.currency}", field="currency")
        self.currency = self.currency.upper()
        self.status = PaymentStatus(self.status)
        self.user_id = str(self.user_id)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        if self.metadata is None:
            self.metadata = {}

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_open

    def can_transition(self, target: PaymentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def _transition(self, target: PaymentStatus, now: Optional[datetime] = None) -> datetime:
        if not self.can_transition(target):
            raise InvalidPaymentTransitionException(self.transaction_id, self.status.value, target.value)
        self.status = target
        self.updated_at = _ensure_utc(now) or datetime.now(timezone.utc)
        return self.updated_at

    def mark_processing(self, now: Optional[datetime] = None) -> None:
        """开始对账：pending -> processing"""
        self._transition(PaymentStatus.PROCESSING, now)

    def mark_completed(self, order_id: int, provider_ref: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """
        标记完成并关联订单

        持久化时必须使用仓储的条件更新（complete_if_open），实体方法只保证内存状态一致
        """
        if order_id is None:
            raise DomainValidationException("完成的支付必须关联订单", field="order_id")
        self.completed_at = self._transition(PaymentStatus.COMPLETED, now)
        self.order_id = order_id
        if provider_ref:
            self.provider_ref = provider_ref
        self.error_code = None
        self.error_message = None

    def mark_failed(self, error_code: Optional[str], error_message: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """网关拒绝：记录错误码与信息"""
        self._transition(PaymentStatus.FAILED, now)
        self.error_code = error_code or "PAYMENT_REJECTED"
        self.error_message = error_message

    def mark_cancelled(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        self._transition(PaymentStatus.CANCELLED, now)
        if reason:
            self.error_message = reason

    def mark_refunded(self, now: Optional[datetime] = None) -> None:
        self._transition(PaymentStatus.REFUNDED, now)

    def update_metadata(self, key: str, value: Any) -> None:
        """更新元数据"""
        if self.metadata is None:
            self.metadata = {}
        self.metadata[key] = value
        self.updated_at = datetime.now(timezone.utc)
