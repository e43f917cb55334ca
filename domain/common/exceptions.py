"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class InvalidPaymentTransitionException(BusinessException):
    def __init__(self, transaction_id: str, current: str, target: str):
        super().__init__(
            code=PaymentCode.INVALID_TRANSITION,
            message=f"Cannot move payment {transaction_id} from {current} to {target}",
            error_type="InvalidPaymentTransition",
            details={"transaction_id": transaction_id, "current": current, "target": target},
            field="status",
            message_key="payment.transition.invalid",
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message="Payment not found",
            error_type="PaymentNotFound",
            details={"transaction_id": transaction_id},
            message_key="payment.not_found",
        )


class PaymentAlreadyExistsException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_ALREADY_EXISTS,
            message=f"Payment {transaction_id} already exists",
            error_type="PaymentAlreadyExists",
            details={"transaction_id": transaction_id},
            message_key="payment.already_exists",
        )


class CheckoutNotFoundException(BusinessException):
    """Snapshot missing or expired; the two cases are intentionally indistinguishable."""

    def __init__(self, session_id: Optional[str] = None):
        super().__init__(
            code=PaymentCode.CHECKOUT_EXPIRED,
            message="Checkout session expired, please restart checkout",
            error_type="CheckoutExpired",
            details={"session_id": session_id} if session_id else None,
            message_key="checkout.expired",
        )


class CheckoutValidationException(BusinessException):
    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.CHECKOUT_INVALID,
            message=message,
            error_type="CheckoutValidationError",
            details=details,
            field=field,
        )


class CouponRejectedException(BusinessException):
    """Raised at the API boundary when a checkout names a coupon the engine rejected."""

    def __init__(self, code: int, message: str, coupon_code: str):
        super().__init__(
            code=code,
            message=message,
            error_type="CouponRejected",
            details={"coupon_code": coupon_code},
            field="discount_code",
            message_key="coupon.rejected",
            format_params={"reason": message},
        )


class SimulationDisabledException(BusinessException):
    def __init__(self):
        super().__init__(
            code=PaymentCode.SIMULATION_DISABLED,
            message="Payment simulation is not available in this environment",
            error_type="SimulationDisabled",
            message_key="payment.simulation.disabled",
        )


class OrderAlreadyExistsException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"An order already exists for payment {transaction_id}",
            error_type="OrderAlreadyExists",
            details={"transaction_id": transaction_id},
        )
