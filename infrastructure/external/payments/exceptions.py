"""支付网关异常，统一映射到 BusinessException 与 PaymentCode"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class GatewayError(BusinessException):
    """details 中始终带上 provider，便于按网关聚合日志"""

    code = PaymentCode.PROVIDER_ERROR
    message_key: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider}
        if provider_code is not None:
            full_details["provider_code"] = provider_code
        full_details.update(details or {})
        super().__init__(
            code=type(self).code,
            message=message,
            error_type=type(self).__name__,
            details=full_details,
            message_key=type(self).message_key,
        )
        self.provider = provider


class PaymentProviderError(GatewayError):
    """网关明确拒绝请求（4xx、业务错误码）"""

    message_key = "payment.provider_error"


class PaymentRecoverableError(GatewayError):
    """网关暂时不可用（5xx、限流），调用方可以稍后重试"""

    code = PaymentCode.PROVIDER_RECOVERABLE


class PaymentTimeoutError(GatewayError):
    code = PaymentCode.TIMEOUT
    message_key = "payment.timeout"


class PaymentSignatureError(GatewayError):
    code = PaymentCode.SIGNATURE_ERROR


class PaymentPayloadError(GatewayError):
    """webhook 报文结构不合法（缺少必填字段、无法解析）"""
