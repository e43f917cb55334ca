"""
自定义异常映射与全局异常处理器
"""
import traceback
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status as http_status
from starlette.exceptions import HTTPException

from core.i18n import t
from core.logging_config import get_logger
from core.response import error_response
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class UnauthorizedException(BusinessException):
    """未授权异常"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
            message_key="auth.unauthorized",
        )


class TokenExpiredException(BusinessException):
    """Token过期异常"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
            message_key="auth.token.expired",
        )


_HTTP_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.CONFLICT: http_status.HTTP_409_CONFLICT,
    BusinessCode.TOKEN_INVALID: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.TOKEN_EXPIRED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.PERMISSION_ERROR: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.RATE_LIMIT_ERROR: http_status.HTTP_429_TOO_MANY_REQUESTS,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,
    PaymentCode.PROVIDER_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.PROVIDER_RECOVERABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.SIGNATURE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.TIMEOUT: http_status.HTTP_504_GATEWAY_TIMEOUT,
    PaymentCode.RATE_LIMITED: http_status.HTTP_429_TOO_MANY_REQUESTS,
    PaymentCode.SIMULATION_DISABLED: http_status.HTTP_403_FORBIDDEN,
    PaymentCode.PAYMENT_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    PaymentCode.PAYMENT_REJECTED: http_status.HTTP_402_PAYMENT_REQUIRED,
    PaymentCode.AMOUNT_MISMATCH: http_status.HTTP_409_CONFLICT,
    PaymentCode.CHECKOUT_EXPIRED: http_status.HTTP_410_GONE,
    PaymentCode.ORDER_CREATION_FAILED: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.PAYMENT_ALREADY_FINAL: http_status.HTTP_409_CONFLICT,
    PaymentCode.INVALID_TRANSITION: http_status.HTTP_409_CONFLICT,
    PaymentCode.CHECKOUT_INVALID: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.COUPON_INVALID: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.COUPON_USED: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.COUPON_EXPIRED: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.COUPON_NOT_OWNER: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.COUPON_NOT_APPLICABLE: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentCode.PAYMENT_ALREADY_EXISTS: http_status.HTTP_409_CONFLICT,
}

# 客户端可以原样重试的错误码
RETRYABLE_CODES = frozenset({
    BusinessCode.SERVICE_UNAVAILABLE,
    BusinessCode.TOO_MANY_REQUESTS,
    PaymentCode.PROVIDER_RECOVERABLE,
    PaymentCode.TIMEOUT,
    PaymentCode.RATE_LIMITED,
    PaymentCode.ORDER_CREATION_FAILED,
})


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）"""
    return _HTTP_STATUS_BY_CODE.get(code, http_status.HTTP_400_BAD_REQUEST)


_CODE_BY_HTTP_STATUS = {
    401: BusinessCode.UNAUTHORIZED,
    403: BusinessCode.FORBIDDEN,
    404: BusinessCode.NOT_FOUND,
    429: BusinessCode.TOO_MANY_REQUESTS,
    503: BusinessCode.SERVICE_UNAVAILABLE,
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _json(status_code: int, response, headers: Optional[dict] = None) -> JSONResponse:
    if status_code == http_status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer", **(headers or {})}
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        params = exc.format_params if isinstance(exc.format_params, dict) else (exc.details or {})
        message = t(exc.message_key, default=exc.message, **params) if exc.message_key else exc.message
        status_code = business_code_to_http_status(exc.code)
        if status_code >= 500:
            logger.warning("business_exception_unavailable", code=exc.code, error_type=exc.error_type)
        return _json(
            status_code,
            error_response(
                code=exc.code,
                message=message,
                error_type=exc.error_type,
                details=exc.details,
                field=exc.field,
                request_id=_request_id(request),
                retry_allowed=exc.code in RETRYABLE_CODES,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        return _json(
            http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_response(
                code=BusinessCode.PARAM_VALIDATION_ERROR,
                message=t("validation.failed", reason=first.get("msg", "unknown")),
                error_type="ValidationError",
                details={"errors": [{k: v for k, v in e.items() if k not in ("ctx", "input")} for e in errors]},
                field=".".join(str(loc) for loc in first.get("loc", [])[1:]),
                request_id=_request_id(request),
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _json(
            exc.status_code,
            error_response(
                code=_CODE_BY_HTTP_STATUS.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
                message=str(exc.detail),
                error_type="HTTPError",
                details={"status_code": exc.status_code},
                request_id=_request_id(request),
                retry_allowed=exc.status_code in (429, 503),
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)
        details = {"exception": str(exc), "traceback": traceback.format_exc()} if app.debug else None
        return _json(
            http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_response(
                code=BusinessCode.SYSTEM_ERROR,
                message=t("error.internal"),
                error_type="SystemError",
                details=details,
                request_id=request_id,
            ),
        )
