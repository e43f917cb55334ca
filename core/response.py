"""
统一响应格式：{code, message, data, error}

失败响应的 error.retry_allowed 告诉客户端能否原样重试（网关超时、订单创建失败），
而不是让客户端根据错误码自行猜测。
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    request_id: Optional[str] = None
    retry_allowed: bool = False
    timestamp: datetime = Field(default_factory=_utc_now)

    @field_serializer("timestamp")
    def serialize_timestamp(self, ts: datetime) -> str:
        ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
        return ts.isoformat().replace("+00:00", "Z")


class Response(BaseModel, Generic[T]):
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    return Response(code=code, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    *,
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    retry_allowed: bool = False,
    data: Any = None,
) -> Response:
    """
    创建错误响应

    Args:
        message: 已本地化的错误消息
        data: 失败时仍需返回给客户端的数据，例如交易号（联系客服时使用）
    """
    return Response(
        code=code,
        message=message,
        data=data,
        error=ErrorDetail(
            type=error_type,
            details=details,
            field=field,
            request_id=request_id,
            retry_allowed=retry_allowed,
        ),
    )
