"""
Request ID 中间件

生成或透传追踪ID，并通过 contextvars 传给日志系统。网关回调常带自己的
关联ID（X-Correlation-ID），没有 X-Request-ID 时用它串起同一次支付的日志。
"""
import re
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# 透传的ID会原样写入日志与响应头，只接受安全字符
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:\-]{1,128}$")


def _incoming_id(request: Request) -> Optional[str]:
    for header in (RequestIDMiddleware.HEADER_NAME, RequestIDMiddleware.CORRELATION_HEADER):
        value = (request.headers.get(header) or "").strip()
        if value and _SAFE_ID.match(value):
            return value
    return None


def _client_ip(request: Request) -> str:
    """代理链中的第一个地址；仅用于日志，访问控制请使用连接地址"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Request ID 追踪中间件

    - request.state.request_id / client_ip 供异常处理与路由读取
    - structlog 上下文在每个请求开始时重置，避免上一个请求的 user_id 泄漏
    """

    HEADER_NAME = "X-Request-ID"
    CORRELATION_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = _incoming_id(request) or str(uuid.uuid4())
        client_ip = _client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)
        user_id_var.set(None)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    return client_ip_var.get()
