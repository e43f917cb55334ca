"""
请求/响应日志中间件

记录耗时与状态码；结账与支付报文中的个人信息和凭据在写日志前脱敏，
网关 webhook 报文不记录（原始字节用于验签）。
"""
import json
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger, sanitize


logger = get_logger(__name__)

SKIP_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})
WEBHOOK_PREFIX = "/api/v1/payments/webhooks/"


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求开始/结束各一条日志，4xx 记 warning，5xx 记 error"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body_by_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        info = await self._request_info(request)
        logger.info("request_started", **info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration=round(time.perf_counter() - started, 4),
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response, duration, info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _request_info(self, request: Request) -> dict:
        info: dict = {"query_params": sanitize(dict(request.query_params))}
        if request.method in ("POST", "PUT", "PATCH") and self._wants_body(request):
            body = await self._body_for_log(request)
            if body is not None:
                info["body"] = body
        return info

    def _wants_body(self, request: Request) -> bool:
        if request.url.path.startswith(WEBHOOK_PREFIX):
            return False
        flag = (request.headers.get("X-Log-Body") or "").lower()
        if flag in {"true", "1", "yes"}:
            return True
        if flag in {"false", "0", "no"}:
            return False
        return self.log_body_by_default

    async def _body_for_log(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        if "application/json" not in request.headers.get("content-type", "").lower():
            return {"bytes": len(body)}
        if len(body) > self.max_body_bytes:
            return {"bytes": len(body), "truncated": True}
        try:
            return sanitize(json.loads(body))
        except ValueError:
            return {"bytes": len(body), "invalid_json": True}

    @staticmethod
    def _log_response(response: Response, duration: float, info: dict) -> None:
        data = {"status_code": response.status_code, "duration": round(duration, 4), **info}
        if response.status_code < 400:
            logger.info("request_completed", **data)
        elif response.status_code < 500:
            logger.warning("request_client_error", **data)
        else:
            logger.error("request_server_error", **data)
