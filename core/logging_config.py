"""
Structlog 日志配置

所有模块通过 get_logger(__name__) 获取 logger；标准库 logging（uvicorn、celery、
sqlalchemy）经 ProcessorFormatter 走同一条处理链。结账报文中的个人信息和网关凭据
在渲染前统一脱敏。
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings


NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "asyncio")

# 字段名包含这些片段即脱敏（shipping_data.email, api_secret, access_token ...）
SENSITIVE_MARKERS = (
    "token", "secret", "api_key", "password", "authorization",
    "email", "phone", "identification", "street", "card", "cvv",
)
MASK = "***"


def _is_sensitive(name: Any) -> bool:
    lowered = str(name).lower()
    return any(marker in lowered for marker in SENSITIVE_MARKERS)


def sanitize(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: (MASK if _is_sensitive(k) else sanitize(v)) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [sanitize(v) for v in data]
    return data


def redact_sensitive(_, __, event_dict: dict) -> dict:
    """structlog processor：event 本身保留，其余字段递归脱敏"""
    event = event_dict.pop("event", None)
    cleaned = sanitize(event_dict)
    if event is not None:
        cleaned["event"] = event
    return cleaned


def _dumps(obj, default=None, **kwargs):
    # Decimal 金额按字符串输出
    return json.dumps(obj, ensure_ascii=False, default=default or str, **kwargs)


def get_renderer() -> Any:
    if settings.DEBUG:
        return ConsoleRenderer(colors=False)
    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        structlog.stdlib.add_logger_name,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
