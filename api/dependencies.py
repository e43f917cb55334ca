"""
API依赖项 - 认证与应用服务装配
"""
from typing import AsyncIterator, Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.middleware.request_id import user_id_var
from application.services.checkout_service import CheckoutService
from application.services.payment_service import PaymentService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from core.logging_config import get_logger
from infrastructure.bootstrap import build_checkout_service, build_payment_service


logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def decode_access_token(token: str) -> Optional[str]:
    """
    校验访问令牌并返回用户ID

    - 过期: 抛出 TokenExpiredException
    - 无效或类型不符: 返回 None
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_access_token", error=str(e))
        return None
    if payload.get("type", "access") != "access":
        return None
    sub = payload.get("sub")
    return str(sub) if sub not in (None, "") else None


async def get_current_user_id(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """获取当前登录用户ID（令牌由用户服务签发，这里只做校验）"""
    if bearer_token is None or not bearer_token.credentials:
        raise UnauthorizedException("未提供认证凭据")
    user_id = decode_access_token(bearer_token.credentials)
    if user_id is None:
        raise UnauthorizedException("无效的认证凭据")
    user_id_var.set(user_id)
    structlog.contextvars.bind_contextvars(user_id=user_id)
    return user_id


async def get_checkout_service() -> CheckoutService:
    return build_checkout_service()


async def get_payment_service() -> AsyncIterator[PaymentService]:
    service = build_payment_service()
    try:
        yield service
    finally:
        await service.aclose()
