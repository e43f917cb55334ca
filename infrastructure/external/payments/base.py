"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers subclass and implement provider-specific logic. Network
failures during verification never surface as rejections: a timeout or a
transport error leaves the payment open and is reported as a retryable
PENDING result.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import CreateGatewayCheckout, GatewayCheckout, WebhookEvent
from domain.payment.entity import PaymentRecord
from domain.payment.verification import PaymentVerificationResult
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentTimeoutError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 3.0, "read": 15.0, "write": 15.0, "total": 30.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """发送请求；重试耗尽后超时与传输错误转换为支付异常"""
        async with self.client() as c:
            try:
                resp = await self._retry(lambda: c.request(method, url, **kwargs))
            except httpx.TimeoutException as exc:
                logger.warning("payment_gateway_timeout", provider=self.provider, url=url)
                raise PaymentTimeoutError(f"{self.provider} request timed out", provider=self.provider) from exc
            except httpx.TransportError as exc:
                logger.warning("payment_gateway_transport_error", provider=self.provider, url=url, error=str(exc))
                raise PaymentRecoverableError(str(exc) or "transport error", provider=self.provider) from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise PaymentRecoverableError(
                f"{self.provider} unavailable (HTTP {resp.status_code})",
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        return resp

    def _json(self, resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentProviderError(
                "Gateway returned a non-JSON response",
                provider=self.provider,
                provider_code=str(resp.status_code),
            ) from exc
        if not isinstance(data, dict):
            raise PaymentProviderError("Gateway returned an unexpected payload", provider=self.provider)
        return data

    async def create_checkout(self, req: CreateGatewayCheckout) -> GatewayCheckout:
        raise NotImplementedError

    async def verify(self, record: PaymentRecord, *, resource_path: Optional[str] = None) -> PaymentVerificationResult:
        try:
            result = await self._verify(record, resource_path=resource_path)
        except PaymentTimeoutError as exc:
            return PaymentVerificationResult.pending(
                record.transaction_id, self.provider, error_code="TIMEOUT", error_message=exc.message
            )
        except (PaymentRecoverableError, PaymentProviderError) as exc:
            return PaymentVerificationResult.pending(
                record.transaction_id, self.provider, error_code="GATEWAY_UNAVAILABLE", error_message=exc.message
            )
        self._log(
            "payment_verified",
            transaction_id=record.transaction_id,
            status=result.status.value,
            amount=str(result.amount) if result.amount is not None else None,
            error_code=result.error_code,
        )
        return result

    async def _verify(self, record: PaymentRecord, *, resource_path: Optional[str] = None) -> PaymentVerificationResult:
        raise NotImplementedError

    async def cancel(self, record: PaymentRecord, reason: str) -> None:
        """网关侧没有可撤销的支付请求时无需操作，过期的 checkout 由网关自行失效"""
        return None

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    @staticmethod
    def _amount(value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
