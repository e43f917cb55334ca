"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Every adapter reduces its confirmations to PaymentVerificationResult, so
nothing downstream branches on gateway identity.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import CreateGatewayCheckout, GatewayCheckout, WebhookEvent
from domain.payment.entity import PaymentRecord
from domain.payment.verification import PaymentVerificationResult


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    ``verify`` never raises for gateway outcomes: rejections, timeouts and
    "already processed" answers are all returned as results.
    """

    provider: str

    async def create_checkout(self, req: CreateGatewayCheckout) -> GatewayCheckout: ...

    async def verify(self, record: PaymentRecord, *, resource_path: Optional[str] = None) -> PaymentVerificationResult: ...

    async def cancel(self, record: PaymentRecord, reason: str) -> None: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...

    async def aclose(self) -> None: ...
