"""
Simulation gateway for non-production environments.

Only constructible when ``payment_settings.simulation_allowed`` is true; it
never talks to a real gateway and confirms the amount stored on the record.
"""
from __future__ import annotations

import uuid
from typing import Any, Optional

from application.dtos.payments import SIMULATED_REJECTION, CreateGatewayCheckout, GatewayCheckout, WebhookEvent
from core.settings import payment_settings
from domain.common.exceptions import SimulationDisabledException
from domain.payment.entity import PaymentRecord
from domain.payment.verification import PaymentVerificationResult
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentPayloadError


class SimulatedPaymentClient(BasePaymentClient):
    provider = "simulation"

    def __init__(self):
        if not payment_settings.simulation_allowed:
            raise SimulationDisabledException()
        super().__init__()

    async def create_checkout(self, req: CreateGatewayCheckout) -> GatewayCheckout:
        checkout_id = f"SIM-{uuid.uuid4().hex[:12]}"
        self._log("payment_checkout_created", transaction_id=req.transaction_id, checkout_id=checkout_id, simulated=True)
        return GatewayCheckout(provider=self.provider, transaction_id=req.transaction_id, checkout_id=checkout_id)

    async def _verify(self, record: PaymentRecord, *, resource_path: Optional[str] = None) -> PaymentVerificationResult:
        meta = {"simulated": True}
        if resource_path == SIMULATED_REJECTION:
            return PaymentVerificationResult.rejected(
                record.transaction_id,
                self.provider,
                "SIMULATED_REJECTION",
                "Simulated payment rejected",
                payment_method="simulation",
                metadata=meta,
            )
        return PaymentVerificationResult.succeeded(
            record.transaction_id,
            self.provider,
            record.amount,
            payment_method="simulation",
            provider_ref=f"SIM-{record.transaction_id}",
            metadata=meta,
        )

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise PaymentPayloadError("Simulation has no webhooks", provider=self.provider)
