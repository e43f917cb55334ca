"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway
from domain.common.exceptions import SimulationDisabledException


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = (provider or payment_settings.default_provider).lower()
    if name == "datafast":
        from .datafast_client import DatafastClient
        return DatafastClient()
    if name == "deuna":
        from .deuna_client import DeunaClient
        return DeunaClient()
    if name in {"simulation", "simulated"}:
        if not payment_settings.simulation_allowed:
            raise SimulationDisabledException()
        from .simulated_client import SimulatedPaymentClient
        return SimulatedPaymentClient()
    raise ValueError(f"Unsupported payment provider: {name}")
