"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Environment variables use the ``PAYMENT__`` prefix, e.g.
``PAYMENT__DATAFAST__ENTITY_ID`` or ``PAYMENT__TESTING__SIMULATION_ENABLED``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 15.0
    write: float = 15.0
    total: float = 30.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    ip_allowlist: list[str] | None = None  # Optional IPs allowed to post webhooks


class ReconciliationSettings(BaseModel):
    amount_tolerance: Decimal = Decimal("0.01")
    lock_timeout_seconds: float = 30.0
    lock_blocking_timeout_seconds: float = 10.0
    cleanup_after_minutes: int = 10
    cleanup_batch_size: int = 100
    retry_max_attempts: int = 5
    retry_countdown_seconds: int = 30
    schedule_retries: bool = True  # 可重试的结果交给 Celery 重新核验


class DatafastSettings(BaseModel):
    base_url: str = "https://eu-test.oppwa.com"
    entity_id: Optional[str] = None
    access_token: Optional[str] = None
    test_mode: Optional[str] = "EXTERNAL"  # None in production
    # result codes meaning "this resource path was already consumed"
    already_processed_codes: list[str] = Field(default_factory=lambda: ["200.300.404"])


class DeunaSettings(BaseModel):
    base_url: str = "https://apis-merchant.qa.deunalab.com"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    point_of_sale: Optional[str] = None
    webhook_secret: Optional[str] = None
    qr_type: str = "dynamic"
    format: str = "2"  # QR + link


class SimulationSettings(BaseModel):
    simulation_enabled: bool = False


class PaymentSettings(BaseSettings):
    default_provider: str = "datafast"
    environment: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "PAYMENT__ENVIRONMENT"))
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    datafast: DatafastSettings = Field(default_factory=DatafastSettings)
    deuna: DeunaSettings = Field(default_factory=DeunaSettings)
    testing: SimulationSettings = Field(default_factory=SimulationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @property
    def simulation_allowed(self) -> bool:
        return self.testing.simulation_enabled and self.environment.lower() not in ("production", "prod")

    @model_validator(mode="after")
    def _refuse_simulation_in_production(self):
        if self.testing.simulation_enabled and self.environment.lower() in ("production", "prod"):
            raise ValueError("PAYMENT__TESTING__SIMULATION_ENABLED 不允许在生产环境开启")
        return self


payment_settings = PaymentSettings()
