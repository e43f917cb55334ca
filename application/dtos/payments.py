"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.types import condecimal

from domain.payment.verification import PaymentVerificationResult

# Gateways in scope settle in USD
ISO_4217 = {"USD"}

SUPPORTED_PROVIDERS = {"datafast", "deuna", "simulation"}

# resource_path understood by the simulation gateway as "reject this payment"
SIMULATED_REJECTION = "simulation:reject"


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


class CustomerInfo(BaseModel):
    given_name: str = Field(min_length=1, max_length=48)
    surname: str = Field(default="", max_length=48)
    email: Optional[str] = None
    phone: Optional[str] = None
    identification: Optional[str] = None

    @classmethod
    def from_billing(cls, billing: dict[str, Any]) -> "CustomerInfo":
        """账单信息中的 name 按第一个空格拆成名和姓"""
        name = str(billing.get("name") or "").strip() or "Cliente"
        given, _, surname = name.partition(" ")
        return cls(
            given_name=given[:48],
            surname=surname.strip()[:48],
            email=billing.get("email"),
            phone=billing.get("phone"),
            identification=billing.get("identification"),
        )


class CreateGatewayCheckout(BaseModel):
    transaction_id: str = Field(min_length=1, max_length=255)
    user_id: str
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="USD")
    customer: CustomerInfo
    description: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class GatewayCheckout(BaseModel):
    provider: str
    transaction_id: str
    checkout_id: str
    redirect_url: Optional[str] = None
    qr_code: Optional[str] = None
    numeric_code: Optional[str] = None
    internal_reference: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


class StartPayment(BaseModel):
    """API 请求：基于已保存的结账快照向网关发起结账"""

    session_id: str = Field(min_length=1, max_length=128)
    provider: Optional[str] = None

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        name = v.lower()
        if name not in SUPPORTED_PROVIDERS:
            raise ValueError(f"unsupported provider '{v}'")
        return name


class VerifyPayment(BaseModel):
    """支付确认：网关回跳携带 resource_path，或非生产环境的模拟确认"""

    transaction_id: str = Field(min_length=1, max_length=255)
    session_id: Optional[str] = Field(default=None, max_length=128)
    resource_path: Optional[str] = Field(default=None, max_length=512)
    simulate_success: Optional[bool] = None

    @model_validator(mode="after")
    def _one_confirmation_kind(self):
        if self.resource_path and self.simulate_success is not None:
            raise ValueError("provide either resource_path or simulate_success, not both")
        if not self.resource_path and self.simulate_success is None:
            raise ValueError("resource_path or simulate_success is required")
        return self


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    reference: str  # 网关侧交易标识，用于定位支付记录
    verification: PaymentVerificationResult
    data: dict[str, Any]
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class PaymentStatusView(BaseModel):
    transaction_id: str
    provider: str
    status: str
    amount: Decimal
    currency: str
    checkout_id: Optional[str] = None
    order_id: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ReconcileResult(BaseModel):
    success: bool
    transaction_id: str
    message: str
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    total: Optional[Decimal] = None
    error_code: Optional[str] = None
    retry_allowed: bool = False
