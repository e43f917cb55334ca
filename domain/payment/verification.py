"""
Normalized result of validating a gateway confirmation.

Every gateway adapter reduces its own payload shape to this one type; nothing
after this boundary branches on gateway identity.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class VerificationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    ALREADY_PROCESSED = "already_processed"  # gateway says the resource was consumed before
    REJECTED = "rejected"
    PENDING = "pending"  # timeout, transport failure, or no transaction yet


@dataclass(frozen=True)
class PaymentVerificationResult:
    status: VerificationStatus
    transaction_id: str
    provider: str
    amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    provider_ref: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def successful(self) -> bool:
        return self.status in (VerificationStatus.SUCCEEDED, VerificationStatus.ALREADY_PROCESSED)

    @property
    def retryable(self) -> bool:
        return self.status == VerificationStatus.PENDING

    @classmethod
    def succeeded(cls, transaction_id: str, provider: str, amount: Decimal, **kwargs: Any) -> "PaymentVerificationResult":
        return cls(VerificationStatus.SUCCEEDED, transaction_id, provider, amount=Decimal(str(amount)), **kwargs)

    @classmethod
    def already_processed(cls, transaction_id: str, provider: str, **kwargs: Any) -> "PaymentVerificationResult":
        return cls(VerificationStatus.ALREADY_PROCESSED, transaction_id, provider, **kwargs)

    @classmethod
    def rejected(
        cls, transaction_id: str, provider: str, error_code: str, error_message: Optional[str] = None, **kwargs: Any
    ) -> "PaymentVerificationResult":
        return cls(
            VerificationStatus.REJECTED,
            transaction_id,
            provider,
            error_code=error_code,
            error_message=error_message,
            **kwargs,
        )

    @classmethod
    def pending(
        cls, transaction_id: str, provider: str, error_code: str = "PENDING", error_message: Optional[str] = None, **kwargs: Any
    ) -> "PaymentVerificationResult":
        return cls(
            VerificationStatus.PENDING,
            transaction_id,
            provider,
            error_code=error_code,
            error_message=error_message,
            **kwargs,
        )
