"""
Payment and checkout specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (600xx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    ALREADY_PROCESSED = 60005
    SIMULATION_DISABLED = 60006

    # Reconciliation (601xx)
    PAYMENT_NOT_FOUND = 60100
    PAYMENT_REJECTED = 60101
    AMOUNT_MISMATCH = 60102
    CHECKOUT_EXPIRED = 60103
    ORDER_CREATION_FAILED = 60104
    PAYMENT_ALREADY_FINAL = 60105
    INVALID_TRANSITION = 60106

    # Checkout / pricing (602xx)
    CHECKOUT_INVALID = 60200
    COUPON_INVALID = 60201
    COUPON_USED = 60202
    COUPON_EXPIRED = 60203
    COUPON_NOT_OWNER = 60204
    COUPON_NOT_APPLICABLE = 60205
    PAYMENT_ALREADY_EXISTS = 60206


# Provider status -> internal PaymentRecord status
PROVIDER_STATUS_TO_INTERNAL = {
    "datafast": {
        "000.000.000": "completed",
        "000.100.110": "completed",
        "000.100.112": "completed",
        "000.200.100": "pending",
        "800.900.300": "pending",
    },
    "deuna": {
        "SUCCESS": "completed",
        "APPROVED": "completed",
        "COMPLETED": "completed",
        "PENDING": "pending",
        "FAILED": "failed",
        "REJECTED": "failed",
        "CANCELLED": "cancelled",
    },
}

# Provider error code -> normalized error code reported to clients
PROVIDER_ERROR_TO_INTERNAL = {
    "datafast": {
        "800.100.151": "INVALID_CARD",
        "800.100.155": "INSUFFICIENT_FUNDS",
        "100.100.303": "CARD_EXPIRED",
        "800.100.168": "CARD_RESTRICTED",
        "900.100.201": "GATEWAY_ERROR",
        "000.200.100": "CHECKOUT_PENDING",
        "800.900.300": "NO_TRANSACTION",
    },
}
