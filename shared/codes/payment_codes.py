"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Request / fee errors (2xxxx, payment range)
    INVALID_AMOUNT = 20200
    INVALID_PERCENTAGE = 20201
    REQUEST_INVALID = 20202

    # Tracking errors
    PAYMENT_NOT_FOUND = 20210
    PENDING_TIMEOUT = 20211

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    TRANSPORT_ERROR = 60002


# Provider→internal status mapping (unknown provider states fall back to "failed")
PROVIDER_STATUS_TO_INTERNAL = {
    "lenco": {
        "pending": "pending",
        "processing": "pending",
        "success": "completed",
        "successful": "completed",
        "completed": "completed",
        "failed": "failed",
        "declined": "failed",
        "cancelled": "cancelled",
        "canceled": "cancelled",
        "abandoned": "cancelled",
    },
}

UNKNOWN_PROVIDER_STATUS = "failed"
