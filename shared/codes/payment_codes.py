"""
Payment specific codes and gateway status constants.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TRANSPORT_ERROR = 60003
    RATE_LIMITED = 60004
    INVALID_KEY = 60005
    WEBHOOK_AUTH_FAILED = 60006

    # Merchant configuration errors (601xx)
    CONFIGURATION_ERROR = 60010
    MERCHANT_NOT_FOUND = 60011


# order_status values returned by the verify endpoint
PAY_SUCCESS = "PAY_SUCCESS"
PAY_FAILED = "PAY_FAILED"

# trade_status sent by the gateway in payment notifications
TRADE_STATUS_COMPLETED = "Completed"

# Gateway order_status → internal status
GATEWAY_STATUS_TO_INTERNAL = {
    "PAY_SUCCESS": "succeeded",
    "PAY_FAILED": "failed",
    "WAIT_PAY": "pending",
    "PAYING": "processing",
    "ORDER_CLOSED": "canceled",
}
