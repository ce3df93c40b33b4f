"""
Payment specific codes, provider wire codes and provider status mapping.

The Click and Payme enums are fixed wire contracts: providers compare the
numeric values, so never renumber them.
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
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    NOT_CONFIGURED = 60005


class ClickError(IntEnum):
    """Click SHOP-API `error` values returned from prepare/complete."""

    SUCCESS = 0
    SIGN_CHECK_FAILED = -1
    INCORRECT_AMOUNT = -2
    ACTION_NOT_FOUND = -3
    ALREADY_PAID = -4
    ORDER_NOT_FOUND = -5
    TRANSACTION_NOT_FOUND = -6
    UPDATE_FAILED = -7
    BAD_REQUEST = -8
    TRANSACTION_CANCELLED = -9


CLICK_ERROR_NOTES = {
    ClickError.SUCCESS: "Success",
    ClickError.SIGN_CHECK_FAILED: "SIGN CHECK FAILED!",
    ClickError.INCORRECT_AMOUNT: "Incorrect parameter amount",
    ClickError.ACTION_NOT_FOUND: "Action not found",
    ClickError.ALREADY_PAID: "Already paid",
    ClickError.ORDER_NOT_FOUND: "Order does not exist",
    ClickError.TRANSACTION_NOT_FOUND: "Transaction does not exist",
    ClickError.UPDATE_FAILED: "Failed to update payment",
    ClickError.BAD_REQUEST: "Error in request from click",
    ClickError.TRANSACTION_CANCELLED: "Transaction cancelled",
}


class ClickAction(IntEnum):
    PREPARE = 0
    COMPLETE = 1


class PaymeError(IntEnum):
    """Payme merchant API JSON-RPC error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INSUFFICIENT_PRIVILEGE = -32504
    SYSTEM_ERROR = -32400
    INVALID_AMOUNT = -31001
    TRANSACTION_NOT_FOUND = -31003
    CANNOT_CANCEL = -31007
    CANNOT_PERFORM = -31008
    ORDER_NOT_FOUND = -31050


class PaymeState(IntEnum):
    """Transaction state reported to Payme (fixed wire values)."""

    CANCELLED = -1
    UNKNOWN = 0
    CREATED = 1
    PERFORMED = 2


# Provider→internal payment status mapping (values are PaymentStatus values)
PROVIDER_STATUS_TO_INTERNAL = {
    "uzum": {
        "success": "PAID",
        "paid": "PAID",
        "completed": "PAID",
        "failed": "FAILED",
        "error": "FAILED",
        "cancelled": "FAILED",
        "canceled": "FAILED",
        "pending": "PENDING",
        "processing": "PENDING",
    },
    "click": {
        "success": "PAID",
        "failed": "FAILED",
    },
    "payme": {
        "success": "PAID",
        "failed": "FAILED",
        "cancelled": "CANCELLED",
    },
}
