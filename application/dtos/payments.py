"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.payment.entity import Payment, PaymentMethod, PaymentStatus

# Common ISO-4217 currencies (extend as needed)
ISO_4217 = {
    "UZS", "USD", "EUR", "RUB", "KZT", "GBP", "CNY",
}


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


class CardDetails(BaseModel):
    """Card data accepted for cash-less flows; never persisted."""

    number: str = Field(min_length=12, max_length=19)
    expiry: Optional[str] = None
    holder: Optional[str] = None

    @field_validator("number")
    @classmethod
    def _digits_only(cls, v: str) -> str:
        digits = v.replace(" ", "")
        if not digits.isdigit():
            raise ValueError("card number must contain digits only")
        return digits

    @property
    def last4(self) -> str:
        return self.number[-4:]


# ---- inbound (API → application) ----

class InitiatePayment(BaseModel):
    order_id: int
    amount: condecimal(gt=0, max_digits=15, decimal_places=2)  # type: ignore[valid-type]
    method: PaymentMethod
    currency: str = Field(default="UZS")
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    description: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class ProcessPayment(BaseModel):
    method: PaymentMethod
    card_details: Optional[CardDetails] = None
    return_url: Optional[str] = None


class RefundCommand(BaseModel):
    amount: Optional[condecimal(gt=0, max_digits=15, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = None


# ---- outbound (application → provider client) ----

class CreatePayment(BaseModel):
    transaction_id: str
    order_id: int
    amount: Decimal
    amount_minor: int
    currency: str = "UZS"
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    description: Optional[str] = None


class QueryPayment(BaseModel):
    transaction_id: str
    provider_ref: Optional[str] = None


class PaymentIntent(BaseModel):
    transaction_id: str
    status: str
    provider: str
    payment_url: Optional[str] = None
    provider_ref: Optional[str] = None
    # Provider-assigned transaction id to adopt in place of the local one
    provider_transaction_id: Optional[str] = None
    request: dict[str, Any] = Field(default_factory=dict)
    response: dict[str, Any] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    transaction_id: str
    refund_id: str
    amount: Decimal
    amount_minor: int
    currency: str = "UZS"
    reason: Optional[str] = None
    provider_ref: Optional[str] = None
    full: bool = True


class RefundResult(BaseModel):
    refund_id: str
    status: str
    provider: str
    provider_ref: Optional[str] = None
    response: dict[str, Any] = Field(default_factory=dict)


# ---- results (application → API) ----

class InitiateResult(BaseModel):
    payment_id: int
    transaction_id: str
    provider_payload: dict[str, Any] = Field(default_factory=dict)


class ProcessResult(BaseModel):
    status: PaymentStatus
    payment_id: int
    transaction_id: str
    payment_url: Optional[str] = None


class VerifyResult(BaseModel):
    transaction_id: str
    status: PaymentStatus
    paid: bool


class RefundReceipt(BaseModel):
    payment_id: int
    refund_id: str
    amount: Decimal
    refunded_amount: Decimal
    status: PaymentStatus
    provider: str


class PaymentView(BaseModel):
    id: int
    order_id: int
    transaction_id: str
    method: PaymentMethod
    status: PaymentStatus
    amount: Decimal
    currency: str
    refunded_amount: Decimal
    pending_refund_amount: Decimal = Decimal("0")
    provider_ref: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentView":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            transaction_id=payment.transaction_id,
            method=payment.method,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            refunded_amount=payment.refunded_amount,
            pending_refund_amount=payment.pending_refund_amount,
            provider_ref=payment.provider_ref,
            failure_reason=payment.failure_reason,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
            paid_at=payment.paid_at,
        )


# ---- provider callback payloads ----

class ClickCallback(BaseModel):
    """Click SHOP-API prepare/complete request fields."""

    model_config = ConfigDict(populate_by_name=True)

    click_trans_id: str = Field(validation_alias=AliasChoices("click_trans_id", "trans_id"))
    service_id: str
    click_paydoc_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("click_paydoc_id", "paydoc_id")
    )
    merchant_trans_id: str
    merchant_prepare_id: Optional[str] = None
    amount: str
    action: int
    # Provider-side outcome for complete; anything but 0 means the payment failed
    error: int = 0
    error_note: Optional[str] = None
    sign_time: str
    sign_string: str

    @field_validator(
        "click_trans_id", "service_id", "click_paydoc_id", "merchant_prepare_id", "amount",
        mode="before",
    )
    @classmethod
    def _coerce_str(cls, v):
        return None if v is None else str(v)

    @property
    def amount_value(self) -> Decimal:
        return Decimal(self.amount)


class UzumCallback(BaseModel):
    transaction_id: str
    order_id: Optional[str] = None
    amount: Optional[int] = None
    status: str
    timestamp: Optional[str] = None
    signature: str
    error_code: Optional[int] = None
    error_message: Optional[str] = None
