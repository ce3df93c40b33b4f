"""
Payment gateway ports (application/ports) exposing replaceable protocols.

Application depends on these Protocols; infrastructure implements the
outbound provider clients and the gateway adapters implement the inbound
callback protocols on top of them.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    QueryPayment,
    VerifyResult,
)
from domain.payment.entity import Payment, PaymentMethod


@runtime_checkable
class ProviderClient(Protocol):
    """Outbound HTTP client for one third-party provider.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def create_payment(self, req: CreatePayment) -> PaymentIntent: ...

    async def query_payment(self, query: QueryPayment) -> PaymentIntent: ...

    async def refund(self, req: RefundRequest) -> RefundResult: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Per-method adapter translating a provider protocol onto local state."""

    method: PaymentMethod

    def ensure_configured(self) -> None: ...

    async def initiate(self, payment: Payment, req: CreatePayment) -> PaymentIntent: ...

    async def handle_callback(self, headers: Mapping[str, Any], body: bytes) -> dict[str, Any]: ...

    async def verify(self, transaction_id: str, status: str) -> VerifyResult: ...

    async def sync_status(self, transaction_id: str) -> VerifyResult: ...

    async def refund(self, payment: Payment, req: RefundRequest) -> RefundResult: ...

    async def aclose(self) -> None: ...
