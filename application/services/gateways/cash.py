"""
Cash on delivery: a local-only method with no provider behind it.

The payment stays PENDING until a courier settles it through ``verify``.
"""
from __future__ import annotations

from typing import Any, Mapping

from application.dtos.payments import CreatePayment, PaymentIntent, RefundRequest, RefundResult, VerifyResult
from application.services.gateways.base import BaseGatewayAdapter
from domain.common.exceptions import PaymentNotFoundException
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus


_CASH_STATUS = {
    "paid": PaymentStatus.PAID,
    "success": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "canceled": PaymentStatus.CANCELLED,
}


class CashGateway(BaseGatewayAdapter):
    method = PaymentMethod.CASH
    unknown_status = PaymentStatus.PENDING

    @property
    def configured(self) -> bool:
        return True

    def map_status(self, provider_status: str) -> PaymentStatus:
        return _CASH_STATUS.get((provider_status or "").strip().lower(), self.unknown_status)

    async def initiate(self, payment: Payment, req: CreatePayment) -> PaymentIntent:
        return PaymentIntent(
            transaction_id=req.transaction_id,
            status=PaymentStatus.PENDING.value,
            provider=self.provider,
            request={"order_id": req.order_id, "amount": str(req.amount)},
            response={"collect_on_delivery": True},
        )

    async def handle_callback(self, headers: Mapping[str, Any], body: bytes) -> dict[str, Any]:
        return {"success": False, "message": "Cash payments have no provider callbacks"}

    async def sync_status(self, transaction_id: str) -> VerifyResult:
        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFoundException(transaction_id)
        return VerifyResult(
            transaction_id=transaction_id,
            status=payment.status,
            paid=payment.status == PaymentStatus.PAID,
        )

    async def refund(self, payment: Payment, req: RefundRequest) -> RefundResult:
        # Cash is handed back by the courier; nothing to call
        return RefundResult(
            refund_id=req.refund_id,
            status="REFUNDED" if req.full else "PARTIALLY_REFUNDED",
            provider=self.provider,
            provider_ref=req.transaction_id,
        )
