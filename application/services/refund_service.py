"""
Refund processing.

The refund amount is reserved on the payment (a version-checked write with a
``refund_intent`` exchange) before the provider is called, so a duplicated or
concurrent request cannot refund the same money twice. The provider call runs
outside any unit of work; the local status only moves after the provider
accepts. A rejected refund releases the reservation and leaves an ``error``
exchange, so the caller may simply retry.
"""
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Mapping, Optional

from application.dtos.payments import RefundReceipt, RefundRequest, RefundResult
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import retry_stale
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
    RefundFailedException,
)
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.service import PaymentStatusReconciler
from infrastructure.external.payments.exceptions import PaymentProviderError


logger = get_logger(__name__)


class RefundService:
    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        gateways: Mapping[PaymentMethod, PaymentGateway],
        reconciler: Optional[PaymentStatusReconciler] = None,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self.uow_factory = uow_factory
        self.gateways = dict(gateways)
        self.reconciler = reconciler or PaymentStatusReconciler()
        self.settings = settings or payment_settings

    async def refund(
        self,
        payment_id: int,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> RefundReceipt:
        refund_id = uuid.uuid4().hex
        payment, refund_amount = await retry_stale(
            lambda: self._reserve(payment_id, amount, reason, refund_id)
        )

        req = RefundRequest(
            transaction_id=payment.transaction_id,
            refund_id=refund_id,
            amount=refund_amount,
            amount_minor=int((refund_amount * self.settings.minor_unit_factor).to_integral_value()),
            currency=payment.currency,
            reason=reason,
            provider_ref=payment.provider_ref,
            full=payment.refunded_amount + refund_amount >= payment.amount,
        )
        gateway = self.gateways[payment.method]
        logger.info(
            "payment_refund_request",
            payment_id=payment.id,
            provider=payment.provider,
            refund_id=req.refund_id,
            amount=str(refund_amount),
        )
        try:
            result = await gateway.refund(payment, req)
        except PaymentProviderError as exc:
            logger.warning(
                "payment_refund_failed",
                payment_id=payment.id,
                provider=payment.provider,
                error=exc.message,
            )
            await retry_stale(lambda: self._record_error(payment_id, req, exc))
            raise RefundFailedException(exc.message, payment_id=payment.id, provider=payment.provider) from exc

        try:
            payment = await retry_stale(lambda: self._apply(payment_id, req, result))
        except BusinessException as exc:
            # The provider already paid out; keep the reservation and leave a trace
            logger.error(
                "payment_refund_apply_failed",
                payment_id=payment_id,
                refund_id=req.refund_id,
                error=exc.message,
            )
            await retry_stale(lambda: self._record_unapplied(payment_id, req, result, exc))
            raise
        logger.info(
            "payment_refund_applied",
            payment_id=payment.id,
            refund_id=req.refund_id,
            status=payment.status.value,
            refunded_amount=str(payment.refunded_amount),
        )
        return RefundReceipt(
            payment_id=payment.id,
            refund_id=req.refund_id,
            amount=refund_amount,
            refunded_amount=payment.refunded_amount,
            status=payment.status,
            provider=result.provider,
        )

    async def _reserve(
        self,
        payment_id: int,
        amount: Optional[Decimal],
        reason: Optional[str],
        refund_id: str,
    ) -> tuple[Payment, Decimal]:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundException(str(payment_id))
            if payment.status not in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED):
                raise PaymentNotRefundableException(payment.status.value)

            remaining = payment.refundable_amount()
            if remaining <= 0 and payment.pending_refund_amount > 0:
                raise DomainValidationException(
                    "A refund for this payment is already in progress",
                    field="amount",
                    details={"pending_refund": str(payment.pending_refund_amount)},
                )
            if remaining <= 0:
                raise PaymentNotRefundableException(payment.status.value)
            refund_amount = Decimal(amount) if amount is not None else remaining
            if refund_amount <= 0 or refund_amount > remaining:
                raise DomainValidationException(
                    f"Refund amount must be within (0, {remaining}]",
                    field="amount",
                    details={"refundable": str(remaining)},
                )

            version = payment.version
            payment.reserve_refund(refund_amount)
            payment.record(
                "refund_intent",
                {"refund_id": refund_id, "amount": str(refund_amount), "reason": reason},
            )
            await uow.payment_repository.update(payment, expected_version=version)
            return payment, refund_amount

    async def _apply(self, payment_id: int, req: RefundRequest, result: RefundResult) -> Payment:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            version = payment.version
            payment.settle_refund(req.amount)
            payment.record(
                "refund",
                {
                    "refund_id": req.refund_id,
                    "amount": str(req.amount),
                    "reason": req.reason,
                    "provider_status": result.status,
                    "response": result.response,
                },
            )
            await uow.payment_repository.update(payment, expected_version=version)
            if payment.status == PaymentStatus.REFUNDED:
                await self.reconciler.apply(uow.order_repository, payment.order_id, PaymentStatus.REFUNDED)
            return payment

    async def _record_error(self, payment_id: int, req: RefundRequest, exc: PaymentProviderError) -> None:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            version = payment.version
            payment.release_refund(req.amount)
            payment.record(
                "error",
                {
                    "operation": "refund",
                    "refund_id": req.refund_id,
                    "amount": str(req.amount),
                    "message": exc.message,
                    "details": exc.details or {},
                },
            )
            await uow.payment_repository.update(payment, expected_version=version)

    async def _record_unapplied(
        self,
        payment_id: int,
        req: RefundRequest,
        result: RefundResult,
        exc: BusinessException,
    ) -> None:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            version = payment.version
            payment.record(
                "error",
                {
                    "operation": "refund",
                    "stage": "apply",
                    "refund_id": req.refund_id,
                    "amount": str(req.amount),
                    "provider_status": result.status,
                    "response": result.response,
                    "message": exc.message,
                },
            )
            await uow.payment_repository.update(payment, expected_version=version)
