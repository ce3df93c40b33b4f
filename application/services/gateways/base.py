"""
Shared gateway adapter machinery.

Adapters translate one provider protocol onto the local Payment/Order state.
They receive their credentials (or an ``UnconfiguredProvider`` marker), an
outbound client and a unit-of-work factory at construction; nothing here
reads global configuration.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    QueryPayment,
    RefundRequest,
    RefundResult,
    VerifyResult,
)
from application.ports.payment_gateway import ProviderClient
from application.services.callback_verifier import CallbackVerifier
from core.logging_config import get_logger
from core.settings import PaymentSettings, UnconfiguredProvider
from domain.common.exceptions import PaymentNotFoundException, StalePaymentException
from domain.common.unit_of_work import AbstractUnitOfWork, UnitOfWorkFactory
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.service import PaymentStatusReconciler
from infrastructure.external.payments.exceptions import GatewayNotConfiguredError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# Payment statuses whose entry is propagated to the order
RECONCILED_STATUSES = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})

# Payment statuses that keep an order settled
SETTLED_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED})


class BaseGatewayAdapter:
    method: PaymentMethod
    # Status assumed for provider words missing from the vocabulary
    unknown_status: PaymentStatus = PaymentStatus.FAILED

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        credentials: Any,
        client: Optional[ProviderClient] = None,
        reconciler: Optional[PaymentStatusReconciler] = None,
        verifier: Optional[CallbackVerifier] = None,
        settings: Optional[PaymentSettings] = None,
    ) -> None:
        self.uow_factory = uow_factory
        self.credentials = credentials
        self.client = client
        self.reconciler = reconciler or PaymentStatusReconciler()
        self.verifier = verifier or CallbackVerifier()
        self.settings = settings or PaymentSettings()

    @property
    def provider(self) -> str:
        return self.method.value.lower()

    @property
    def configured(self) -> bool:
        return not isinstance(self.credentials, UnconfiguredProvider)

    @property
    def factor(self) -> int:
        return self.settings.minor_unit_factor

    def ensure_configured(self) -> None:
        if not self.configured:
            missing = getattr(self.credentials, "missing", ())
            raise GatewayNotConfiguredError(self.provider, missing)

    def map_status(self, provider_status: str) -> PaymentStatus:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        mapped = mapping.get((provider_status or "").strip().lower())
        return PaymentStatus(mapped) if mapped else self.unknown_status

    # ---- persistence helpers (inside the caller's unit of work) ----

    async def _save(
        self,
        uow: AbstractUnitOfWork,
        payment: Payment,
        *,
        previous_status: PaymentStatus,
        expected_version: int,
    ) -> bool:
        """Conditionally write the payment and reconcile the order on a status entry.

        Returns whether the order changed.
        """
        await uow.payment_repository.update(payment, expected_version=expected_version)
        if payment.status == previous_status or payment.status not in RECONCILED_STATUSES:
            return False
        settled_elsewhere = False
        if payment.status == PaymentStatus.CANCELLED and previous_status != PaymentStatus.PAID:
            # An abandoned attempt must not undo an order another payment settled
            settled_elsewhere = await self._settled_elsewhere(uow, payment)
            if settled_elsewhere:
                logger.info(
                    "payment_cancel_not_propagated",
                    provider=self.provider,
                    payment_id=payment.id,
                    order_id=payment.order_id,
                )
        return await self.reconciler.apply(
            uow.order_repository,
            payment.order_id,
            payment.status,
            settled_elsewhere=settled_elsewhere,
        )

    @staticmethod
    async def _settled_elsewhere(uow: AbstractUnitOfWork, payment: Payment) -> bool:
        others = await uow.payment_repository.list_by_order(payment.order_id)
        return any(p.id != payment.id and p.status in SETTLED_STATUSES for p in others)

    async def _apply_status(
        self,
        transaction_id: str,
        target: PaymentStatus,
        *,
        kind: str,
        payload: dict[str, Any],
    ) -> Payment:
        """Move a PENDING payment to ``target``; terminal payments are left untouched.

        A concurrent writer makes the first attempt stale; the second attempt
        re-reads and usually finds the payment already settled.
        """
        try:
            return await self._apply_status_once(transaction_id, target, kind=kind, payload=payload)
        except StalePaymentException:
            logger.info("payment_status_retry_stale", provider=self.provider, transaction_id=transaction_id)
            return await self._apply_status_once(transaction_id, target, kind=kind, payload=payload)

    async def _apply_status_once(
        self,
        transaction_id: str,
        target: PaymentStatus,
        *,
        kind: str,
        payload: dict[str, Any],
    ) -> Payment:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
            if payment is None:
                raise PaymentNotFoundException(transaction_id)
            if payment.status != PaymentStatus.PENDING or target == PaymentStatus.PENDING:
                return payment
            previous, version = payment.status, payment.version
            payment.record(kind, payload)
            if target == PaymentStatus.PAID:
                payment.mark_paid(payload.get("provider_ref"))
            elif target == PaymentStatus.CANCELLED:
                payment.mark_cancelled()
            else:
                payment.mark_failed(payload.get("reason") or f"provider status {payload.get('status')}")
            await self._save(uow, payment, previous_status=previous, expected_version=version)
            logger.info(
                "payment_status_applied",
                provider=self.provider,
                payment_id=payment.id,
                transaction_id=transaction_id,
                status=payment.status.value,
            )
            return payment

    # ---- capability set ----

    async def initiate(self, payment: Payment, req: CreatePayment) -> PaymentIntent:
        self.ensure_configured()
        return await self.client.create_payment(req)

    async def handle_callback(self, headers: Mapping[str, Any], body: bytes) -> dict[str, Any]:
        raise NotImplementedError

    async def verify(self, transaction_id: str, status: str) -> VerifyResult:
        """Manual verification with a provider status word."""
        target = self.map_status(status)
        payment = await self._apply_status(
            transaction_id,
            target,
            kind="verify",
            payload={"status": status},
        )
        return VerifyResult(
            transaction_id=transaction_id,
            status=payment.status,
            paid=payment.status == PaymentStatus.PAID,
        )

    async def sync_status(self, transaction_id: str) -> VerifyResult:
        """Poll the provider and apply its answer."""
        self.ensure_configured()
        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFoundException(transaction_id)
        intent = await self.client.query_payment(
            QueryPayment(transaction_id=transaction_id, provider_ref=payment.provider_ref)
        )
        payment = await self._apply_status(
            transaction_id,
            PaymentStatus(intent.status),
            kind="status",
            payload={"status": intent.status, "response": intent.response},
        )
        return VerifyResult(
            transaction_id=transaction_id,
            status=payment.status,
            paid=payment.status == PaymentStatus.PAID,
        )

    async def refund(self, payment: Payment, req: RefundRequest) -> RefundResult:
        self.ensure_configured()
        return await self.client.refund(req)

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
