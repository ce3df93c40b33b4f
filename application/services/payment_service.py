"""
Application service orchestrating payment use-cases.

This class depends only on the application PaymentGateway port, the unit of
work and DTOs. Gateway adapters are built by the composition root (API/tasks)
and injected here, keeping dependencies one-way.

Initiation is record-then-call: the PENDING payment is committed before the
provider is contacted, so a callback racing the HTTP answer always finds it.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from application.dtos.payments import (
    CreatePayment,
    InitiatePayment,
    InitiateResult,
    PaymentIntent,
    PaymentView,
    ProcessPayment,
    ProcessResult,
    VerifyResult,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    DomainValidationException,
    OrderNotFoundException,
    PaymentNotFoundException,
    StalePaymentException,
)
from domain.common.unit_of_work import UnitOfWorkFactory
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.service import PaymentStatusReconciler
from infrastructure.external.payments.exceptions import PaymentProviderError


logger = get_logger(__name__)

T = TypeVar("T")


def new_transaction_id(method: PaymentMethod, now: Optional[datetime] = None) -> str:
    """``<UTC yyyymmddHHMMSS><METHOD><8 hex>``, unique enough to index on."""
    now = now or datetime.now(timezone.utc)
    return f"{now.astimezone(timezone.utc):%Y%m%d%H%M%S}{method.value}{secrets.token_hex(4)}"


async def retry_stale(fn: Callable[[], Awaitable[T]]) -> T:
    """Run ``fn`` and re-run it once if a concurrent writer made it stale."""
    try:
        return await fn()
    except StalePaymentException:
        return await fn()


class PaymentService:
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

    def gateway(self, method: PaymentMethod | str) -> PaymentGateway:
        try:
            key = PaymentMethod(str(method).upper()) if not isinstance(method, PaymentMethod) else method
            return self.gateways[key]
        except (ValueError, KeyError):
            raise DomainValidationException(f"Unsupported payment method: {method}", field="method") from None

    # ---- initiation ----

    async def initiate(
        self,
        cmd: InitiatePayment,
        *,
        exchange_extra: Optional[dict[str, Any]] = None,
    ) -> InitiateResult:
        gateway = self.gateway(cmd.method)
        gateway.ensure_configured()

        async with self.uow_factory() as uow:
            order = await uow.order_repository.get_by_id(cmd.order_id)
            if order is None:
                raise OrderNotFoundException(cmd.order_id)
            if order.is_paid:
                raise DomainValidationException("Order is already paid", field="order_id")
            outstanding = order.outstanding_amount()
            if cmd.amount > outstanding:
                raise DomainValidationException(
                    f"Amount {cmd.amount} exceeds outstanding {outstanding}",
                    field="amount",
                    details={"outstanding": str(outstanding)},
                )
            now = datetime.now(timezone.utc)
            payment = await uow.payment_repository.create(
                Payment(
                    id=None,
                    order_id=order.id,
                    transaction_id=new_transaction_id(cmd.method, now),
                    amount=cmd.amount,
                    method=cmd.method,
                    currency=cmd.currency,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info(
            "payment_initiate_recorded",
            payment_id=payment.id,
            order_id=payment.order_id,
            transaction_id=payment.transaction_id,
            provider=payment.provider,
        )

        req = CreatePayment(
            transaction_id=payment.transaction_id,
            order_id=payment.order_id,
            amount=payment.amount,
            amount_minor=payment.minor_amount(self.settings.minor_unit_factor),
            currency=payment.currency,
            return_url=cmd.return_url or self.settings.default_return_url,
            cancel_url=cmd.cancel_url or self.settings.default_cancel_url,
            description=cmd.description,
        )
        try:
            intent = await gateway.initiate(payment, req)
        except PaymentProviderError as exc:
            logger.warning(
                "payment_initiate_failed",
                payment_id=payment.id,
                provider=payment.provider,
                error=exc.message,
            )
            await retry_stale(lambda: self._record_failure(payment.id, exc))
            raise

        payment = await retry_stale(lambda: self._record_initiated(payment.id, intent, exchange_extra))
        logger.info(
            "payment_initiate_response",
            payment_id=payment.id,
            transaction_id=payment.transaction_id,
            provider=intent.provider,
            status=intent.status,
        )
        return InitiateResult(
            payment_id=payment.id,
            transaction_id=payment.transaction_id,
            provider_payload={
                "provider": intent.provider,
                "status": intent.status,
                "payment_url": intent.payment_url,
                "provider_ref": intent.provider_ref,
            },
        )

    async def _record_initiated(
        self,
        payment_id: int,
        intent: PaymentIntent,
        extra: Optional[dict[str, Any]],
    ) -> Payment:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            version = payment.version
            payment.record(
                "initiate",
                {
                    "request": intent.request,
                    "response": intent.response,
                    "payment_url": intent.payment_url,
                    **(extra or {}),
                },
            )
            if intent.provider_ref and not payment.provider_ref:
                payment.provider_ref = intent.provider_ref
            adopt = intent.provider_transaction_id
            if adopt and adopt != payment.transaction_id and payment.status == PaymentStatus.PENDING:
                payment.adopt_transaction_id(adopt)
            await uow.payment_repository.update(payment, expected_version=version)
            return payment

    async def _record_failure(self, payment_id: int, exc: PaymentProviderError) -> None:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            version = payment.version
            payment.record("error", {"message": exc.message, "code": int(exc.code), "details": exc.details or {}})
            if payment.status == PaymentStatus.PENDING:
                payment.mark_failed(exc.message)
            await uow.payment_repository.update(payment, expected_version=version)
            if payment.status == PaymentStatus.FAILED:
                await self.reconciler.apply(uow.order_repository, payment.order_id, PaymentStatus.FAILED)

    async def process(self, order_id: int, cmd: ProcessPayment) -> ProcessResult:
        """Initiate a payment for the full outstanding order amount."""
        async with self.uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        amount = order.outstanding_amount()
        if amount <= 0:
            raise DomainValidationException("Order has nothing left to pay", field="order_id")

        extra = {"card_last4": cmd.card_details.last4} if cmd.card_details else None
        result = await self.initiate(
            InitiatePayment(
                order_id=order_id,
                amount=amount,
                method=cmd.method,
                currency=order.currency,
                return_url=cmd.return_url,
            ),
            exchange_extra=extra,
        )
        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(result.payment_id)
        return ProcessResult(
            status=payment.status,
            payment_id=payment.id,
            transaction_id=payment.transaction_id,
            payment_url=result.provider_payload.get("payment_url"),
        )

    # ---- queries ----

    async def status(self, order_id: int) -> PaymentView:
        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_latest_by_order(order_id)
        if payment is None:
            raise PaymentNotFoundException(f"order {order_id}")
        return PaymentView.from_entity(payment)

    async def get_payment(self, payment_id: int) -> PaymentView:
        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundException(str(payment_id))
        return PaymentView.from_entity(payment)

    async def _payment_for(self, transaction_id: str) -> Payment:
        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
        if payment is None:
            raise PaymentNotFoundException(transaction_id)
        return payment

    # ---- provider driven ----

    async def handle_callback(self, method: PaymentMethod | str, headers: Mapping[str, Any], body: bytes) -> dict:
        gateway = self.gateway(method)
        return await gateway.handle_callback(headers, body)

    async def verify(self, method: PaymentMethod | str, transaction_id: str, status: str) -> VerifyResult:
        gateway = self.gateway(method)
        payment = await self._payment_for(transaction_id)
        if payment.method != gateway.method:
            raise PaymentNotFoundException(transaction_id)
        result = await gateway.verify(transaction_id, status)
        logger.info(
            "payment_verified",
            transaction_id=transaction_id,
            provider=payment.provider,
            status=result.status.value,
        )
        return result

    async def sync_status(self, transaction_id: str) -> VerifyResult:
        payment = await self._payment_for(transaction_id)
        return await self.gateway(payment.method).sync_status(transaction_id)

    async def poll_pending(
        self,
        method: PaymentMethod = PaymentMethod.UZUM,
        *,
        min_age_seconds: int = 120,
        limit: int = 100,
    ) -> dict[str, int]:
        """Poll the provider for PENDING payments older than ``min_age_seconds``."""
        older_than = datetime.now(timezone.utc) - timedelta(seconds=min_age_seconds)
        async with self.uow_factory(readonly=True) as uow:
            pending = await uow.payment_repository.list_pending(method, older_than=older_than, limit=limit)

        summary = {"checked": 0, "settled": 0, "errors": 0}
        for payment in pending:
            summary["checked"] += 1
            try:
                result = await self.sync_status(payment.transaction_id)
            except PaymentProviderError as exc:
                summary["errors"] += 1
                logger.warning(
                    "payment_poll_failed",
                    transaction_id=payment.transaction_id,
                    provider=payment.provider,
                    error=exc.message,
                )
                continue
            if result.status != PaymentStatus.PENDING:
                summary["settled"] += 1
        logger.info("payment_poll_completed", provider=method.value.lower(), **summary)
        return summary

    async def aclose(self) -> None:
        for gateway in self.gateways.values():
            await gateway.aclose()
