"""
Payme merchant API adapter (JSON-RPC dispatch).

One endpoint receives ``{id, method, params}``; each method is a step of the
Payme transaction lifecycle (create -> perform | cancel) plus read-only
checks. Every branch answers ``{id, result}`` or ``{id, error}`` with HTTP 200.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Mapping, Optional

from application.services.gateways.base import BaseGatewayAdapter
from core.logging_config import get_logger
from domain.common.exceptions import PaymentAlreadyExistsException, StalePaymentException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.payment.entity import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    from_millis,
    to_millis,
)
from infrastructure.external.payments.exceptions import PaymentSignatureError
from shared.codes.payment_codes import PaymeError, PaymeState


logger = get_logger(__name__)


class PaymeRpcError(Exception):
    """Raised inside handlers; converted to a JSON-RPC error envelope."""

    def __init__(self, code: PaymeError, message: str, data: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "code": int(self.code),
            "message": {"ru": self.message, "uz": self.message, "en": self.message},
        }
        if self.data is not None:
            error["data"] = self.data
        return error


def payme_state(payment: Payment) -> int:
    """Fixed wire state code for a payment."""
    if payment.status == PaymentStatus.PAID:
        return int(PaymeState.PERFORMED)
    if payment.status == PaymentStatus.PENDING:
        return int(PaymeState.CREATED)
    if payment.status in (PaymentStatus.CANCELLED, PaymentStatus.FAILED):
        return int(PaymeState.CANCELLED)
    return int(PaymeState.UNKNOWN)


Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class PaymeGateway(BaseGatewayAdapter):
    method = PaymentMethod.PAYME
    unknown_status = PaymentStatus.FAILED

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._handlers: dict[str, Handler] = {
            "CheckPerformTransaction": self.check_perform_transaction,
            "CreateTransaction": self.create_transaction,
            "PerformTransaction": self.perform_transaction,
            "CancelTransaction": self.cancel_transaction,
            "CheckTransaction": self.check_transaction,
            "GetStatement": self.get_statement,
        }

    # ---- dispatch ----

    async def handle_callback(self, headers: Mapping[str, Any], body: bytes) -> dict[str, Any]:
        request_id: Any = None
        try:
            if not self.configured:
                raise PaymeRpcError(PaymeError.INSUFFICIENT_PRIVILEGE, "Payme is not configured")
            try:
                self.verifier.verify_payme(headers, self.credentials)
            except PaymentSignatureError:
                raise PaymeRpcError(PaymeError.INSUFFICIENT_PRIVILEGE, "Insufficient privilege") from None
            try:
                request = json.loads(body.decode("utf-8") if body else "")
            except (UnicodeDecodeError, json.JSONDecodeError):
                raise PaymeRpcError(PaymeError.PARSE_ERROR, "Parse error") from None
            if not isinstance(request, dict):
                raise PaymeRpcError(PaymeError.INVALID_REQUEST, "Invalid request")
            request_id = request.get("id")
            method = request.get("method")
            params = request.get("params") or {}
            if not method or not isinstance(params, dict):
                raise PaymeRpcError(PaymeError.INVALID_REQUEST, "Invalid request")
            handler = self._handlers.get(method)
            if handler is None:
                raise PaymeRpcError(PaymeError.METHOD_NOT_FOUND, "Method not found", data=str(method))
            result = await self._with_stale_retry(handler, params)
            return {"id": request_id, "result": result}
        except PaymeRpcError as exc:
            logger.info("payme_rpc_error", code=int(exc.code), request_id=request_id)
            return {"id": request_id, "error": exc.to_dict()}
        except Exception:
            logger.exception("payme_rpc_unexpected_error", request_id=request_id)
            return {"id": request_id, "error": PaymeRpcError(PaymeError.SYSTEM_ERROR, "System error").to_dict()}

    async def _with_stale_retry(self, handler: Handler, params: dict[str, Any]) -> dict[str, Any]:
        try:
            return await handler(params)
        except StalePaymentException:
            # Concurrent delivery already moved the row; re-read and answer from it
            return await handler(params)

    # ---- param parsing ----

    @staticmethod
    def _order_id(params: dict[str, Any]) -> int:
        account = params.get("account") or {}
        raw = account.get("order_id") if isinstance(account, dict) else None
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise PaymeRpcError(PaymeError.ORDER_NOT_FOUND, "Order not found", data="order_id") from None

    @staticmethod
    def _amount(params: dict[str, Any]) -> int:
        raw = params.get("amount")
        if raw is None or isinstance(raw, bool):
            raise PaymeRpcError(PaymeError.INVALID_AMOUNT, "Invalid amount")
        try:
            amount = Decimal(str(raw))
        except InvalidOperation:
            raise PaymeRpcError(PaymeError.INVALID_AMOUNT, "Invalid amount") from None
        # tiyin amounts are whole numbers
        if not amount.is_finite() or amount <= 0 or amount != amount.to_integral_value():
            raise PaymeRpcError(PaymeError.INVALID_AMOUNT, "Invalid amount")
        return int(amount)

    @staticmethod
    def _transaction_id(params: dict[str, Any]) -> str:
        tid = params.get("id")
        if not tid:
            raise PaymeRpcError(PaymeError.INVALID_REQUEST, "Transaction id is required")
        return str(tid)

    @staticmethod
    def _cancel_reason(params: dict[str, Any]) -> Optional[int]:
        raw = params.get("reason")
        if raw is None:
            return None
        if isinstance(raw, bool) or not isinstance(raw, (int, str)):
            raise PaymeRpcError(PaymeError.INVALID_REQUEST, "Invalid cancel reason", data="reason")
        try:
            return int(raw)
        except ValueError:
            raise PaymeRpcError(PaymeError.INVALID_REQUEST, "Invalid cancel reason", data="reason") from None

    async def _checked_order(self, uow: AbstractUnitOfWork, order_id: int, amount: int) -> Order:
        """Order exists, is not paid yet, and the amount matches the order total."""
        order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise PaymeRpcError(PaymeError.ORDER_NOT_FOUND, "Order not found", data="order_id")
        paid = await uow.payment_repository.list_by_order(order_id, status=PaymentStatus.PAID)
        if paid or order.is_paid:
            raise PaymeRpcError(PaymeError.CANNOT_PERFORM, "Order is already paid")
        if Decimal(amount) != order.total_amount * self.factor:
            raise PaymeRpcError(PaymeError.INVALID_AMOUNT, "Invalid amount")
        return order

    async def _get(self, uow: AbstractUnitOfWork, transaction_id: str) -> Payment:
        payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
        if payment is None or payment.method != PaymentMethod.PAYME:
            raise PaymeRpcError(PaymeError.TRANSACTION_NOT_FOUND, "Transaction not found")
        return payment

    def _receipt(self, order: Order, amount: int) -> dict[str, Any]:
        return {
            "receipt_type": 0,
            "items": [
                {"title": f"Order #{order.id}", "price": amount, "count": 1, "vat_percent": 0},
            ],
        }

    @staticmethod
    def _created(payment: Payment) -> dict[str, Any]:
        return {
            "create_time": to_millis(payment.create_time),
            "transaction": str(payment.id),
            "state": payme_state(payment),
        }

    # ---- methods ----

    async def check_perform_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        order_id = self._order_id(params)
        amount = self._amount(params)
        async with self.uow_factory(readonly=True) as uow:
            order = await self._checked_order(uow, order_id, amount)
        return {"allow": True, "detail": self._receipt(order, amount)}

    async def create_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        transaction_id = self._transaction_id(params)
        async with self.uow_factory() as uow:
            existing = await uow.payment_repository.get_by_transaction_id(transaction_id)
            if existing is not None:
                return self._created(existing)

            order_id = self._order_id(params)
            amount = self._amount(params)
            order = await self._checked_order(uow, order_id, amount)
            provider_time = from_millis(params["time"]) if params.get("time") else None
            now = datetime.now(timezone.utc)
            payload = {"method": "CreateTransaction", "params": params}

            pending = await uow.payment_repository.list_by_order(
                order_id, method=PaymentMethod.PAYME, status=PaymentStatus.PENDING
            )
            if any(p.create_time is not None for p in pending):
                # A different Payme transaction is already waiting for this order
                raise PaymeRpcError(PaymeError.CANNOT_PERFORM, "Order has another pending transaction")
            unbound = [p for p in pending if p.create_time is None]

            if unbound:
                payment = unbound[-1]
                if Decimal(amount) != payment.amount * self.factor:
                    raise PaymeRpcError(PaymeError.INVALID_AMOUNT, "Invalid amount")
                version = payment.version
                payment.adopt_transaction_id(transaction_id)
                payment.provider_ref = transaction_id
                payment.provider_time = provider_time
                payment.create_time = now
                payment.record("callback", payload)
                await self._save(uow, payment, previous_status=payment.status, expected_version=version)
                logger.info("payme_transaction_bound", payment_id=payment.id, transaction_id=transaction_id)
                return self._created(payment)

            payment = Payment(
                id=None,
                order_id=order.id,
                transaction_id=transaction_id,
                amount=Decimal(amount) / self.factor,
                method=PaymentMethod.PAYME,
                currency=order.currency,
                provider_ref=transaction_id,
                provider_time=provider_time,
                create_time=now,
            )
            payment.record("callback", payload)
            try:
                payment = await uow.payment_repository.create(payment)
            except PaymentAlreadyExistsException:
                stored = await uow.payment_repository.get_by_transaction_id(transaction_id)
                if stored is None:
                    raise
                return self._created(stored)
            logger.info("payme_transaction_created", payment_id=payment.id, transaction_id=transaction_id)
            return self._created(payment)

    async def perform_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        transaction_id = self._transaction_id(params)
        async with self.uow_factory() as uow:
            payment = await self._get(uow, transaction_id)
            if payment.status == PaymentStatus.PAID:
                return self._performed(payment)
            if payment.status != PaymentStatus.PENDING:
                raise PaymeRpcError(PaymeError.CANNOT_PERFORM, "Transaction cannot be performed")
            others = await uow.payment_repository.list_by_order(payment.order_id, status=PaymentStatus.PAID)
            if others:
                raise PaymeRpcError(PaymeError.CANNOT_PERFORM, "Order is already paid")

            previous, version = payment.status, payment.version
            payment.record("callback", {"method": "PerformTransaction", "params": params})
            payment.mark_paid(transaction_id, at=datetime.now(timezone.utc))
            await self._save(uow, payment, previous_status=previous, expected_version=version)
            logger.info("payme_transaction_performed", payment_id=payment.id, transaction_id=transaction_id)
            return self._performed(payment)

    @staticmethod
    def _performed(payment: Payment) -> dict[str, Any]:
        return {
            "transaction": str(payment.id),
            "perform_time": to_millis(payment.perform_time),
            "state": payme_state(payment),
        }

    async def cancel_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        transaction_id = self._transaction_id(params)
        reason = self._cancel_reason(params)
        async with self.uow_factory() as uow:
            payment = await self._get(uow, transaction_id)
            if payment.status == PaymentStatus.CANCELLED:
                return self._cancelled(payment)
            refunding = payment.pending_refund_amount > 0
            if refunding or payment.status in (PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED):
                raise PaymeRpcError(PaymeError.CANNOT_CANCEL, "Transaction cannot be cancelled")
            if payment.status == PaymentStatus.PAID and not self.settings.allow_cancel_after_fulfillment:
                order = await uow.order_repository.get_by_id(payment.order_id)
                if order is not None and order.is_fulfilled:
                    raise PaymeRpcError(PaymeError.CANNOT_CANCEL, "Order is already fulfilled")

            previous, version = payment.status, payment.version
            payment.record("callback", {"method": "CancelTransaction", "params": params})
            payment.mark_cancelled(reason, at=datetime.now(timezone.utc))
            await self._save(uow, payment, previous_status=previous, expected_version=version)
            logger.info(
                "payme_transaction_cancelled",
                payment_id=payment.id,
                transaction_id=transaction_id,
                previous_status=previous.value,
                reason=payment.cancel_reason,
            )
            return self._cancelled(payment)

    @staticmethod
    def _cancelled(payment: Payment) -> dict[str, Any]:
        return {
            "transaction": str(payment.id),
            "cancel_time": to_millis(payment.cancel_time),
            "state": payme_state(payment),
        }

    async def check_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        transaction_id = self._transaction_id(params)
        async with self.uow_factory(readonly=True) as uow:
            payment = await self._get(uow, transaction_id)
        return {
            "create_time": to_millis(payment.create_time),
            "perform_time": to_millis(payment.perform_time),
            "cancel_time": to_millis(payment.cancel_time),
            "transaction": str(payment.id),
            "state": payme_state(payment),
            "reason": payment.cancel_reason,
        }

    async def get_statement(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            start = from_millis(int(params["from"]))
            end = from_millis(int(params["to"]))
        except (KeyError, TypeError, ValueError):
            raise PaymeRpcError(PaymeError.INVALID_REQUEST, "from/to are required") from None
        async with self.uow_factory(readonly=True) as uow:
            payments = await uow.payment_repository.list_by_method_created_between(
                PaymentMethod.PAYME,
                start,
                end,
                statuses=[PaymentStatus.PAID, PaymentStatus.CANCELLED],
            )
        return {
            "transactions": [
                {
                    "id": p.transaction_id,
                    "time": to_millis(p.provider_time),
                    "amount": p.minor_amount(self.factor),
                    "account": {"order_id": str(p.order_id)},
                    "create_time": to_millis(p.create_time),
                    "perform_time": to_millis(p.perform_time),
                    "cancel_time": to_millis(p.cancel_time),
                    "transaction": str(p.id),
                    "state": payme_state(p),
                    "reason": p.cancel_reason,
                }
                for p in payments
            ]
        }
