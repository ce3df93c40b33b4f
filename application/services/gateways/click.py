"""
Click SHOP-API adapter (action-code callbacks).

Click drives the flow: ``action=0`` (prepare) asks whether the merchant will
accept the payment, ``action=1`` (complete) reports the outcome. Both are
answered with ``{error, error_note, ...}`` and never raise to the transport.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from pydantic import ValidationError

from application.dtos.payments import ClickCallback
from application.services.callback_verifier import MalformedCallbackError, decode_body
from application.services.gateways.base import BaseGatewayAdapter
from core.logging_config import get_logger
from domain.common.exceptions import StalePaymentException
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.signatures import parse_click_merchant_trans_id
from infrastructure.external.payments.exceptions import PaymentSignatureError
from shared.codes.payment_codes import CLICK_ERROR_NOTES, ClickAction, ClickError


logger = get_logger(__name__)

_NOT_PAYABLE = frozenset({
    PaymentStatus.CANCELLED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED,
})


def _envelope(code: ClickError | int, note: str | None = None, **extra: Any) -> dict[str, Any]:
    error = int(code)
    if note is None:
        try:
            note = CLICK_ERROR_NOTES[ClickError(error)]
        except ValueError:
            note = ""
    return {**extra, "error": error, "error_note": note}


class ClickGateway(BaseGatewayAdapter):
    method = PaymentMethod.CLICK
    unknown_status = PaymentStatus.FAILED

    async def handle_callback(self, headers: Mapping[str, Any], body: bytes) -> dict[str, Any]:
        try:
            fields = decode_body(headers, body)
        except MalformedCallbackError:
            return _envelope(ClickError.BAD_REQUEST)
        try:
            return await self.handle_fields(fields)
        except Exception:
            logger.exception("click_callback_unexpected_error", merchant_trans_id=fields.get("merchant_trans_id"))
            return _envelope(ClickError.UPDATE_FAILED)

    async def handle_fields(self, fields: Mapping[str, Any]) -> dict[str, Any]:
        if not self.configured:
            logger.warning("click_callback_unconfigured")
            return _envelope(ClickError.BAD_REQUEST, "Click is not configured")
        try:
            cb = ClickCallback.model_validate(dict(fields))
            wire_amount = cb.amount_value
        except (ValidationError, InvalidOperation):
            return _envelope(ClickError.BAD_REQUEST)

        echo = {"click_trans_id": cb.click_trans_id, "merchant_trans_id": cb.merchant_trans_id}

        try:
            self.verifier.verify_click(cb, self.credentials)
        except PaymentSignatureError:
            return _envelope(ClickError.SIGN_CHECK_FAILED, **echo)
        if str(cb.service_id) != str(self.credentials.service_id):
            return _envelope(ClickError.BAD_REQUEST, "Invalid service_id", **echo)

        parsed = parse_click_merchant_trans_id(cb.merchant_trans_id)
        if parsed is None:
            return _envelope(ClickError.ORDER_NOT_FOUND, **echo)
        order_id, transaction_id = parsed

        if cb.action == ClickAction.PREPARE:
            handler = self._prepare
        elif cb.action == ClickAction.COMPLETE:
            handler = self._complete
        else:
            return _envelope(ClickError.ACTION_NOT_FOUND, **echo)

        try:
            return await handler(cb, order_id, transaction_id, wire_amount, echo)
        except StalePaymentException:
            # Another delivery won the race; answer from the stored state
            return await handler(cb, order_id, transaction_id, wire_amount, echo)

    def _amount_matches(self, payment: Payment, wire_amount: Decimal) -> bool:
        return wire_amount == payment.amount * self.factor

    async def _prepare(
        self,
        cb: ClickCallback,
        order_id: int,
        transaction_id: str,
        wire_amount: Decimal,
        echo: dict[str, Any],
    ) -> dict[str, Any]:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
            if payment is None or payment.order_id != order_id:
                return _envelope(ClickError.TRANSACTION_NOT_FOUND, **echo)
            paid = await uow.payment_repository.list_by_order(order_id, status=PaymentStatus.PAID)
            if paid:
                return _envelope(ClickError.ALREADY_PAID, **echo)
            if payment.status in _NOT_PAYABLE:
                return _envelope(ClickError.TRANSACTION_CANCELLED, **echo)
            if not self._amount_matches(payment, wire_amount):
                logger.warning(
                    "click_amount_mismatch",
                    payment_id=payment.id,
                    expected=str(payment.amount * self.factor),
                    received=str(wire_amount),
                )
                return _envelope(ClickError.INCORRECT_AMOUNT, **echo)

            if payment.provider_ref != cb.click_trans_id:
                version = payment.version
                payment.provider_ref = cb.click_trans_id
                payment.record("prepare", cb.model_dump())
                await self._save(uow, payment, previous_status=payment.status, expected_version=version)
                logger.info("click_prepared", payment_id=payment.id, transaction_id=transaction_id)
            return _envelope(ClickError.SUCCESS, merchant_prepare_id=payment.id, **echo)

    async def _complete(
        self,
        cb: ClickCallback,
        order_id: int,
        transaction_id: str,
        wire_amount: Decimal,
        echo: dict[str, Any],
    ) -> dict[str, Any]:
        async with self.uow_factory() as uow:
            payment = await uow.payment_repository.get_by_transaction_id(transaction_id)
            if payment is None or payment.order_id != order_id:
                return _envelope(ClickError.TRANSACTION_NOT_FOUND, **echo)

            if cb.error != 0:
                if payment.status == PaymentStatus.PENDING:
                    previous, version = payment.status, payment.version
                    payment.record("complete", cb.model_dump())
                    payment.mark_failed(cb.error_note or f"click error {cb.error}")
                    await self._save(uow, payment, previous_status=previous, expected_version=version)
                    logger.info("click_payment_failed", payment_id=payment.id, click_error=cb.error)
                return _envelope(cb.error, cb.error_note or "", merchant_confirm_id=payment.id, **echo)

            if payment.status == PaymentStatus.PAID:
                if payment.provider_ref == cb.click_trans_id:
                    return _envelope(ClickError.SUCCESS, merchant_confirm_id=payment.id, **echo)
                return _envelope(ClickError.ALREADY_PAID, **echo)
            if payment.status in _NOT_PAYABLE:
                return _envelope(ClickError.TRANSACTION_CANCELLED, **echo)
            others_paid = await uow.payment_repository.list_by_order(order_id, status=PaymentStatus.PAID)
            if others_paid:
                return _envelope(ClickError.ALREADY_PAID, **echo)
            if not self._amount_matches(payment, wire_amount):
                return _envelope(ClickError.INCORRECT_AMOUNT, **echo)

            previous, version = payment.status, payment.version
            payment.record("complete", cb.model_dump())
            payment.mark_paid(cb.click_trans_id)
            await self._save(uow, payment, previous_status=previous, expected_version=version)
            logger.info(
                "click_payment_completed",
                payment_id=payment.id,
                transaction_id=transaction_id,
                click_paydoc_id=cb.click_paydoc_id,
            )
            return _envelope(ClickError.SUCCESS, merchant_confirm_id=payment.id, **echo)
