"""
Uzum checkout adapter (create / verify / status polling).

Payments are created through the signed REST API; the final status arrives
either as a signed callback or by polling ``/payments/status``.
"""
from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError

from application.dtos.payments import UzumCallback
from application.services.callback_verifier import MalformedCallbackError, decode_body
from application.services.gateways.base import BaseGatewayAdapter
from core.logging_config import get_logger
from domain.payment.entity import PaymentMethod, PaymentStatus
from infrastructure.external.payments.exceptions import PaymentSignatureError


logger = get_logger(__name__)


def _reply(success: bool, message: str, transaction_id: str | None = None, **extra: Any) -> dict[str, Any]:
    return {"success": success, "message": message, "transaction_id": transaction_id, **extra}


class UzumGateway(BaseGatewayAdapter):
    method = PaymentMethod.UZUM
    unknown_status = PaymentStatus.PENDING

    async def handle_callback(self, headers: Mapping[str, Any], body: bytes) -> dict[str, Any]:
        try:
            fields = decode_body(headers, body)
        except MalformedCallbackError:
            return _reply(False, "Malformed callback")
        transaction_id = fields.get("transaction_id")
        try:
            return await self._handle(fields)
        except Exception:
            logger.exception("uzum_callback_unexpected_error", transaction_id=transaction_id)
            return _reply(False, "Callback processing failed", transaction_id)

    async def _handle(self, fields: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            logger.warning("uzum_callback_unconfigured")
            return _reply(False, "Uzum is not configured", fields.get("transaction_id"))
        try:
            self.verifier.verify_uzum(fields, self.credentials)
        except PaymentSignatureError:
            return _reply(False, "Invalid signature", fields.get("transaction_id"))
        try:
            cb = UzumCallback.model_validate(fields)
        except ValidationError:
            return _reply(False, "Invalid callback payload", fields.get("transaction_id"))

        async with self.uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_transaction_id(cb.transaction_id)
        if payment is None or payment.method != PaymentMethod.UZUM:
            return _reply(False, "Payment not found", cb.transaction_id)
        if cb.amount is not None and cb.amount != payment.minor_amount(self.factor):
            logger.warning(
                "uzum_amount_mismatch",
                payment_id=payment.id,
                expected=payment.minor_amount(self.factor),
                received=cb.amount,
            )
            return _reply(False, "Amount mismatch", cb.transaction_id)

        payload = cb.model_dump(exclude_none=True)
        if cb.error_code:
            payment = await self._apply_status(
                cb.transaction_id,
                PaymentStatus.FAILED,
                kind="callback",
                payload={**payload, "reason": cb.error_message or f"uzum error {cb.error_code}"},
            )
            return _reply(False, cb.error_message or "Payment failed", cb.transaction_id, error_code=cb.error_code)

        payment = await self._apply_status(
            cb.transaction_id,
            self.map_status(cb.status),
            kind="callback",
            payload=payload,
        )
        paid = payment.status == PaymentStatus.PAID
        return _reply(
            paid,
            "Payment completed successfully" if paid else "Payment verification failed",
            cb.transaction_id,
        )
