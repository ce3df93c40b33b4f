"""
Uzum checkout client: signed create / status / refund requests.

Every request body is signed with sha256 over the key-sorted ``k=v`` pairs
joined by ``&`` followed by the secret key.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    QueryPayment,
)
from core.settings import UzumCredentials, payment_settings
from domain.payment.signatures import uzum_signature
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError


class UzumClient(BasePaymentClient):
    provider = "uzum"

    def __init__(self, credentials: UzumCredentials, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self.credentials = credentials

    def _sign(self, fields: dict[str, Any]) -> dict[str, Any]:
        signed = dict(fields)
        signed["signature"] = uzum_signature(fields, self.credentials.secret_key)
        return signed

    async def _call(self, endpoint: str, fields: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        body = self._sign(fields)
        headers = {
            "Authorization": f"Bearer {self.credentials.api_key}",
            "Accept": "application/json",
        }
        data = await self._request_json("POST", f"{self.credentials.base_url}{endpoint}", json=body, headers=headers)
        if not data.get("success"):
            raise PaymentProviderError(
                str(data.get("message") or f"Uzum {endpoint} failed"),
                provider=self.provider,
                provider_code=str(data.get("error_code")) if data.get("error_code") is not None else None,
                details={"endpoint": endpoint},
            )
        return body, data

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _fallback_url(self, body: dict[str, Any]) -> str:
        params = {
            "merchant_id": body["merchant_id"],
            "transaction_id": body["transaction_id"],
            "amount": body["amount"],
            "signature": body["signature"],
        }
        return f"{self.credentials.checkout_url}?{urlencode(params)}"

    async def create_payment(self, req: CreatePayment) -> PaymentIntent:  # type: ignore[override]
        fields: dict[str, Any] = {
            "merchant_id": self.credentials.merchant_id,
            "transaction_id": req.transaction_id,
            "order_id": str(req.order_id),
            "amount": req.amount_minor,
            "currency": req.currency,
            "description": req.description or f"Order #{req.order_id}",
            "return_url": req.return_url,
            "cancel_url": req.cancel_url,
            "webhook_url": self.credentials.webhook_url,
            "timestamp": self._timestamp(),
        }
        fields = {k: v for k, v in fields.items() if v is not None}
        body, data = await self._call("/payments/create", fields)
        self._log("uzum_payment_created", transaction_id=req.transaction_id)
        provider_tid = data.get("transaction_id")
        return PaymentIntent(
            transaction_id=req.transaction_id,
            status=self._map_status(str(data.get("status") or "pending")),
            provider=self.provider,
            payment_url=data.get("payment_url") or self._fallback_url(body),
            provider_transaction_id=str(provider_tid) if provider_tid and provider_tid != req.transaction_id else None,
            request=body,
            response=data,
        )

    async def query_payment(self, query: QueryPayment) -> PaymentIntent:  # type: ignore[override]
        fields = {
            "merchant_id": self.credentials.merchant_id,
            "transaction_id": query.transaction_id,
            "timestamp": self._timestamp(),
        }
        body, data = await self._call("/payments/status", fields)
        return PaymentIntent(
            transaction_id=query.transaction_id,
            status=self._map_status(str(data.get("status") or "")),
            provider=self.provider,
            request=body,
            response=data,
        )

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        fields = {
            "merchant_id": self.credentials.merchant_id,
            "original_transaction_id": req.transaction_id,
            "refund_amount": req.amount_minor,
            "refund_id": req.refund_id,
            "reason": req.reason or "Customer refund request",
            "timestamp": self._timestamp(),
        }
        _, data = await self._call("/payments/refund", fields)
        self._log("uzum_refund_accepted", transaction_id=req.transaction_id, refund_id=req.refund_id)
        return RefundResult(
            refund_id=str(data.get("refund_id") or req.refund_id),
            status="REFUNDED" if req.full else "PARTIALLY_REFUNDED",
            provider=self.provider,
            provider_ref=req.transaction_id,
            response=data,
        )
