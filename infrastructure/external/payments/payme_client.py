"""
Payme (Paycom) client: local checkout link plus Subscribe API receipts calls.
"""
from __future__ import annotations

import base64
import uuid
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    QueryPayment,
)
from core.settings import PaymeCredentials, payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError


# Receipt states in the Subscribe API
_RECEIPT_STATE = {
    4: "success",
    21: "cancelled",
    50: "cancelled",
}


def build_checkout_url(checkout_url: str, merchant_id: str, order_id: int, amount_minor: int, return_url: Optional[str]) -> str:
    parts = [f"m={merchant_id}", f"ac.order_id={order_id}", f"a={amount_minor}"]
    if return_url:
        parts.append(f"c={return_url}")
    token = base64.b64encode(";".join(parts).encode("utf-8")).decode("ascii")
    return f"{checkout_url.rstrip('/')}/{token}"


class PaymeClient(BasePaymentClient):
    provider = "payme"

    def __init__(self, credentials: PaymeCredentials, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self.credentials = credentials

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        body = {"id": uuid.uuid4().hex, "method": method, "params": params}
        headers = {"X-Auth": f"{self.credentials.merchant_id}:{self.credentials.key}"}
        data = await self._request_json("POST", self.credentials.api_url, json=body, headers=headers)
        if data.get("error"):
            err = data["error"] or {}
            message = err.get("message")
            if isinstance(message, dict):
                message = message.get("en") or next(iter(message.values()), None)
            raise PaymentProviderError(
                str(message or f"Payme {method} failed"),
                provider=self.provider,
                provider_code=str(err.get("code")),
            )
        return data.get("result") or {}

    async def create_payment(self, req: CreatePayment) -> PaymentIntent:  # type: ignore[override]
        url = build_checkout_url(
            self.credentials.checkout_url,
            self.credentials.merchant_id,
            req.order_id,
            req.amount_minor,
            req.return_url,
        )
        self._log("payme_checkout_built", transaction_id=req.transaction_id)
        return PaymentIntent(
            transaction_id=req.transaction_id,
            status="PENDING",
            provider=self.provider,
            payment_url=url,
            request={"order_id": req.order_id, "amount": req.amount_minor, "return_url": req.return_url},
            response={"payment_url": url},
        )

    async def query_payment(self, query: QueryPayment) -> PaymentIntent:  # type: ignore[override]
        result = await self._rpc("receipts.check", {"id": query.provider_ref or query.transaction_id})
        raw_status = _RECEIPT_STATE.get(int(result.get("state", 0)), "pending")
        return PaymentIntent(
            transaction_id=query.transaction_id,
            status=self._map_status(raw_status),
            provider=self.provider,
            provider_ref=query.provider_ref,
            response=result,
        )

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        if not req.full:
            raise PaymentProviderError("Payme supports full cancellation only", provider=self.provider)
        result = await self._rpc("receipts.cancel", {"id": req.provider_ref or req.transaction_id})
        receipt = result.get("receipt") or {}
        self._log("payme_receipt_cancelled", transaction_id=req.transaction_id, refund_id=req.refund_id)
        return RefundResult(
            refund_id=req.refund_id,
            status="REFUNDED",
            provider=self.provider,
            provider_ref=str(receipt.get("_id") or req.provider_ref or req.transaction_id),
            response=result,
        )
