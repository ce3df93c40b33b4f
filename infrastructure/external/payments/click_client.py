"""
Click merchant API client.

Checkout links are built locally; reversal and status checks use the
merchant REST API authenticated with the ``Auth`` header
``merchant_user_id:sha1(timestamp + secret_key):timestamp``.
"""
from __future__ import annotations

import time
from typing import Optional
from urllib.parse import urlencode

import httpx

from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    QueryPayment,
)
from core.settings import ClickCredentials, payment_settings
from domain.payment.signatures import click_auth_header, click_merchant_trans_id
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError


# Click payment_status values from the merchant API
_CLICK_PAYMENT_STATUS = {
    2: "success",
    -1: "failed",
    -2: "failed",
    -3: "failed",
    -4: "failed",
    -5: "failed",
    -6: "failed",
}


class ClickClient(BasePaymentClient):
    provider = "click"

    def __init__(self, credentials: ClickCredentials, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            transport=transport,
        )
        self.credentials = credentials

    def _headers(self) -> dict[str, str]:
        ts = int(time.time())
        return {
            "Accept": "application/json",
            "Auth": click_auth_header(
                self.credentials.merchant_user_id or self.credentials.merchant_id,
                self.credentials.secret_key,
                ts,
            ),
        }

    async def create_payment(self, req: CreatePayment) -> PaymentIntent:  # type: ignore[override]
        merchant_trans_id = click_merchant_trans_id(req.order_id, req.transaction_id)
        params = {
            "service_id": self.credentials.service_id,
            "merchant_id": self.credentials.merchant_id,
            "amount": f"{req.amount:.2f}",
            "transaction_param": merchant_trans_id,
        }
        if req.return_url:
            params["return_url"] = req.return_url
        url = f"{self.credentials.checkout_url}?{urlencode(params)}"
        self._log("click_checkout_built", transaction_id=req.transaction_id)
        return PaymentIntent(
            transaction_id=req.transaction_id,
            status="PENDING",
            provider=self.provider,
            payment_url=url,
            request=params,
            response={"payment_url": url},
        )

    async def query_payment(self, query: QueryPayment) -> PaymentIntent:  # type: ignore[override]
        if not query.provider_ref:
            raise PaymentProviderError("Click status check requires click_trans_id", provider=self.provider)
        url = f"{self.credentials.api_url}/payment/status/{self.credentials.service_id}/{query.provider_ref}"
        data = await self._request_json("GET", url, headers=self._headers())
        if int(data.get("error_code", 0)) != 0:
            raise PaymentProviderError(
                str(data.get("error_note") or "Click status check failed"),
                provider=self.provider,
                provider_code=str(data.get("error_code")),
            )
        raw_status = _CLICK_PAYMENT_STATUS.get(int(data.get("payment_status", 0)), "pending")
        return PaymentIntent(
            transaction_id=query.transaction_id,
            status=self._map_status(raw_status),
            provider=self.provider,
            provider_ref=query.provider_ref,
            response=data,
        )

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        if not req.full:
            raise PaymentProviderError("Click supports full reversals only", provider=self.provider)
        if not req.provider_ref:
            raise PaymentProviderError("Click reversal requires click_trans_id", provider=self.provider)
        url = f"{self.credentials.api_url}/payment/reversal/{self.credentials.service_id}/{req.provider_ref}"
        data = await self._request_json("DELETE", url, headers=self._headers())
        if int(data.get("error_code", 0)) != 0:
            raise PaymentProviderError(
                str(data.get("error_note") or "Click reversal rejected"),
                provider=self.provider,
                provider_code=str(data.get("error_code")),
            )
        self._log("click_reversal_accepted", transaction_id=req.transaction_id, refund_id=req.refund_id)
        return RefundResult(
            refund_id=req.refund_id,
            status="REFUNDED",
            provider=self.provider,
            provider_ref=str(data.get("payment_id") or req.provider_ref),
            response=data,
        )
