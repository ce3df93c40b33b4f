"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from typing import Any, Callable, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    QueryPayment,
)
from application.ports.payment_gateway import ProviderClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient(ProviderClient):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Send a request with retries and decode the JSON body.

        Transport failures and 5xx/429 become ``PaymentRecoverableError``;
        other non-2xx answers and undecodable bodies become ``PaymentProviderError``.
        """
        async def _send() -> httpx.Response:
            async with self.client() as c:
                return await c.request(method, url, json=json, headers=headers)

        try:
            resp = await self._retry(_send)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("payment_provider_unreachable", provider=self.provider, url=url, error=str(exc))
            raise PaymentRecoverableError(str(exc) or exc.__class__.__name__, provider=self.provider) from exc

        if resp.status_code >= 500 or resp.status_code == 429:
            raise PaymentRecoverableError(
                f"Provider responded with HTTP {resp.status_code}",
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        if resp.status_code >= 400:
            raise PaymentProviderError(
                f"Provider responded with HTTP {resp.status_code}",
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"body": resp.text[:500]},
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentProviderError("Provider returned a non-JSON body", provider=self.provider) from exc
        if not isinstance(data, dict):
            raise PaymentProviderError("Provider returned an unexpected JSON shape", provider=self.provider)
        return data

    # Default implementations raise to force override where needed
    async def create_payment(self, req: CreatePayment) -> PaymentIntent:  # type: ignore[override]
        raise NotImplementedError

    async def query_payment(self, query: QueryPayment) -> PaymentIntent:  # type: ignore[override]
        raise NotImplementedError

    async def refund(self, req: RefundRequest) -> RefundResult:  # type: ignore[override]
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get((provider_status or "").lower(), "PENDING")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
