"""Pytest bootstrap configuration.

Environment defaults are set before any application module is imported so
settings never reach for a real database or broker during collection.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

from decimal import Decimal
from typing import Any, Optional

import pytest

from application.dtos.payments import (
    CreatePayment,
    PaymentIntent,
    QueryPayment,
    RefundRequest,
    RefundResult,
)
from application.services.gateways import build_gateways
from application.services.payment_service import PaymentService
from application.services.refund_service import RefundService
from core.settings import ClickSettings, PaymeSettings, PaymentSettings, UzumSettings
from domain.order.entity import Order
from domain.payment.entity import PaymentMethod
from domain.payment.signatures import click_signature, payme_basic_auth, uzum_signature
from infrastructure.repositories.memory import InMemoryStore
from infrastructure.unit_of_work import in_memory_uow_factory


CLICK_SECRET = "click-secret"
CLICK_SERVICE_ID = "100"
PAYME_KEY = "payme-key"
UZUM_SECRET = "uzum-secret"


class StubProviderClient:
    """Records outbound calls; answers with configurable outcomes."""

    def __init__(
        self,
        provider: str,
        *,
        status: str = "PENDING",
        query_status: str = "PENDING",
        fail: Optional[Exception] = None,
        refund_fail: Optional[Exception] = None,
        provider_transaction_id: Optional[str] = None,
    ) -> None:
        self.provider = provider
        self.status = status
        self.query_status = query_status
        self.fail = fail
        self.refund_fail = refund_fail
        self.provider_transaction_id = provider_transaction_id
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    async def create_payment(self, req: CreatePayment) -> PaymentIntent:
        self.calls.append(("create", req))
        if self.fail is not None:
            raise self.fail
        return PaymentIntent(
            transaction_id=req.transaction_id,
            status=self.status,
            provider=self.provider,
            payment_url=f"https://pay.example/{self.provider}/{req.transaction_id}",
            provider_transaction_id=self.provider_transaction_id,
            request={"amount": req.amount_minor},
            response={"ok": True},
        )

    async def query_payment(self, query: QueryPayment) -> PaymentIntent:
        self.calls.append(("query", query))
        if self.fail is not None:
            raise self.fail
        return PaymentIntent(
            transaction_id=query.transaction_id,
            status=self.query_status,
            provider=self.provider,
            response={"status": self.query_status.lower()},
        )

    async def refund(self, req: RefundRequest) -> RefundResult:
        self.calls.append(("refund", req))
        if self.refund_fail is not None:
            raise self.refund_fail
        return RefundResult(
            refund_id=req.refund_id,
            status="REFUNDED" if req.full else "PARTIALLY_REFUNDED",
            provider=self.provider,
            response={"refund_id": req.refund_id},
        )

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def payment_cfg() -> PaymentSettings:
    return PaymentSettings(
        click=ClickSettings(
            service_id=CLICK_SERVICE_ID,
            merchant_id="200",
            merchant_user_id="300",
            secret_key=CLICK_SECRET,
        ),
        payme=PaymeSettings(merchant_id="payme-merchant", key=PAYME_KEY),
        uzum=UzumSettings(merchant_id="uzum-merchant", secret_key=UZUM_SECRET, api_key="uzum-api-key"),
    )


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_order(Order(id=1, total_amount=Decimal("50000")))
    s.add_order(Order(id=2, total_amount=Decimal("120000")))
    return s


@pytest.fixture
def uow_factory(store):
    return in_memory_uow_factory(store)


@pytest.fixture
def clients() -> dict[PaymentMethod, StubProviderClient]:
    return {
        PaymentMethod.CLICK: StubProviderClient("click"),
        PaymentMethod.PAYME: StubProviderClient("payme"),
        PaymentMethod.UZUM: StubProviderClient("uzum"),
    }


@pytest.fixture
def gateways(uow_factory, payment_cfg, clients):
    gws = build_gateways(uow_factory, payment_cfg)
    for method, client in clients.items():
        gws[method].client = client
    return gws


@pytest.fixture
def payment_service(uow_factory, gateways, payment_cfg) -> PaymentService:
    return PaymentService(uow_factory=uow_factory, gateways=gateways, settings=payment_cfg)


@pytest.fixture
def refund_service(uow_factory, gateways, payment_cfg) -> RefundService:
    return RefundService(uow_factory=uow_factory, gateways=gateways, settings=payment_cfg)


@pytest.fixture
def click_request():
    """Build a signed Click prepare/complete field set."""

    def _build(
        merchant_trans_id: str,
        amount: str,
        action: int,
        *,
        click_trans_id: str = "555001",
        error: int = 0,
        sign_time: str = "2026-10-19 12:00:00",
        service_id: str = CLICK_SERVICE_ID,
        secret: str = CLICK_SECRET,
        **extra: Any,
    ) -> dict[str, Any]:
        fields = {
            "click_trans_id": click_trans_id,
            "service_id": service_id,
            "click_paydoc_id": "777001",
            "merchant_trans_id": merchant_trans_id,
            "amount": amount,
            "action": action,
            "error": error,
            "error_note": "Success" if error == 0 else "Insufficient funds",
            "sign_time": sign_time,
            "sign_string": click_signature(
                click_trans_id=click_trans_id,
                service_id=service_id,
                secret_key=secret,
                merchant_trans_id=merchant_trans_id,
                amount=amount,
                action=action,
                sign_time=sign_time,
            ),
        }
        fields.update(extra)
        return fields

    return _build


@pytest.fixture
def payme_headers() -> dict[str, str]:
    return {"Authorization": payme_basic_auth(PAYME_KEY), "Content-Type": "application/json"}


@pytest.fixture
def uzum_callback():
    """Build a signed Uzum callback body."""

    def _build(transaction_id: str, status: str, amount: Optional[int] = None, **extra: Any) -> dict[str, Any]:
        fields: dict[str, Any] = {"transaction_id": transaction_id, "status": status, **extra}
        if amount is not None:
            fields["amount"] = amount
        fields["signature"] = uzum_signature(fields, UZUM_SECRET)
        return fields

    return _build
