from datetime import timedelta
from decimal import Decimal

import pytest

from application.dtos.payments import CardDetails, InitiatePayment, ProcessPayment
from application.services.gateways import build_gateways
from application.services.payment_service import PaymentService, new_transaction_id
from core.settings import PaymentSettings
from domain.common.exceptions import (
    DomainValidationException,
    OrderNotFoundException,
    PaymentNotFoundException,
)
from domain.order.entity import OrderPaymentStatus
from domain.payment.entity import PaymentMethod, PaymentStatus
from infrastructure.external.payments.exceptions import (
    GatewayNotConfiguredError,
    PaymentProviderError,
    PaymentRecoverableError,
)


def test_new_transaction_id_shape():
    from datetime import datetime, timezone

    tid = new_transaction_id(PaymentMethod.UZUM, datetime(2026, 10, 19, 12, 30, 5, tzinfo=timezone.utc))
    assert tid.startswith("20261019123005UZUM")
    assert len(tid) == len("20261019123005UZUM") + 8


@pytest.mark.asyncio
async def test_initiate_records_before_calling_provider(payment_service, clients, store):
    seen = {}
    stub = clients[PaymentMethod.UZUM]
    original = stub.create_payment

    async def create_payment(req):
        rows = [p for p in store.payments_for(1) if p.transaction_id == req.transaction_id]
        seen["status"] = rows[0].status if rows else None
        return await original(req)

    stub.create_payment = create_payment

    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.UZUM)
    )

    assert seen["status"] == PaymentStatus.PENDING
    kind, req = stub.calls[0]
    assert kind == "create"
    assert req.amount_minor == 5000000
    assert req.return_url == "http://localhost:3000/payment/success"
    assert result.provider_payload["payment_url"].endswith(result.transaction_id)
    payment = store.payment(result.payment_id)
    assert [e.kind for e in payment.exchanges] == ["initiate"]
    assert payment.create_time is None


@pytest.mark.asyncio
async def test_initiate_provider_failure_marks_failed(payment_service, clients, store):
    clients[PaymentMethod.CLICK].fail = PaymentProviderError("gateway rejected", provider="click")

    with pytest.raises(PaymentProviderError):
        await payment_service.initiate(
            InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.CLICK)
        )

    [payment] = store.payments_for(1)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "gateway rejected"
    assert payment.exchanges[-1].kind == "error"
    assert store.order(1).payment_status == OrderPaymentStatus.FAILED


@pytest.mark.asyncio
async def test_initiate_adopts_provider_transaction_id(payment_service, clients, store):
    clients[PaymentMethod.UZUM].provider_transaction_id = "uzum-777"

    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.UZUM)
    )

    assert store.payment(result.payment_id).transaction_id == "uzum-777"


@pytest.mark.asyncio
async def test_initiate_unknown_order(payment_service):
    with pytest.raises(OrderNotFoundException):
        await payment_service.initiate(
            InitiatePayment(order_id=404, amount=Decimal("10"), method=PaymentMethod.CASH)
        )


@pytest.mark.asyncio
async def test_initiate_amount_over_outstanding(payment_service, store):
    with pytest.raises(DomainValidationException):
        await payment_service.initiate(
            InitiatePayment(order_id=1, amount=Decimal("50000.01"), method=PaymentMethod.CASH)
        )
    assert store.payments_for(1) == []


@pytest.mark.asyncio
async def test_initiate_unconfigured_provider(uow_factory, store):
    gateways = build_gateways(uow_factory, PaymentSettings())
    service = PaymentService(uow_factory=uow_factory, gateways=gateways, settings=PaymentSettings())

    with pytest.raises(GatewayNotConfiguredError):
        await service.initiate(
            InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.PAYME)
        )
    assert store.payments_for(1) == []


@pytest.mark.asyncio
async def test_unsupported_method_name(payment_service):
    with pytest.raises(DomainValidationException):
        payment_service.gateway("paypal")


@pytest.mark.asyncio
async def test_process_pays_outstanding_and_keeps_last4_only(payment_service, store):
    result = await payment_service.process(
        2,
        ProcessPayment(method=PaymentMethod.UZUM, card_details=CardDetails(number="8600 1234 5678 4321")),
    )

    assert result.status == PaymentStatus.PENDING
    payment = store.payment(result.payment_id)
    assert payment.amount == Decimal("120000")
    initiate = payment.exchanges[0].payload
    assert initiate["card_last4"] == "4321"
    assert "8600123456784321" not in str(initiate)


@pytest.mark.asyncio
async def test_process_paid_order_rejected(payment_service, store):
    store.orders[1].payment_status = OrderPaymentStatus.PAID
    with pytest.raises(DomainValidationException):
        await payment_service.process(1, ProcessPayment(method=PaymentMethod.CASH))


@pytest.mark.asyncio
async def test_status_returns_latest_payment(payment_service):
    await payment_service.initiate(InitiatePayment(order_id=1, amount=Decimal("100"), method=PaymentMethod.CASH))
    second = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("200"), method=PaymentMethod.UZUM)
    )

    view = await payment_service.status(1)

    assert view.id == second.payment_id
    assert view.method == PaymentMethod.UZUM


@pytest.mark.asyncio
async def test_status_without_payment(payment_service):
    with pytest.raises(PaymentNotFoundException):
        await payment_service.status(2)


@pytest.mark.asyncio
async def test_poll_pending_settles_old_payments(payment_service, clients, store):
    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.UZUM)
    )
    fresh = await payment_service.initiate(
        InitiatePayment(order_id=2, amount=Decimal("120000"), method=PaymentMethod.UZUM)
    )
    row = store.payments[result.payment_id]
    row.created_at = row.created_at - timedelta(minutes=10)
    clients[PaymentMethod.UZUM].query_status = "PAID"

    summary = await payment_service.poll_pending(PaymentMethod.UZUM)

    assert summary == {"checked": 1, "settled": 1, "errors": 0}
    assert store.payment(result.payment_id).status == PaymentStatus.PAID
    assert store.payment(fresh.payment_id).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_poll_pending_counts_provider_errors(payment_service, clients, store):
    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.UZUM)
    )
    row = store.payments[result.payment_id]
    row.created_at = row.created_at - timedelta(minutes=10)
    clients[PaymentMethod.UZUM].fail = PaymentRecoverableError("timeout", provider="uzum")

    summary = await payment_service.poll_pending(PaymentMethod.UZUM)

    assert summary == {"checked": 1, "settled": 0, "errors": 1}
    assert store.payment(result.payment_id).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_aclose_closes_clients(payment_service, clients):
    await payment_service.aclose()
    assert all(client.closed for client in clients.values())
