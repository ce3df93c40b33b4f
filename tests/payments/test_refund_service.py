import asyncio
from decimal import Decimal

import pytest

from application.dtos.payments import InitiatePayment
from domain.common.exceptions import (
    DomainValidationException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
    RefundFailedException,
    StalePaymentException,
)
from domain.order.entity import OrderPaymentStatus
from domain.payment.entity import PaymentMethod, PaymentStatus
from infrastructure.external.payments.exceptions import PaymentProviderError


async def _paid_payment(payment_service, method=PaymentMethod.UZUM, amount="50000"):
    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal(amount), method=method)
    )
    await payment_service.verify(method, result.transaction_id, "success")
    return result.payment_id


@pytest.mark.asyncio
async def test_partial_then_full_refund(payment_service, refund_service, clients, store):
    payment_id = await _paid_payment(payment_service)

    partial = await refund_service.refund(payment_id, Decimal("20000"), reason="damaged")
    assert partial.status == PaymentStatus.PARTIALLY_REFUNDED
    assert partial.refunded_amount == Decimal("20000")
    kind, req = clients[PaymentMethod.UZUM].calls[-1]
    assert kind == "refund"
    assert req.amount_minor == 2000000
    assert req.full is False
    assert store.order(1).payment_status == OrderPaymentStatus.PAID

    rest = await refund_service.refund(payment_id)
    assert rest.amount == Decimal("30000")
    assert rest.status == PaymentStatus.REFUNDED
    assert clients[PaymentMethod.UZUM].calls[-1][1].full is True
    assert store.order(1).payment_status == OrderPaymentStatus.REFUNDED

    kinds = [e.kind for e in store.payment(payment_id).exchanges]
    assert kinds.count("refund") == 2


@pytest.mark.asyncio
async def test_provider_rejection_leaves_status(payment_service, refund_service, clients, store):
    payment_id = await _paid_payment(payment_service)
    clients[PaymentMethod.UZUM].refund_fail = PaymentProviderError("refund window closed", provider="uzum")

    with pytest.raises(RefundFailedException):
        await refund_service.refund(payment_id, Decimal("100"))

    payment = store.payment(payment_id)
    assert payment.status == PaymentStatus.PAID
    assert payment.refunded_amount == Decimal("0")
    last = payment.exchanges[-1]
    assert last.kind == "error"
    assert last.payload["operation"] == "refund"
    assert payment.pending_refund_amount == Decimal("0")

    clients[PaymentMethod.UZUM].refund_fail = None
    retried = await refund_service.refund(payment_id, Decimal("100"))
    assert retried.status == PaymentStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_refund_over_remaining(payment_service, refund_service):
    payment_id = await _paid_payment(payment_service)
    with pytest.raises(DomainValidationException):
        await refund_service.refund(payment_id, Decimal("50000.01"))


@pytest.mark.asyncio
async def test_pending_payment_is_not_refundable(payment_service, refund_service):
    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.UZUM)
    )
    with pytest.raises(PaymentNotRefundableException):
        await refund_service.refund(result.payment_id)


@pytest.mark.asyncio
async def test_unknown_payment(refund_service):
    with pytest.raises(PaymentNotFoundException):
        await refund_service.refund(999)


@pytest.mark.asyncio
async def test_cash_refund_is_local(payment_service, refund_service, store):
    payment_id = await _paid_payment(payment_service, method=PaymentMethod.CASH)

    receipt = await refund_service.refund(payment_id)

    assert receipt.provider == "cash"
    assert store.payment(payment_id).status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_duplicate_refund_reaches_provider_once(payment_service, refund_service, clients, store, monkeypatch):
    payment_id = await _paid_payment(payment_service)
    stub = clients[PaymentMethod.UZUM]
    send = stub.refund

    async def slow_refund(req):
        await asyncio.sleep(0.01)
        return await send(req)

    monkeypatch.setattr(stub, "refund", slow_refund)

    results = await asyncio.gather(
        refund_service.refund(payment_id),
        refund_service.refund(payment_id),
        return_exceptions=True,
    )

    assert [kind for kind, _ in stub.calls].count("refund") == 1
    receipts = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(receipts) == 1
    assert receipts[0].status == PaymentStatus.REFUNDED
    assert len(errors) == 1
    assert isinstance(errors[0], DomainValidationException)

    payment = store.payment(payment_id)
    assert payment.refunded_amount == Decimal("50000")
    assert payment.pending_refund_amount == Decimal("0")
    kinds = [e.kind for e in payment.exchanges]
    assert kinds.count("refund_intent") == 1
    assert kinds.count("refund") == 1


@pytest.mark.asyncio
async def test_refund_reserved_while_provider_call_is_in_flight(payment_service, refund_service, clients, store, monkeypatch):
    payment_id = await _paid_payment(payment_service)
    stub = clients[PaymentMethod.UZUM]
    send = stub.refund
    seen = []

    async def observe(req):
        seen.append(store.payment(payment_id).pending_refund_amount)
        return await send(req)

    monkeypatch.setattr(stub, "refund", observe)

    await refund_service.refund(payment_id, Decimal("20000"))

    assert seen == [Decimal("20000")]
    assert store.payment(payment_id).pending_refund_amount == Decimal("0")


@pytest.mark.asyncio
async def test_accepted_refund_that_cannot_be_applied_is_recorded(payment_service, refund_service, clients, store, monkeypatch):
    payment_id = await _paid_payment(payment_service)

    async def broken_apply(*args):
        raise StalePaymentException(payment_id, 0)

    monkeypatch.setattr(refund_service, "_apply", broken_apply)

    with pytest.raises(StalePaymentException):
        await refund_service.refund(payment_id, Decimal("100"))

    assert clients[PaymentMethod.UZUM].calls[-1][0] == "refund"
    payment = store.payment(payment_id)
    assert payment.status == PaymentStatus.PAID
    assert payment.pending_refund_amount == Decimal("100")
    last = payment.exchanges[-1]
    assert last.kind == "error"
    assert last.payload["stage"] == "apply"
    assert last.payload["refund_id"] == payment.exchanges[-2].payload["refund_id"]
