import json
from decimal import Decimal

import pytest

from application.dtos.payments import InitiatePayment
from domain.common.exceptions import PaymentNotFoundException
from domain.order.entity import OrderPaymentStatus
from domain.payment.entity import PaymentMethod, PaymentStatus


JSON = {"content-type": "application/json"}


async def _initiate(payment_service, method=PaymentMethod.UZUM, order_id=1, amount="50000"):
    return await payment_service.initiate(
        InitiatePayment(order_id=order_id, amount=Decimal(amount), method=method)
    )


@pytest.mark.asyncio
async def test_success_callback_marks_paid(payment_service, gateways, uzum_callback, store):
    result = await _initiate(payment_service)
    body = json.dumps(uzum_callback(result.transaction_id, "success", amount=5000000)).encode()

    reply = await gateways[PaymentMethod.UZUM].handle_callback(JSON, body)

    assert reply == {
        "success": True,
        "message": "Payment completed successfully",
        "transaction_id": result.transaction_id,
    }
    assert store.payment(result.payment_id).status == PaymentStatus.PAID
    assert store.order(1).payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_error_code_marks_failed(payment_service, gateways, uzum_callback, store):
    result = await _initiate(payment_service)
    fields = uzum_callback(result.transaction_id, "failed", error_code=1001, error_message="Card declined")

    reply = await gateways[PaymentMethod.UZUM].handle_callback(JSON, json.dumps(fields).encode())

    assert reply["success"] is False
    assert reply["error_code"] == 1001
    payment = store.payment(result.payment_id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Card declined"


@pytest.mark.asyncio
async def test_bad_signature_changes_nothing(payment_service, gateways, uzum_callback, store):
    result = await _initiate(payment_service)
    fields = uzum_callback(result.transaction_id, "success")
    fields["signature"] = "0" * 64

    reply = await gateways[PaymentMethod.UZUM].handle_callback(JSON, json.dumps(fields).encode())

    assert reply["success"] is False
    assert reply["message"] == "Invalid signature"
    assert store.payment(result.payment_id).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_amount_mismatch_changes_nothing(payment_service, gateways, uzum_callback, store):
    result = await _initiate(payment_service)
    fields = uzum_callback(result.transaction_id, "success", amount=100)

    reply = await gateways[PaymentMethod.UZUM].handle_callback(JSON, json.dumps(fields).encode())

    assert reply["message"] == "Amount mismatch"
    assert store.payment(result.payment_id).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_transaction(gateways, uzum_callback):
    fields = uzum_callback("missing-tx", "success")
    reply = await gateways[PaymentMethod.UZUM].handle_callback(JSON, json.dumps(fields).encode())
    assert reply["message"] == "Payment not found"


@pytest.mark.asyncio
async def test_callback_on_settled_payment_keeps_status(payment_service, gateways, uzum_callback, store):
    result = await _initiate(payment_service)
    uzum = gateways[PaymentMethod.UZUM]
    await uzum.handle_callback(JSON, json.dumps(uzum_callback(result.transaction_id, "success")).encode())

    reply = await uzum.handle_callback(JSON, json.dumps(uzum_callback(result.transaction_id, "failed")).encode())

    assert reply["success"] is True
    assert store.payment(result.payment_id).status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_unmapped_status_leaves_pending(payment_service, gateways, uzum_callback, store):
    result = await _initiate(payment_service)
    fields = uzum_callback(result.transaction_id, "weird")

    reply = await gateways[PaymentMethod.UZUM].handle_callback(JSON, json.dumps(fields).encode())

    assert reply["success"] is False
    assert store.payment(result.payment_id).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_verify_applies_status_word(payment_service, store):
    result = await _initiate(payment_service)

    verified = await payment_service.verify("uzum", result.transaction_id, "completed")

    assert verified.paid is True
    assert verified.status == PaymentStatus.PAID
    assert store.payment(result.payment_id).exchanges[-1].kind == "verify"


@pytest.mark.asyncio
async def test_verify_with_other_method_is_not_found(payment_service):
    result = await _initiate(payment_service)
    with pytest.raises(PaymentNotFoundException):
        await payment_service.verify(PaymentMethod.CLICK, result.transaction_id, "success")


@pytest.mark.asyncio
async def test_sync_status_queries_provider(payment_service, clients, store):
    result = await _initiate(payment_service)
    clients[PaymentMethod.UZUM].query_status = "PAID"

    synced = await payment_service.sync_status(result.transaction_id)

    assert synced.status == PaymentStatus.PAID
    kind, query = clients[PaymentMethod.UZUM].calls[-1]
    assert kind == "query"
    assert query.transaction_id == result.transaction_id
    assert store.order(1).payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_sync_status_pending_is_noop(payment_service, store):
    result = await _initiate(payment_service)
    version = store.payment(result.payment_id).version

    synced = await payment_service.sync_status(result.transaction_id)

    assert synced.status == PaymentStatus.PENDING
    assert store.payment(result.payment_id).version == version


# ---- cash ----

@pytest.mark.asyncio
async def test_cash_initiate_has_no_url(payment_service, store):
    result = await _initiate(payment_service, method=PaymentMethod.CASH)

    assert result.provider_payload["payment_url"] is None
    assert result.provider_payload["status"] == "PENDING"
    assert store.payment(result.payment_id).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_cash_verify_paid(payment_service, store):
    result = await _initiate(payment_service, method=PaymentMethod.CASH)

    verified = await payment_service.verify("cash", result.transaction_id, "paid")

    assert verified.paid is True
    assert store.order(1).payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_cash_has_no_callbacks(gateways):
    reply = await gateways[PaymentMethod.CASH].handle_callback(JSON, b"{}")
    assert reply["success"] is False


@pytest.mark.asyncio
async def test_cash_cancel_after_online_payment_keeps_order_paid(payment_service, store):
    cash = await _initiate(payment_service, method=PaymentMethod.CASH)
    online = await _initiate(payment_service)
    await payment_service.verify("uzum", online.transaction_id, "success")

    cancelled = await payment_service.verify("cash", cash.transaction_id, "cancelled")

    assert cancelled.status == PaymentStatus.CANCELLED
    assert store.order(1).payment_status == OrderPaymentStatus.PAID
