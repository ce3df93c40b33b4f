import asyncio
import json
from decimal import Decimal

import pytest

from application.dtos.payments import InitiatePayment
from domain.order.entity import OrderPaymentStatus, OrderStatus
from domain.payment.entity import PaymentMethod, PaymentStatus
from domain.payment.signatures import payme_basic_auth


PAYME_TX = "63f1a2b3c4d5e6f708192a3b"


def rpc(method: str, params: dict, request_id: int = 1) -> bytes:
    return json.dumps({"id": request_id, "method": method, "params": params}).encode()


def create_params(order_id: int = 1, amount: int = 5000000, tx: str = PAYME_TX) -> dict:
    return {"id": tx, "time": 1760875200000, "amount": amount, "account": {"order_id": str(order_id)}}


@pytest.fixture
def payme(gateways):
    return gateways[PaymentMethod.PAYME]


@pytest.mark.asyncio
async def test_bad_authorization(payme):
    headers = {"Authorization": payme_basic_auth("wrong"), "Content-Type": "application/json"}
    reply = await payme.handle_callback(headers, rpc("CheckTransaction", {"id": PAYME_TX}))
    assert reply["error"]["code"] == -32504
    assert set(reply["error"]["message"]) == {"ru", "uz", "en"}


@pytest.mark.asyncio
async def test_missing_authorization(payme):
    reply = await payme.handle_callback({}, rpc("CheckTransaction", {"id": PAYME_TX}))
    assert reply["error"]["code"] == -32504


@pytest.mark.asyncio
async def test_parse_error(payme, payme_headers):
    reply = await payme.handle_callback(payme_headers, b"{oops")
    assert reply == {"id": None, "error": reply["error"]}
    assert reply["error"]["code"] == -32700


@pytest.mark.asyncio
async def test_unknown_method(payme, payme_headers):
    reply = await payme.handle_callback(payme_headers, rpc("ChangePassword", {}, request_id=9))
    assert reply["id"] == 9
    assert reply["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_check_perform_allows_matching_amount(payme, payme_headers):
    reply = await payme.handle_callback(
        payme_headers,
        rpc("CheckPerformTransaction", {"amount": 5000000, "account": {"order_id": "1"}}),
    )
    assert reply["result"]["allow"] is True
    assert reply["result"]["detail"]["items"][0]["price"] == 5000000


@pytest.mark.asyncio
async def test_check_perform_wrong_amount_creates_nothing(payme, payme_headers, store):
    reply = await payme.handle_callback(
        payme_headers,
        rpc("CheckPerformTransaction", {"amount": 4999900, "account": {"order_id": "1"}}),
    )
    assert reply["error"]["code"] == -31001
    assert store.payments_for(1) == []


@pytest.mark.asyncio
async def test_check_perform_unknown_order(payme, payme_headers):
    reply = await payme.handle_callback(
        payme_headers,
        rpc("CheckPerformTransaction", {"amount": 100, "account": {"order_id": "404"}}),
    )
    assert reply["error"]["code"] == -31050


@pytest.mark.asyncio
async def test_create_transaction_is_idempotent(payme, payme_headers, store):
    first = await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    second = await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params(), request_id=2))

    assert first["result"] == second["result"]
    assert first["result"]["state"] == 1
    payments = store.payments_for(1)
    assert len(payments) == 1
    assert payments[0].amount == Decimal("50000")
    assert payments[0].transaction_id == PAYME_TX
    assert payments[0].provider_time is not None


@pytest.mark.asyncio
async def test_create_binds_locally_initiated_payment(payment_service, payme, payme_headers, store):
    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.PAYME)
    )

    reply = await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))

    assert reply["result"]["transaction"] == str(result.payment_id)
    payment = store.payment(result.payment_id)
    assert payment.transaction_id == PAYME_TX
    assert payment.create_time is not None
    assert len(store.payments_for(1)) == 1


@pytest.mark.asyncio
async def test_create_rejects_second_pending_transaction(payme, payme_headers):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    reply = await payme.handle_callback(
        payme_headers, rpc("CreateTransaction", create_params(tx="another-payme-tx"))
    )
    assert reply["error"]["code"] == -31008


@pytest.mark.asyncio
async def test_perform_twice_keeps_perform_time(payme, payme_headers, store):
    created = await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    payment_id = int(created["result"]["transaction"])

    first = await payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX}))
    second = await payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX}))

    assert first["result"] == second["result"]
    assert first["result"]["state"] == 2
    assert first["result"]["perform_time"] > 0
    assert store.payment(payment_id).status == PaymentStatus.PAID
    order = store.order(1)
    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_concurrent_perform_reconciles_once(payme, payme_headers, store, gateways):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    calls = []
    original = payme.reconciler.apply

    async def counting_apply(orders, order_id, new_status, **kwargs):
        changed = await original(orders, order_id, new_status, **kwargs)
        calls.append((new_status, changed))
        return changed

    payme.reconciler.apply = counting_apply

    replies = await asyncio.gather(
        payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX})),
        payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX}, request_id=2)),
    )

    assert replies[0]["result"] == replies[1]["result"]
    assert calls == [(PaymentStatus.PAID, True)]


@pytest.mark.asyncio
async def test_perform_unknown_transaction(payme, payme_headers):
    reply = await payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": "nope"}))
    assert reply["error"]["code"] == -31003


@pytest.mark.asyncio
async def test_cancel_pending_cancels_order(payme, payme_headers, store):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))

    reply = await payme.handle_callback(payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": 3}))

    assert reply["result"]["state"] == -1
    assert reply["result"]["cancel_time"] > 0
    payment = store.payments_for(1)[0]
    assert payment.status == PaymentStatus.CANCELLED
    assert payment.cancel_reason == 3
    assert store.order(1).status == OrderStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_is_idempotent(payme, payme_headers):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    first = await payme.handle_callback(payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": 3}))
    second = await payme.handle_callback(payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": 5}))
    assert first["result"] == second["result"]


@pytest.mark.asyncio
async def test_cancel_after_fulfillment_is_refused(payme, payme_headers, store):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    await payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX}))
    store.orders[1].status = OrderStatus.SHIPPED

    reply = await payme.handle_callback(payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": 5}))

    assert reply["error"]["code"] == -31007
    assert store.payments_for(1)[0].status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_cancel_after_fulfillment_allowed_by_setting(payme, payme_headers, store):
    payme.settings.allow_cancel_after_fulfillment = True
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    await payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX}))
    store.orders[1].status = OrderStatus.DELIVERED

    reply = await payme.handle_callback(payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": 5}))

    assert reply["result"]["state"] == -1
    assert store.payments_for(1)[0].status == PaymentStatus.CANCELLED


@pytest.mark.asyncio
async def test_check_transaction(payme, payme_headers):
    created = await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    reply = await payme.handle_callback(payme_headers, rpc("CheckTransaction", {"id": PAYME_TX}))

    result = reply["result"]
    assert result["transaction"] == created["result"]["transaction"]
    assert result["create_time"] == created["result"]["create_time"]
    assert result["perform_time"] == 0
    assert result["cancel_time"] == 0
    assert result["state"] == 1
    assert result["reason"] is None


@pytest.mark.asyncio
async def test_get_statement_lists_settled_transactions(payme, payme_headers):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    await payme.handle_callback(payme_headers, rpc("PerformTransaction", {"id": PAYME_TX}))
    await payme.handle_callback(
        payme_headers, rpc("CreateTransaction", create_params(order_id=2, amount=12000000, tx="pending-tx"))
    )

    reply = await payme.handle_callback(
        payme_headers, rpc("GetStatement", {"from": 0, "to": 4102444800000})
    )

    transactions = reply["result"]["transactions"]
    assert [t["id"] for t in transactions] == [PAYME_TX]
    assert transactions[0]["amount"] == 5000000
    assert transactions[0]["account"] == {"order_id": "1"}
    assert transactions[0]["time"] == 1760875200000


@pytest.mark.asyncio
async def test_get_statement_requires_range(payme, payme_headers):
    reply = await payme.handle_callback(payme_headers, rpc("GetStatement", {"from": 0}))
    assert reply["error"]["code"] == -32600


@pytest.mark.asyncio
async def test_abandoned_cancel_keeps_order_paid_by_click(payment_service, payme, payme_headers, click_request, store):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    result = await payment_service.initiate(
        InitiatePayment(order_id=1, amount=Decimal("50000"), method=PaymentMethod.CLICK)
    )
    mtid = f"ORDER_1_{result.transaction_id}"
    click = payment_service.gateway(PaymentMethod.CLICK)
    await click.handle_callback({}, json.dumps(click_request(mtid, "5000000", 0)).encode())
    await click.handle_callback({}, json.dumps(click_request(mtid, "5000000", 1)).encode())

    reply = await payme.handle_callback(payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": 4}))

    assert reply["result"]["state"] == -1
    order = store.order(1)
    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.status == OrderStatus.CONFIRMED
    assert store.payment(result.payment_id).status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_cancel_with_non_numeric_reason_is_invalid_request(payme, payme_headers, store):
    await payme.handle_callback(payme_headers, rpc("CreateTransaction", create_params()))
    reply = await payme.handle_callback(
        payme_headers, rpc("CancelTransaction", {"id": PAYME_TX, "reason": "timeout"})
    )
    assert reply["error"]["code"] == -32600
    [payment] = store.payments_for(1)
    assert payment.status == PaymentStatus.PENDING
