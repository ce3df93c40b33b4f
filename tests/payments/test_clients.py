import json

import httpx
import pytest

from application.dtos.payments import CreatePayment, QueryPayment, RefundRequest
from core.settings import ClickSettings, PaymeSettings, UzumSettings
from domain.payment.signatures import uzum_signature
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.click_client import ClickClient
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from infrastructure.external.payments.payme_client import PaymeClient
from infrastructure.external.payments.uzum_client import UzumClient


UZUM = UzumSettings(merchant_id="m-1", secret_key="uzum-secret", api_key="key-1").credentials()


def _create(**kwargs) -> CreatePayment:
    base = dict(transaction_id="tx-1", order_id=7, amount="500.00", amount_minor=50000)
    base.update(kwargs)
    return CreatePayment(**base)


class _MapClient(BasePaymentClient):
    provider = "uzum"


def test_provider_status_mapping():
    c = _MapClient()
    assert c._map_status("completed") == "PAID"
    assert c._map_status("processing") == "PENDING"
    assert c._map_status("error") == "FAILED"
    assert c._map_status("something-new") == "PENDING"


@pytest.mark.asyncio
async def test_uzum_create_signs_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "payment_url": "https://pay/1", "status": "pending"})

    client = UzumClient(UZUM, transport=httpx.MockTransport(handler))
    intent = await client.create_payment(_create())
    await client.aclose()

    body = seen["body"]
    assert seen["url"].endswith("/payments/create")
    assert seen["auth"] == "Bearer key-1"
    assert body["amount"] == 50000
    assert body["signature"] == uzum_signature(body, "uzum-secret")
    assert intent.status == "PENDING"
    assert intent.payment_url == "https://pay/1"
    assert intent.provider_transaction_id is None


@pytest.mark.asyncio
async def test_uzum_create_falls_back_to_checkout_url():
    def handler(request):
        return httpx.Response(200, json={"success": True, "transaction_id": "uz-99"})

    client = UzumClient(UZUM, transport=httpx.MockTransport(handler))
    intent = await client.create_payment(_create())

    assert intent.payment_url.startswith("https://payment.uzum.uz/pay?")
    assert intent.provider_transaction_id == "uz-99"


@pytest.mark.asyncio
async def test_uzum_rejection_raises_provider_error():
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "bad merchant", "error_code": 12})

    client = UzumClient(UZUM, transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentProviderError) as exc:
        await client.query_payment(QueryPayment(transaction_id="tx-1"))
    assert exc.value.message == "bad merchant"


@pytest.mark.asyncio
async def test_server_error_is_recoverable():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    client = UzumClient(UZUM, transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentRecoverableError):
        await client.refund(
            RefundRequest(transaction_id="tx-1", refund_id="r-1", amount="1.00", amount_minor=100, full=False)
        )


@pytest.mark.asyncio
async def test_uzum_partial_refund():
    def handler(request):
        return httpx.Response(200, json={"success": True, "refund_id": "uz-r-1"})

    client = UzumClient(UZUM, transport=httpx.MockTransport(handler))
    result = await client.refund(
        RefundRequest(transaction_id="tx-1", refund_id="r-1", amount="1.00", amount_minor=100, full=False)
    )
    assert result.status == "PARTIALLY_REFUNDED"
    assert result.refund_id == "uz-r-1"


@pytest.mark.asyncio
async def test_click_checkout_link_has_merchant_trans_id():
    creds = ClickSettings(service_id="100", merchant_id="200", secret_key="s").credentials()
    intent = await ClickClient(creds).create_payment(_create())
    assert "transaction_param=ORDER_7_tx-1" in intent.payment_url
    assert "service_id=100" in intent.payment_url


@pytest.mark.asyncio
async def test_click_partial_refund_not_supported():
    creds = ClickSettings(service_id="100", merchant_id="200", secret_key="s").credentials()
    with pytest.raises(PaymentProviderError):
        await ClickClient(creds).refund(
            RefundRequest(transaction_id="tx-1", refund_id="r", amount="1", amount_minor=100, full=False)
        )


@pytest.mark.asyncio
async def test_payme_checkout_link_is_base64_encoded():
    import base64

    creds = PaymeSettings(merchant_id="pm-1", key="k").credentials()
    intent = await PaymeClient(creds).create_payment(_create())
    token = intent.payment_url.rsplit("/", 1)[1]
    assert base64.b64decode(token).decode() == "m=pm-1;ac.order_id=7;a=50000"


@pytest.mark.asyncio
async def test_payme_rpc_error_message():
    def handler(request):
        return httpx.Response(200, json={"error": {"code": -31003, "message": {"en": "not found", "ru": "нет"}}})

    creds = PaymeSettings(merchant_id="pm-1", key="k").credentials()
    client = PaymeClient(creds, transport=httpx.MockTransport(handler))
    with pytest.raises(PaymentProviderError) as exc:
        await client.query_payment(QueryPayment(transaction_id="tx-1", provider_ref="r-1"))
    assert exc.value.message == "not found"
