import hashlib

import pytest

from application.dtos.payments import ClickCallback
from application.services.callback_verifier import CallbackVerifier, MalformedCallbackError, decode_body
from core.settings import ClickSettings, PaymeSettings, UzumSettings
from domain.payment.signatures import (
    click_signature,
    parse_click_merchant_trans_id,
    payme_basic_auth,
    signatures_match,
    uzum_canonical_string,
    uzum_signature,
    verify_payme_authorization,
)
from infrastructure.external.payments.exceptions import PaymentSignatureError


def test_click_signature_formula():
    expected = hashlib.md5(b"1100secretORDER_1_tx5000000.0002026-10-19 12:00:00").hexdigest()
    assert click_signature(
        click_trans_id="1",
        service_id="100",
        secret_key="secret",
        merchant_trans_id="ORDER_1_tx",
        amount="5000000.00",
        action=0,
        sign_time="2026-10-19 12:00:00",
    ) == expected


@pytest.mark.parametrize(
    "value, parsed",
    [
        ("ORDER_12_2026abc", (12, "2026abc")),
        ("ORDER_3_a_b", (3, "a_b")),
        ("ORDER_x_abc", None),
        ("ORDER_12", None),
        ("12_abc", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_click_merchant_trans_id(value, parsed):
    assert parse_click_merchant_trans_id(value) == parsed


def test_uzum_canonical_string_sorts_and_skips_signature():
    fields = {"status": "success", "amount": 100, "signature": "x", "order_id": None, "transaction_id": "t"}
    assert uzum_canonical_string(fields) == "amount=100&status=success&transaction_id=t"
    assert uzum_signature(fields, "k") == hashlib.sha256(b"amount=100&status=success&transaction_id=tk").hexdigest()


def test_payme_authorization():
    assert verify_payme_authorization(payme_basic_auth("key"), "key") is True
    assert verify_payme_authorization(payme_basic_auth("other"), "key") is False
    assert verify_payme_authorization("Bearer abc", "key") is False
    assert verify_payme_authorization("Basic !!!", "key") is False
    assert verify_payme_authorization(None, "key") is False


def test_signatures_match_is_case_insensitive():
    assert signatures_match("ABCDEF", "abcdef") is True
    assert signatures_match("abc", None) is False


def test_verifier_click_rejects_tampered_amount():
    creds = ClickSettings(service_id="100", merchant_id="200", secret_key="s").credentials()
    fields = dict(
        click_trans_id="1", service_id="100", merchant_trans_id="ORDER_1_t",
        amount="100", action=1, sign_time="2026-10-19 12:00:00",
    )
    sign = click_signature(secret_key="s", **fields)
    verifier = CallbackVerifier()
    verifier.verify_click(ClickCallback(**fields, sign_string=sign), creds)
    with pytest.raises(PaymentSignatureError):
        verifier.verify_click(ClickCallback(**{**fields, "amount": "1000"}, sign_string=sign), creds)


def test_verifier_payme_and_uzum():
    verifier = CallbackVerifier()
    payme = PaymeSettings(merchant_id="m", key="k").credentials()
    verifier.verify_payme({"authorization": payme_basic_auth("k")}, payme)
    with pytest.raises(PaymentSignatureError):
        verifier.verify_payme({}, payme)

    uzum = UzumSettings(merchant_id="m", secret_key="s", api_key="a").credentials()
    fields = {"transaction_id": "t", "status": "success"}
    fields["signature"] = uzum_signature(fields, "s")
    verifier.verify_uzum(fields, uzum)
    with pytest.raises(PaymentSignatureError):
        verifier.verify_uzum({**fields, "status": "failed"}, uzum)


def test_decode_body_formats():
    assert decode_body({"Content-Type": "application/json"}, b'{"a": 1}') == {"a": 1}
    assert decode_body({}, b"a=1&b=") == {"a": "1", "b": ""}
    with pytest.raises(MalformedCallbackError):
        decode_body({}, b"")
    with pytest.raises(MalformedCallbackError):
        decode_body({"content-type": "application/json"}, b"[1, 2]")
