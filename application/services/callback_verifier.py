"""
Inbound callback verification.

Decodes raw provider bodies and checks their signatures against the
configured credentials. Runs before any unit of work is opened so that
unauthenticated input never costs a transaction or a row lock.
"""
from __future__ import annotations

import json
from typing import Any, Mapping
from urllib.parse import parse_qsl

from core.logging_config import get_logger
from core.settings import ClickCredentials, PaymeCredentials, UzumCredentials
from domain.payment.signatures import (
    click_signature,
    signatures_match,
    uzum_signature,
    verify_payme_authorization,
)
from application.dtos.payments import ClickCallback
from infrastructure.external.payments.exceptions import PaymentSignatureError


logger = get_logger(__name__)


class MalformedCallbackError(ValueError):
    """Body could not be decoded into a mapping."""


def header(headers: Mapping[str, Any], name: str) -> str | None:
    """Case-insensitive header lookup over plain dicts and Starlette headers."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, val in headers.items():
            if key.lower() == lowered:
                return val
    return value


def decode_body(headers: Mapping[str, Any], body: bytes) -> dict[str, Any]:
    """Decode a JSON or form-urlencoded callback body."""
    content_type = (header(headers, "content-type") or "").lower()
    text = body.decode("utf-8") if body else ""
    if not text.strip():
        raise MalformedCallbackError("empty body")
    if "json" in content_type or text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedCallbackError(str(exc)) from exc
        if not isinstance(data, dict):
            raise MalformedCallbackError("JSON body must be an object")
        return data
    return dict(parse_qsl(text, keep_blank_values=True))


class CallbackVerifier:
    """Signature checks for Click, Payme and Uzum callbacks."""

    def verify_click(self, cb: ClickCallback, credentials: ClickCredentials) -> None:
        expected = click_signature(
            click_trans_id=cb.click_trans_id,
            service_id=cb.service_id,
            secret_key=credentials.secret_key,
            merchant_trans_id=cb.merchant_trans_id,
            amount=cb.amount,
            action=cb.action,
            sign_time=cb.sign_time,
        )
        if not signatures_match(expected, cb.sign_string):
            logger.warning(
                "callback_signature_invalid",
                provider="click",
                click_trans_id=cb.click_trans_id,
                merchant_trans_id=cb.merchant_trans_id,
            )
            raise PaymentSignatureError("Click sign_string mismatch", provider="click")

    def verify_payme(self, headers: Mapping[str, Any], credentials: PaymeCredentials) -> None:
        if not verify_payme_authorization(header(headers, "authorization"), credentials.key):
            logger.warning("callback_signature_invalid", provider="payme")
            raise PaymentSignatureError("Payme authorization rejected", provider="payme")

    def verify_uzum(self, fields: Mapping[str, Any], credentials: UzumCredentials) -> None:
        provided = fields.get("signature")
        expected = uzum_signature(fields, credentials.secret_key)
        if not signatures_match(expected, provided):
            logger.warning(
                "callback_signature_invalid",
                provider="uzum",
                transaction_id=fields.get("transaction_id"),
            )
            raise PaymentSignatureError("Uzum signature mismatch", provider="uzum")
