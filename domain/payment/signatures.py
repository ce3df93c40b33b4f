"""
渠道签名算法 - 纯函数，无 I/O

Click: md5(click_trans_id + service_id + secret_key + merchant_trans_id
           + amount + action + sign_time)
Uzum:  sha256("k1=v1&k2=v2..." + secret)，字段按键排序，排除 signature 本身
Payme: Authorization: Basic base64("Paycom:<key>")
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from typing import Any, Mapping, Optional


CLICK_MERCHANT_PREFIX = "ORDER_"
PAYME_LOGIN = "Paycom"


def click_signature(
    *,
    click_trans_id: Any,
    service_id: Any,
    secret_key: str,
    merchant_trans_id: str,
    amount: Any,
    action: Any,
    sign_time: str,
) -> str:
    """计算 Click 回调签名（prepare 与 complete 使用同一公式）"""
    raw = f"{click_trans_id}{service_id}{secret_key}{merchant_trans_id}{amount}{action}{sign_time}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def click_auth_header(merchant_user_id: str, secret_key: str, timestamp: int) -> str:
    """Click 商户 API 的 Auth 头: user_id:sha1(timestamp+secret):timestamp"""
    digest = hashlib.sha1(f"{timestamp}{secret_key}".encode("utf-8")).hexdigest()
    return f"{merchant_user_id}:{digest}:{timestamp}"


def click_merchant_trans_id(order_id: int, suffix: str) -> str:
    return f"{CLICK_MERCHANT_PREFIX}{order_id}_{suffix}"


def parse_click_merchant_trans_id(value: Optional[str]) -> Optional[tuple[int, str]]:
    """
    解析 ORDER_<order_id>_<suffix>

    返回 (order_id, suffix)；格式不符时返回 None。
    """
    if not value or not value.startswith(CLICK_MERCHANT_PREFIX):
        return None
    rest = value[len(CLICK_MERCHANT_PREFIX):]
    order_part, sep, suffix = rest.partition("_")
    if not sep or not suffix or not order_part.isdigit():
        return None
    return int(order_part), suffix


def uzum_canonical_string(fields: Mapping[str, Any]) -> str:
    items = sorted((k, v) for k, v in fields.items() if k != "signature" and v is not None)
    return "&".join(f"{k}={v}" for k, v in items)


def uzum_signature(fields: Mapping[str, Any], secret_key: str) -> str:
    """Uzum 请求/回调签名"""
    payload = uzum_canonical_string(fields) + secret_key
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def payme_basic_auth(key: str) -> str:
    token = base64.b64encode(f"{PAYME_LOGIN}:{key}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def verify_payme_authorization(header: Optional[str], key: str) -> bool:
    """校验 Payme 的 Basic 认证头（登录名固定为 Paycom）"""
    if not header or not header.startswith("Basic "):
        return False
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    login, sep, password = decoded.partition(":")
    if not sep or login != PAYME_LOGIN:
        return False
    return hmac.compare_digest(password, key)


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    """常量时间比较（大小写不敏感的十六进制摘要）"""
    if not provided:
        return False
    return hmac.compare_digest(expected.lower(), str(provided).lower())
