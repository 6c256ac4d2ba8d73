"""Gateway signatures.

VNPay: HMAC-SHA512 over the canonical query string, uppercase hex. The same
canonicaliser signs outbound payment URLs and verifies callbacks, so the two
paths cannot drift.

MoMo: HMAC-SHA256 over ``key=value`` pairs in a fixed field order, lowercase hex.
"""

import hashlib
import hmac
from typing import Iterable, Mapping
from urllib.parse import quote_plus, unquote_plus

VNPAY_HASH_FIELDS = frozenset({"vnp_SecureHash", "vnp_SecureHashType"})

MOMO_CREATE_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "ipnUrl",
    "orderId",
    "orderInfo",
    "partnerCode",
    "redirectUrl",
    "requestId",
    "requestType",
)
MOMO_IPN_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "message",
    "orderId",
    "orderInfo",
    "orderType",
    "partnerCode",
    "payType",
    "requestId",
    "responseTime",
    "resultCode",
    "transId",
)
MOMO_REFUND_FIELDS = (
    "accessKey",
    "amount",
    "description",
    "orderId",
    "partnerCode",
    "requestId",
    "transId",
)


def canonical_query(params: Mapping[str, object]) -> str:
    """Sorted ``key=value`` pairs, form-encoded, hash fields and empty values dropped.

    Values are decoded first so already-encoded callback values and raw
    outbound values canonicalise to the same string.
    """
    pairs = []
    for key in sorted(params):
        if key in VNPAY_HASH_FIELDS:
            continue
        value = params[key]
        if value is None or value == "":
            continue
        decoded = unquote_plus(str(value))
        pairs.append(f"{quote_plus(key)}={quote_plus(decoded)}")
    return "&".join(pairs)


def vnpay_sign(params: Mapping[str, object], secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"), canonical_query(params).encode("utf-8"), hashlib.sha512
    )
    return digest.hexdigest().upper()


def vnpay_verify(params: Mapping[str, object], secret: str) -> bool:
    received = str(params.get("vnp_SecureHash") or "")
    if not received:
        return False
    expected = vnpay_sign(params, secret)
    return hmac.compare_digest(received.upper(), expected)


def vnpay_signed_url(base_url: str, params: Mapping[str, object], secret: str) -> str:
    query = canonical_query(params)
    return f"{base_url}?{query}&vnp_SecureHash={vnpay_sign(params, secret)}"


def momo_raw_signature(params: Mapping[str, object], fields: Iterable[str]) -> str:
    return "&".join(f"{field}={params.get(field, '')}" for field in fields)


def momo_sign(params: Mapping[str, object], fields: Iterable[str], secret: str) -> str:
    raw = momo_raw_signature(params, fields)
    return hmac.new(secret.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


def momo_verify(
    params: Mapping[str, object], fields: Iterable[str], secret: str
) -> bool:
    received = str(params.get("signature") or "")
    if not received:
        return False
    return hmac.compare_digest(received.lower(), momo_sign(params, fields, secret))
