"""Unit tests for gateway signatures and the VNPay/MoMo API clients."""

from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from services.payments_service import gateways, signer
from services.payments_service.gateways import GatewayError, MomoClient, VNPayClient

SECRET = "test-vnpay-secret"


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_canonical_query_sorts_encodes_and_skips():
    params = {
        "vnp_TxnRef": "abc",
        "vnp_Amount": "11500000",
        "vnp_OrderInfo": "Thanh toan don hang",
        "vnp_BankCode": "",
        "vnp_SecureHash": "ignored",
    }

    assert signer.canonical_query(params) == (
        "vnp_Amount=11500000&vnp_OrderInfo=Thanh+toan+don+hang&vnp_TxnRef=abc"
    )


@pytest.mark.unit
def test_canonical_query_accepts_already_encoded_values():
    raw = {"vnp_OrderInfo": "Don hang #1"}
    encoded = {"vnp_OrderInfo": "Don+hang+%231"}

    assert signer.canonical_query(raw) == signer.canonical_query(encoded)


@pytest.mark.unit
def test_vnpay_sign_and_verify():
    params = {"vnp_TxnRef": "abc", "vnp_Amount": "11500000", "vnp_ResponseCode": "00"}
    signature = signer.vnpay_sign(params, SECRET)

    assert signature == signature.upper()
    assert len(signature) == 128
    assert signer.vnpay_verify({**params, "vnp_SecureHash": signature.lower()}, SECRET)
    assert not signer.vnpay_verify({**params, "vnp_Amount": "1", "vnp_SecureHash": signature}, SECRET)
    assert not signer.vnpay_verify(params, SECRET)


@pytest.mark.unit
def test_momo_sign_uses_fixed_field_order():
    params = {"amount": "115000", "orderId": "o-1", "accessKey": "k", "extra": "dropped"}
    fields = ("accessKey", "amount", "orderId")

    assert signer.momo_raw_signature(params, fields) == "accessKey=k&amount=115000&orderId=o-1"
    signature = signer.momo_sign(params, fields, "secret")
    assert signer.momo_verify({**params, "signature": signature}, fields, "secret")
    assert not signer.momo_verify({**params, "signature": signature}, fields, "other")


@pytest.mark.unit
@pytest.mark.parametrize(
    "amount, expected",
    [(Decimal("115000.00"), 115000), (Decimal("99999.5"), 100000), (Decimal("0.49"), 0)],
)
def test_vnd_integer(amount, expected):
    assert gateways.vnd_integer(amount) == expected


# ---------------------------------------------------------------------------
# VNPay
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_vnpay_payment_url_is_signed_and_verifiable():
    client = VNPayClient()
    moment = datetime(2024, 5, 1, 3, 0, tzinfo=timezone.utc)

    url = client.payment_url(
        txn_ref="ref-1", amount=Decimal("115000"), order_info="Order ORD-1", client_ip="::1", now=moment
    )

    query = {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}
    assert query["vnp_Amount"] == "11500000"
    assert query["vnp_IpAddr"] == "127.0.0.1"
    # 03:00 UTC is 10:00 in Vietnam
    assert query["vnp_CreateDate"] == "20240501100000"
    assert query["vnp_ExpireDate"] == "20240501101500"
    assert client.verify_callback(query)


@pytest.mark.unit
def test_vnpay_callback_amount():
    assert VNPayClient.callback_amount({"vnp_Amount": "11500000"}) == Decimal("115000")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_vnpay_refund_success(monkeypatch):
    sent = {}

    async def fake_post(url, payload, gateway):
        sent.update(payload)
        return {"vnp_ResponseCode": "00", "vnp_Message": "OK", "vnp_TransactionNo": "999"}

    monkeypatch.setattr(gateways, "_post_json", fake_post)

    result = await VNPayClient().refund(
        transaction_no="14123456",
        txn_ref="ref-1",
        amount=Decimal("15000"),
        full=False,
        paid_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        requested_by="admin-1",
    )

    assert result.gateway_refund_id == "999"
    assert sent["vnp_TransactionType"] == "03"
    assert sent["vnp_Amount"] == "1500000"
    assert signer.vnpay_verify(sent, SECRET)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_vnpay_refund_rejection_is_permanent(monkeypatch):
    async def fake_post(url, payload, gateway):
        return {"vnp_ResponseCode": "94", "vnp_Message": "Duplicate request"}

    monkeypatch.setattr(gateways, "_post_json", fake_post)

    with pytest.raises(GatewayError) as exc_info:
        await VNPayClient().refund(
            transaction_no="1",
            txn_ref="ref-1",
            amount=Decimal("1000"),
            full=True,
            paid_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            requested_by="admin-1",
        )

    assert exc_info.value.transient is False


# ---------------------------------------------------------------------------
# MoMo
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_momo_ipn_signature_round_trip():
    client = MomoClient()
    params = {
        "partnerCode": client.partner_code,
        "orderId": "ref-1",
        "requestId": "ref-1",
        "amount": 115000,
        "orderInfo": "Order ORD-1",
        "orderType": "momo_wallet",
        "transId": 4088878653,
        "resultCode": 0,
        "message": "Successful.",
        "payType": "qr",
        "responseTime": 1714532400000,
        "extraData": "",
    }

    signed = {**params, "signature": client.sign_ipn_response(params)}

    assert client.verify_callback(signed)
    assert not client.verify_callback({**signed, "amount": 1})


@pytest.mark.asyncio
@pytest.mark.unit
async def test_momo_create_payment_signs_request(monkeypatch):
    sent = {}

    async def fake_post(url, payload, gateway):
        sent.update(payload)
        return {"resultCode": 0, "payUrl": "https://test-payment.momo.vn/pay/1"}

    monkeypatch.setattr(gateways, "_post_json", fake_post)
    client = MomoClient()

    data = await client.create_payment(order_id="ref-1", amount=Decimal("115000.00"), order_info="Order")

    assert data["payUrl"].startswith("https://")
    assert "accessKey" not in sent
    assert sent["amount"] == "115000"
    assert signer.momo_verify(
        {**sent, "accessKey": client.access_key}, signer.MOMO_CREATE_FIELDS, client.secret_key
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_momo_create_rejection(monkeypatch):
    async def fake_post(url, payload, gateway):
        return {"resultCode": 22, "message": "Amount out of range"}

    monkeypatch.setattr(gateways, "_post_json", fake_post)

    with pytest.raises(GatewayError) as exc_info:
        await MomoClient().create_payment(order_id="ref-1", amount=Decimal("1"), order_info="Order")

    assert exc_info.value.transient is False


# ---------------------------------------------------------------------------
# HTTP error classification
# ---------------------------------------------------------------------------


def _mock_http(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(gateways.httpx, "AsyncClient", client_factory)


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "status, body, transient",
    [(502, b"bad gateway", True), (400, b'{"error": "bad"}', False)],
)
async def test_post_json_classifies_http_errors(monkeypatch, status, body, transient):
    _mock_http(monkeypatch, lambda request: httpx.Response(status, content=body))

    with pytest.raises(GatewayError) as exc_info:
        await gateways._post_json("https://gateway.test/api", {}, "VNPay")

    assert exc_info.value.transient is transient
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
@pytest.mark.unit
async def test_post_json_connection_error_is_transient(monkeypatch):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    _mock_http(monkeypatch, refuse)

    with pytest.raises(GatewayError) as exc_info:
        await gateways._post_json("https://gateway.test/api", {}, "MoMo")

    assert exc_info.value.transient is True
