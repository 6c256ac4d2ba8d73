"""
VNPay and MoMo gateway clients.

Provides:
- VNPay payment URL building and refund API calls
- MoMo captureWallet creation and refund API calls
- Callback signature verification for both gateways
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo

import httpx
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger, get_request_id
from services.payments_service import signer

logger = get_logger(__name__)

settings = get_settings()

# VNPay timestamps are Vietnam local time
VNPAY_TZ = ZoneInfo("Asia/Ho_Chi_Minh")
VNPAY_VERSION = "2.1.0"
VNPAY_SUCCESS = "00"
VNPAY_USER_CANCELLED = "24"

MOMO_SUCCESS = 0
MOMO_USER_CANCELLED = 1006
MOMO_PENDING = 9000


class GatewayError(Exception):
    """Gateway call failed. ``transient`` errors are worth retrying."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
        transient: bool = True,
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        self.transient = transient
        super().__init__(message)


@dataclass
class RefundResult:
    """Result of a gateway refund call."""

    gateway_refund_id: str
    response_code: str
    message: str
    raw: dict = field(default_factory=dict)


def vnd_integer(amount: Decimal) -> int:
    """VND has no minor unit; gateways take whole dong."""
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _vnpay_time(moment: datetime) -> str:
    return moment.astimezone(VNPAY_TZ).strftime("%Y%m%d%H%M%S")


async def _post_json(url: str, payload: dict, gateway: str) -> dict:
    headers = {"Content-Type": "application/json"}
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id

    try:
        async with httpx.AsyncClient(
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        ) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise GatewayError(f"{gateway} request timed out") from e
    except httpx.HTTPError as e:
        raise GatewayError(f"{gateway} request failed: {e}") from e

    if response.status_code >= 500:
        raise GatewayError(
            f"{gateway} returned {response.status_code}",
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except ValueError as e:
        raise GatewayError(
            f"{gateway} returned a non-JSON body", status_code=response.status_code
        ) from e
    if response.status_code >= 400:
        logger.error(f"{gateway} API error: {response.status_code} - {data}")
        raise GatewayError(
            f"{gateway} rejected the request",
            status_code=response.status_code,
            response_data=data,
            transient=False,
        )
    return data


# ============================================================================
# VNPAY
# ============================================================================


class VNPayClient:
    """VNPay payment URL builder and merchant API client."""

    def __init__(self, tmn_code: str = None, hash_secret: str = None):
        self.tmn_code = tmn_code or settings.VNPAY_TMN_CODE
        self.hash_secret = hash_secret or settings.VNPAY_HASH_SECRET

    def payment_url(
        self,
        *,
        txn_ref: str,
        amount: Decimal,
        order_info: str,
        client_ip: str,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or utc_now()
        if client_ip == "::1":
            client_ip = "127.0.0.1"
        params = {
            "vnp_Version": VNPAY_VERSION,
            "vnp_Command": "pay",
            "vnp_TmnCode": self.tmn_code,
            "vnp_Amount": str(vnd_integer(amount) * 100),
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": "other",
            "vnp_Locale": "vn",
            "vnp_ReturnUrl": settings.VNPAY_RETURN_URL,
            "vnp_IpAddr": client_ip,
            "vnp_CreateDate": _vnpay_time(now),
            "vnp_ExpireDate": _vnpay_time(
                now + timedelta(minutes=settings.PAYMENT_TIMEOUT_MINUTES)
            ),
        }
        return signer.vnpay_signed_url(settings.VNPAY_PAYMENT_URL, params, self.hash_secret)

    def verify_callback(self, params: Mapping[str, Any]) -> bool:
        return signer.vnpay_verify(params, self.hash_secret)

    @staticmethod
    def callback_amount(params: Mapping[str, Any]) -> Decimal:
        """vnp_Amount is in hundredths of a dong."""
        return Decimal(str(params.get("vnp_Amount") or "0")) / 100

    async def refund(
        self,
        *,
        transaction_no: str,
        txn_ref: str,
        amount: Decimal,
        full: bool,
        paid_at: datetime,
        requested_by: str,
    ) -> RefundResult:
        now = utc_now()
        request_id = uuid.uuid4().hex
        params = {
            "vnp_RequestId": request_id,
            "vnp_Version": VNPAY_VERSION,
            "vnp_Command": "refund",
            "vnp_TmnCode": self.tmn_code,
            "vnp_TransactionType": "02" if full else "03",
            "vnp_TxnRef": txn_ref,
            "vnp_Amount": str(vnd_integer(amount) * 100),
            "vnp_OrderInfo": f"Refund {txn_ref}",
            "vnp_TransactionNo": transaction_no,
            "vnp_TransactionDate": _vnpay_time(paid_at),
            "vnp_CreateDate": _vnpay_time(now),
            "vnp_CreateBy": requested_by,
            "vnp_IpAddr": "127.0.0.1",
        }
        params["vnp_SecureHash"] = signer.vnpay_sign(params, self.hash_secret)

        data = await _post_json(settings.VNPAY_API_URL, params, "VNPay")
        code = str(data.get("vnp_ResponseCode", ""))
        message = str(data.get("vnp_Message", ""))
        if code != VNPAY_SUCCESS:
            raise GatewayError(
                f"VNPay refund failed: [{code}] {message}",
                response_data=data,
                transient=False,
            )
        return RefundResult(
            gateway_refund_id=str(data.get("vnp_TransactionNo") or request_id),
            response_code=code,
            message=message,
            raw=data,
        )


# ============================================================================
# MOMO
# ============================================================================


class MomoClient:
    """MoMo captureWallet and refund API client."""

    def __init__(self, partner_code: str = None, access_key: str = None, secret_key: str = None):
        self.partner_code = partner_code or settings.MOMO_PARTNER_CODE
        self.access_key = access_key or settings.MOMO_ACCESS_KEY
        self.secret_key = secret_key or settings.MOMO_SECRET_KEY

    async def create_payment(
        self, *, order_id: str, amount: Decimal, order_info: str
    ) -> dict:
        """Create a captureWallet request; returns the gateway response (``payUrl``)."""
        params = {
            "accessKey": self.access_key,
            "amount": str(vnd_integer(amount)),
            "extraData": "",
            "ipnUrl": settings.MOMO_IPN_URL,
            "orderId": order_id,
            "orderInfo": order_info,
            "partnerCode": self.partner_code,
            "redirectUrl": settings.MOMO_REDIRECT_URL,
            "requestId": order_id,
            "requestType": "captureWallet",
        }
        body = {
            **params,
            "lang": "vi",
            "signature": signer.momo_sign(params, signer.MOMO_CREATE_FIELDS, self.secret_key),
        }
        body.pop("accessKey")

        data = await _post_json(f"{settings.MOMO_ENDPOINT}/create", body, "MoMo")
        if int(data.get("resultCode", -1)) != MOMO_SUCCESS:
            raise GatewayError(
                f"MoMo create failed: [{data.get('resultCode')}] {data.get('message')}",
                response_data=data,
                transient=False,
            )
        return data

    def verify_callback(self, params: Mapping[str, Any]) -> bool:
        # IPN bodies do not carry the access key, but it is part of the signed string
        signed = {**params, "accessKey": self.access_key}
        return signer.momo_verify(signed, signer.MOMO_IPN_FIELDS, self.secret_key)

    def sign_ipn_response(self, params: Mapping[str, Any]) -> str:
        return signer.momo_sign(
            {**params, "accessKey": self.access_key}, signer.MOMO_IPN_FIELDS, self.secret_key
        )

    async def refund(
        self, *, trans_id: str, amount: Decimal, description: str
    ) -> RefundResult:
        request_id = uuid.uuid4().hex
        params = {
            "accessKey": self.access_key,
            "amount": str(vnd_integer(amount)),
            "description": description,
            "orderId": request_id,
            "partnerCode": self.partner_code,
            "requestId": request_id,
            "transId": trans_id,
        }
        body = {
            **params,
            "lang": "vi",
            "signature": signer.momo_sign(params, signer.MOMO_REFUND_FIELDS, self.secret_key),
        }
        body.pop("accessKey")

        data = await _post_json(f"{settings.MOMO_ENDPOINT}/refund", body, "MoMo")
        code = int(data.get("resultCode", -1))
        if code != MOMO_SUCCESS:
            raise GatewayError(
                f"MoMo refund failed: [{code}] {data.get('message')}",
                response_data=data,
                transient=False,
            )
        return RefundResult(
            gateway_refund_id=str(data.get("transId") or request_id),
            response_code=str(code),
            message=str(data.get("message", "")),
            raw=data,
        )
