"""Payment Coordinator: payment intents and gateway callbacks.

Payments share the database (and the callback transaction) with orders and
stock, so the store models and service functions are used directly here.
"""

import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.errors import (
    DependencyUnavailable,
    NotEligible,
    NotFound,
    ValidationFailed,
    report_invariant_violation,
)
from libs.common.logging import get_logger
from libs.jobs import catalog
from libs.jobs.payloads import (
    AutoReleaseReservationPayload,
    OrderStatusNotificationPayload,
    SyncBookStockPayload,
)
from libs.jobs.queue import JobQueue
from services.payments_service.gateways import (
    MOMO_SUCCESS,
    VNPAY_SUCCESS,
    GatewayError,
    MomoClient,
    VNPayClient,
    vnd_integer,
)
from services.payments_service.models import (
    Payment,
    PaymentGateway,
    PaymentStatus,
    PaymentWebhookLog,
    WebhookOutcome,
)
from services.store_service.models import Order, OrderStatus, PaymentMethod
from services.store_service.services import inventory_ops, order_ops
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()

OPEN_STATUSES = (PaymentStatus.INITIATED, PaymentStatus.PENDING)


@dataclass
class PaymentIntent:
    payment: Payment
    redirect_url: Optional[str]

    @property
    def payment_id(self) -> uuid.UUID:
        return self.payment.id


@dataclass
class CallbackResult:
    """What to answer the gateway with."""

    status_code: int
    body: dict[str, Any]
    outcome: Optional[WebhookOutcome] = None
    order_id: Optional[uuid.UUID] = None


# ============================================================================
# READS
# ============================================================================


async def get_payment(db: AsyncSession, payment_id: uuid.UUID) -> Payment:
    result = await db.execute(
        select(Payment)
        .where(Payment.id == payment_id)
        .execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFound("Payment not found", code="payment_not_found")
    return payment


async def list_payments_for_order(
    db: AsyncSession, order_id: uuid.UUID, *, user_id: Optional[str] = None
) -> list[Payment]:
    """Payments of an order, newest first; scoped to the owner when ``user_id`` is given."""
    await order_ops.get_order(db, order_id, user_id=user_id)
    result = await db.execute(
        select(Payment)
        .where(Payment.order_id == order_id)
        .order_by(Payment.attempt_number.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _open_payment(
    db: AsyncSession, order_id: uuid.UUID, method: PaymentGateway
) -> Optional[Payment]:
    result = await db.execute(
        select(Payment)
        .where(
            Payment.order_id == order_id,
            Payment.method == method,
            Payment.status.in_(OPEN_STATUSES),
        )
        .order_by(Payment.attempt_number.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _attempt_stats(db: AsyncSession, order_id: uuid.UUID) -> tuple[int, int, bool]:
    """(attempts so far, failed attempts, already paid) for an order."""
    result = await db.execute(
        select(Payment.status, func.count(Payment.id))
        .where(Payment.order_id == order_id)
        .group_by(Payment.status)
    )
    counts = {status: count for status, count in result.all()}
    paid = any(
        counts.get(status)
        for status in (
            PaymentStatus.SUCCEEDED,
            PaymentStatus.REFUND_REQUESTED,
            PaymentStatus.REFUNDED,
        )
    )
    return sum(counts.values()), counts.get(PaymentStatus.FAILED, 0), paid


# ============================================================================
# CREATE PAYMENT
# ============================================================================


async def _ensure_reserved(db: AsyncSession, order: Order) -> bool:
    """Re-hold stock for an order whose reservations a failed payment released.

    Returns True when stock was re-reserved (the auto-release timer restarts).
    """
    if await inventory_ops.reserved_units_for_order(db, order.id):
        return False
    for item in order.items:
        await inventory_ops.reserve(
            db,
            warehouse_id=item.warehouse_id,
            book_id=item.book_id,
            quantity=item.quantity,
            order_id=order.id,
            performed_by=order.user_id,
        )
    logger.info("Re-reserved stock for order %s before a new payment attempt", order.order_number)
    return True


async def _restart_auto_release(job_queue: Optional[JobQueue], order: Order) -> None:
    if job_queue is None:
        return
    try:
        await job_queue.cancel(catalog.AUTO_RELEASE_RESERVATION, str(order.id))
        await job_queue.enqueue(
            catalog.AUTO_RELEASE_RESERVATION,
            AutoReleaseReservationPayload(
                order_id=str(order.id),
                order_number=order.order_number,
                user_id=order.user_id,
            ),
            dedup_key=str(order.id),
            not_before=utc_now() + timedelta(minutes=settings.RESERVATION_TTL_MINUTES),
        )
    except Exception:
        logger.exception("Failed to restart auto-release for order %s", order.order_number)


async def create_payment(
    db: AsyncSession,
    *,
    order_id: uuid.UUID,
    method: PaymentMethod,
    user_id: Optional[str],
    client_ip: str = "127.0.0.1",
    job_queue: Optional[JobQueue] = None,
) -> PaymentIntent:
    """Create (or return the open) payment for an order.

    Idempotent by (order, method): while a payment is open and unexpired, the
    same payment and redirect URL come back. COD payments confirm the order
    without a gateway round trip.
    """
    order = await order_ops.get_order(db, order_id, user_id=user_id)
    gateway = PaymentGateway(method.value)

    if method != order.payment_method:
        raise ValidationFailed(
            "Payment method does not match the order",
            code="payment_method_mismatch",
            details={"order_method": order.payment_method.value},
        )

    now = utc_now()
    existing = await _open_payment(db, order.id, gateway)
    if existing is not None:
        if existing.expires_at is None or as_utc(existing.expires_at) > now:
            return PaymentIntent(payment=existing, redirect_url=existing.redirect_url)
        existing.status = PaymentStatus.FAILED
        existing.failed_at = now
        existing.failure_code = "expired"
        await db.flush()

    attempts, failed, paid = await _attempt_stats(db, order.id)
    if paid or order.status == OrderStatus.PAID:
        raise NotEligible("Order is already paid", code="order_already_paid")
    if order.status != OrderStatus.PENDING:
        raise NotEligible(
            f"Order in status {order.status.value} cannot be paid",
            code="invalid_transition",
            details={"status": order.status.value},
        )
    if failed >= settings.PAYMENT_MAX_ATTEMPTS:
        raise NotEligible(
            "Maximum payment attempts reached for this order",
            code="payment_attempts_exceeded",
            details={"max_attempts": settings.PAYMENT_MAX_ATTEMPTS},
        )

    restarted = await _ensure_reserved(db, order)

    payment_id = uuid.uuid4()
    attempt_number = attempts + 1
    payment = Payment(
        id=payment_id,
        order_id=order.id,
        user_id=order.user_id,
        method=gateway,
        amount=order.total,
        status=PaymentStatus.INITIATED,
        gateway_txn_ref=payment_id.hex,
        idempotency_key=f"{order.id}:{gateway.value}:{attempt_number}",
        attempt_number=attempt_number,
        expires_at=now + timedelta(minutes=settings.PAYMENT_TIMEOUT_MINUTES),
    )
    db.add(payment)

    if gateway == PaymentGateway.VNPAY:
        payment.redirect_url = VNPayClient().payment_url(
            txn_ref=payment.gateway_txn_ref,
            amount=payment.amount,
            order_info=f"Thanh toan don hang {order.order_number}",
            client_ip=client_ip,
            now=now,
        )
        payment.status = PaymentStatus.PENDING
    elif gateway == PaymentGateway.COD:
        payment.status = PaymentStatus.PENDING
        payment.expires_at = None
        await order_ops.transition(
            db,
            order,
            OrderStatus.CONFIRMED,
            changed_by=user_id or "system",
            note="cash on delivery",
        )

    try:
        await db.commit()
    except IntegrityError:
        # A concurrent request created this attempt first
        await db.rollback()
        existing = await _open_payment(db, order.id, gateway)
        if existing is None:
            raise
        return PaymentIntent(payment=existing, redirect_url=existing.redirect_url)

    if restarted:
        await _restart_auto_release(job_queue, order)

    if gateway == PaymentGateway.MOMO:
        # Gateway call happens outside any open transaction
        try:
            data = await MomoClient().create_payment(
                order_id=payment.gateway_txn_ref,
                amount=payment.amount,
                order_info=f"Thanh toan don hang {order.order_number}",
            )
        except GatewayError as e:
            payment.status = PaymentStatus.FAILED
            payment.failed_at = utc_now()
            payment.failure_code = "gateway_error"
            payment.gateway_response = e.response_data or {"error": e.message}
            await db.commit()
            if e.transient:
                raise DependencyUnavailable(
                    "Payment gateway is unavailable, please retry",
                    code="gateway_unavailable",
                ) from e
            raise NotEligible(
                "Payment gateway rejected the request", code="gateway_rejected"
            ) from e
        payment.redirect_url = data.get("payUrl")
        payment.gateway_response = data
        payment.status = PaymentStatus.PENDING
        await db.commit()

    if gateway == PaymentGateway.COD:
        await enqueue_status_notification(job_queue, order)

    logger.info(
        "Created %s payment %s for order %s (attempt %d)",
        gateway.value,
        payment.id,
        order.order_number,
        attempt_number,
    )
    return PaymentIntent(payment=payment, redirect_url=payment.redirect_url)


# ============================================================================
# CALLBACKS
# ============================================================================

_VNPAY_RESPONSES = {
    WebhookOutcome.SUCCEEDED: {"RspCode": "00", "Message": "Confirm Success"},
    WebhookOutcome.FAILED: {"RspCode": "00", "Message": "Confirm Success"},
    WebhookOutcome.UNKNOWN_PAYMENT: {"RspCode": "01", "Message": "Order not found"},
    WebhookOutcome.AMOUNT_MISMATCH: {"RspCode": "04", "Message": "Invalid amount"},
}
_MOMO_RESPONSES = {
    WebhookOutcome.SUCCEEDED: {"resultCode": 0, "message": "Success"},
    WebhookOutcome.FAILED: {"resultCode": 0, "message": "Success"},
    WebhookOutcome.UNKNOWN_PAYMENT: {"resultCode": 42, "message": "Order not found"},
    WebhookOutcome.AMOUNT_MISMATCH: {"resultCode": 4, "message": "Invalid amount"},
}
_INVALID_SIGNATURE = {"code": "invalid_signature", "message": "Invalid signature"}


@dataclass(frozen=True)
class CallbackData:
    """Gateway-neutral view of a callback."""

    gateway: PaymentGateway
    txn_ref: Optional[str]
    transaction_no: Optional[str]
    amount: Decimal
    succeeded: bool
    result_code: str


def _response_for(gateway: PaymentGateway, outcome: WebhookOutcome) -> dict[str, Any]:
    table = _VNPAY_RESPONSES if gateway == PaymentGateway.VNPAY else _MOMO_RESPONSES
    return dict(table[outcome])


async def _processed_log(
    db: AsyncSession, gateway: PaymentGateway, txn_ref: Optional[str]
) -> Optional[PaymentWebhookLog]:
    if not txn_ref:
        return None
    result = await db.execute(
        select(PaymentWebhookLog).where(
            PaymentWebhookLog.gateway == gateway,
            PaymentWebhookLog.txn_ref == txn_ref,
            PaymentWebhookLog.processed.is_(True),
        )
    )
    return result.scalar_one_or_none()


def _log(
    db: AsyncSession,
    data: CallbackData,
    params: Mapping[str, Any],
    *,
    signature_valid: bool,
    outcome: WebhookOutcome,
    processed: bool,
    response_code: int,
    response_body: dict[str, Any],
) -> PaymentWebhookLog:
    entry = PaymentWebhookLog(
        gateway=data.gateway,
        txn_ref=data.txn_ref,
        transaction_no=data.transaction_no,
        payload=dict(params),
        signature_valid=signature_valid,
        processed=processed,
        outcome=outcome,
        response_code=response_code,
        response_body=response_body,
        processed_at=utc_now() if processed else None,
    )
    db.add(entry)
    return entry


def vnpay_callback_data(params: Mapping[str, Any]) -> CallbackData:
    code = str(params.get("vnp_ResponseCode") or "")
    status_code = str(params.get("vnp_TransactionStatus") or code)
    return CallbackData(
        gateway=PaymentGateway.VNPAY,
        txn_ref=params.get("vnp_TxnRef"),
        transaction_no=params.get("vnp_TransactionNo"),
        amount=VNPayClient.callback_amount(params),
        succeeded=code == VNPAY_SUCCESS and status_code == VNPAY_SUCCESS,
        result_code=code,
    )


def momo_callback_data(params: Mapping[str, Any]) -> CallbackData:
    try:
        result_code = int(params.get("resultCode", -1))
    except (TypeError, ValueError):
        result_code = -1
    return CallbackData(
        gateway=PaymentGateway.MOMO,
        txn_ref=params.get("orderId"),
        transaction_no=str(params["transId"]) if params.get("transId") else None,
        amount=Decimal(str(params.get("amount") or "0")),
        succeeded=result_code == MOMO_SUCCESS,
        result_code=str(result_code),
    )


async def handle_vnpay_callback(
    db: AsyncSession, params: Mapping[str, Any], *, job_queue: Optional[JobQueue] = None
) -> CallbackResult:
    data = vnpay_callback_data(params)
    valid = VNPayClient().verify_callback(params)
    return await handle_callback(db, data, params, signature_valid=valid, job_queue=job_queue)


async def handle_momo_callback(
    db: AsyncSession, params: Mapping[str, Any], *, job_queue: Optional[JobQueue] = None
) -> CallbackResult:
    data = momo_callback_data(params)
    valid = MomoClient().verify_callback(params)
    return await handle_callback(db, data, params, signature_valid=valid, job_queue=job_queue)


async def handle_callback(
    db: AsyncSession,
    data: CallbackData,
    params: Mapping[str, Any],
    *,
    signature_valid: bool,
    job_queue: Optional[JobQueue] = None,
) -> CallbackResult:
    """Verify, de-duplicate and apply a gateway callback in one transaction.

    Replays of a processed (gateway, txn_ref) get the stored response back and
    change nothing.
    """
    if not signature_valid:
        logger.warning(
            "Rejected %s callback with invalid signature (txn_ref=%s)",
            data.gateway.value,
            data.txn_ref,
            extra={"extra_fields": {"code": "INVALID_SIGNATURE"}},
        )
        _log(
            db,
            data,
            params,
            signature_valid=False,
            outcome=WebhookOutcome.INVALID_SIGNATURE,
            processed=False,
            response_code=400,
            response_body=_INVALID_SIGNATURE,
        )
        await db.commit()
        return CallbackResult(400, dict(_INVALID_SIGNATURE), WebhookOutcome.INVALID_SIGNATURE)

    previous = await _processed_log(db, data.gateway, data.txn_ref)
    if previous is not None:
        logger.info("Duplicate %s callback for %s ignored", data.gateway.value, data.txn_ref)
        return CallbackResult(previous.response_code, previous.response_body or {}, previous.outcome)

    payment = None
    if data.txn_ref:
        result = await db.execute(
            select(Payment)
            .where(Payment.gateway_txn_ref == data.txn_ref, Payment.method == data.gateway)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()

    if payment is None:
        logger.warning("Callback for unknown %s payment %s", data.gateway.value, data.txn_ref)
        body = _response_for(data.gateway, WebhookOutcome.UNKNOWN_PAYMENT)
        _log(
            db,
            data,
            params,
            signature_valid=True,
            outcome=WebhookOutcome.UNKNOWN_PAYMENT,
            processed=False,
            response_code=200,
            response_body=body,
        )
        await db.commit()
        return CallbackResult(200, body, WebhookOutcome.UNKNOWN_PAYMENT)

    order = await order_ops.get_order(db, payment.order_id)

    expected = Decimal(vnd_integer(payment.amount))
    if data.amount != expected or payment.amount != order.total:
        report_invariant_violation(
            "AMOUNT_MISMATCH",
            "Gateway callback amount does not match the order total",
            payment_id=str(payment.id),
            order_id=str(order.id),
            callback_amount=str(data.amount),
            order_total=str(order.total),
        )
        body = _response_for(data.gateway, WebhookOutcome.AMOUNT_MISMATCH)
        _log(
            db,
            data,
            params,
            signature_valid=True,
            outcome=WebhookOutcome.AMOUNT_MISMATCH,
            processed=False,
            response_code=200,
            response_body=body,
        )
        await db.commit()
        return CallbackResult(200, body, WebhookOutcome.AMOUNT_MISMATCH, order.id)

    if payment.status not in OPEN_STATUSES:
        # Already settled through another path; acknowledge without changes
        outcome = (
            WebhookOutcome.FAILED
            if payment.status == PaymentStatus.FAILED
            else WebhookOutcome.SUCCEEDED
        )
        body = _response_for(data.gateway, outcome)
        return await _finish(
            db, data, params, outcome=outcome, body=body, order=order, job_queue=None
        )

    now = utc_now()
    payment.transaction_no = data.transaction_no
    payment.gateway_response = dict(params)

    if data.succeeded:
        outcome = WebhookOutcome.SUCCEEDED
        payment.status = PaymentStatus.SUCCEEDED
        payment.paid_at = now
        if order.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
            await inventory_ops.complete_sale(db, order.id, performed_by="payment")
            await order_ops.transition(
                db,
                order,
                OrderStatus.PAID,
                changed_by="payment",
                note=f"{data.gateway.value} {data.transaction_no or ''}".strip(),
            )
        else:
            # Money arrived after the order was released; needs a manual refund
            report_invariant_violation(
                "LATE_PAYMENT",
                "Payment succeeded for an order that is no longer payable",
                payment_id=str(payment.id),
                order_id=str(order.id),
                order_status=order.status.value,
            )
    else:
        outcome = WebhookOutcome.FAILED
        payment.status = PaymentStatus.FAILED
        payment.failed_at = now
        payment.failure_code = data.result_code
        if order.status == OrderStatus.PENDING:
            await inventory_ops.release(
                db, order.id, performed_by="payment", reason=f"payment failed ({data.result_code})"
            )

    body = _response_for(data.gateway, outcome)
    return await _finish(
        db, data, params, outcome=outcome, body=body, order=order, job_queue=job_queue
    )


async def _finish(
    db: AsyncSession,
    data: CallbackData,
    params: Mapping[str, Any],
    *,
    outcome: WebhookOutcome,
    body: dict[str, Any],
    order: Order,
    job_queue: Optional[JobQueue],
) -> CallbackResult:
    _log(
        db,
        data,
        params,
        signature_valid=True,
        outcome=outcome,
        processed=True,
        response_code=200,
        response_body=body,
    )
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent delivery of the same callback
        await db.rollback()
        previous = await _processed_log(db, data.gateway, data.txn_ref)
        if previous is None:
            raise
        return CallbackResult(previous.response_code, previous.response_body or {}, previous.outcome)

    logger.info(
        "%s callback for order %s processed: %s",
        data.gateway.value,
        order.order_number,
        outcome.value,
    )
    if job_queue is not None:
        await _after_callback(job_queue, order, outcome)
    return CallbackResult(200, body, outcome, order.id)


async def enqueue_status_notification(job_queue: Optional[JobQueue], order: Order) -> None:
    if job_queue is None:
        return
    try:
        await job_queue.enqueue(
            catalog.ORDER_STATUS_NOTIFICATION,
            OrderStatusNotificationPayload(
                order_id=str(order.id),
                user_id=order.user_id,
                status=order.status.value,
                order_number=order.order_number,
            ),
        )
    except Exception:
        logger.exception("Failed to enqueue status notification for %s", order.order_number)


async def _after_callback(job_queue: JobQueue, order: Order, outcome: WebhookOutcome) -> None:
    """Post-commit follow-ups. Failures are logged; the callback result stands."""
    try:
        if outcome == WebhookOutcome.SUCCEEDED:
            await job_queue.cancel(catalog.AUTO_RELEASE_RESERVATION, str(order.id))
        for item in order.items:
            await job_queue.enqueue(
                catalog.SYNC_BOOK_STOCK,
                SyncBookStockPayload(book_id=str(item.book_id)),
                dedup_key=str(item.book_id),
            )
    except Exception:
        logger.exception("Post-callback jobs failed for order %s", order.order_number)
    if outcome == WebhookOutcome.SUCCEEDED:
        await enqueue_status_notification(job_queue, order)
