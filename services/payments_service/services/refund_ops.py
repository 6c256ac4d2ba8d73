"""Refund lifecycle: requested -> approved -> succeeded | failed, or requested -> rejected."""

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.errors import Conflict, NotEligible, NotFound, ValidationFailed
from libs.common.logging import get_logger
from libs.jobs import catalog
from libs.jobs.payloads import ProcessRefundPayload
from libs.jobs.queue import JobQueue
from services.payments_service.gateways import GatewayError, MomoClient, VNPayClient
from services.payments_service.models import (
    Payment,
    PaymentAuditLog,
    PaymentGateway,
    PaymentStatus,
    Refund,
    RefundStatus,
)
from services.payments_service.services.payment_ops import (
    enqueue_status_notification,
    get_payment,
)
from services.store_service.models import OrderStatus
from services.store_service.services import order_ops
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()

ACTIVE_REFUND_STATUSES = (RefundStatus.REQUESTED, RefundStatus.APPROVED)


def _audit(
    db: AsyncSession,
    refund: Refund,
    action: str,
    performed_by: str,
    old_status: Optional[RefundStatus],
    notes: Optional[str] = None,
) -> None:
    db.add(
        PaymentAuditLog(
            entity_type="refund",
            entity_id=refund.id,
            action=action,
            performed_by=performed_by,
            old_value={"status": old_status.value} if old_status else None,
            new_value={"status": refund.status.value},
            notes=notes,
        )
    )


async def get_refund(db: AsyncSession, refund_id: uuid.UUID) -> Refund:
    result = await db.execute(
        select(Refund)
        .where(Refund.id == refund_id)
        .options(selectinload(Refund.payment))
        .execution_options(populate_existing=True)
    )
    refund = result.scalar_one_or_none()
    if refund is None:
        raise NotFound("Refund not found", code="refund_not_found")
    return refund


async def request_refund(
    db: AsyncSession,
    *,
    payment_id: uuid.UUID,
    amount: Optional[Decimal],
    reason: str,
    user_id: str,
) -> Refund:
    """Open a refund on a settled payment.

    Allowed within REFUND_WINDOW_DAYS of payment, for at most the paid amount,
    with one active refund per payment.
    """
    payment = await get_payment(db, payment_id)
    if payment.user_id != user_id:
        raise NotFound("Payment not found", code="payment_not_found")
    if payment.status != PaymentStatus.SUCCEEDED:
        if payment.status == PaymentStatus.REFUND_REQUESTED:
            raise Conflict("A refund is already in progress", code="refund_exists")
        raise NotEligible(
            f"Payment in status {payment.status.value} cannot be refunded",
            code="invalid_refund_state",
        )
    if payment.method == PaymentGateway.COD:
        raise NotEligible("Cash on delivery payments are refunded manually", code="invalid_refund_state")

    order = await order_ops.get_order(db, payment.order_id)
    if order.status != OrderStatus.PAID:
        raise NotEligible(
            f"Order in status {order.status.value} cannot be refunded",
            code="invalid_refund_state",
        )

    window = timedelta(days=settings.REFUND_WINDOW_DAYS)
    if payment.paid_at is None or utc_now() - as_utc(payment.paid_at) > window:
        raise NotEligible(
            f"Refunds are only possible within {settings.REFUND_WINDOW_DAYS} days of payment",
            code="refund_window_expired",
        )

    amount = payment.amount if amount is None else amount
    if amount <= 0 or amount > payment.amount:
        raise ValidationFailed(
            "Refund amount must be positive and not exceed the paid amount",
            code="invalid_amount",
            details={"paid_amount": str(payment.amount)},
        )

    active = await db.execute(
        select(Refund.id).where(
            Refund.payment_id == payment.id, Refund.status.in_(ACTIVE_REFUND_STATUSES)
        )
    )
    if active.first() is not None:
        raise Conflict("A refund is already in progress", code="refund_exists")

    refund = Refund(
        payment_id=payment.id,
        order_id=payment.order_id,
        amount=amount,
        reason=reason,
        requested_by=user_id,
        status=RefundStatus.REQUESTED,
    )
    db.add(refund)
    await db.flush()
    payment.status = PaymentStatus.REFUND_REQUESTED
    _audit(db, refund, "refund_requested", user_id, None, notes=reason)
    await db.commit()

    logger.info("Refund %s requested for payment %s (%s)", refund.id, payment.id, amount)
    return await get_refund(db, refund.id)


def _require_status(refund: Refund, *allowed: RefundStatus) -> None:
    if refund.status not in allowed:
        raise NotEligible(
            f"Refund in status {refund.status.value} cannot be changed this way",
            code="invalid_refund_state",
            details={"status": refund.status.value},
        )


async def approve_refund(
    db: AsyncSession,
    refund_id: uuid.UUID,
    *,
    admin_id: str,
    job_queue: Optional[JobQueue] = None,
) -> Refund:
    refund = await get_refund(db, refund_id)
    _require_status(refund, RefundStatus.REQUESTED)

    old = refund.status
    refund.status = RefundStatus.APPROVED
    refund.approved_by = admin_id
    refund.approved_at = utc_now()
    _audit(db, refund, "refund_approved", admin_id, old)
    await db.commit()

    if job_queue is not None:
        await job_queue.enqueue(
            catalog.PROCESS_REFUND,
            ProcessRefundPayload(refund_id=str(refund.id)),
            dedup_key=str(refund.id),
        )
    else:
        logger.warning("No job queue configured; refund %s approved but not dispatched", refund.id)

    logger.info("Refund %s approved by %s", refund.id, admin_id)
    return refund


async def reject_refund(
    db: AsyncSession, refund_id: uuid.UUID, *, admin_id: str, reason: str
) -> Refund:
    refund = await get_refund(db, refund_id)
    _require_status(refund, RefundStatus.REQUESTED)

    old = refund.status
    refund.status = RefundStatus.REJECTED
    refund.rejected_by = admin_id
    refund.rejected_at = utc_now()
    refund.rejection_reason = reason
    refund.payment.status = PaymentStatus.SUCCEEDED
    _audit(db, refund, "refund_rejected", admin_id, old, notes=reason)
    await db.commit()

    logger.info("Refund %s rejected by %s", refund.id, admin_id)
    return refund


async def _call_gateway(payment: Payment, refund: Refund):
    if payment.method == PaymentGateway.VNPAY:
        return await VNPayClient().refund(
            transaction_no=payment.transaction_no or "",
            txn_ref=payment.gateway_txn_ref,
            amount=refund.amount,
            full=refund.amount == payment.amount,
            paid_at=as_utc(payment.paid_at),
            requested_by=refund.approved_by or "system",
        )
    return await MomoClient().refund(
        trans_id=payment.transaction_no or "",
        amount=refund.amount,
        description=f"Refund {payment.gateway_txn_ref}",
    )


async def process_refund(
    db: AsyncSession, refund_id: uuid.UUID, *, job_queue: Optional[JobQueue] = None
) -> Refund:
    """Execute an approved refund against the gateway.

    A transient gateway error propagates so the job is retried; a definitive
    rejection marks the refund failed and restores the payment.
    """
    refund = await get_refund(db, refund_id)
    if refund.status != RefundStatus.APPROVED:
        logger.info("Refund %s is %s; nothing to process", refund.id, refund.status.value)
        return refund
    payment = refund.payment

    # No transaction stays open across the gateway call
    await db.commit()
    try:
        result = await _call_gateway(payment, refund)
    except GatewayError as e:
        if e.transient:
            raise
        refund.status = RefundStatus.FAILED
        refund.failure_reason = e.message
        refund.gateway_response = e.response_data
        payment.status = PaymentStatus.SUCCEEDED
        _audit(db, refund, "refund_failed", "system", RefundStatus.APPROVED, notes=e.message)
        await db.commit()
        logger.error("Refund %s failed at gateway: %s", refund.id, e.message)
        return refund

    refund.status = RefundStatus.SUCCEEDED
    refund.gateway_refund_id = result.gateway_refund_id
    refund.gateway_response = result.raw
    refund.completed_at = utc_now()
    payment.status = PaymentStatus.REFUNDED
    _audit(db, refund, "refund_succeeded", "system", RefundStatus.APPROVED)

    order = await order_ops.get_order(db, refund.order_id)
    if order.status == OrderStatus.PAID:
        await order_ops.transition(
            db, order, OrderStatus.REFUNDED, changed_by="system", note=f"refund {refund.id}"
        )
    await db.commit()

    logger.info("Refund %s completed (%s)", refund.id, refund.amount)
    await enqueue_status_notification(job_queue, order)
    return refund
