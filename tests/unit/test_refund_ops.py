"""Unit tests for the refund lifecycle."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict, NotEligible, NotFound, ValidationFailed
from libs.jobs import catalog
from services.payments_service.gateways import GatewayError, RefundResult
from services.payments_service.models import (
    PaymentAuditLog,
    PaymentGateway,
    PaymentStatus,
    RefundStatus,
)
from services.payments_service.services import payment_ops, refund_ops
from services.store_service.models import OrderStatus, PaymentMethod
from services.store_service.services import order_ops
from tests.factories import OrderFactory, PaymentFactory, RefundFactory


async def _paid(db, *, method=PaymentGateway.VNPAY, paid_at=None, order_status=OrderStatus.PAID):
    order = OrderFactory.create(status=order_status, payment_method=PaymentMethod(method.value))
    db.add(order)
    await db.flush()
    payment = PaymentFactory.create(
        order_id=order.id,
        method=method,
        status=PaymentStatus.SUCCEEDED,
        transaction_no="14123456",
        paid_at=paid_at or utc_now() - timedelta(days=1),
        expires_at=None,
    )
    db.add(payment)
    await db.commit()
    return order, payment


async def _approved(db, payment, **overrides):
    refund = RefundFactory.create(
        payment_id=payment.id,
        order_id=payment.order_id,
        status=RefundStatus.APPROVED,
        approved_by="admin-1",
        approved_at=utc_now(),
        **overrides,
    )
    payment.status = PaymentStatus.REFUND_REQUESTED
    db.add(refund)
    await db.commit()
    return refund


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_request_full_refund(db_session):
    _, payment = await _paid(db_session)

    refund = await refund_ops.request_refund(
        db_session, payment_id=payment.id, amount=None, reason="Damaged cover", user_id="user-1"
    )

    assert refund.status == RefundStatus.REQUESTED
    assert refund.amount == Decimal("115000.00")
    payment = await payment_ops.get_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.REFUND_REQUESTED
    audit = (await db_session.execute(select(PaymentAuditLog))).scalar_one()
    assert (audit.action, audit.new_value) == ("refund_requested", {"status": "requested"})


@pytest.mark.asyncio
@pytest.mark.unit
async def test_only_one_refund_at_a_time(db_session):
    _, payment = await _paid(db_session)
    await refund_ops.request_refund(
        db_session, payment_id=payment.id, amount=None, reason="first", user_id="user-1"
    )

    with pytest.raises(Conflict) as exc_info:
        await refund_ops.request_refund(
            db_session, payment_id=payment.id, amount=None, reason="again", user_id="user-1"
        )

    assert exc_info.value.code == "refund_exists"


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("115000.01")])
async def test_refund_amount_bounds(db_session, amount):
    _, payment = await _paid(db_session)

    with pytest.raises(ValidationFailed) as exc_info:
        await refund_ops.request_refund(
            db_session, payment_id=payment.id, amount=amount, reason="x", user_id="user-1"
        )

    assert exc_info.value.code == "invalid_amount"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_partial_refund_allowed(db_session):
    _, payment = await _paid(db_session)

    refund = await refund_ops.request_refund(
        db_session, payment_id=payment.id, amount=Decimal("50000"), reason="x", user_id="user-1"
    )

    assert refund.amount == Decimal("50000.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_window(db_session):
    _, payment = await _paid(db_session, paid_at=utc_now() - timedelta(days=8))

    with pytest.raises(NotEligible) as exc_info:
        await refund_ops.request_refund(
            db_session, payment_id=payment.id, amount=None, reason="late", user_id="user-1"
        )

    assert exc_info.value.code == "refund_window_expired"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cod_and_shipped_orders_are_not_refundable(db_session):
    _, cod = await _paid(db_session, method=PaymentGateway.COD)
    _, shipped = await _paid(db_session, order_status=OrderStatus.SHIPPED)

    for payment in (cod, shipped):
        with pytest.raises(NotEligible) as exc_info:
            await refund_ops.request_refund(
                db_session, payment_id=payment.id, amount=None, reason="x", user_id="user-1"
            )
        assert exc_info.value.code == "invalid_refund_state"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_of_someone_elses_payment(db_session):
    _, payment = await _paid(db_session)

    with pytest.raises(NotFound):
        await refund_ops.request_refund(
            db_session, payment_id=payment.id, amount=None, reason="x", user_id="user-2"
        )


# ---------------------------------------------------------------------------
# Approve / reject
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approve_dispatches_processing_once(db_session, job_queue, fake_redis):
    _, payment = await _paid(db_session)
    refund = await refund_ops.request_refund(
        db_session, payment_id=payment.id, amount=None, reason="x", user_id="user-1"
    )

    approved = await refund_ops.approve_refund(
        db_session, refund.id, admin_id="admin-1", job_queue=job_queue
    )

    assert approved.status == RefundStatus.APPROVED
    assert approved.approved_by == "admin-1"
    jobs = fake_redis.enqueued(catalog.PROCESS_REFUND)
    assert [job["job_id"] for job in jobs] == [f"{catalog.PROCESS_REFUND}:{refund.id}"]

    with pytest.raises(NotEligible):
        await refund_ops.approve_refund(
            db_session, refund.id, admin_id="admin-1", job_queue=job_queue
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reject_restores_payment(db_session):
    _, payment = await _paid(db_session)
    refund = await refund_ops.request_refund(
        db_session, payment_id=payment.id, amount=None, reason="x", user_id="user-1"
    )

    rejected = await refund_ops.reject_refund(
        db_session, refund.id, admin_id="admin-1", reason="Book was opened"
    )

    assert rejected.status == RefundStatus.REJECTED
    assert rejected.rejection_reason == "Book was opened"
    payment = await payment_ops.get_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.SUCCEEDED


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_process_vnpay_refund(db_session, job_queue, fake_redis, monkeypatch):
    order, payment = await _paid(db_session)
    refund = await _approved(db_session, payment)
    calls = []

    async def fake_refund(self, **kwargs):
        calls.append(kwargs)
        return RefundResult(gateway_refund_id="RF-1", response_code="00", message="ok")

    monkeypatch.setattr(refund_ops.VNPayClient, "refund", fake_refund)

    processed = await refund_ops.process_refund(db_session, refund.id, job_queue=job_queue)

    assert processed.status == RefundStatus.SUCCEEDED
    assert processed.gateway_refund_id == "RF-1"
    assert calls[0]["full"] is True
    assert calls[0]["transaction_no"] == "14123456"
    payment = await payment_ops.get_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.REFUNDED
    order = await order_ops.get_order(db_session, order.id)
    assert order.status == OrderStatus.REFUNDED
    notifications = fake_redis.enqueued(catalog.ORDER_STATUS_NOTIFICATION)
    assert [job["args"][0]["status"] for job in notifications] == ["refunded"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_process_momo_partial_refund(db_session, monkeypatch):
    _, payment = await _paid(db_session, method=PaymentGateway.MOMO)
    refund = await _approved(db_session, payment, amount=Decimal("15000.00"))
    calls = []

    async def fake_refund(self, *, trans_id, amount, description):
        calls.append((trans_id, amount))
        return RefundResult(gateway_refund_id="88", response_code="0", message="ok")

    monkeypatch.setattr(refund_ops.MomoClient, "refund", fake_refund)

    processed = await refund_ops.process_refund(db_session, refund.id)

    assert processed.status == RefundStatus.SUCCEEDED
    assert calls == [("14123456", Decimal("15000.00"))]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_definitive_gateway_rejection_fails_refund(db_session, monkeypatch):
    order, payment = await _paid(db_session)
    refund = await _approved(db_session, payment)

    async def rejected(self, **kwargs):
        raise GatewayError("VNPay refund failed: [94] duplicate", transient=False)

    monkeypatch.setattr(refund_ops.VNPayClient, "refund", rejected)

    processed = await refund_ops.process_refund(db_session, refund.id)

    assert processed.status == RefundStatus.FAILED
    assert "duplicate" in processed.failure_reason
    payment = await payment_ops.get_payment(db_session, payment.id)
    assert payment.status == PaymentStatus.SUCCEEDED
    order = await order_ops.get_order(db_session, order.id)
    assert order.status == OrderStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transient_gateway_error_propagates_for_retry(db_session, monkeypatch):
    _, payment = await _paid(db_session)
    refund = await _approved(db_session, payment)

    async def unavailable(self, **kwargs):
        raise GatewayError("VNPay unavailable", status_code=503)

    monkeypatch.setattr(refund_ops.VNPayClient, "refund", unavailable)

    with pytest.raises(GatewayError):
        await refund_ops.process_refund(db_session, refund.id)

    refund = await refund_ops.get_refund(db_session, refund.id)
    assert refund.status == RefundStatus.APPROVED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_process_ignores_refund_not_approved(db_session, monkeypatch):
    _, payment = await _paid(db_session)
    refund = RefundFactory.create(payment_id=payment.id, order_id=payment.order_id)
    db_session.add(refund)
    await db_session.commit()

    async def must_not_run(self, **kwargs):
        raise AssertionError("gateway called")

    monkeypatch.setattr(refund_ops.VNPayClient, "refund", must_not_run)

    processed = await refund_ops.process_refund(db_session, refund.id)

    assert processed.status == RefundStatus.REQUESTED
