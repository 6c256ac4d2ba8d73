"""Integration tests for the refund request and admin decision endpoints."""

from datetime import timedelta
from decimal import Decimal

import pytest

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.jobs import catalog
from services.payments_service.models import PaymentGateway, PaymentStatus
from services.store_service.models import OrderStatus, PaymentMethod
from tests.factories import OrderFactory, PaymentFactory

API = get_settings().API_PREFIX


async def _paid_payment(db, *, paid_days_ago=1):
    order = OrderFactory.create(status=OrderStatus.PAID, payment_method=PaymentMethod.VNPAY)
    db.add(order)
    await db.flush()
    payment = PaymentFactory.create(
        order_id=order.id,
        method=PaymentGateway.VNPAY,
        status=PaymentStatus.SUCCEEDED,
        transaction_no="14123456",
        paid_at=utc_now() - timedelta(days=paid_days_ago),
        expires_at=None,
    )
    db.add(payment)
    await db.commit()
    return payment


@pytest.mark.asyncio
@pytest.mark.integration
async def test_request_and_approve_refund(client, user_headers, admin_headers, db_session, fake_redis):
    payment = await _paid_payment(db_session)

    requested = await client.post(
        f"{API}/payments/{payment.id}/refunds",
        json={"amount": "50000", "reason": "Damaged cover"},
        headers=user_headers,
    )

    assert requested.status_code == 201, requested.text
    refund = requested.json()
    assert refund["status"] == "requested"
    assert Decimal(refund["amount"]) == Decimal("50000")

    approved = await client.post(
        f"{API}/admin/refunds/{refund['id']}/approve", headers=admin_headers
    )

    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_by"] == "admin-1"
    [job] = fake_redis.enqueued(catalog.PROCESS_REFUND)
    assert job["job_id"] == f"{catalog.PROCESS_REFUND}:{refund['id']}"
    assert job["queue"] == "bookstore:high"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reject_refund(client, user_headers, admin_headers, db_session):
    payment = await _paid_payment(db_session)
    refund = (
        await client.post(
            f"{API}/payments/{payment.id}/refunds", json={"reason": "Wrong book"}, headers=user_headers
        )
    ).json()

    rejected = await client.post(
        f"{API}/admin/refunds/{refund['id']}/reject",
        json={"reason": "Outside policy"},
        headers=admin_headers,
    )

    assert rejected.status_code == 200, rejected.text
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejection_reason"] == "Outside policy"
    payments = await client.get(f"{API}/payments/order/{payment.order_id}", headers=user_headers)
    assert payments.json()[0]["status"] == "succeeded"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_refund_window(client, user_headers, db_session):
    payment = await _paid_payment(db_session, paid_days_ago=8)

    response = await client.post(
        f"{API}/payments/{payment.id}/refunds", json={"reason": "Too late"}, headers=user_headers
    )

    assert response.status_code == 422
    assert response.json()["code"] == "refund_window_expired"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_refund_amount_must_be_positive(client, user_headers, db_session):
    payment = await _paid_payment(db_session)

    response = await client.post(
        f"{API}/payments/{payment.id}/refunds",
        json={"amount": "0", "reason": "Nothing"},
        headers=user_headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_customers_cannot_approve(client, user_headers, db_session):
    payment = await _paid_payment(db_session)
    refund = (
        await client.post(
            f"{API}/payments/{payment.id}/refunds", json={"reason": "Wrong book"}, headers=user_headers
        )
    ).json()

    response = await client.post(f"{API}/admin/refunds/{refund['id']}/approve", headers=user_headers)

    assert response.status_code == 403
