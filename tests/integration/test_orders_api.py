"""Integration tests for order history, cancellation and admin status changes."""

import uuid

import pytest

from libs.common.config import get_settings
from libs.jobs import catalog
from services.store_service.models import OrderStatus, PaymentMethod
from services.store_service.services import inventory_ops
from tests.factories import OrderFactory, OrderItemFactory

API = get_settings().API_PREFIX


async def _placed_order(db, catalogue, *, method=PaymentMethod.VNPAY, status=OrderStatus.PENDING):
    order = OrderFactory.create(payment_method=method, status=status)
    db.add(order)
    await db.flush()
    db.add(
        OrderItemFactory.create(
            order_id=order.id,
            book_id=catalogue.book.id,
            warehouse_id=catalogue.hanoi.id,
            quantity=2,
        )
    )
    await inventory_ops.reserve(
        db,
        warehouse_id=catalogue.hanoi.id,
        book_id=catalogue.book.id,
        quantity=2,
        order_id=order.id,
    )
    await db.commit()
    return order


@pytest.mark.asyncio
@pytest.mark.integration
async def test_list_only_my_orders(client, user_headers, db_session, catalogue):
    mine = await _placed_order(db_session, catalogue)
    db_session.add(OrderFactory.create(user_id="user-2"))
    await db_session.commit()

    response = await client.get(f"{API}/orders", headers=user_headers)

    assert response.status_code == 200
    assert [o["id"] for o in response.json()] == [str(mine.id)]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_other_users_order_is_not_found(client, user_headers, db_session):
    order = OrderFactory.create(user_id="user-2")
    db_session.add(order)
    await db_session.commit()

    response = await client.get(f"{API}/orders/{order.id}", headers=user_headers)

    assert response.status_code == 404
    assert response.json()["code"] == "order_not_found"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_sees_any_order(client, admin_headers, db_session):
    order = OrderFactory.create(user_id="user-2")
    db_session.add(order)
    await db_session.commit()

    response = await client.get(f"{API}/orders/{order.id}", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["user_id"] == "user-2"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancel_releases_stock(client, user_headers, db_session, catalogue, fake_redis):
    order = await _placed_order(db_session, catalogue)

    response = await client.post(
        f"{API}/orders/{order.id}/cancel", json={"reason": "changed my mind"}, headers=user_headers
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "changed my mind"
    inventory = await inventory_ops.get_inventory(db_session, catalogue.hanoi.id, catalogue.book.id)
    assert (inventory.quantity, inventory.reserved) == (5, 0)
    [job] = fake_redis.enqueued(catalog.ORDER_STATUS_NOTIFICATION)
    assert job["args"][0]["status"] == "cancelled"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancel_paid_order_is_refused(client, user_headers, db_session, catalogue):
    order = await _placed_order(db_session, catalogue, status=OrderStatus.PAID)

    response = await client.post(f"{API}/orders/{order.id}/cancel", headers=user_headers)

    assert response.status_code == 422
    assert response.json()["code"] == "invalid_transition"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_confirms_and_ships_cod_order(client, admin_headers, db_session, catalogue):
    order = await _placed_order(db_session, catalogue, method=PaymentMethod.COD)

    confirmed = await client.patch(
        f"{API}/admin/orders/{order.id}/status",
        json={"status": "confirmed", "expected_version": 1},
        headers=admin_headers,
    )
    shipped = await client.patch(
        f"{API}/admin/orders/{order.id}/status",
        json={"status": "shipped", "expected_version": 2, "note": "GHN 123"},
        headers=admin_headers,
    )

    assert confirmed.status_code == 200, confirmed.text
    assert shipped.status_code == 200, shipped.text
    data = shipped.json()
    assert (data["status"], data["version"]) == ("shipped", 3)
    assert [h["to_status"] for h in data["history"]] == ["confirmed", "shipped"]
    inventory = await inventory_ops.get_inventory(db_session, catalogue.hanoi.id, catalogue.book.id)
    assert (inventory.quantity, inventory.reserved) == (3, 0)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_stale_version_is_a_conflict(client, admin_headers, db_session, catalogue):
    order = await _placed_order(db_session, catalogue, method=PaymentMethod.COD)

    response = await client.patch(
        f"{API}/admin/orders/{order.id}/status",
        json={"status": "confirmed", "expected_version": 7},
        headers=admin_headers,
    )
    await db_session.rollback()

    assert response.status_code == 409
    assert response.json()["code"] == "version_conflict"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_cancel_goes_through_cancellation(client, admin_headers, db_session, catalogue):
    order = await _placed_order(db_session, catalogue)

    response = await client.patch(
        f"{API}/admin/orders/{order.id}/status",
        json={"status": "cancelled", "expected_version": 1},
        headers=admin_headers,
    )

    assert response.status_code == 200, response.text
    assert response.json()["status"] == "cancelled"
    inventory = await inventory_ops.get_inventory(db_session, catalogue.hanoi.id, catalogue.book.id)
    assert inventory.reserved == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_customers_cannot_change_status(client, user_headers):
    response = await client.patch(
        f"{API}/admin/orders/{uuid.uuid4()}/status",
        json={"status": "shipped", "expected_version": 1},
        headers=user_headers,
    )

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"
