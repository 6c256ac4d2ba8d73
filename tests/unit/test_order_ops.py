"""Unit tests for the order state machine, status updates and cancellation."""

import uuid

import pytest

from libs.common.errors import Conflict, NotEligible, NotFound
from services.store_service.models import OrderStatus, PaymentMethod
from services.store_service.services import inventory_ops, order_ops
from tests.factories import OrderFactory, OrderItemFactory


async def _placed_order(db, catalogue, *, quantity=2, method=PaymentMethod.VNPAY, user_id="user-1"):
    """A pending order holding ``quantity`` copies in the Hanoi warehouse."""
    order = OrderFactory.create(user_id=user_id, payment_method=method)
    db.add(order)
    await db.flush()
    db.add(
        OrderItemFactory.create(
            order_id=order.id,
            book_id=catalogue.book.id,
            warehouse_id=catalogue.hanoi.id,
            quantity=quantity,
        )
    )
    await inventory_ops.reserve(
        db,
        warehouse_id=catalogue.hanoi.id,
        book_id=catalogue.book.id,
        quantity=quantity,
        order_id=order.id,
    )
    await db.commit()
    return order


async def _stock(db, catalogue):
    return await _stock_by_id(db, catalogue.hanoi.id, catalogue.book.id)


async def _stock_by_id(db, warehouse_id, book_id):
    inventory = await inventory_ops.get_inventory(db, warehouse_id, book_id)
    return inventory.quantity, inventory.reserved


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "from_status, to_status, method, allowed",
    [
        (OrderStatus.PENDING, OrderStatus.PAID, PaymentMethod.VNPAY, True),
        (OrderStatus.PENDING, OrderStatus.CONFIRMED, PaymentMethod.COD, True),
        (OrderStatus.PENDING, OrderStatus.SHIPPED, PaymentMethod.VNPAY, False),
        (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, PaymentMethod.COD, True),
        (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, PaymentMethod.MOMO, False),
        (OrderStatus.PAID, OrderStatus.REFUNDED, PaymentMethod.VNPAY, True),
        (OrderStatus.PAID, OrderStatus.CANCELLED, PaymentMethod.VNPAY, False),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED, PaymentMethod.COD, True),
        (OrderStatus.DELIVERED, OrderStatus.REFUNDED, PaymentMethod.VNPAY, False),
        (OrderStatus.CANCELLED, OrderStatus.PENDING, PaymentMethod.VNPAY, False),
    ],
)
def test_can_transition(from_status, to_status, method, allowed):
    order = OrderFactory.create(status=from_status, payment_method=method)
    assert order_ops.can_transition(order, to_status) is allowed


@pytest.mark.unit
def test_terminal_statuses_have_no_exits():
    for status in order_ops.TERMINAL_STATUSES:
        assert order_ops.ALLOWED_TRANSITIONS[status] == frozenset()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transition_bumps_version_and_records_history(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)

    await order_ops.transition(db_session, order, OrderStatus.PAID, changed_by="system")
    await db_session.commit()

    order = await order_ops.get_order(db_session, order.id)
    assert order.status == OrderStatus.PAID
    assert order.version == 2
    assert order.paid_at is not None
    assert [(h.from_status, h.to_status) for h in order.history] == [("pending", "paid")]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transition_rejects_stale_version(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)
    order_id = order.id

    with pytest.raises(Conflict) as exc_info:
        await order_ops.transition(
            db_session, order, OrderStatus.CONFIRMED, changed_by="admin-1", expected_version=7
        )

    assert exc_info.value.code == "version_conflict"
    await db_session.rollback()
    order = await order_ops.get_order(db_session, order_id)
    assert (order.status, order.version) == (OrderStatus.PENDING, 1)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transition_rejects_disallowed_move(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)

    with pytest.raises(NotEligible) as exc_info:
        await order_ops.transition(db_session, order, OrderStatus.DELIVERED, changed_by="admin-1")

    assert exc_info.value.code == "invalid_transition"
    assert exc_info.value.details == {"from": "pending", "to": "delivered"}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_order_is_scoped_to_owner(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)

    assert (await order_ops.get_order(db_session, order.id, user_id="user-1")).id == order.id
    with pytest.raises(NotFound):
        await order_ops.get_order(db_session, order.id, user_id="user-2")
    with pytest.raises(NotFound):
        await order_ops.get_order(db_session, uuid.uuid4())


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_orders_only_returns_own(db_session, catalogue):
    mine = await _placed_order(db_session, catalogue, quantity=1)
    await _placed_order(db_session, catalogue, quantity=1, user_id="user-2")

    orders = await order_ops.list_orders(db_session, user_id="user-1")

    assert [o.id for o in orders] == [mine.id]


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_releases_reserved_stock(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)
    assert await _stock(db_session, catalogue) == (5, 2)

    cancelled = await order_ops.cancel_order(
        db_session, order.id, user_id="user-1", reason="changed my mind"
    )

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancellation_reason == "changed my mind"
    assert cancelled.cancelled_at is not None
    assert await _stock(db_session, catalogue) == (5, 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_with_stale_version_keeps_reservation(db_session, catalogue):
    """Release and status change commit together or not at all."""
    order = await _placed_order(db_session, catalogue)
    warehouse_id, book_id = catalogue.hanoi.id, catalogue.book.id

    with pytest.raises(Conflict):
        await order_ops.cancel_order(
            db_session, order.id, user_id="user-1", expected_version=5
        )

    await db_session.rollback()
    assert await _stock_by_id(db_session, warehouse_id, book_id) == (5, 2)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_paid_order_cannot_be_cancelled(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)
    await order_ops.transition(db_session, order, OrderStatus.PAID, changed_by="system")
    await db_session.commit()

    with pytest.raises(NotEligible) as exc_info:
        await order_ops.cancel_order(db_session, order.id, user_id="user-1")

    assert exc_info.value.code == "invalid_transition"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cannot_cancel_someone_elses_order(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)

    with pytest.raises(NotFound):
        await order_ops.cancel_order(db_session, order.id, user_id="user-2")


# ---------------------------------------------------------------------------
# Admin status updates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shipping_cod_order_completes_the_sale(db_session, catalogue):
    order = await _placed_order(db_session, catalogue, method=PaymentMethod.COD)
    order = await order_ops.update_status(
        db_session,
        order.id,
        to_status=OrderStatus.CONFIRMED,
        expected_version=1,
        changed_by="admin-1",
    )

    shipped = await order_ops.update_status(
        db_session,
        order.id,
        to_status=OrderStatus.SHIPPED,
        expected_version=order.version,
        changed_by="admin-1",
        note="GHN-123",
    )

    assert shipped.status == OrderStatus.SHIPPED
    assert shipped.version == 3
    assert await _stock(db_session, catalogue) == (3, 0)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_prepaid_order_cannot_ship_before_payment(db_session, catalogue):
    order = await _placed_order(db_session, catalogue)
    await order_ops.update_status(
        db_session,
        order.id,
        to_status=OrderStatus.CONFIRMED,
        expected_version=1,
        changed_by="admin-1",
    )

    with pytest.raises(NotEligible):
        await order_ops.update_status(
            db_session,
            order.id,
            to_status=OrderStatus.SHIPPED,
            expected_version=2,
            changed_by="admin-1",
        )


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "to_status", [OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.REFUNDED]
)
async def test_update_status_refuses_dedicated_flows(db_session, catalogue, to_status):
    order = await _placed_order(db_session, catalogue)

    with pytest.raises(NotEligible) as exc_info:
        await order_ops.update_status(
            db_session, order.id, to_status=to_status, expected_version=1, changed_by="admin-1"
        )

    assert exc_info.value.code == "invalid_transition"
