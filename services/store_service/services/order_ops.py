"""Order lifecycle: state machine, optimistic status updates, cancellation."""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict, NotEligible, NotFound
from libs.common.logging import get_logger
from services.store_service.models import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
)
from services.store_service.services import inventory_ops
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.PAID, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset(
        {OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}
)
CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

_STATUS_FIELDS = [
    "status",
    "version",
    "paid_at",
    "cancelled_at",
    "cancellation_reason",
    "updated_at",
]


def can_transition(order: Order, to_status: OrderStatus) -> bool:
    if to_status not in ALLOWED_TRANSITIONS[order.status]:
        return False
    # Only cash-on-delivery orders ship before they are paid
    if (
        order.status == OrderStatus.CONFIRMED
        and to_status == OrderStatus.SHIPPED
        and order.payment_method != PaymentMethod.COD
    ):
        return False
    return True


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_order(
    db: AsyncSession, order_id: uuid.UUID, *, user_id: Optional[str] = None
) -> Order:
    """Load an order with its items; scoped to ``user_id`` when given."""
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items), selectinload(Order.history))
        .execution_options(populate_existing=True)
    )
    if user_id is not None:
        query = query.where(Order.user_id == user_id)
    result = await db.execute(query)
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found", code="order_not_found")
    return order


async def list_orders(
    db: AsyncSession, *, user_id: str, limit: int = 20, offset: int = 0
) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def transition(
    db: AsyncSession,
    order: Order,
    to_status: OrderStatus,
    *,
    changed_by: Optional[str],
    note: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Order:
    """Move an order to ``to_status`` with a compare-and-swap on ``version``.

    Runs inside the caller's transaction. Raises Conflict(version_conflict)
    when another writer got there first.
    """
    if not can_transition(order, to_status):
        raise NotEligible(
            f"Cannot move order from {order.status.value} to {to_status.value}",
            code="invalid_transition",
            details={"from": order.status.value, "to": to_status.value},
        )

    version = order.version if expected_version is None else expected_version
    now = utc_now()
    values: dict = {
        "status": to_status,
        "version": Order.version + 1,
        "updated_at": now,
    }
    if to_status == OrderStatus.PAID:
        values["paid_at"] = now
    elif to_status == OrderStatus.CANCELLED:
        values["cancelled_at"] = now
        values["cancellation_reason"] = note

    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.version == version)
        .values(**values)
        .returning(Order.version)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        raise Conflict(
            "Order was modified concurrently; reload and retry",
            code="version_conflict",
            details={"order_id": str(order.id), "expected_version": version},
        )

    from_status = order.status
    db.add(
        OrderStatusHistory(
            order_id=order.id,
            from_status=from_status.value,
            to_status=to_status.value,
            changed_by=changed_by,
            note=note,
        )
    )
    await db.flush()
    await db.refresh(order, attribute_names=_STATUS_FIELDS)

    logger.info(
        "Order %s: %s -> %s (v%d)",
        order.order_number,
        from_status.value,
        to_status.value,
        order.version,
    )
    return order


async def cancel_order(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    user_id: Optional[str],
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Order:
    """Cancel an unpaid order and release its reservations.

    Paid orders can only be refunded. ``user_id`` None means a system or
    admin caller.
    """
    order = await get_order(db, order_id, user_id=user_id)
    if order.status not in CANCELLABLE_STATUSES:
        raise NotEligible(
            f"Order in status {order.status.value} cannot be cancelled",
            code="invalid_transition",
            details={"status": order.status.value},
        )

    await inventory_ops.release(
        db, order.id, performed_by=user_id or "system", reason=reason or "order cancelled"
    )
    await transition(
        db,
        order,
        OrderStatus.CANCELLED,
        changed_by=user_id or "system",
        note=reason,
        expected_version=expected_version,
    )
    await db.commit()
    return await get_order(db, order.id)


async def update_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    to_status: OrderStatus,
    expected_version: int,
    changed_by: str,
    note: Optional[str] = None,
) -> Order:
    """Admin-driven transition (confirm, ship, deliver).

    Cancellation goes through ``cancel_order`` and refunds through the
    payments service so stock and money stay consistent.
    """
    if to_status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.PAID):
        raise NotEligible(
            f"Use the dedicated flow to move an order to {to_status.value}",
            code="invalid_transition",
        )

    order = await get_order(db, order_id)
    # COD stock leaves the warehouse when the parcel ships
    if to_status == OrderStatus.SHIPPED and order.payment_method == PaymentMethod.COD:
        await inventory_ops.complete_sale(db, order.id, performed_by=changed_by)

    await transition(
        db,
        order,
        to_status,
        changed_by=changed_by,
        note=note,
        expected_version=expected_version,
    )
    await db.commit()
    return await get_order(db, order.id)
