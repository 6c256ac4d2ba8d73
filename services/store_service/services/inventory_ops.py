"""Reservation engine: per-(warehouse, book) stock counters.

All counter changes are single atomic UPDATE statements guarded in SQL, so no
row lock is held across network I/O. Every function here runs inside the
caller's transaction and never commits; the caller decides the boundary.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    Conflict,
    InvariantViolation,
    NotFound,
    ValidationFailed,
    report_invariant_violation,
)
from libs.common.logging import get_logger
from services.store_service.models import (
    InventoryAction,
    InventoryAuditLog,
    Order,
    OrderStatus,
    Reservation,
    Warehouse,
    WarehouseInventory,
)
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()

EARTH_RADIUS_KM = 6371.0

Coordinate = Union[float, Decimal]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NearestWarehouse:
    warehouse_id: uuid.UUID
    code: str
    distance_km: float
    available: int


@dataclass(frozen=True)
class WarehouseStock:
    warehouse_id: uuid.UUID
    code: str
    quantity: int
    reserved: int

    @property
    def available(self) -> int:
        return self.quantity - self.reserved


@dataclass
class Availability:
    book_id: uuid.UUID
    requested: int
    total_available: int = 0
    warehouses: list[WarehouseStock] = field(default_factory=list)

    @property
    def can_fulfill(self) -> bool:
        return self.total_available >= self.requested


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def haversine_km(
    lat1: Coordinate, lon1: Coordinate, lat2: Coordinate, lon2: Coordinate
) -> float:
    """Great-circle distance in kilometres."""
    phi1, phi2 = math.radians(float(lat1)), math.radians(float(lat2))
    d_phi = math.radians(float(lat2) - float(lat1))
    d_lambda = math.radians(float(lon2) - float(lon1))

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _audit(
    db: AsyncSession,
    *,
    action: InventoryAction,
    warehouse_id: uuid.UUID,
    book_id: uuid.UUID,
    quantity_delta: int,
    reserved_delta: int,
    new_quantity: Optional[int] = None,
    new_reserved: Optional[int] = None,
    order_id: Optional[uuid.UUID] = None,
    performed_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> None:
    db.add(
        InventoryAuditLog(
            warehouse_id=warehouse_id,
            book_id=book_id,
            action=action,
            quantity_delta=quantity_delta,
            reserved_delta=reserved_delta,
            old_quantity=None if new_quantity is None else new_quantity - quantity_delta,
            new_quantity=new_quantity,
            old_reserved=None if new_reserved is None else new_reserved - reserved_delta,
            new_reserved=new_reserved,
            order_id=order_id,
            performed_by=performed_by,
            reason=reason,
        )
    )


def _warn_if_low_stock(
    warehouse_id: uuid.UUID, book_id: uuid.UUID, *, available: int, threshold: int
) -> bool:
    if available > threshold:
        return False
    logger.warning(
        "Low stock: book %s in warehouse %s has %d available (threshold %d)",
        book_id,
        warehouse_id,
        available,
        threshold,
        extra={"extra_fields": {"code": "LOW_STOCK", "book_id": str(book_id)}},
    )
    return True


async def get_inventory(
    db: AsyncSession, warehouse_id: uuid.UUID, book_id: uuid.UUID
) -> Optional[WarehouseInventory]:
    """Fresh read of one inventory row (bypasses stale identity-map copies)."""
    result = await db.execute(
        select(WarehouseInventory)
        .where(
            WarehouseInventory.warehouse_id == warehouse_id,
            WarehouseInventory.book_id == book_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Reserve / Release / CompleteSale
# ---------------------------------------------------------------------------


async def reserve(
    db: AsyncSession,
    *,
    warehouse_id: uuid.UUID,
    book_id: uuid.UUID,
    quantity: int,
    order_id: uuid.UUID,
    ttl: Optional[timedelta] = None,
    performed_by: Optional[str] = None,
) -> Reservation:
    """Hold ``quantity`` units of a book in a warehouse for an order.

    Raises:
        ValidationFailed(invalid_quantity): quantity is not positive.
        Conflict(duplicate_reservation): the order already holds this line.
        Conflict(out_of_stock): no stock row, or the warehouse is inactive.
        Conflict(insufficient): available stock is below ``quantity``.
    """
    if quantity <= 0:
        raise ValidationFailed("Quantity must be positive", code="invalid_quantity")

    existing = await db.execute(
        select(Reservation.id).where(
            Reservation.order_id == order_id,
            Reservation.warehouse_id == warehouse_id,
            Reservation.book_id == book_id,
        )
    )
    if existing.first() is not None:
        raise Conflict(
            "Order already holds a reservation for this item",
            code="duplicate_reservation",
            details={"order_id": str(order_id), "book_id": str(book_id)},
        )

    row = await db.execute(
        select(Warehouse.is_active)
        .join(WarehouseInventory, WarehouseInventory.warehouse_id == Warehouse.id)
        .where(
            WarehouseInventory.warehouse_id == warehouse_id,
            WarehouseInventory.book_id == book_id,
        )
    )
    warehouse_active = row.scalar_one_or_none()
    if not warehouse_active:
        raise Conflict(
            "Book is not stocked in this warehouse",
            code="out_of_stock",
            details={"warehouse_id": str(warehouse_id), "book_id": str(book_id)},
        )

    # The guard in the WHERE clause decides success: one row back means reserved.
    result = await db.execute(
        update(WarehouseInventory)
        .where(
            WarehouseInventory.warehouse_id == warehouse_id,
            WarehouseInventory.book_id == book_id,
            WarehouseInventory.quantity - WarehouseInventory.reserved >= quantity,
        )
        .values(
            reserved=WarehouseInventory.reserved + quantity,
            version=WarehouseInventory.version + 1,
            updated_at=utc_now(),
        )
        .returning(WarehouseInventory.quantity, WarehouseInventory.reserved)
        .execution_options(synchronize_session=False)
    )
    updated = result.first()
    if updated is None:
        raise Conflict(
            "Not enough stock available",
            code="insufficient",
            details={
                "warehouse_id": str(warehouse_id),
                "book_id": str(book_id),
                "requested": quantity,
            },
        )

    ttl = ttl if ttl is not None else timedelta(minutes=settings.RESERVATION_TTL_MINUTES)
    reservation = Reservation(
        order_id=order_id,
        warehouse_id=warehouse_id,
        book_id=book_id,
        quantity=quantity,
        expires_at=utc_now() + ttl,
    )
    db.add(reservation)
    _audit(
        db,
        action=InventoryAction.RESERVE,
        warehouse_id=warehouse_id,
        book_id=book_id,
        quantity_delta=0,
        reserved_delta=quantity,
        new_quantity=updated.quantity,
        new_reserved=updated.reserved,
        order_id=order_id,
        performed_by=performed_by,
    )
    await db.flush()

    logger.info(
        "Reserved %d of book %s in warehouse %s for order %s",
        quantity,
        book_id,
        warehouse_id,
        order_id,
    )
    return reservation


async def _reservations_for_order(
    db: AsyncSession, order_id: uuid.UUID
) -> list[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.order_id == order_id)
        .order_by(Reservation.warehouse_id, Reservation.book_id)
        .with_for_update()
    )
    return list(result.scalars().all())


async def release(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    performed_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> int:
    """Return an order's reserved units to available stock.

    Idempotent: once the reservations are gone, repeated calls release nothing.
    Returns the number of units released.
    """
    reservations = await _reservations_for_order(db, order_id)
    if not reservations:
        return 0

    released = 0
    for reservation in reservations:
        result = await db.execute(
            update(WarehouseInventory)
            .where(
                WarehouseInventory.warehouse_id == reservation.warehouse_id,
                WarehouseInventory.book_id == reservation.book_id,
                WarehouseInventory.reserved >= reservation.quantity,
            )
            .values(
                reserved=WarehouseInventory.reserved - reservation.quantity,
                version=WarehouseInventory.version + 1,
                updated_at=utc_now(),
            )
            .returning(WarehouseInventory.quantity, WarehouseInventory.reserved)
            .execution_options(synchronize_session=False)
        )
        updated = result.first()
        if updated is None:
            report_invariant_violation(
                "INVARIANT_VIOLATION",
                "Reservation exceeds reserved counter",
                order_id=str(order_id),
                warehouse_id=str(reservation.warehouse_id),
                book_id=str(reservation.book_id),
                quantity=reservation.quantity,
            )
            raise InvariantViolation(
                "Reserved stock counter is lower than the order's reservation",
                code="orphan_reservation",
            )

        _audit(
            db,
            action=InventoryAction.RELEASE,
            warehouse_id=reservation.warehouse_id,
            book_id=reservation.book_id,
            quantity_delta=0,
            reserved_delta=-reservation.quantity,
            new_quantity=updated.quantity,
            new_reserved=updated.reserved,
            order_id=order_id,
            performed_by=performed_by,
            reason=reason,
        )
        released += reservation.quantity

    await db.execute(delete(Reservation).where(Reservation.order_id == order_id))
    await db.flush()

    logger.info("Released %d reserved units for order %s", released, order_id)
    return released


async def complete_sale(
    db: AsyncSession,
    order_id: uuid.UUID,
    *,
    performed_by: Optional[str] = None,
) -> int:
    """Turn an order's reservations into permanent stock decrements.

    ``quantity`` and ``reserved`` both drop by the reserved amount. Idempotent
    by order: a second call finds no reservations and returns 0.
    """
    reservations = await _reservations_for_order(db, order_id)
    if not reservations:
        return 0

    sold = 0
    for reservation in reservations:
        result = await db.execute(
            update(WarehouseInventory)
            .where(
                WarehouseInventory.warehouse_id == reservation.warehouse_id,
                WarehouseInventory.book_id == reservation.book_id,
                WarehouseInventory.reserved >= reservation.quantity,
                WarehouseInventory.quantity >= reservation.quantity,
            )
            .values(
                quantity=WarehouseInventory.quantity - reservation.quantity,
                reserved=WarehouseInventory.reserved - reservation.quantity,
                version=WarehouseInventory.version + 1,
                updated_at=utc_now(),
            )
            .returning(
                WarehouseInventory.quantity,
                WarehouseInventory.reserved,
                WarehouseInventory.alert_threshold,
            )
            .execution_options(synchronize_session=False)
        )
        updated = result.first()
        if updated is None:
            report_invariant_violation(
                "INVARIANT_VIOLATION",
                "Sale would drive stock counters negative",
                order_id=str(order_id),
                warehouse_id=str(reservation.warehouse_id),
                book_id=str(reservation.book_id),
                quantity=reservation.quantity,
            )
            raise InvariantViolation(
                "Stock counters do not cover the order's reservation",
                code="orphan_reservation",
            )

        _audit(
            db,
            action=InventoryAction.SALE,
            warehouse_id=reservation.warehouse_id,
            book_id=reservation.book_id,
            quantity_delta=-reservation.quantity,
            reserved_delta=-reservation.quantity,
            new_quantity=updated.quantity,
            new_reserved=updated.reserved,
            order_id=order_id,
            performed_by=performed_by,
        )
        sold += reservation.quantity
        _warn_if_low_stock(
            reservation.warehouse_id,
            reservation.book_id,
            available=updated.quantity - updated.reserved,
            threshold=updated.alert_threshold,
        )

    await db.execute(delete(Reservation).where(Reservation.order_id == order_id))
    await db.flush()

    logger.info("Completed sale of %d units for order %s", sold, order_id)
    return sold


async def reserved_units_for_order(db: AsyncSession, order_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
            Reservation.order_id == order_id
        )
    )
    return int(result.scalar_one())


async def orders_with_expired_reservations(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    limit: int = 100,
    status: Optional[OrderStatus] = None,
) -> list[uuid.UUID]:
    """Orders holding at least one reservation past its expiry, oldest first.

    Confirmed COD orders keep their reservations until shipping, so callers
    looking for abandoned checkouts pass ``status=OrderStatus.PENDING``.
    """
    now = now or utc_now()
    query = select(Reservation.order_id).where(Reservation.expires_at <= now)
    if status is not None:
        query = query.join(Order, Order.id == Reservation.order_id).where(
            Order.status == status
        )
    result = await db.execute(
        query.group_by(Reservation.order_id)
        .order_by(func.min(Reservation.expires_at))
        .limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def find_nearest_with_stock(
    db: AsyncSession,
    *,
    book_id: uuid.UUID,
    latitude: Coordinate,
    longitude: Coordinate,
    required_quantity: int,
) -> Optional[NearestWarehouse]:
    """Nearest active warehouse that can cover ``required_quantity`` of a book.

    Ties on distance go to the lowest warehouse id (string order).
    """
    if required_quantity <= 0:
        raise ValidationFailed("Quantity must be positive", code="invalid_quantity")

    result = await db.execute(
        select(
            Warehouse.id,
            Warehouse.code,
            Warehouse.latitude,
            Warehouse.longitude,
            (WarehouseInventory.quantity - WarehouseInventory.reserved).label("available"),
        )
        .join(WarehouseInventory, WarehouseInventory.warehouse_id == Warehouse.id)
        .where(
            WarehouseInventory.book_id == book_id,
            Warehouse.is_active.is_(True),
            Warehouse.latitude.is_not(None),
            Warehouse.longitude.is_not(None),
            WarehouseInventory.quantity - WarehouseInventory.reserved >= required_quantity,
        )
    )

    candidates = [
        NearestWarehouse(
            warehouse_id=row.id,
            code=row.code,
            distance_km=haversine_km(latitude, longitude, row.latitude, row.longitude),
            available=row.available,
        )
        for row in result.all()
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda c: (c.distance_km, str(c.warehouse_id)))


async def check_availability(
    db: AsyncSession, *, book_id: uuid.UUID, quantity: int
) -> Availability:
    """Sum available stock for a book across active warehouses."""
    result = await db.execute(
        select(
            Warehouse.id,
            Warehouse.code,
            WarehouseInventory.quantity,
            WarehouseInventory.reserved,
        )
        .join(WarehouseInventory, WarehouseInventory.warehouse_id == Warehouse.id)
        .where(WarehouseInventory.book_id == book_id, Warehouse.is_active.is_(True))
        .order_by(Warehouse.code)
    )
    availability = Availability(book_id=book_id, requested=quantity)
    for row in result.all():
        stock = WarehouseStock(
            warehouse_id=row.id,
            code=row.code,
            quantity=row.quantity,
            reserved=row.reserved,
        )
        availability.warehouses.append(stock)
        availability.total_available += stock.available
    return availability


# ---------------------------------------------------------------------------
# Bulk adjustments (admin)
# ---------------------------------------------------------------------------


async def _lock_inventory(
    db: AsyncSession, warehouse_id: uuid.UUID, book_id: uuid.UUID
) -> Optional[WarehouseInventory]:
    result = await db.execute(
        select(WarehouseInventory)
        .where(
            WarehouseInventory.warehouse_id == warehouse_id,
            WarehouseInventory.book_id == book_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def restock(
    db: AsyncSession,
    *,
    warehouse_id: uuid.UUID,
    book_id: uuid.UUID,
    quantity: int,
    performed_by: str,
    reason: Optional[str] = None,
) -> WarehouseInventory:
    """Add received stock, creating the inventory row on first delivery."""
    if quantity <= 0:
        raise ValidationFailed("Restock quantity must be positive", code="invalid_quantity")

    inventory = await _lock_inventory(db, warehouse_id, book_id)
    if inventory is None:
        inventory = WarehouseInventory(
            warehouse_id=warehouse_id,
            book_id=book_id,
            quantity=0,
            reserved=0,
            alert_threshold=settings.LOW_STOCK_DEFAULT_THRESHOLD,
            version=1,
        )
        db.add(inventory)

    inventory.quantity += quantity
    inventory.version += 1
    inventory.last_restocked_at = utc_now()
    _audit(
        db,
        action=InventoryAction.RESTOCK,
        warehouse_id=warehouse_id,
        book_id=book_id,
        quantity_delta=quantity,
        reserved_delta=0,
        new_quantity=inventory.quantity,
        new_reserved=inventory.reserved,
        performed_by=performed_by,
        reason=reason,
    )
    await db.flush()
    return inventory


async def adjust(
    db: AsyncSession,
    *,
    warehouse_id: uuid.UUID,
    book_id: uuid.UUID,
    new_quantity: int,
    performed_by: str,
    reason: str,
) -> WarehouseInventory:
    """Set the on-hand quantity after a stock count.

    Refuses to drop below what is currently reserved.
    """
    if new_quantity < 0:
        raise ValidationFailed("Quantity cannot be negative", code="invalid_quantity")

    inventory = await _lock_inventory(db, warehouse_id, book_id)
    if inventory is None:
        raise Conflict(
            "Book is not stocked in this warehouse",
            code="out_of_stock",
            details={"warehouse_id": str(warehouse_id), "book_id": str(book_id)},
        )
    if new_quantity < inventory.reserved:
        raise Conflict(
            f"Cannot set quantity below reserved stock ({inventory.reserved})",
            code="below_reserved",
        )

    delta = new_quantity - inventory.quantity
    inventory.quantity = new_quantity
    inventory.version += 1
    _audit(
        db,
        action=InventoryAction.ADJUSTMENT,
        warehouse_id=warehouse_id,
        book_id=book_id,
        quantity_delta=delta,
        reserved_delta=0,
        new_quantity=inventory.quantity,
        new_reserved=inventory.reserved,
        performed_by=performed_by,
        reason=reason,
    )
    await db.flush()
    _warn_if_low_stock(
        warehouse_id,
        book_id,
        available=inventory.available,
        threshold=inventory.alert_threshold,
    )
    return inventory


async def book_stock_summary(db: AsyncSession, book_id: uuid.UUID) -> dict:
    """Aggregate stock of a book across active warehouses, flagging low stock."""
    result = await db.execute(
        select(
            Warehouse.code,
            WarehouseInventory.quantity,
            WarehouseInventory.reserved,
            WarehouseInventory.alert_threshold,
        )
        .join(WarehouseInventory, WarehouseInventory.warehouse_id == Warehouse.id)
        .where(WarehouseInventory.book_id == book_id, Warehouse.is_active.is_(True))
    )
    rows = result.all()
    low_stock = [
        row.code for row in rows if row.quantity - row.reserved <= row.alert_threshold
    ]
    return {
        "book_id": str(book_id),
        "total_quantity": sum(row.quantity for row in rows),
        "total_reserved": sum(row.reserved for row in rows),
        "available": sum(row.quantity - row.reserved for row in rows),
        "warehouse_count": len(rows),
        "low_stock_warehouses": low_stock,
        "computed_at": utc_now().isoformat(),
    }


# ---------------------------------------------------------------------------
# Audit trail and alerts (admin reads)
# ---------------------------------------------------------------------------


async def inventory_history(
    db: AsyncSession,
    warehouse_id: uuid.UUID,
    book_id: uuid.UUID,
    *,
    limit: int = 50,
    offset: int = 0,
) -> list[InventoryAuditLog]:
    """Counter changes of one inventory row, newest first."""
    if await get_inventory(db, warehouse_id, book_id) is None:
        raise NotFound(
            "Book is not stocked in this warehouse",
            code="inventory_not_found",
            details={"warehouse_id": str(warehouse_id), "book_id": str(book_id)},
        )
    result = await db.execute(
        select(InventoryAuditLog)
        .where(
            InventoryAuditLog.warehouse_id == warehouse_id,
            InventoryAuditLog.book_id == book_id,
        )
        .order_by(InventoryAuditLog.created_at.desc(), InventoryAuditLog.id)
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def low_stock_rows(
    db: AsyncSession,
    *,
    warehouse_id: Optional[uuid.UUID] = None,
    limit: int = 100,
) -> list[WarehouseInventory]:
    """Rows of active warehouses whose available stock is at or below the alert threshold."""
    available = WarehouseInventory.quantity - WarehouseInventory.reserved
    query = (
        select(WarehouseInventory)
        .join(Warehouse, Warehouse.id == WarehouseInventory.warehouse_id)
        .where(Warehouse.is_active.is_(True), available <= WarehouseInventory.alert_threshold)
    )
    if warehouse_id is not None:
        query = query.where(WarehouseInventory.warehouse_id == warehouse_id)
    result = await db.execute(
        query.order_by(available, WarehouseInventory.book_id).limit(limit)
    )
    return list(result.scalars().all())
