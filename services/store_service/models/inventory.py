"""Store inventory models: per-warehouse stock, reservations and audit trail."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.store_service.models.enums import InventoryAction, enum_values
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# INVENTORY MODELS
# ============================================================================


class WarehouseInventory(Base):
    """Stock counters per (warehouse, book).

    ``reserved`` is stock promised to unpaid orders; only the reservation
    engine mutates either counter, always through single atomic statements.
    """

    __tablename__ = "warehouse_inventory"

    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        primary_key=True,
    )
    book_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("books.id", ondelete="CASCADE"),
        primary_key=True,
    )

    quantity: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    reserved: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )
    alert_threshold: Mapped[int] = mapped_column(
        Integer, default=10, server_default="10", nullable=False
    )
    version: Mapped[int] = mapped_column(
        Integer, default=1, server_default="1", nullable=False
    )

    last_restocked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        CheckConstraint(
            "reserved >= 0 AND reserved <= quantity",
            name="ck_inventory_reserved_within_quantity",
        ),
        Index("ix_warehouse_inventory_book", "book_id"),
    )

    warehouse = relationship("Warehouse")
    book = relationship("Book")

    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    def __repr__(self):
        return (
            f"<WarehouseInventory w={self.warehouse_id} b={self.book_id} "
            f"qty={self.quantity} reserved={self.reserved}>"
        )


class Reservation(Base):
    """Stock held for an order until it is paid, cancelled or expires."""

    __tablename__ = "reservations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("warehouses.id"), nullable=False
    )
    book_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("books.id"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        UniqueConstraint(
            "order_id", "warehouse_id", "book_id", name="uq_reservation_order_line"
        ),
        CheckConstraint("quantity > 0", name="ck_reservation_positive_quantity"),
        Index("ix_reservations_expires_at", "expires_at"),
    )

    def __repr__(self):
        return f"<Reservation order={self.order_id} book={self.book_id} qty={self.quantity}>"


class InventoryAuditLog(Base):
    """One row per stock counter change."""

    __tablename__ = "inventory_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    book_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    action: Mapped[InventoryAction] = mapped_column(
        SAEnum(
            InventoryAction,
            values_callable=enum_values,
            name="inventory_action_enum",
        ),
        nullable=False,
    )
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    old_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    new_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    old_reserved: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    new_reserved: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    performed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_inventory_audit_logs_stock", "warehouse_id", "book_id"),
        Index("ix_inventory_audit_logs_order", "order_id"),
    )

    def __repr__(self):
        return f"<InventoryAuditLog {self.action} b={self.book_id} dq={self.quantity_delta}>"
