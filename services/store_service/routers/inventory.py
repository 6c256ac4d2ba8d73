"""Inventory router: direct reservation primitives and availability."""

import uuid
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from libs.auth.dependencies import require_admin, require_service_role
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from libs.jobs import catalog
from libs.jobs.payloads import SyncBookStockPayload
from libs.jobs.queue import JobQueue, get_job_queue
from services.store_service.schemas import (
    AdjustRequest,
    AvailabilityResponse,
    CompleteSaleRequest,
    InventoryAuditEntryResponse,
    InventoryMutationResponse,
    InventoryResponse,
    ReleaseRequest,
    ReserveRequest,
    RestockRequest,
    WarehouseStockResponse,
)
from services.store_service.services import inventory_ops, stock_cache
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/inventories", tags=["inventory"])
admin_router = APIRouter(prefix="/admin/inventories", tags=["admin", "inventory"])
logger = get_logger(__name__)


async def _after_stock_change(request: Request, job_queue: JobQueue, book_id: uuid.UUID) -> None:
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        await stock_cache.invalidate(redis, book_id)
    if job_queue is None:
        return
    try:
        await job_queue.enqueue(
            catalog.SYNC_BOOK_STOCK,
            SyncBookStockPayload(book_id=str(book_id)),
            dedup_key=str(book_id),
        )
    except Exception:
        logger.exception("Failed to enqueue stock sync for book %s", book_id)


# ============================================================================
# SERVICE PRIMITIVES
# ============================================================================


@router.post("/reserve", response_model=InventoryResponse, status_code=201)
async def reserve_stock(
    payload: ReserveRequest,
    caller: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    ttl = timedelta(minutes=payload.ttl_minutes) if payload.ttl_minutes else None
    await inventory_ops.reserve(
        db,
        warehouse_id=payload.warehouse_id,
        book_id=payload.book_id,
        quantity=payload.quantity,
        order_id=payload.order_id,
        ttl=ttl,
        performed_by=caller.user_id,
    )
    await db.commit()
    return await inventory_ops.get_inventory(db, payload.warehouse_id, payload.book_id)


@router.post("/release", response_model=InventoryMutationResponse)
async def release_stock(
    payload: ReleaseRequest,
    caller: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    released = await inventory_ops.release(
        db, payload.order_id, performed_by=caller.user_id, reason=payload.reason
    )
    await db.commit()
    return InventoryMutationResponse(order_id=payload.order_id, units=released)


@router.post("/complete-sale", response_model=InventoryMutationResponse)
async def complete_sale(
    payload: CompleteSaleRequest,
    caller: AuthUser = Depends(require_service_role),
    db: AsyncSession = Depends(get_async_db),
):
    sold = await inventory_ops.complete_sale(
        db, payload.order_id, performed_by=caller.user_id
    )
    await db.commit()
    return InventoryMutationResponse(order_id=payload.order_id, units=sold)


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    book_id: uuid.UUID,
    quantity: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_async_db),
):
    availability = await inventory_ops.check_availability(
        db, book_id=book_id, quantity=quantity
    )
    return AvailabilityResponse(
        book_id=availability.book_id,
        requested=availability.requested,
        total_available=availability.total_available,
        can_fulfill=availability.can_fulfill,
        warehouses=[
            WarehouseStockResponse(
                warehouse_id=stock.warehouse_id,
                warehouse_code=stock.code,
                available=stock.available,
            )
            for stock in availability.warehouses
        ],
    )


# ============================================================================
# ADMIN STOCK MANAGEMENT
# ============================================================================


@admin_router.post("/restock", response_model=InventoryResponse)
async def restock(
    payload: RestockRequest,
    request: Request,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    inventory = await inventory_ops.restock(
        db,
        warehouse_id=payload.warehouse_id,
        book_id=payload.book_id,
        quantity=payload.quantity,
        performed_by=admin.user_id,
        reason=payload.reason,
    )
    await db.commit()
    await _after_stock_change(request, job_queue, payload.book_id)
    return inventory


@admin_router.post("/adjust", response_model=InventoryResponse)
async def adjust(
    payload: AdjustRequest,
    request: Request,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Set on-hand quantity after a stock count; never below reserved."""
    inventory = await inventory_ops.adjust(
        db,
        warehouse_id=payload.warehouse_id,
        book_id=payload.book_id,
        new_quantity=payload.new_quantity,
        performed_by=admin.user_id,
        reason=payload.reason,
    )
    await db.commit()
    await _after_stock_change(request, job_queue, payload.book_id)
    return inventory


@admin_router.get("/low-stock", response_model=list[InventoryResponse])
async def list_low_stock(
    warehouse_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=500),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Stock rows at or below their alert threshold, emptiest first."""
    return await inventory_ops.low_stock_rows(db, warehouse_id=warehouse_id, limit=limit)


@admin_router.get(
    "/{warehouse_id}/{book_id}/history",
    response_model=list[InventoryAuditEntryResponse],
)
async def inventory_history(
    warehouse_id: uuid.UUID,
    book_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await inventory_ops.inventory_history(
        db, warehouse_id, book_id, limit=limit, offset=offset
    )
