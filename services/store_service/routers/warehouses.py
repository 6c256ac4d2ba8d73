"""Warehouse lookups."""

import uuid

from fastapi import APIRouter, Depends, Query
from libs.common.errors import NotFound
from libs.db.session import get_async_db
from services.store_service.schemas import NearestWarehouseResponse
from services.store_service.services import inventory_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


@router.get("/nearest-with-stock", response_model=NearestWarehouseResponse)
async def nearest_with_stock(
    book_id: uuid.UUID,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    quantity: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_async_db),
):
    """Closest active warehouse able to ship ``quantity`` copies of a book."""
    nearest = await inventory_ops.find_nearest_with_stock(
        db,
        book_id=book_id,
        latitude=lat,
        longitude=lon,
        required_quantity=quantity,
    )
    if nearest is None:
        raise NotFound("No warehouse has enough stock", code="out_of_stock")
    return NearestWarehouseResponse(
        warehouse_id=nearest.warehouse_id,
        warehouse_code=nearest.code,
        distance_km=round(nearest.distance_km, 3),
        available=nearest.available,
    )
