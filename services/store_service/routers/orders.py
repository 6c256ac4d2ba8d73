"""Store orders router: order history and cancellation."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from libs.jobs.queue import JobQueue, get_job_queue
from services.payments_service.services.payment_ops import enqueue_status_notification
from services.store_service.schemas import (
    CancelOrderRequest,
    OrderDetailResponse,
    OrderResponse,
)
from services.store_service.services import order_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=list[OrderResponse])
async def list_my_orders(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.list_orders(
        db, user_id=current_user.user_id, limit=limit, offset=offset
    )


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_my_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    user_id = None if current_user.is_admin else current_user.user_id
    return await order_ops.get_order(db, order_id, user_id=user_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_my_order(
    order_id: uuid.UUID,
    payload: Optional[CancelOrderRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Cancel a pending or confirmed order; its reserved stock is released."""
    payload = payload or CancelOrderRequest()
    order = await order_ops.cancel_order(
        db,
        order_id,
        user_id=current_user.user_id,
        reason=payload.reason or "cancelled by customer",
        expected_version=payload.expected_version,
    )
    await enqueue_status_notification(job_queue, order)
    return order
