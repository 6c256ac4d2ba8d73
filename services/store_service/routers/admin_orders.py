"""Admin order management: status transitions along the order state machine."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from libs.jobs.queue import JobQueue, get_job_queue
from services.payments_service.services.payment_ops import enqueue_status_notification
from services.store_service.models import OrderStatus
from services.store_service.schemas import (
    OrderDetailResponse,
    OrderStatusUpdate,
)
from services.store_service.services import order_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/admin/orders", tags=["admin", "orders"])


@router.patch("/{order_id}/status", response_model=OrderDetailResponse)
async def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Confirm, ship, deliver or cancel an order (CAS on ``expected_version``)."""
    if payload.status == OrderStatus.CANCELLED:
        order = await order_ops.cancel_order(
            db,
            order_id,
            user_id=None,
            reason=payload.note or f"cancelled by {admin.user_id}",
            expected_version=payload.expected_version,
        )
    else:
        order = await order_ops.update_status(
            db,
            order_id,
            to_status=payload.status,
            expected_version=payload.expected_version,
            changed_by=admin.user_id,
            note=payload.note,
        )
    await enqueue_status_notification(job_queue, order)
    return order

