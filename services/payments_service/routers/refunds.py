"""Admin refund decisions."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from libs.jobs.queue import JobQueue, get_job_queue
from services.payments_service.schemas import RefundReject, RefundResponse
from services.payments_service.services import refund_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/admin/refunds", tags=["admin", "payments"])


@router.post("/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund(
    refund_id: uuid.UUID,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Approve a requested refund; the gateway call runs as a background job."""
    return await refund_ops.approve_refund(
        db, refund_id, admin_id=admin.user_id, job_queue=job_queue
    )


@router.post("/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(
    refund_id: uuid.UUID,
    payload: RefundReject,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await refund_ops.reject_refund(
        db, refund_id, admin_id=admin.user_id, reason=payload.reason
    )
