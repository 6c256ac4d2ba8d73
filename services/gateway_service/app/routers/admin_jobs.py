"""Admin view of the background job dead-letter set."""

from typing import Any

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.errors import DependencyUnavailable
from libs.jobs.queue import JobQueue, get_job_queue

router = APIRouter(prefix="/admin/jobs", tags=["admin-jobs"])


def _require_queue(job_queue: JobQueue) -> JobQueue:
    if job_queue is None:
        raise DependencyUnavailable("Job queue is not connected", code="queue_unavailable")
    return job_queue


@router.get("/dead-letter", response_model=list[dict[str, Any]])
async def list_dead_letters(
    limit: int = Query(100, ge=1, le=1000),
    _admin: AuthUser = Depends(require_admin),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Most recently failed jobs first."""
    return await _require_queue(job_queue).list_dead_letters(limit=limit)


@router.delete("/dead-letter")
async def purge_dead_letters(
    _admin: AuthUser = Depends(require_admin),
    job_queue: JobQueue = Depends(get_job_queue),
):
    purged = await _require_queue(job_queue).purge_dead_letters()
    return {"purged": purged}
