"""Job queue client on top of an ArqRedis pool.

Adds the delivery options arq leaves to the caller:

- dedup keys (at most one pending job per task type + key, via arq ``_job_id``)
- delayed execution (``not_before`` / ``delay``)
- cancel-by-key for jobs that have not started yet
- a dead-letter sorted set for jobs that used up their retries
"""

import json
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from arq.connections import ArqRedis
from arq.constants import abort_jobs_ss, job_key_prefix
from arq.utils import timestamp_ms
from fastapi import Request

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger, get_request_id
from libs.jobs.catalog import QUEUE_PREFIX, get_task_spec
from libs.jobs.payloads import TaskPayload

logger = get_logger(__name__)

DEAD_LETTER_KEY = f"{QUEUE_PREFIX}dead_letter"


def dedup_job_id(task_type: str, dedup_key: str) -> str:
    """arq job id carrying a dedup key; scoped per task type."""
    return f"{task_type}:{dedup_key}"


class JobQueue:
    """Enqueue, cancel and dead-letter background tasks."""

    def __init__(self, redis: ArqRedis):
        self.redis = redis

    async def enqueue(
        self,
        task_type: str,
        payload: Union[TaskPayload, dict[str, Any], None] = None,
        *,
        queue: Optional[str] = None,
        dedup_key: Optional[str] = None,
        not_before: Optional[datetime] = None,
        delay: Optional[timedelta] = None,
    ) -> Optional[str]:
        """Enqueue a task and return its job id.

        Returns None when a job with the same dedup key is already pending.
        """
        spec = get_task_spec(task_type)
        if isinstance(payload, TaskPayload):
            payload = payload.to_dict()
        payload = dict(payload or {})

        job_id = dedup_job_id(task_type, dedup_key) if dedup_key else None
        queue_key = f"{QUEUE_PREFIX}{queue}" if queue else spec.queue_key

        if job_id:
            # An abort flag left for an earlier run would kill this job before it starts
            await self.redis.zrem(abort_jobs_ss, job_id)

        job = await self.redis.enqueue_job(
            task_type,
            payload,
            _job_id=job_id,
            _queue_name=queue_key,
            _defer_until=not_before,
            _defer_by=delay,
        )
        if job is None:
            logger.info(
                "Skipped enqueue of %s: job %s already pending", task_type, job_id
            )
            return None

        logger.info(
            "Enqueued %s as %s on %s",
            task_type,
            job.job_id,
            queue_key,
            extra={"extra_fields": {
                "task_type": task_type,
                "job_id": job.job_id,
                "not_before": not_before.isoformat() if not_before else None,
                "request_id": get_request_id(),
            }},
        )
        return job.job_id

    async def cancel(self, task_type: str, dedup_key: str) -> bool:
        """Cancel a pending job by its dedup key.

        Returns True when the job was removed before any worker picked it up.
        A job that is already running is flagged for abort instead; handlers
        re-check domain state so a late run is harmless. Nothing is flagged
        when the job has already finished.
        """
        spec = get_task_spec(task_type)
        job_id = dedup_job_id(task_type, dedup_key)

        removed = await self.redis.zrem(spec.queue_key, job_id)
        if removed:
            await self.redis.delete(job_key_prefix + job_id)
            logger.info("Cancelled pending job %s", job_id)
            return True

        if not await self.redis.exists(job_key_prefix + job_id):
            # Finished, expired or never enqueued
            logger.info("No job %s to cancel", job_id)
            return False

        await self.redis.zadd(abort_jobs_ss, {job_id: timestamp_ms()})
        logger.info("Job %s already running; flagged for abort", job_id)
        return False

    # ------------------------------------------------------------------
    # Dead letters
    # ------------------------------------------------------------------

    async def dead_letter(
        self,
        *,
        job_id: str,
        task_type: str,
        payload: Optional[dict[str, Any]],
        attempts: int,
        error: str,
    ) -> None:
        """Record a job that will not be retried again."""
        failed_at = utc_now()
        entry = {
            "job_id": job_id,
            "type": task_type,
            "payload": payload,
            "queue": get_task_spec(task_type).queue,
            "attempts": attempts,
            "error": error,
            "failed_at": failed_at.isoformat(),
        }
        await self.redis.zadd(
            DEAD_LETTER_KEY,
            {json.dumps(entry, default=str): failed_at.timestamp()},
        )
        logger.error(
            "Job %s (%s) moved to dead-letter after %d attempts: %s",
            job_id,
            task_type,
            attempts,
            error,
            extra={"extra_fields": {"code": "JOB_DEAD_LETTER", "task_type": task_type}},
        )

    async def list_dead_letters(self, limit: int = 100) -> list[dict[str, Any]]:
        """Most recent dead-lettered jobs first."""
        raw = await self.redis.zrevrange(DEAD_LETTER_KEY, 0, limit - 1)
        return [json.loads(item) for item in raw]

    async def purge_dead_letters(self) -> int:
        count = await self.redis.zcard(DEAD_LETTER_KEY)
        await self.redis.delete(DEAD_LETTER_KEY)
        return count


def get_job_queue(request: Request) -> Optional[JobQueue]:
    """FastAPI dependency; None until the app lifespan has connected to Redis."""
    return getattr(request.app.state, "job_queue", None)
