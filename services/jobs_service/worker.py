"""ARQ workers for background tasks.

One worker class per queue; ``max_jobs`` is the queue weight, so running all
of them gives the weighted share of concurrency between queues. Cron jobs are
registered on the worker that owns each task's queue.

Run with, e.g.: arq services.jobs_service.worker.HighQueueWorker
"""

import asyncio
from datetime import timezone
from typing import Any, Awaitable, Callable, Optional

from arq import Retry, cron
from arq.worker import Function, func
from libs.common.arq_config import get_redis_settings
from libs.common.email import EmailDeliveryError
from libs.common.errors import Conflict, DeadlineExceeded, DependencyUnavailable, ServiceError
from libs.common.logging import configure_logging, get_logger
from libs.db.config import AsyncSessionLocal, engine
from libs.jobs import catalog
from libs.jobs.queue import JobQueue
from libs.jobs.schedule import ScheduledTask, cron_to_arq_kwargs, scheduled_for_queue
from services.jobs_service.handlers import HANDLERS
from services.payments_service.gateways import GatewayError

logger = get_logger(__name__)

Handler = Callable[[dict, dict], Awaitable[Any]]

# arq's own timeout sits behind the handler deadline so a timed-out attempt
# still goes through retry / dead-letter bookkeeping
TIMEOUT_GRACE_SECONDS = 5


def is_retryable(exc: BaseException) -> bool:
    """Whether another attempt could succeed."""
    if isinstance(exc, (EmailDeliveryError, GatewayError)):
        return exc.transient
    if isinstance(exc, ServiceError):
        return isinstance(exc, (Conflict, DependencyUnavailable, DeadlineExceeded))
    # Malformed payloads fail the same way every time
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return False
    return True


async def _on_failure(
    ctx: dict,
    spec: catalog.TaskSpec,
    payload: dict,
    attempt: int,
    exc: Exception,
) -> None:
    """Schedule a retry or dead-letter the job. Always raises."""
    if is_retryable(exc) and attempt < spec.max_tries:
        delay = catalog.backoff_delay(attempt)
        logger.warning(
            "%s attempt %d/%d failed, retrying in %ds: %s",
            spec.type,
            attempt,
            spec.max_tries,
            delay,
            exc,
        )
        raise Retry(defer=delay) from exc

    job_queue: Optional[JobQueue] = ctx.get("job_queue")
    if job_queue is not None:
        try:
            await job_queue.dead_letter(
                job_id=ctx.get("job_id", ""),
                task_type=spec.type,
                payload=payload,
                attempts=attempt,
                error=f"{type(exc).__name__}: {exc}",
            )
        except Exception:
            logger.exception("Could not dead-letter %s job %s", spec.type, ctx.get("job_id"))
    raise exc


def make_task(task_type: str, handler: Handler) -> Function:
    """Wrap a handler with its deadline, retry policy and dead-lettering."""
    spec = catalog.get_task_spec(task_type)

    async def run(ctx: dict, payload: Optional[dict] = None) -> Any:
        attempt = ctx.get("job_try", 1)
        payload = dict(payload or {})
        try:
            return await asyncio.wait_for(handler(ctx, payload), timeout=spec.timeout)
        except Exception as exc:
            await _on_failure(ctx, spec, payload, attempt, exc)

    run.__qualname__ = f"run_{handler.__name__}"
    return func(
        run,
        name=task_type,
        max_tries=spec.max_tries,
        timeout=spec.timeout + TIMEOUT_GRACE_SECONDS,
    )


def make_cron_job(entry: ScheduledTask):
    """arq cron jobs take no arguments; bind the scheduled payload here."""
    task = make_task(entry.task_type, HANDLERS[entry.task_type])

    async def run_scheduled(ctx: dict) -> Any:
        logger.info("Running scheduled %s", entry.task_type)
        return await task.coroutine(ctx, entry.payload)

    run_scheduled.__qualname__ = f"cron_{HANDLERS[entry.task_type].__name__}"
    return cron(
        run_scheduled,
        name=f"cron:{entry.task_type}",
        timeout=entry.spec.timeout + TIMEOUT_GRACE_SECONDS,
        max_tries=entry.spec.max_tries,
        run_at_startup=False,
        **cron_to_arq_kwargs(entry.cron),
    )


def cron_jobs_for(queue: str) -> list:
    return [make_cron_job(entry) for entry in scheduled_for_queue(queue)]


# ── Lifecycle ──


async def startup(ctx: dict) -> None:
    configure_logging()
    ctx["session_factory"] = AsyncSessionLocal
    ctx["job_queue"] = JobQueue(ctx["redis"])
    logger.info("Worker started")


async def shutdown(ctx: dict) -> None:
    await engine.dispose()
    logger.info("Worker stopped")


# ── Worker configuration ──


class BaseWorkerSettings:
    """Shared ARQ settings; subclasses pick the queue."""

    redis_settings = get_redis_settings()

    # Every worker can run every task type; the queue decides which it sees
    functions = [make_task(task_type, handler) for task_type, handler in HANDLERS.items()]

    on_startup = startup
    on_shutdown = shutdown

    allow_abort_jobs = True
    timezone = timezone.utc
    keep_result = 3600
    cron_jobs: list = []


class HighQueueWorker(BaseWorkerSettings):
    queue_name = catalog.queue_name("high")
    max_jobs = catalog.QUEUE_WEIGHTS["high"]
    cron_jobs = cron_jobs_for("high")


class NotificationQueueWorker(BaseWorkerSettings):
    queue_name = catalog.queue_name("notification")
    max_jobs = catalog.QUEUE_WEIGHTS["notification"]
    cron_jobs = cron_jobs_for("notification")


class DefaultQueueWorker(BaseWorkerSettings):
    queue_name = catalog.queue_name("default")
    max_jobs = catalog.QUEUE_WEIGHTS["default"]
    cron_jobs = cron_jobs_for("default")


class LowQueueWorker(BaseWorkerSettings):
    queue_name = catalog.queue_name("low")
    max_jobs = catalog.QUEUE_WEIGHTS["low"]
    cron_jobs = cron_jobs_for("low")


class AuthQueueWorker(BaseWorkerSettings):
    queue_name = catalog.queue_name("auth")
    max_jobs = catalog.QUEUE_WEIGHTS["auth"]
    cron_jobs = cron_jobs_for("auth")


class PromotionQueueWorker(BaseWorkerSettings):
    queue_name = catalog.queue_name("promotion")
    max_jobs = catalog.QUEUE_WEIGHTS["promotion"]
    cron_jobs = cron_jobs_for("promotion")


WORKERS = {
    "high": HighQueueWorker,
    "notification": NotificationQueueWorker,
    "default": DefaultQueueWorker,
    "low": LowQueueWorker,
    "auth": AuthQueueWorker,
    "promotion": PromotionQueueWorker,
}
