"""Task catalogue: every background task type the system knows about.

Task type strings are part of the operational surface (deployments and
dashboards key on them) and must stay verbatim.
"""

from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings

settings = get_settings()

QUEUE_PREFIX = "bookstore:"

# Queue classes and their worker concurrency, highest priority first.
QUEUE_WEIGHTS = {
    "high": 20,
    "notification": 17,
    "default": 10,
    "low": 5,
    "auth": 5,
    "promotion": 5,
}


def queue_name(queue: str) -> str:
    """Redis key of a queue class."""
    return f"{QUEUE_PREFIX}{queue}"


# ============================================================================
# TASK TYPES
# ============================================================================

AUTO_RELEASE_RESERVATION = "cart:auto_release_reservation"
RELEASE_EXPIRED_RESERVATIONS = "cart:release_expired_reservations"
TRACK_CHECKOUT = "cart:track_checkout"
REMOVE_EXPIRED_PROMOTIONS = "cart:remove_expired_promotions"
SEND_ORDER_CONFIRMATION = "order:send_order_confirmation"
ORDER_STATUS_NOTIFICATION = "order:update_status_notification"
SYNC_BOOK_STOCK = "inventory:sync_book_stock"
PROCESS_REFUND = "payment:process_refund"
CLEANUP_EXPIRED_TOKENS = "auth:cleanup_expired_tokens"
UPDATE_LAST_LOGIN = "user:update_last_login"
NOTIFICATION_SEND_PENDING = "notification:send_pending"
NOTIFICATION_RETRY_FAILED = "notification:retry_failed"
NOTIFICATION_CLEANUP_OLD = "notification:cleanup_old"
SEND_VERIFICATION_EMAIL = "email:verification"


@dataclass(frozen=True)
class TaskSpec:
    """Delivery options of one task type."""

    type: str
    queue: str = "default"
    max_retry: int = settings.JOB_DEFAULT_MAX_RETRY
    timeout: int = settings.JOB_DEFAULT_TIMEOUT_SECONDS

    @property
    def queue_key(self) -> str:
        return queue_name(self.queue)

    @property
    def max_tries(self) -> int:
        """Total attempts: the first run plus ``max_retry`` retries."""
        return self.max_retry + 1


TASKS: dict[str, TaskSpec] = {
    spec.type: spec
    for spec in (
        TaskSpec(AUTO_RELEASE_RESERVATION, queue="default", max_retry=3, timeout=60),
        TaskSpec(RELEASE_EXPIRED_RESERVATIONS, queue="default", max_retry=1, timeout=5 * 60),
        TaskSpec(TRACK_CHECKOUT, queue="low", max_retry=1),
        TaskSpec(REMOVE_EXPIRED_PROMOTIONS, queue="promotion", max_retry=2, timeout=10 * 60),
        TaskSpec(SEND_ORDER_CONFIRMATION, queue="high", max_retry=3, timeout=60),
        TaskSpec(ORDER_STATUS_NOTIFICATION, queue="notification", max_retry=3),
        TaskSpec(SYNC_BOOK_STOCK, queue="default", max_retry=3),
        TaskSpec(PROCESS_REFUND, queue="high", max_retry=3, timeout=60),
        TaskSpec(CLEANUP_EXPIRED_TOKENS, queue="auth", max_retry=1, timeout=5 * 60),
        TaskSpec(UPDATE_LAST_LOGIN, queue="low", max_retry=1),
        TaskSpec(NOTIFICATION_SEND_PENDING, queue="notification", max_retry=3, timeout=2 * 60),
        TaskSpec(NOTIFICATION_RETRY_FAILED, queue="notification", max_retry=3, timeout=5 * 60),
        TaskSpec(NOTIFICATION_CLEANUP_OLD, queue="notification", max_retry=2, timeout=10 * 60),
        TaskSpec(SEND_VERIFICATION_EMAIL, queue="high", max_retry=3),
    )
}


def get_task_spec(task_type: str) -> TaskSpec:
    try:
        return TASKS[task_type]
    except KeyError:
        raise ValueError(f"Unknown task type: {task_type}") from None


def backoff_delay(attempt: int, base_seconds: Optional[int] = None) -> int:
    """Seconds to wait before retry ``attempt`` (1-based): base * 2^(attempt-1)."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    base = settings.JOB_BACKOFF_BASE_SECONDS if base_seconds is None else base_seconds
    return base * 2 ** (attempt - 1)
