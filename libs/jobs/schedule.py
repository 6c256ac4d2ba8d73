"""Recurring task table and cron expression handling.

Schedules are five-field UTC cron expressions. They are kept in cron form
(the operational contract) and converted into arq ``cron()`` keyword sets
when the worker starts.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from libs.common.config import get_settings
from libs.jobs import catalog

settings = get_settings()

# (name, low, high) for minute, hour, day-of-month, month, day-of-week
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 6),
)


class CronParseError(ValueError):
    pass


@dataclass(frozen=True)
class ScheduledTask:
    task_type: str
    cron: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def spec(self) -> catalog.TaskSpec:
        return catalog.get_task_spec(self.task_type)


SCHEDULE: tuple[ScheduledTask, ...] = (
    ScheduledTask(catalog.CLEANUP_EXPIRED_TOKENS, "0 2 * * *"),
    ScheduledTask(
        catalog.RELEASE_EXPIRED_RESERVATIONS,
        "*/5 * * * *",
        {"limit": settings.RESERVATION_SWEEP_LIMIT},
    ),
    ScheduledTask(
        catalog.NOTIFICATION_CLEANUP_OLD,
        "0 3 * * *",
        {"older_than_days": settings.NOTIFICATION_RETENTION_DAYS},
    ),
    ScheduledTask(
        catalog.NOTIFICATION_SEND_PENDING,
        "0 7 * * *",
        {"limit": settings.NOTIFICATION_SEND_LIMIT},
    ),
    ScheduledTask(catalog.REMOVE_EXPIRED_PROMOTIONS, "0 */3 * * *"),
    # every 6 hours
    ScheduledTask(
        catalog.NOTIFICATION_RETRY_FAILED,
        "*/360 * * * *",
        {"limit": settings.NOTIFICATION_RETRY_LIMIT},
    ),
)


def _parse_field(raw: str, name: str, low: int, high: int) -> Optional[set[int]]:
    if raw == "*":
        return None

    values: set[int] = set()
    for part in raw.split(","):
        step = 1
        if "/" in part:
            part, step_raw = part.split("/", 1)
            if not step_raw.isdigit() or int(step_raw) == 0:
                raise CronParseError(f"Invalid step in {name} field: {raw!r}")
            step = int(step_raw)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_raw, end_raw = part.split("-", 1)
            if not (start_raw.isdigit() and end_raw.isdigit()):
                raise CronParseError(f"Invalid range in {name} field: {raw!r}")
            start, end = int(start_raw), int(end_raw)
        elif part.isdigit():
            start = int(part)
            end = start if step == 1 else high
        else:
            raise CronParseError(f"Invalid {name} field: {raw!r}")

        if start < low or end > high or start > end:
            raise CronParseError(f"{name} field out of range: {raw!r}")
        values.update(range(start, end + 1, step))

    return values


def cron_to_arq_kwargs(expression: str) -> dict[str, Any]:
    """Translate a UTC cron expression into ``arq.cron`` keyword arguments.

    A minute step of a whole number of hours (``*/360``) means "every N hours
    on the hour", which arq expresses on the hour field.
    """
    parts = expression.split()
    if len(parts) != 5:
        raise CronParseError(f"Expected 5 fields, got {len(parts)}: {expression!r}")

    minute_raw = parts[0]
    if minute_raw.startswith("*/") and minute_raw[2:].isdigit():
        step = int(minute_raw[2:])
        if step >= 60:
            if step % 60 or parts[1] != "*":
                raise CronParseError(f"Unsupported minute step: {expression!r}")
            parts[0] = "0"
            parts[1] = f"*/{step // 60}"

    kwargs: dict[str, Any] = {}
    for raw, (name, low, high) in zip(parts, _FIELDS):
        values = _parse_field(raw, name, low, high)
        if values is None:
            continue
        if name == "weekday":
            # cron counts from Sunday=0, arq from Monday=0
            values = {(v - 1) % 7 for v in values}
        kwargs[name] = values

    return kwargs


def scheduled_for_queue(queue: str) -> list[ScheduledTask]:
    return [entry for entry in SCHEDULE if entry.spec.queue == queue]
