"""Unit tests for the task catalogue and the cron schedule."""

import pytest

from libs.jobs import catalog
from libs.jobs.schedule import (
    SCHEDULE,
    CronParseError,
    cron_to_arq_kwargs,
    scheduled_for_queue,
)


@pytest.mark.unit
def test_task_types_are_stable():
    assert set(catalog.TASKS) == {
        "cart:auto_release_reservation",
        "cart:release_expired_reservations",
        "cart:track_checkout",
        "cart:remove_expired_promotions",
        "order:send_order_confirmation",
        "order:update_status_notification",
        "inventory:sync_book_stock",
        "payment:process_refund",
        "auth:cleanup_expired_tokens",
        "user:update_last_login",
        "notification:send_pending",
        "notification:retry_failed",
        "notification:cleanup_old",
        "email:verification",
    }


@pytest.mark.unit
def test_every_task_targets_a_known_queue():
    for spec in catalog.TASKS.values():
        assert spec.queue in catalog.QUEUE_WEIGHTS
        assert spec.queue_key == f"bookstore:{spec.queue}"
        assert spec.max_tries == spec.max_retry + 1


@pytest.mark.unit
def test_unknown_task_type():
    with pytest.raises(ValueError):
        catalog.get_task_spec("cart:does_not_exist")


@pytest.mark.unit
@pytest.mark.parametrize("attempt, delay", [(1, 60), (2, 120), (3, 240), (5, 960)])
def test_backoff_doubles(attempt, delay):
    assert catalog.backoff_delay(attempt) == delay


@pytest.mark.unit
def test_backoff_rejects_attempt_zero():
    with pytest.raises(ValueError):
        catalog.backoff_delay(0)


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "expression, expected",
    [
        ("0 2 * * *", {"minute": {0}, "hour": {2}}),
        ("0 */3 * * *", {"minute": {0}, "hour": {0, 3, 6, 9, 12, 15, 18, 21}}),
        ("*/360 * * * *", {"minute": {0}, "hour": {0, 6, 12, 18}}),
        ("*/15 * * * *", {"minute": {0, 15, 30, 45}}),
        ("30 8-10 * * *", {"minute": {30}, "hour": {8, 9, 10}}),
        ("0 9 1,15 * *", {"minute": {0}, "hour": {9}, "day": {1, 15}}),
        # cron Sunday=0, arq Monday=0
        ("0 9 * * 0", {"minute": {0}, "hour": {9}, "weekday": {6}}),
        ("0 9 * * 1-5", {"minute": {0}, "hour": {9}, "weekday": {0, 1, 2, 3, 4}}),
    ],
)
def test_cron_to_arq_kwargs(expression, expected):
    assert cron_to_arq_kwargs(expression) == expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "expression",
    ["* * *", "*/0 * * * *", "*/90 * * * *", "*/120 2 * * *", "61 * * * *", "a * * * *", "0 5-2 * * *"],
)
def test_invalid_cron_expressions(expression):
    with pytest.raises(CronParseError):
        cron_to_arq_kwargs(expression)


@pytest.mark.unit
def test_schedule_table():
    table = {entry.task_type: entry.cron for entry in SCHEDULE}

    assert table == {
        catalog.CLEANUP_EXPIRED_TOKENS: "0 2 * * *",
        catalog.RELEASE_EXPIRED_RESERVATIONS: "*/5 * * * *",
        catalog.NOTIFICATION_CLEANUP_OLD: "0 3 * * *",
        catalog.NOTIFICATION_SEND_PENDING: "0 7 * * *",
        catalog.REMOVE_EXPIRED_PROMOTIONS: "0 */3 * * *",
        catalog.NOTIFICATION_RETRY_FAILED: "*/360 * * * *",
    }
    for entry in SCHEDULE:
        cron_to_arq_kwargs(entry.cron)


@pytest.mark.unit
def test_scheduled_for_queue():
    assert [e.task_type for e in scheduled_for_queue("auth")] == [catalog.CLEANUP_EXPIRED_TOKENS]
    assert scheduled_for_queue("high") == []
    assert [e.task_type for e in scheduled_for_queue("default")] == [
        catalog.RELEASE_EXPIRED_RESERVATIONS
    ]
