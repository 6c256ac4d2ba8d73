"""Notification publishing and delivery.

``publish`` stores an in-app notification (deduplicated by idempotency key);
the ``notification:*`` jobs then email it, retry failed deliveries and prune
old read notifications.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.email import EmailDeliveryError
from libs.common.logging import get_logger
from libs.jobs.catalog import backoff_delay
from services.communications_service.models import (
    DeliveryStatus,
    Notification,
    NotificationChannel,
    NotificationDelivery,
    NotificationPriority,
    NotificationType,
)
from services.communications_service.templates.orders import send_notification_email
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)
settings = get_settings()


def idempotency_key(
    notification_type: NotificationType,
    reference_id: Optional[str],
    user_id: str,
    now: Optional[datetime] = None,
) -> str:
    """``type:reference_id:user_id``; unreferenced notifications key on the second."""
    if reference_id is None:
        now = now or utc_now()
        return f"{notification_type.value}:{user_id}:{int(now.timestamp())}"
    return f"{notification_type.value}:{reference_id}:{user_id}"


async def publish(
    db: AsyncSession,
    *,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    data: Optional[dict] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    recipient_email: Optional[str] = None,
    priority: NotificationPriority = NotificationPriority.NORMAL,
    expires_at: Optional[datetime] = None,
) -> Notification:
    """Store a notification unless one with the same key already exists.

    Flushes only; the caller owns the transaction.
    """
    key = idempotency_key(type, reference_id, user_id)
    existing = await db.execute(
        select(Notification).where(Notification.idempotency_key == key)
    )
    notification = existing.scalar_one_or_none()
    if notification is not None:
        logger.info("Notification %s already published", key)
        return notification

    channels = [NotificationChannel.IN_APP.value]
    if recipient_email:
        channels.append(NotificationChannel.EMAIL.value)

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        data=data,
        reference_type=reference_type,
        reference_id=reference_id,
        recipient_email=recipient_email,
        priority=priority,
        channels=channels,
        idempotency_key=key,
        expires_at=expires_at,
    )
    db.add(notification)
    await db.flush()
    logger.info("Published notification %s to user %s", key, user_id)
    return notification


async def list_for_user(
    db: AsyncSession, user_id: str, *, unread_only: bool = False, limit: int = 50, offset: int = 0
) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await db.execute(
        query.order_by(Notification.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def mark_read(
    db: AsyncSession, notification_id: uuid.UUID, user_id: str
) -> Optional[Notification]:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id, Notification.user_id == user_id
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utc_now()
        await db.commit()
    return notification


# ============================================================================
# DELIVERY
# ============================================================================


async def _deliver(
    delivery: NotificationDelivery, notification: Notification, now: datetime
) -> bool:
    """Attempt one email delivery and record the outcome on the row."""
    delivery.attempts += 1
    try:
        message_id = await send_notification_email(
            delivery.recipient, title=notification.title, message=notification.message
        )
    except EmailDeliveryError as e:
        delivery.status = DeliveryStatus.FAILED
        delivery.last_error = str(e)
        out_of_attempts = delivery.attempts >= settings.NOTIFICATION_MAX_DELIVERY_ATTEMPTS
        if e.transient and not out_of_attempts:
            delivery.next_retry_at = now + timedelta(
                seconds=backoff_delay(delivery.attempts)
            )
        else:
            delivery.next_retry_at = None
        logger.warning(
            "Delivery %s to %s failed (attempt %d): %s",
            delivery.id,
            delivery.recipient,
            delivery.attempts,
            e,
        )
        return False

    delivery.status = DeliveryStatus.SENT
    delivery.provider_message_id = message_id
    delivery.delivered_at = now
    delivery.next_retry_at = None
    delivery.last_error = None
    return True


async def _sent_in_last_hour(db: AsyncSession, user_ids: set[str], now: datetime) -> dict[str, int]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(Notification.user_id, func.count())
        .where(
            Notification.user_id.in_(user_ids),
            Notification.is_sent.is_(True),
            Notification.sent_at >= now - timedelta(hours=1),
        )
        .group_by(Notification.user_id)
    )
    return {user_id: count for user_id, count in result.all()}


def _capped_users(now: datetime, cap: int):
    """Users who already got ``cap`` notifications in the last hour."""
    return (
        select(Notification.user_id)
        .where(
            Notification.is_sent.is_(True),
            Notification.sent_at >= now - timedelta(hours=1),
        )
        .group_by(Notification.user_id)
        .having(func.count() >= cap)
    )


async def send_pending(
    db: AsyncSession, *, limit: int, now: Optional[datetime] = None
) -> dict[str, int]:
    """Dispatch unsent notifications oldest first.

    Users who already got ``NOTIFICATION_USER_HOURLY_CAP`` notifications in the
    last hour are left out of the scan, so their backlog waits for a later run
    without holding back anyone else. ``deferred`` counts what they still have
    queued. Expired notifications are marked sent without delivery.
    """
    now = now or utc_now()
    cap = settings.NOTIFICATION_USER_HOURLY_CAP
    stats = {"sent": 0, "failed": 0, "deferred": 0, "expired": 0}
    skipped: set[uuid.UUID] = set()

    while stats["sent"] + stats["failed"] + stats["expired"] < limit:
        remaining = limit - (stats["sent"] + stats["failed"] + stats["expired"])
        query = (
            select(Notification)
            .where(
                Notification.is_sent.is_(False),
                Notification.user_id.not_in(_capped_users(now, cap)),
            )
            .order_by(Notification.created_at)
            .limit(remaining)
        )
        if skipped:
            query = query.where(Notification.id.not_in(skipped))
        result = await db.execute(query)
        notifications = list(result.scalars().all())
        if not notifications:
            break

        sent_counts = await _sent_in_last_hour(db, {n.user_id for n in notifications}, now)

        for notification in notifications:
            if notification.expires_at is not None and as_utc(notification.expires_at) <= now:
                notification.is_sent = True
                stats["expired"] += 1
                continue
            # Reached the cap earlier in this run
            if sent_counts.get(notification.user_id, 0) >= cap:
                skipped.add(notification.id)
                continue

            if NotificationChannel.EMAIL.value in notification.channels and notification.recipient_email:
                delivery = NotificationDelivery(
                    notification_id=notification.id,
                    channel=NotificationChannel.EMAIL,
                    recipient=notification.recipient_email,
                    attempts=0,
                )
                db.add(delivery)
                if await _deliver(delivery, notification, now):
                    stats["sent"] += 1
                else:
                    stats["failed"] += 1
            else:
                stats["sent"] += 1

            # In-app delivery is the row itself; email failures are retried per delivery
            notification.is_sent = True
            notification.sent_at = now
            sent_counts[notification.user_id] = sent_counts.get(notification.user_id, 0) + 1
            await db.commit()

        await db.commit()

    waiting = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.is_sent.is_(False),
            Notification.user_id.in_(_capped_users(now, cap)),
        )
    )
    stats["deferred"] = int(waiting.scalar_one())

    if not any(stats.values()):
        logger.info("No unsent notifications")
        return stats
    logger.info("Processed unsent notifications: %s", stats)
    return stats


async def retry_failed(
    db: AsyncSession, *, limit: int, now: Optional[datetime] = None
) -> dict[str, int]:
    """Redeliver failed deliveries whose ``next_retry_at`` has passed."""
    now = now or utc_now()
    result = await db.execute(
        select(NotificationDelivery)
        .where(
            NotificationDelivery.status == DeliveryStatus.FAILED,
            NotificationDelivery.next_retry_at.is_not(None),
            NotificationDelivery.next_retry_at <= now,
            NotificationDelivery.attempts < settings.NOTIFICATION_MAX_DELIVERY_ATTEMPTS,
        )
        .options(selectinload(NotificationDelivery.notification))
        .order_by(NotificationDelivery.next_retry_at)
        .limit(limit)
    )
    deliveries = list(result.scalars().all())
    stats = {"sent": 0, "failed": 0}
    if not deliveries:
        logger.info("No failed deliveries to retry")
        return stats

    for delivery in deliveries:
        if await _deliver(delivery, delivery.notification, now):
            stats["sent"] += 1
        else:
            stats["failed"] += 1
        await db.commit()

    logger.info("Retried failed deliveries: %s", stats)
    return stats


async def cleanup_old(
    db: AsyncSession, *, older_than_days: int, now: Optional[datetime] = None
) -> int:
    """Delete read notifications created before the cutoff; returns the count."""
    now = now or utc_now()
    cutoff = now - timedelta(days=older_than_days)
    doomed = select(Notification.id).where(
        Notification.is_read.is_(True), Notification.created_at < cutoff
    )

    await db.execute(
        delete(NotificationDelivery)
        .where(NotificationDelivery.notification_id.in_(doomed))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(Notification)
        .where(Notification.is_read.is_(True), Notification.created_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    deleted = result.rowcount or 0
    logger.info("Deleted %d read notifications older than %d days", deleted, older_than_days)
    return deleted
