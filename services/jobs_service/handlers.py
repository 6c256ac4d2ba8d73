"""
Background task handlers.

Every handler takes the arq ``ctx`` and the task payload dict, re-reads the
domain state it needs, and is safe to run more than once for the same
payload. Raising signals a failed attempt; the worker wrapper decides
whether it is retried or dead-lettered.
"""

import uuid
from datetime import datetime
from urllib.parse import urlencode
from typing import Any

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.errors import Conflict
from libs.common.logging import get_logger
from libs.jobs import catalog
from libs.jobs.payloads import (
    AutoReleaseReservationPayload,
    CleanupExpiredTokensPayload,
    CleanupOldNotificationsPayload,
    NotificationLimitPayload,
    OrderStatusNotificationPayload,
    ProcessRefundPayload,
    ReleaseExpiredReservationsPayload,
    RemoveExpiredPromotionsPayload,
    SendOrderConfirmationPayload,
    SendVerificationEmailPayload,
    SyncBookStockPayload,
    TrackCheckoutPayload,
    UpdateLastLoginPayload,
)
from libs.jobs.queue import JobQueue
from services.communications_service.models import NotificationPriority, NotificationType
from services.communications_service.services import notification_ops
from services.communications_service.templates.accounts import send_verification_email
from services.communications_service.templates.orders import send_order_confirmation_email
from services.members_service.services import account_ops
from services.payments_service.services import refund_ops
from services.store_service.models import OrderStatus
from services.store_service.services import inventory_ops, order_ops, promotion_ops, stock_cache

logger = get_logger(__name__)
settings = get_settings()

ORDER_STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "Your order {number} is confirmed and will ship soon.",
    OrderStatus.PAID: "We received the payment for order {number}.",
    OrderStatus.SHIPPED: "Order {number} is on its way.",
    OrderStatus.DELIVERED: "Order {number} was delivered. Happy reading!",
    OrderStatus.CANCELLED: "Order {number} was cancelled.",
    OrderStatus.REFUNDED: "The refund for order {number} is complete.",
}


def _session(ctx: dict):
    return ctx["session_factory"]()


# ============================================================================
# CART / ORDER
# ============================================================================


async def _release_followups(ctx: dict, order) -> None:
    # The cancellation is committed; a failed follow-up must not re-run the job
    job_queue: JobQueue = ctx["job_queue"]
    try:
        for item in order.items:
            await job_queue.enqueue(
                catalog.SYNC_BOOK_STOCK,
                SyncBookStockPayload(book_id=str(item.book_id)),
                dedup_key=str(item.book_id),
            )
        await job_queue.enqueue(
            catalog.ORDER_STATUS_NOTIFICATION,
            OrderStatusNotificationPayload(
                order_id=str(order.id),
                user_id=order.user_id,
                status=order.status.value,
                order_number=order.order_number,
            ),
        )
    except Exception:
        logger.exception("Follow-up jobs for released order %s failed", order.order_number)


async def auto_release_reservation(ctx: dict, payload: dict) -> dict[str, Any]:
    """Cancel an order whose payment window closed; a no-op once it left pending."""
    data = AutoReleaseReservationPayload.from_dict(payload)
    order_id = uuid.UUID(data.order_id)

    async with _session(ctx) as db:
        order = await order_ops.get_order(db, order_id)
        if order.status != OrderStatus.PENDING:
            logger.info(
                "Order %s is %s; nothing to release", order.order_number, order.status.value
            )
            return {"released": False, "status": order.status.value}

        order = await order_ops.cancel_order(
            db, order_id, user_id=None, reason="reservation expired"
        )

    logger.info("Released reservations of unpaid order %s", order.order_number)
    await _release_followups(ctx, order)
    return {"released": True, "status": order.status.value}


async def release_expired_reservations(ctx: dict, payload: dict) -> dict[str, int]:
    """Sweep pending orders whose reservations outlived their auto-release job.

    Covers checkouts whose auto-release enqueue failed after commit.
    """
    data = ReleaseExpiredReservationsPayload.from_dict(payload)
    limit = _bounded_limit(data.limit, settings.RESERVATION_SWEEP_LIMIT)
    stats = {"released": 0, "skipped": 0}

    async with _session(ctx) as db:
        order_ids = await inventory_ops.orders_with_expired_reservations(
            db, limit=limit, status=OrderStatus.PENDING
        )
        for order_id in order_ids:
            order = await order_ops.get_order(db, order_id)
            # Paid or cancelled while the sweep was running
            if order.status != OrderStatus.PENDING:
                stats["skipped"] += 1
                continue
            try:
                order = await order_ops.cancel_order(
                    db, order_id, user_id=None, reason="reservation expired"
                )
            except Conflict:
                await db.rollback()
                stats["skipped"] += 1
                continue
            stats["released"] += 1
            await _release_followups(ctx, order)

    if stats["released"]:
        logger.info("Released %d abandoned orders", stats["released"])
    return stats


async def send_order_confirmation(ctx: dict, payload: dict) -> dict[str, Any]:
    data = SendOrderConfirmationPayload.from_dict(payload)

    async with _session(ctx) as db:
        order = await order_ops.get_order(db, uuid.UUID(data.order_id))

    to_email = order.user_email or data.user_email
    if not to_email:
        logger.warning("Order %s has no email address; confirmation skipped", order.order_number)
        return {"sent": False}

    address = order.shipping_address or {}
    # EmailDeliveryError propagates; transient ones are retried
    message_id = await send_order_confirmation_email(
        to_email,
        customer_name=address.get("recipient_name") or to_email,
        order_number=order.order_number,
        items=[
            {"title": item.title, "quantity": item.quantity, "line_total": item.line_total}
            for item in order.items
        ],
        subtotal=order.subtotal,
        discount=order.discount,
        shipping_fee=order.shipping_fee,
        total=order.total,
        payment_method=order.payment_method.value,
        shipping_address=address,
    )
    return {"sent": True, "message_id": message_id}


async def track_checkout(ctx: dict, payload: dict) -> dict[str, Any]:
    data = TrackCheckoutPayload.from_dict(payload)
    logger.info(
        "Checkout completed: %s",
        data.order_number,
        extra={"extra_fields": {"event": "checkout", **data.to_dict()}},
    )
    return {"tracked": True}


async def order_status_notification(ctx: dict, payload: dict) -> dict[str, Any]:
    data = OrderStatusNotificationPayload.from_dict(payload)
    status = OrderStatus(data.status)
    template = ORDER_STATUS_MESSAGES.get(status)
    if template is None:
        return {"published": False}

    async with _session(ctx) as db:
        order = await order_ops.get_order(db, uuid.UUID(data.order_id))
        notification = await notification_ops.publish(
            db,
            user_id=data.user_id,
            type=NotificationType.ORDER_STATUS,
            title=f"Order {order.order_number}: {status.value}",
            message=template.format(number=order.order_number),
            data={"order_id": str(order.id), "status": status.value},
            reference_type="order",
            # One notification per order and status
            reference_id=f"{order.id}:{status.value}",
            recipient_email=order.user_email,
            priority=NotificationPriority.HIGH
            if status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED)
            else NotificationPriority.NORMAL,
        )
        await db.commit()
    return {"published": True, "notification_id": str(notification.id)}


# ============================================================================
# INVENTORY / PROMOTIONS
# ============================================================================


async def sync_book_stock(ctx: dict, payload: dict) -> dict[str, Any]:
    """Recompute a book's aggregate stock into the cache; last writer wins."""
    data = SyncBookStockPayload.from_dict(payload)
    book_id = uuid.UUID(data.book_id)

    async with _session(ctx) as db:
        summary = await inventory_ops.book_stock_summary(db, book_id)

    cached = await stock_cache.set_stock_summary(ctx["redis"], book_id, summary)
    if summary["low_stock_warehouses"]:
        logger.warning(
            "Book %s is low on stock in %s",
            book_id,
            ", ".join(summary["low_stock_warehouses"]),
            extra={"extra_fields": {"code": "LOW_STOCK", "book_id": str(book_id)}},
        )
    return {"available": summary["available"], "cached": cached}


async def remove_expired_promotions(ctx: dict, payload: dict) -> dict[str, Any]:
    """Detach promotions that stopped being valid from active carts.

    Works in batches from ``offset`` and stops after PROMOTION_SCAN_MAX_CARTS
    carts; each batch is committed on its own so a retry resumes cleanly.
    """
    data = RemoveExpiredPromotionsPayload.from_dict(payload)
    batch_size = data.batch_size or settings.PROMOTION_SCAN_BATCH_SIZE
    offset = data.offset
    now = utc_now()
    stats = {"checked": 0, "removed": 0, "notified": 0, "batches": 0}

    async with _session(ctx) as db:
        while stats["checked"] < settings.PROMOTION_SCAN_MAX_CARTS:
            batch = await promotion_ops.revalidate_cart_promotions(
                db, limit=batch_size, offset=offset, now=now
            )
            for removed in batch.removed:
                if removed.user_id is None:
                    continue
                await notification_ops.publish(
                    db,
                    user_id=removed.user_id,
                    type=NotificationType.PROMOTION_REMOVED,
                    title="Promotion removed from your cart",
                    message=f"The code {removed.code} is no longer valid and was removed from your cart.",
                    data={"cart_id": str(removed.cart_id), "code": removed.code, "reason": removed.reason},
                    reference_type="cart",
                    reference_id=f"{removed.cart_id}:{removed.code}",
                    priority=NotificationPriority.LOW,
                )
                stats["notified"] += 1
            await db.commit()

            stats["batches"] += 1
            stats["checked"] += batch.checked
            stats["removed"] += len(batch.removed)
            if batch.checked < batch_size:
                break
            offset = batch.next_offset

    logger.info("Promotion scan finished: %s", stats)
    return stats


# ============================================================================
# PAYMENTS
# ============================================================================


async def process_refund(ctx: dict, payload: dict) -> dict[str, Any]:
    data = ProcessRefundPayload.from_dict(payload)
    async with _session(ctx) as db:
        refund = await refund_ops.process_refund(
            db, uuid.UUID(data.refund_id), job_queue=ctx["job_queue"]
        )
    return {"refund_id": str(refund.id), "status": refund.status.value}


# ============================================================================
# ACCOUNTS
# ============================================================================


async def cleanup_expired_tokens(ctx: dict, payload: dict) -> dict[str, int]:
    CleanupExpiredTokensPayload.from_dict(payload)
    async with _session(ctx) as db:
        return await account_ops.cleanup_expired_tokens(db)


async def update_last_login(ctx: dict, payload: dict) -> dict[str, Any]:
    data = UpdateLastLoginPayload.from_dict(payload)
    async with _session(ctx) as db:
        updated = await account_ops.update_last_login(
            db, data.user_id, datetime.fromisoformat(data.logged_in_at)
        )
    return {"updated": updated}


async def send_verification(ctx: dict, payload: dict) -> dict[str, Any]:
    """Email the user's current verification link, if they still need one."""
    data = SendVerificationEmailPayload.from_dict(payload)
    async with _session(ctx) as db:
        user = await account_ops.get_by_auth_id(db, data.user_id)

    if user is None:
        return {"sent": False, "reason": "unknown_user"}
    if user.is_verified:
        return {"sent": False, "reason": "already_verified"}
    expires_at = as_utc(user.verification_token_expires_at)
    if not user.verification_token or expires_at is None or expires_at <= utc_now():
        return {"sent": False, "reason": "no_valid_token"}

    link = f"{settings.EMAIL_VERIFY_URL}?{urlencode({'token': user.verification_token})}"
    message_id = await send_verification_email(
        user.email,
        verify_link=link,
        expires_in=f"{settings.VERIFICATION_TOKEN_TTL_HOURS} hours",
    )
    return {"sent": True, "message_id": message_id}


# ============================================================================
# NOTIFICATIONS
# ============================================================================


def _bounded_limit(requested: int, default: int) -> int:
    """Payload limits outside 1..100 fall back to the configured default."""
    if requested <= 0 or requested > 100:
        return default
    return requested


async def send_pending_notifications(ctx: dict, payload: dict) -> dict[str, int]:
    data = NotificationLimitPayload.from_dict(payload)
    limit = _bounded_limit(data.limit, settings.NOTIFICATION_SEND_LIMIT)
    async with _session(ctx) as db:
        return await notification_ops.send_pending(db, limit=limit)


async def retry_failed_notifications(ctx: dict, payload: dict) -> dict[str, int]:
    data = NotificationLimitPayload.from_dict(payload)
    limit = _bounded_limit(data.limit, settings.NOTIFICATION_RETRY_LIMIT)
    async with _session(ctx) as db:
        return await notification_ops.retry_failed(db, limit=limit)


async def cleanup_old_notifications(ctx: dict, payload: dict) -> dict[str, int]:
    data = CleanupOldNotificationsPayload.from_dict(payload)
    days = data.older_than_days if data.older_than_days > 0 else settings.NOTIFICATION_RETENTION_DAYS
    async with _session(ctx) as db:
        deleted = await notification_ops.cleanup_old(db, older_than_days=days)
    return {"deleted": deleted}


HANDLERS = {
    catalog.AUTO_RELEASE_RESERVATION: auto_release_reservation,
    catalog.RELEASE_EXPIRED_RESERVATIONS: release_expired_reservations,
    catalog.TRACK_CHECKOUT: track_checkout,
    catalog.REMOVE_EXPIRED_PROMOTIONS: remove_expired_promotions,
    catalog.SEND_ORDER_CONFIRMATION: send_order_confirmation,
    catalog.ORDER_STATUS_NOTIFICATION: order_status_notification,
    catalog.SYNC_BOOK_STOCK: sync_book_stock,
    catalog.PROCESS_REFUND: process_refund,
    catalog.CLEANUP_EXPIRED_TOKENS: cleanup_expired_tokens,
    catalog.UPDATE_LAST_LOGIN: update_last_login,
    catalog.SEND_VERIFICATION_EMAIL: send_verification,
    catalog.NOTIFICATION_SEND_PENDING: send_pending_notifications,
    catalog.NOTIFICATION_RETRY_FAILED: retry_failed_notifications,
    catalog.NOTIFICATION_CLEANUP_OLD: cleanup_old_notifications,
}
