"""Checkout: turn the active cart into a pending order holding reserved stock.

Phases:

1. Snapshot and validate the cart against fresh book prices (no writes).
2. Re-validate the applied promotion; an invalid one is detached and reported
   as a ``promotion_invalidated`` warning instead of failing checkout.
3. Pick the nearest warehouse with stock for every line.
4. One transaction (checkout isolation level): order, items, reservations,
   promotion usage, cart conversion. Serialization losers are retried.
5. After commit only: enqueue confirmation email, auto-release timer and
   checkout tracking.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import day_key, utc_now
from libs.common.errors import Conflict, ValidationFailed
from libs.common.logging import get_logger
from libs.db.retry import run_with_serialization_retry
from libs.jobs import catalog
from libs.jobs.payloads import (
    AutoReleaseReservationPayload,
    SendOrderConfirmationPayload,
    TrackCheckoutPayload,
)
from libs.jobs.queue import JobQueue
from services.store_service.models import (
    Cart,
    CartStatus,
    Order,
    OrderItem,
    OrderSequence,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
    Promotion,
)
from services.store_service.services import (
    cart_ops,
    inventory_ops,
    order_ops,
    promotion_ops,
)
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class CheckoutLine:
    book_id: uuid.UUID
    title: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return promotion_ops.money(self.unit_price * self.quantity)


@dataclass
class CheckoutResult:
    order: Order
    warnings: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Phase helpers
# ---------------------------------------------------------------------------


def price_lines(cart: Cart) -> tuple[list[CheckoutLine], list[dict[str, Any]]]:
    """Re-price the cart from current book data.

    Returns the fresh lines and the lines whose price moved beyond tolerance
    or whose book is no longer sold.
    """
    lines: list[CheckoutLine] = []
    changed: list[dict[str, Any]] = []

    for item in cart.items:
        if item.quantity <= 0:
            raise ValidationFailed(
                "Item quantities must be positive",
                code="invalid_quantity",
                details={"book_id": str(item.book_id)},
            )
        book = item.book
        if not book.is_active:
            changed.append(
                {"book_id": str(book.id), "reason": "inactive", "current_price": None}
            )
            continue
        if abs(book.price - item.unit_price_snapshot) > settings.PRICE_TOLERANCE:
            changed.append(
                {
                    "book_id": str(book.id),
                    "reason": "price_changed",
                    "cart_price": str(item.unit_price_snapshot),
                    "current_price": str(book.price),
                }
            )
        lines.append(
            CheckoutLine(
                book_id=book.id,
                title=book.title,
                quantity=item.quantity,
                unit_price=book.price,
            )
        )

    return lines, changed


def price_changed_error(
    lines: list[CheckoutLine],
    changed: list[dict[str, Any]],
    warnings: Optional[list[dict[str, Any]]] = None,
) -> Conflict:
    details: dict[str, Any] = {
        "items": changed,
        "snapshot": [
            {
                "book_id": str(line.book_id),
                "quantity": line.quantity,
                "unit_price": str(line.unit_price),
            }
            for line in lines
        ],
    }
    if warnings:
        details["warnings"] = warnings
    return Conflict(
        "Some items changed since they were added to the cart",
        code="price_changed",
        details=details,
    )


def shipping_fee_for(subtotal: Decimal) -> Decimal:
    threshold = settings.FREE_SHIPPING_THRESHOLD
    if threshold is not None and subtotal >= threshold:
        return Decimal("0")
    return settings.SHIPPING_FEE


async def select_warehouses(
    db: AsyncSession,
    lines: list[CheckoutLine],
    *,
    latitude: float,
    longitude: float,
) -> dict[uuid.UUID, uuid.UUID]:
    """Nearest warehouse with stock per line; Conflict(out_of_stock) lists the misses."""
    selected: dict[uuid.UUID, uuid.UUID] = {}
    missing: list[dict[str, Any]] = []

    for line in lines:
        nearest = await inventory_ops.find_nearest_with_stock(
            db,
            book_id=line.book_id,
            latitude=latitude,
            longitude=longitude,
            required_quantity=line.quantity,
        )
        if nearest is None:
            missing.append({"book_id": str(line.book_id), "quantity": line.quantity})
        else:
            selected[line.book_id] = nearest.warehouse_id

    if missing:
        raise Conflict(
            "Some items are out of stock",
            code="out_of_stock",
            details={"items": missing},
        )
    return selected


async def next_order_number(db: AsyncSession, now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-NNNNNN, strictly increasing within a day."""
    day = day_key(now)
    result = await db.execute(
        update(OrderSequence)
        .where(OrderSequence.day == day)
        .values(last_value=OrderSequence.last_value + 1)
        .returning(OrderSequence.last_value)
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is None:
        # First order of the day; a concurrent insert surfaces as a retryable unique violation
        db.add(OrderSequence(day=day, last_value=1))
        await db.flush()
        value = 1
    return f"{settings.ORDER_NUMBER_PREFIX}-{day}-{value:06d}"


async def _revalidate_promotion(
    db: AsyncSession, cart: Cart, *, user_id: str, subtotal: Decimal
) -> tuple[Optional[Promotion], list[dict[str, Any]]]:
    if cart.applied_promotion_id is None:
        return None, []

    promotion = cart.promotion
    reason = (
        "not_found"
        if promotion is None
        else await promotion_ops.invalid_reason(
            db, promotion, user_id=user_id, subtotal=subtotal
        )
    )
    if reason is None:
        return promotion, []

    code = cart.promo_code
    promotion_ops.detach_promotion(cart)
    await db.commit()
    logger.info("Removed invalid promotion %s from cart %s (%s)", code, cart.id, reason)
    return None, [
        {
            "code": "promotion_invalidated",
            "message": "The applied promotion is no longer valid and was removed",
            "details": {"promo_code": code, "reason": reason},
        }
    ]


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


async def checkout(
    db: AsyncSession,
    *,
    user_id: str,
    user_email: Optional[str],
    shipping_address: dict[str, Any],
    latitude: float,
    longitude: float,
    payment_method: PaymentMethod,
    note: Optional[str] = None,
    job_queue: Optional[JobQueue] = None,
) -> CheckoutResult:
    cart = await cart_ops.get_active_cart(db, user_id)
    if cart is None or not cart.items:
        raise ValidationFailed("Cart is empty", code="empty_cart")

    lines, changed = price_lines(cart)
    subtotal = promotion_ops.money(sum((line.line_total for line in lines), Decimal("0")))

    # A dead promotion is dropped even when the price check fails below
    promotion, warnings = await _revalidate_promotion(
        db, cart, user_id=user_id, subtotal=subtotal
    )
    if changed:
        raise price_changed_error(lines, changed, warnings)
    promotion_id = promotion.id if promotion else None
    totals = promotion_ops.calculate_discount(promotion, subtotal, shipping_fee_for(subtotal))

    cart_id = cart.id
    ttl = timedelta(minutes=settings.RESERVATION_TTL_MINUTES)

    async def place_order() -> uuid.UUID:
        # Everything is re-read here: a retry starts from a rolled-back session.
        current_cart = await cart_ops.get_active_cart(db, user_id)
        if current_cart is None or current_cart.id != cart_id:
            raise Conflict("Cart changed during checkout", code="cart_changed")

        warehouses = await select_warehouses(
            db, lines, latitude=latitude, longitude=longitude
        )

        now = utc_now()
        order = Order(
            id=uuid.uuid4(),
            order_number=await next_order_number(db, now),
            user_id=user_id,
            user_email=user_email,
            status=OrderStatus.PENDING,
            payment_method=payment_method,
            subtotal=totals.subtotal,
            discount=totals.discount,
            shipping_fee=totals.shipping_fee,
            total=totals.total,
            promotion_id=promotion_id,
            promo_code=current_cart.promo_code if promotion_id else None,
            shipping_address=shipping_address,
            customer_note=note,
            version=1,
        )
        db.add(order)
        await db.flush()

        for line in lines:
            db.add(
                OrderItem(
                    order_id=order.id,
                    book_id=line.book_id,
                    warehouse_id=warehouses[line.book_id],
                    title=line.title,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
            )
        db.add(
            OrderStatusHistory(
                order_id=order.id,
                from_status=None,
                to_status=OrderStatus.PENDING.value,
                changed_by=user_id,
                note="checkout",
            )
        )
        await db.flush()

        for line in lines:
            await inventory_ops.reserve(
                db,
                warehouse_id=warehouses[line.book_id],
                book_id=line.book_id,
                quantity=line.quantity,
                order_id=order.id,
                ttl=ttl,
                performed_by=user_id,
            )

        if promotion_id is not None:
            promo = await db.get(Promotion, promotion_id)
            await promotion_ops.record_usage(
                db, promo, user_id=user_id, order_id=order.id, discount=totals.discount
            )

        current_cart.status = CartStatus.CONVERTED
        current_cart.items.clear()
        await db.commit()
        return order.id

    order_id = await run_with_serialization_retry(
        db,
        place_order,
        attempts=settings.SERIALIZATION_RETRY_ATTEMPTS,
        label="checkout",
    )

    order = await order_ops.get_order(db, order_id)
    logger.info(
        "Checkout created order %s for user %s (total=%s, items=%d)",
        order.order_number,
        user_id,
        order.total,
        order.item_count,
    )

    if job_queue is not None:
        await enqueue_checkout_jobs(job_queue, order, ttl=ttl)
    else:
        logger.warning("No job queue configured; side effects for %s not scheduled", order.order_number)

    return CheckoutResult(order=order, warnings=warnings)


async def enqueue_checkout_jobs(job_queue: JobQueue, order: Order, *, ttl: timedelta) -> None:
    """Post-commit side effects. Failures are logged; the order stands."""
    order_id = str(order.id)
    jobs = [
        (
            catalog.SEND_ORDER_CONFIRMATION,
            SendOrderConfirmationPayload(
                order_id=order_id,
                order_number=order.order_number,
                user_id=order.user_id,
                user_email=order.user_email,
                total=str(order.total),
                payment_method=order.payment_method.value,
            ),
            {"dedup_key": order_id},
        ),
        (
            catalog.AUTO_RELEASE_RESERVATION,
            AutoReleaseReservationPayload(
                order_id=order_id,
                order_number=order.order_number,
                user_id=order.user_id,
            ),
            {"dedup_key": order_id, "not_before": utc_now() + ttl},
        ),
        (
            catalog.TRACK_CHECKOUT,
            TrackCheckoutPayload(
                order_id=order_id,
                order_number=order.order_number,
                user_id=order.user_id,
                total=str(order.total),
                item_count=order.item_count,
                payment_method=order.payment_method.value,
                promo_code=order.promo_code,
                discount=str(order.discount),
            ),
            {},
        ),
    ]
    for task_type, payload, options in jobs:
        try:
            await job_queue.enqueue(task_type, payload, **options)
        except Exception:
            logger.exception(
                "Failed to enqueue %s for order %s",
                task_type,
                order.order_number,
                extra={"extra_fields": {"code": "ENQUEUE_FAILED", "task_type": task_type}},
            )
