"""Promotion validation, discount maths and redemption bookkeeping."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from libs.common.datetime_utils import as_utc, utc_now
from libs.common.errors import NotEligible, NotFound
from libs.common.logging import get_logger
from services.store_service.models import (
    Cart,
    CartStatus,
    DiscountType,
    Promotion,
    PromotionUsage,
)
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    """Round to 2 dp, halves away from zero."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount: Decimal
    shipping_fee: Decimal

    @property
    def total(self) -> Decimal:
        return max(ZERO, self.subtotal - self.discount) + self.shipping_fee


def calculate_discount(
    promotion: Optional[Promotion], subtotal: Decimal, shipping_fee: Decimal
) -> Totals:
    """Apply a promotion to a subtotal.

    Percentage discounts are capped by ``max_discount_amount``; fixed discounts
    never exceed the subtotal; free shipping zeroes the shipping fee.
    """
    subtotal = money(subtotal)
    shipping_fee = money(shipping_fee)
    if promotion is None:
        return Totals(subtotal, ZERO, shipping_fee)

    discount = ZERO
    if promotion.discount_type == DiscountType.PERCENTAGE:
        discount = money(subtotal * Decimal(promotion.discount_value) / Decimal(100))
        if promotion.max_discount_amount is not None:
            discount = min(discount, money(promotion.max_discount_amount))
    elif promotion.discount_type == DiscountType.FIXED:
        discount = min(money(promotion.discount_value), subtotal)
    elif promotion.discount_type == DiscountType.FREE_SHIPPING:
        shipping_fee = ZERO

    return Totals(subtotal, discount, shipping_fee)


async def _user_usage_count(db: AsyncSession, promotion_id: uuid.UUID, user_id: str) -> int:
    result = await db.execute(
        select(func.count(PromotionUsage.id)).where(
            PromotionUsage.promotion_id == promotion_id,
            PromotionUsage.user_id == user_id,
        )
    )
    return int(result.scalar_one())


async def invalid_reason(
    db: AsyncSession,
    promotion: Promotion,
    *,
    user_id: Optional[str],
    subtotal: Decimal,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """Why a promotion cannot be used right now, or None when it can."""
    now = now or utc_now()
    if not promotion.is_active:
        return "inactive"
    if as_utc(promotion.starts_at) > now:
        return "not_started"
    if as_utc(promotion.expires_at) <= now:
        return "expired"
    if promotion.max_uses is not None and promotion.current_uses >= promotion.max_uses:
        return "usage_limit_reached"
    if subtotal < promotion.min_order_amount:
        return "min_order_not_met"
    if user_id and promotion.max_uses_per_user:
        used = await _user_usage_count(db, promotion.id, user_id)
        if used >= promotion.max_uses_per_user:
            return "user_limit_reached"
    return None


def cart_subtotal(cart: Cart) -> Decimal:
    return money(sum((item.unit_price_snapshot * item.quantity for item in cart.items), ZERO))


async def apply_promotion(
    db: AsyncSession, cart: Cart, *, code: str, user_id: Optional[str]
) -> Promotion:
    """Attach a promotion code to a cart after validating it."""
    result = await db.execute(
        select(Promotion).where(func.upper(Promotion.code) == code.strip().upper())
    )
    promotion = result.scalar_one_or_none()
    if promotion is None:
        raise NotFound("Promotion code not found", code="promotion_not_found")

    reason = await invalid_reason(
        db, promotion, user_id=user_id, subtotal=cart_subtotal(cart)
    )
    if reason:
        raise NotEligible(
            "Promotion cannot be applied", code="promotion_invalid", details={"reason": reason}
        )

    cart.applied_promotion_id = promotion.id
    cart.promo_code = promotion.code
    cart.last_checked_at = utc_now()
    await db.commit()
    logger.info("Applied promotion %s to cart %s", promotion.code, cart.id)
    return promotion


def detach_promotion(cart: Cart) -> None:
    cart.applied_promotion_id = None
    cart.promo_code = None


async def remove_promotion(db: AsyncSession, cart: Cart) -> None:
    detach_promotion(cart)
    await db.commit()


async def record_usage(
    db: AsyncSession,
    promotion: Promotion,
    *,
    user_id: str,
    order_id: uuid.UUID,
    discount: Decimal,
) -> None:
    """Count one redemption; the cap is enforced in the UPDATE guard."""
    result = await db.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion.id,
            or_(Promotion.max_uses.is_(None), Promotion.current_uses < Promotion.max_uses),
        )
        .values(current_uses=Promotion.current_uses + 1)
        .returning(Promotion.current_uses)
        .execution_options(synchronize_session=False)
    )
    if result.first() is None:
        raise NotEligible(
            "Promotion usage limit reached",
            code="promotion_invalid",
            details={"reason": "usage_limit_reached"},
        )
    db.add(
        PromotionUsage(
            promotion_id=promotion.id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount,
        )
    )


# ---------------------------------------------------------------------------
# Background scan
# ---------------------------------------------------------------------------


@dataclass
class RemovedPromotion:
    cart_id: uuid.UUID
    user_id: Optional[str]
    code: str
    reason: str


@dataclass
class PromotionScanBatch:
    checked: int
    removed: list[RemovedPromotion]
    next_offset: int


async def revalidate_cart_promotions(
    db: AsyncSession, *, limit: int, offset: int = 0, now: Optional[datetime] = None
) -> PromotionScanBatch:
    """Re-check one page of active carts holding a promotion.

    Invalid promotions are detached; valid ones get ``last_checked_at``.
    Detached carts leave the scanned set, so the next page starts at
    ``offset + checked - removed``. Flushes only.
    """
    now = now or utc_now()
    result = await db.execute(
        select(Cart)
        .where(
            Cart.status == CartStatus.ACTIVE,
            Cart.applied_promotion_id.is_not(None),
        )
        .options(selectinload(Cart.items), selectinload(Cart.promotion))
        .order_by(Cart.created_at, Cart.id)
        .limit(limit)
        .offset(offset)
    )
    carts = list(result.scalars().all())

    removed: list[RemovedPromotion] = []
    for cart in carts:
        promotion = cart.promotion
        if promotion is None:
            reason = "deleted"
        else:
            reason = await invalid_reason(
                db, promotion, user_id=cart.user_id, subtotal=cart_subtotal(cart), now=now
            )
        if reason is None:
            cart.last_checked_at = now
            continue
        removed.append(
            RemovedPromotion(
                cart_id=cart.id, user_id=cart.user_id, code=cart.promo_code or "", reason=reason
            )
        )
        detach_promotion(cart)

    await db.flush()
    return PromotionScanBatch(
        checked=len(carts),
        removed=removed,
        next_offset=offset + len(carts) - len(removed),
    )
