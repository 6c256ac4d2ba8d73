"""Unit tests for promotion validation, discount maths and the cart scan."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from libs.common.datetime_utils import utc_now
from libs.common.errors import NotEligible, NotFound
from services.store_service.models import DiscountType, PromotionUsage
from services.store_service.services import cart_ops, promotion_ops
from tests.factories import CartFactory, CartItemFactory, PromotionFactory


def _promotion(**overrides):
    return PromotionFactory.create(**overrides)


# ---------------------------------------------------------------------------
# Discount maths
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_percentage_discount_rounds_half_up():
    promotion = _promotion(discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("15"))

    totals = promotion_ops.calculate_discount(promotion, Decimal("333.33"), Decimal("15000"))

    assert totals.discount == Decimal("50.00")
    assert totals.total == Decimal("15283.33")


@pytest.mark.unit
def test_percentage_discount_is_capped():
    promotion = _promotion(
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("50"),
        max_discount_amount=Decimal("30000"),
    )

    totals = promotion_ops.calculate_discount(promotion, Decimal("200000"), Decimal("15000"))

    assert totals.discount == Decimal("30000.00")
    assert totals.total == Decimal("185000.00")


@pytest.mark.unit
def test_fixed_discount_never_exceeds_subtotal():
    promotion = _promotion(discount_type=DiscountType.FIXED, discount_value=Decimal("500000"))

    totals = promotion_ops.calculate_discount(promotion, Decimal("100000"), Decimal("15000"))

    assert totals.discount == Decimal("100000.00")
    assert totals.total == Decimal("15000.00")


@pytest.mark.unit
def test_free_shipping_zeroes_fee_only():
    promotion = _promotion(discount_type=DiscountType.FREE_SHIPPING, discount_value=Decimal("0"))

    totals = promotion_ops.calculate_discount(promotion, Decimal("100000"), Decimal("15000"))

    assert totals.discount == Decimal("0.00")
    assert totals.shipping_fee == Decimal("0.00")
    assert totals.total == Decimal("100000.00")


@pytest.mark.unit
def test_no_promotion_keeps_totals():
    totals = promotion_ops.calculate_discount(None, Decimal("100000"), Decimal("15000"))

    assert totals.total == Decimal("115000.00")


# ---------------------------------------------------------------------------
# Validity
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "overrides, subtotal, expected",
    [
        ({"is_active": False}, "100000", "inactive"),
        ({"starts_at": utc_now() + timedelta(days=1)}, "100000", "not_started"),
        ({"expires_at": utc_now() - timedelta(seconds=1)}, "100000", "expired"),
        ({"max_uses": 5, "current_uses": 5}, "100000", "usage_limit_reached"),
        ({"min_order_amount": Decimal("150000")}, "100000", "min_order_not_met"),
        ({}, "100000", None),
    ],
)
async def test_invalid_reason(db_session, overrides, subtotal, expected):
    promotion = _promotion(**overrides)
    db_session.add(promotion)
    await db_session.flush()

    reason = await promotion_ops.invalid_reason(
        db_session, promotion, user_id="user-1", subtotal=Decimal(subtotal)
    )

    assert reason == expected


@pytest.mark.asyncio
@pytest.mark.unit
async def test_per_user_limit(db_session):
    promotion = _promotion(max_uses_per_user=1)
    db_session.add(promotion)
    await db_session.flush()
    await promotion_ops.record_usage(
        db_session,
        promotion,
        user_id="user-1",
        order_id=uuid.uuid4(),
        discount=Decimal("10000"),
    )
    await db_session.flush()

    assert (
        await promotion_ops.invalid_reason(
            db_session, promotion, user_id="user-1", subtotal=Decimal("100000")
        )
        == "user_limit_reached"
    )
    assert (
        await promotion_ops.invalid_reason(
            db_session, promotion, user_id="user-2", subtotal=Decimal("100000")
        )
        is None
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_record_usage_respects_global_cap(db_session):
    promotion = _promotion(max_uses=1, current_uses=1)
    db_session.add(promotion)
    await db_session.flush()

    with pytest.raises(NotEligible) as exc_info:
        await promotion_ops.record_usage(
            db_session,
            promotion,
            user_id="user-1",
            order_id=uuid.uuid4(),
            discount=Decimal("10000"),
        )

    assert exc_info.value.details == {"reason": "usage_limit_reached"}


# ---------------------------------------------------------------------------
# Cart attachment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_apply_promotion_is_case_insensitive(db_session, catalogue):
    promotion = _promotion(code="SPRING10")
    db_session.add(promotion)
    cart = await cart_ops.set_item(
        db_session,
        await cart_ops.get_or_create_cart(db_session, "user-1"),
        book_id=catalogue.book.id,
        quantity=1,
    )

    applied = await promotion_ops.apply_promotion(
        db_session, cart, code=" spring10 ", user_id="user-1"
    )

    assert applied.id == promotion.id
    cart = await cart_ops.get_active_cart(db_session, "user-1")
    assert cart.promo_code == "SPRING10"
    assert cart.last_checked_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_apply_unknown_promotion(db_session):
    cart = await cart_ops.get_or_create_cart(db_session, "user-1")

    with pytest.raises(NotFound) as exc_info:
        await promotion_ops.apply_promotion(db_session, cart, code="NOPE", user_id="user-1")

    assert exc_info.value.code == "promotion_not_found"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_apply_promotion_below_minimum(db_session, catalogue):
    promotion = _promotion(min_order_amount=Decimal("500000"))
    db_session.add(promotion)
    cart = await cart_ops.set_item(
        db_session,
        await cart_ops.get_or_create_cart(db_session, "user-1"),
        book_id=catalogue.book.id,
        quantity=1,
    )

    with pytest.raises(NotEligible) as exc_info:
        await promotion_ops.apply_promotion(
            db_session, cart, code=promotion.code, user_id="user-1"
        )

    assert exc_info.value.code == "promotion_invalid"
    assert exc_info.value.details == {"reason": "min_order_not_met"}


# ---------------------------------------------------------------------------
# Background scan
# ---------------------------------------------------------------------------


async def _cart_with_promotion(db, book, promotion, *, user_id, created_at):
    cart = CartFactory.create(
        user_id=user_id,
        applied_promotion_id=promotion.id,
        promo_code=promotion.code,
        created_at=created_at,
    )
    db.add(cart)
    await db.flush()
    db.add(CartItemFactory.create(cart_id=cart.id, book_id=book.id))
    return cart


@pytest.mark.asyncio
@pytest.mark.unit
async def test_revalidate_detaches_invalid_and_pages_past_kept_carts(db_session, catalogue):
    """Removed carts drop out of the scanned set; only kept ones advance the offset."""
    valid = _promotion()
    expired = _promotion(
        starts_at=utc_now() - timedelta(days=10), expires_at=utc_now() - timedelta(hours=1)
    )
    db_session.add_all([valid, expired])
    await db_session.flush()

    base = utc_now() - timedelta(hours=5)
    carts = [
        await _cart_with_promotion(
            db_session, catalogue.book, promo, user_id=f"user-{i}", created_at=base + timedelta(minutes=i)
        )
        for i, promo in enumerate([expired, valid, expired])
    ]
    await db_session.commit()

    first = await promotion_ops.revalidate_cart_promotions(db_session, limit=2, offset=0)
    await db_session.commit()

    assert first.checked == 2
    assert [r.cart_id for r in first.removed] == [carts[0].id]
    assert first.removed[0].reason == "expired"
    assert first.removed[0].code == expired.code
    assert first.next_offset == 1

    second = await promotion_ops.revalidate_cart_promotions(
        db_session, limit=2, offset=first.next_offset
    )
    await db_session.commit()

    assert second.checked == 1
    assert [r.cart_id for r in second.removed] == [carts[2].id]
    assert second.next_offset == 1

    for cart in carts:
        await db_session.refresh(cart)
    assert [c.promo_code for c in carts] == [None, valid.code, None]
    assert carts[1].last_checked_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_usage_row_is_written(db_session):
    promotion = _promotion()
    db_session.add(promotion)
    await db_session.flush()
    order_id = uuid.uuid4()

    await promotion_ops.record_usage(
        db_session, promotion, user_id="user-1", order_id=order_id, discount=Decimal("5000")
    )
    await db_session.commit()

    result = await db_session.execute(
        select(PromotionUsage).where(PromotionUsage.order_id == order_id)
    )
    assert result.scalar_one().discount_amount == Decimal("5000.00")
    await db_session.refresh(promotion)
    assert promotion.current_uses == 1
