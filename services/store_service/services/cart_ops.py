"""Cart maintenance: the parts checkout needs."""

import uuid
from typing import Optional

from libs.common.errors import NotEligible, NotFound, ValidationFailed
from libs.common.logging import get_logger
from services.store_service.models import Book, Cart, CartItem, CartStatus
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


async def get_active_cart(db: AsyncSession, user_id: str) -> Optional[Cart]:
    result = await db.execute(
        select(Cart)
        .where(Cart.user_id == user_id, Cart.status == CartStatus.ACTIVE)
        .options(
            selectinload(Cart.items).selectinload(CartItem.book),
            selectinload(Cart.promotion),
        )
        .order_by(Cart.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_cart(db: AsyncSession, user_id: str) -> Cart:
    cart = await get_active_cart(db, user_id)
    if cart:
        return cart

    cart = Cart(user_id=user_id, status=CartStatus.ACTIVE)
    db.add(cart)
    await db.commit()
    return await get_active_cart(db, user_id)


async def set_item(
    db: AsyncSession, cart: Cart, *, book_id: uuid.UUID, quantity: int
) -> Cart:
    """Put ``quantity`` of a book in the cart, refreshing the price snapshot.

    A quantity of zero removes the line.
    """
    if quantity < 0:
        raise ValidationFailed("Quantity cannot be negative", code="invalid_quantity")

    book = await db.get(Book, book_id)
    if book is None:
        raise NotFound("Book not found", code="book_not_found")

    existing = next((item for item in cart.items if item.book_id == book_id), None)
    if quantity == 0:
        if existing:
            cart.items.remove(existing)
    else:
        if not book.is_active:
            raise NotEligible("Book is no longer available", code="book_inactive")
        if existing:
            existing.quantity = quantity
            existing.unit_price_snapshot = book.price
        else:
            cart.items.append(
                CartItem(book_id=book_id, quantity=quantity, unit_price_snapshot=book.price)
            )

    await db.commit()
    logger.info("Cart %s: book %s set to quantity %d", cart.id, book_id, quantity)
    return await get_active_cart(db, cart.user_id)
