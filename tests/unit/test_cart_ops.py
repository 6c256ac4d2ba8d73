"""Unit tests for cart maintenance."""

import uuid
from decimal import Decimal

import pytest

from libs.common.errors import NotEligible, NotFound
from services.store_service.services import cart_ops


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_or_create_reuses_active_cart(db_session):
    first = await cart_ops.get_or_create_cart(db_session, "user-1")
    second = await cart_ops.get_or_create_cart(db_session, "user-1")

    assert first.id == second.id
    assert await cart_ops.get_active_cart(db_session, "user-2") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_item_snapshots_current_price(db_session, catalogue):
    cart = await cart_ops.get_or_create_cart(db_session, "user-1")

    cart = await cart_ops.set_item(db_session, cart, book_id=catalogue.book.id, quantity=2)

    assert [(i.book_id, i.quantity) for i in cart.items] == [(catalogue.book.id, 2)]
    assert cart.items[0].unit_price_snapshot == Decimal("100000.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_item_updates_and_removes_line(db_session, catalogue):
    cart = await cart_ops.get_or_create_cart(db_session, "user-1")
    cart = await cart_ops.set_item(db_session, cart, book_id=catalogue.book.id, quantity=2)

    cart = await cart_ops.set_item(db_session, cart, book_id=catalogue.book.id, quantity=4)
    assert cart.items[0].quantity == 4

    cart = await cart_ops.set_item(db_session, cart, book_id=catalogue.book.id, quantity=0)
    assert cart.items == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_item_unknown_book(db_session):
    cart = await cart_ops.get_or_create_cart(db_session, "user-1")

    with pytest.raises(NotFound) as exc_info:
        await cart_ops.set_item(db_session, cart, book_id=uuid.uuid4(), quantity=1)

    assert exc_info.value.code == "book_not_found"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_set_item_inactive_book(db_session, catalogue):
    catalogue.book.is_active = False
    await db_session.commit()
    cart = await cart_ops.get_or_create_cart(db_session, "user-1")

    with pytest.raises(NotEligible) as exc_info:
        await cart_ops.set_item(db_session, cart, book_id=catalogue.book.id, quantity=1)

    assert exc_info.value.code == "book_inactive"
