"""Shared domain fixtures: a small catalogue with stock in two warehouses."""

from dataclasses import dataclass
from decimal import Decimal

import pytest_asyncio

from tests.factories import (
    HANOI,
    HCMC,
    BookFactory,
    WarehouseFactory,
    WarehouseInventoryFactory,
)


@dataclass
class Catalogue:
    book: object
    hanoi: object
    hcmc: object


@pytest_asyncio.fixture
async def catalogue(db_session) -> Catalogue:
    """One 100,000 VND book with 5 copies in Hanoi and 20 in Ho Chi Minh City."""
    book = BookFactory.create(price=Decimal("100000.00"))
    hanoi = WarehouseFactory.create(code="HN-01", latitude=HANOI[0], longitude=HANOI[1])
    hcmc = WarehouseFactory.create(code="HCM-01", latitude=HCMC[0], longitude=HCMC[1])
    db_session.add_all([book, hanoi, hcmc])
    await db_session.flush()
    db_session.add_all(
        [
            WarehouseInventoryFactory.create(
                warehouse_id=hanoi.id, book_id=book.id, quantity=5
            ),
            WarehouseInventoryFactory.create(
                warehouse_id=hcmc.id, book_id=book.id, quantity=20
            ),
        ]
    )
    await db_session.commit()
    return Catalogue(book=book, hanoi=hanoi, hcmc=hcmc)
