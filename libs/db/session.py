from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from libs.db.config import AsyncSessionLocal, CheckoutSessionLocal


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_checkout_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Session dependency for the checkout transaction (SERIALIZABLE by default).
    """
    async with CheckoutSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
