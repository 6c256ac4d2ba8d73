"""Derived stock summaries cached in Redis.

The database stays the source of truth; a Redis outage reads as a cache miss
and writes are best effort.
"""

import asyncio
import json
import uuid
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from redis.exceptions import RedisError

logger = get_logger(__name__)
settings = get_settings()

STOCK_KEY_PREFIX = "bookstore:stock:"


def stock_key(book_id: uuid.UUID) -> str:
    return f"{STOCK_KEY_PREFIX}{book_id}"


async def get_stock_summary(redis, book_id: uuid.UUID) -> Optional[dict[str, Any]]:
    try:
        raw = await asyncio.wait_for(
            redis.get(stock_key(book_id)), timeout=settings.REDIS_TIMEOUT_SECONDS
        )
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        logger.warning("Stock cache read failed for %s: %s", book_id, e)
        return None
    if raw is None:
        return None
    return json.loads(raw)


async def set_stock_summary(redis, book_id: uuid.UUID, summary: dict[str, Any]) -> bool:
    """Last writer wins."""
    try:
        await asyncio.wait_for(
            redis.set(
                stock_key(book_id),
                json.dumps(summary, default=str),
                ex=settings.STOCK_CACHE_TTL_SECONDS,
            ),
            timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        logger.warning("Stock cache write failed for %s: %s", book_id, e)
        return False
    return True


async def invalidate(redis, book_id: uuid.UUID) -> None:
    try:
        await asyncio.wait_for(
            redis.delete(stock_key(book_id)), timeout=settings.REDIS_TIMEOUT_SECONDS
        )
    except (RedisError, OSError, asyncio.TimeoutError) as e:
        logger.warning("Stock cache invalidation failed for %s: %s", book_id, e)
