"""ARQ (Async Redis Queue) configuration utilities.

Parses the Redis connection settings from the application config into
ARQ-compatible RedisSettings and opens the shared ArqRedis pool used both
for the job queue and as the cache key store.
"""

import math
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from libs.common.config import get_settings


def get_redis_settings() -> RedisSettings:
    """Parse REDIS_URL from application settings into ARQ RedisSettings."""
    settings = get_settings()
    parsed = urlparse(settings.REDIS_URL)

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_timeout=math.ceil(settings.REDIS_TIMEOUT_SECONDS),
    )


async def create_redis_pool() -> ArqRedis:
    """Open an ArqRedis pool from the configured settings."""
    return await create_pool(get_redis_settings())
