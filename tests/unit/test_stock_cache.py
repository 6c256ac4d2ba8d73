"""Unit tests for the Redis stock summary cache."""

import uuid

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from services.store_service.services import stock_cache


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("redis is down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("redis is down")

    async def delete(self, *keys):
        raise RedisConnectionError("redis is down")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_summary_round_trip(fake_redis):
    book_id = uuid.uuid4()
    summary = {"book_id": str(book_id), "available": 7, "low_stock_warehouses": ["HN-01"]}

    assert await stock_cache.get_stock_summary(fake_redis, book_id) is None
    assert await stock_cache.set_stock_summary(fake_redis, book_id, summary) is True
    assert await stock_cache.get_stock_summary(fake_redis, book_id) == summary

    await stock_cache.invalidate(fake_redis, book_id)
    assert await stock_cache.get_stock_summary(fake_redis, book_id) is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_outage_reads_as_miss():
    book_id = uuid.uuid4()
    redis = BrokenRedis()

    assert await stock_cache.get_stock_summary(redis, book_id) is None
    assert await stock_cache.set_stock_summary(redis, book_id, {"available": 1}) is False
    await stock_cache.invalidate(redis, book_id)
