"""
Unit Tests - Order Cache
"""
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.serving import cache
from storefront.serving.cache import CacheManager


class InMemoryRedis:
    """Minimal async stand-in for the commands the cache helpers use"""

    def __init__(self, fail: bool = False):
        self.store = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value

    async def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def redis_client():
    client = InMemoryRedis()
    cache.set_redis(client)
    yield client
    cache.set_redis(None)


@pytest.fixture
def broken_redis():
    client = InMemoryRedis(fail=True)
    cache.set_redis(client)
    yield client
    cache.set_redis(None)


class TestCacheManager:
    """Tests for CacheManager"""

    async def test_uninitialized_cache_misses(self):
        """Test the cache is a no-op without Redis"""
        manager = CacheManager("orders")

        assert await manager.get("GP202501150001") is None
        assert await manager.set("GP202501150001", {"status": "pending"}) is False

    async def test_get_or_set_stores_value(self, redis_client):
        """Test values are computed once and namespaced"""
        manager = CacheManager("orders", default_ttl=60)
        calls = []

        async def load():
            calls.append(1)
            return {"order_number": "GP202501150001"}

        first = await manager.get_or_set("GP202501150001", load)
        second = await manager.get_or_set("GP202501150001", load)

        assert first == second == {"order_number": "GP202501150001"}
        assert len(calls) == 1
        assert json.loads(redis_client.store["orders:GP202501150001"]) == first

    async def test_delete(self, redis_client):
        manager = CacheManager("orders")
        await manager.set("GP202501150001", {"status": "pending"})

        assert await manager.delete("GP202501150001") is True
        assert await manager.get("GP202501150001") is None

    async def test_redis_errors_fall_through(self, broken_redis):
        """Test a failing Redis degrades to the loader"""
        manager = CacheManager("orders")

        async def load():
            return {"status": "pending"}

        assert await manager.get_or_set("GP202501150001", load) == {"status": "pending"}
        assert await manager.delete("GP202501150001") is False
