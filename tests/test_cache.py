"""Tests for the Redis caching layer using an in-process fake client."""

import asyncio
import fnmatch

import httpx

from cache.decorators import cached_response, invalidate_api_cache
from cache.redis_cache import RedisCache, RedisGeocodeCache
from processing.geocoding import GeocodeNormalizer


class FakeRedis:
    """Implements the handful of commands RedisCache uses."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def get(self, key):
        return self.store.get(key)

    def scan_iter(self, match="*", count=None):
        return [key for key in list(self.store) if fnmatch.fnmatch(key, match)]

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    def info(self, section=None):
        return {"used_memory_human": "1K"}

    def dbsize(self):
        return len(self.store)


def test_api_response_round_trip_and_invalidation():
    client = FakeRedis()
    cache = RedisCache(client=client)

    assert cache.cache_api_response("get_total", {"limit": 5}, {"total": 3}, category="stats")
    assert cache.get_api_response("get_total", {"limit": 5}) == {"total": 3}
    assert cache.get_api_response("get_total", {"limit": 6}) is None
    assert list(client.ttls.values()) == [600]

    assert cache.invalidate_pattern("scamatlas:api:*") == 1
    assert cache.get_api_response("get_total", {"limit": 5}) is None


def test_geocode_results_are_shared_across_normalizers():
    redis_cache = RedisCache(client=FakeRedis())
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(
            200,
            json={
                "features": [
                    {
                        "geometry": {"coordinates": [100.5018, 13.7563]},
                        "properties": {
                            "feature_type": "place",
                            "name": "Bangkok",
                            "context": {"country": {"name": "Thailand"}},
                        },
                    }
                ]
            },
        )

    def make_normalizer():
        return GeocodeNormalizer(
            access_token="pk.test",
            cache=RedisGeocodeCache(redis_cache),
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )

    first = make_normalizer().resolve("Bangkok", "Thailand")
    second = make_normalizer().resolve("Bangkok", "Thailand")

    assert len(calls) == 1
    assert second.coordinates == first.coordinates == (13.7563, 100.5018)
    assert second.canonical_city == "Bangkok"


def test_disconnected_cache_degrades(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    cache = RedisCache()

    assert not cache.is_connected
    assert cache.get_api_response("x", {}) is None
    assert not cache.cache_api_response("x", {}, {"a": 1})
    assert cache.invalidate_pattern("*") == 0
    assert cache.get_stats()["status"] == "disconnected"


def test_stats():
    cache = RedisCache(client=FakeRedis())
    cache.cache_api_response("a", {}, {"x": 1})

    stats = cache.get_stats()

    assert stats["status"] == "connected"
    assert stats["total_keys"] == 1
    assert stats["keys_by_type"]["api"] == 1


def test_cached_response_decorator(fake_cache):
    calls = []

    @cached_response(category="stats")
    async def endpoint(limit: int = 10, service=None):
        calls.append(limit)
        return {"limit": limit}

    assert asyncio.run(endpoint(limit=3, service=object())) == {"limit": 3}
    assert asyncio.run(endpoint(limit=3, service=object())) == {"limit": 3}
    assert asyncio.run(endpoint(limit=4, service=object())) == {"limit": 4}
    assert calls == [3, 4]

    assert invalidate_api_cache() == 2
    asyncio.run(endpoint(limit=3, service=object()))
    assert calls == [3, 4, 3]
