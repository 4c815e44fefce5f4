"""Caching module for the ScamAtlas aggregator."""

from cache.redis_cache import RedisCache, RedisGeocodeCache, get_cache

__all__ = ["RedisCache", "RedisGeocodeCache", "get_cache"]
