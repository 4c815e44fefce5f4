"""Caching decorators for API endpoints."""

import functools
import json
import logging
from typing import Callable

from cache.redis_cache import get_cache

logger = logging.getLogger(__name__)


def cached_response(ttl: int | None = None, category: str = "default"):
    """Decorator for caching read-only API responses in Redis.

    Only JSON-serializable keyword arguments take part in the cache key, so
    injected services and sessions are ignored.

    Args:
        ttl: Cache TTL in seconds (category TTL from config if None)
        category: Response category for TTL lookup
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            cache = get_cache()
            endpoint = func.__name__

            params = {}
            for k, v in kwargs.items():
                try:
                    json.dumps(v)
                    params[k] = v
                except (TypeError, ValueError):
                    continue

            cached = cache.get_api_response(endpoint, params)
            if cached is not None:
                logger.debug(f"Cache hit for {endpoint}")
                return cached

            result = await func(*args, **kwargs)

            if hasattr(result, "model_dump"):
                cache_data = result.model_dump()
            elif isinstance(result, list):
                cache_data = [r.model_dump() if hasattr(r, "model_dump") else r for r in result]
            elif isinstance(result, dict):
                cache_data = result
            else:
                return result

            cache.cache_api_response(endpoint, params, cache_data, category, ttl)
            return result

        return wrapper
    return decorator


def invalidate_api_cache() -> int:
    """Drop every cached API response, e.g. after an enrichment run.

    Returns:
        Number of keys deleted
    """
    cache = get_cache()
    return cache.invalidate_pattern(f"{cache.config['prefixes']['api']}*")
