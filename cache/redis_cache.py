"""Redis caching layer for the ScamAtlas aggregator.

Provides caching for geocoding results and API responses.
Gracefully degrades when the Redis server is unreachable.
"""

import hashlib
import json
import logging
import os

import redis
import yaml
from dotenv import load_dotenv

from data_models.geocode import GeocodeResult

load_dotenv()

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis-based caching with TTL support.

    All operations return appropriate defaults when Redis is not connected.
    """

    def __init__(self, config_path: str = "configs/cache.yaml", client: redis.Redis | None = None):
        """Initialize Redis connection.

        Args:
            config_path: Path to cache configuration
            client: Preconfigured Redis client (skips connecting from REDIS_URL)
        """
        self.config = self._load_config(config_path)
        self.client = client
        self._connected = client is not None

        if client is not None:
            return

        redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=1,  # Don't block startup when Redis is down
                socket_timeout=1,
            )
            self.client.ping()
            self._connected = True
            logger.info("Redis connection established")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}. Caching disabled.")
            self.client = None
            self._connected = False

    def _load_config(self, config_path: str) -> dict:
        """Load cache configuration."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f)
        return {
            "ttl": {
                "geocode": 2592000,
                "api_response": {"default": 300, "stats": 600},
            },
            "prefixes": {
                "geocode": "scamatlas:geo:",
                "api": "scamatlas:api:",
            },
        }

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._connected and self.client is not None

    def _make_key(self, prefix: str, identifier: str) -> str:
        """Generate cache key with prefix."""
        return f"{prefix}{identifier}"

    def _hash_string(self, s: str) -> str:
        """Create hash of string for cache key."""
        return hashlib.sha256(s.encode()).hexdigest()[:16]

    def _get_ttl(self, category: str, subcategory: str | None = None) -> int:
        """Get TTL from config."""
        ttl_config = self.config.get("ttl", {}).get(category, {})
        if isinstance(ttl_config, dict):
            return ttl_config.get(subcategory, ttl_config.get("default", 3600))
        return ttl_config if isinstance(ttl_config, int) else 3600

    # Geocode caching
    def cache_geocode(self, query_key: str, result: dict, ttl: int | None = None) -> bool:
        """Cache a geocoding result.

        Args:
            query_key: Normalized geocoder query
            result: Serialized GeocodeResult
            ttl: Time-to-live in seconds

        Returns:
            True if cached successfully
        """
        if not self.is_connected:
            return False

        try:
            key = self._make_key(self.config["prefixes"]["geocode"], self._hash_string(query_key))
            self.client.setex(key, ttl or self._get_ttl("geocode"), json.dumps(result))
            return True
        except redis.RedisError as e:
            logger.error(f"Geocode cache write error: {e}")
            return False

    def get_geocode(self, query_key: str) -> dict | None:
        """Get a cached geocoding result.

        Args:
            query_key: Normalized geocoder query

        Returns:
            Serialized GeocodeResult or None
        """
        if not self.is_connected:
            return None

        try:
            key = self._make_key(self.config["prefixes"]["geocode"], self._hash_string(query_key))
            data = self.client.get(key)
            return json.loads(data) if data else None
        except redis.RedisError as e:
            logger.error(f"Geocode cache read error: {e}")
            return None

    # API Response Caching
    def cache_api_response(
        self,
        endpoint: str,
        params: dict,
        response: dict,
        category: str = "default",
        ttl: int | None = None,
    ) -> bool:
        """Cache an API response.

        Args:
            endpoint: API endpoint name
            params: Request parameters
            response: Response data
            category: Response category (reports, stats)
            ttl: Time-to-live in seconds

        Returns:
            True if cached successfully
        """
        if not self.is_connected:
            return False

        try:
            param_str = json.dumps(params, sort_keys=True)
            identifier = self._hash_string(f"{endpoint}:{param_str}")
            key = self._make_key(self.config["prefixes"]["api"], identifier)
            ttl = ttl or self._get_ttl("api_response", category)

            self.client.setex(key, ttl, json.dumps(response, default=str))
            return True
        except redis.RedisError as e:
            logger.error(f"API cache write error: {e}")
            return False

    def get_api_response(self, endpoint: str, params: dict) -> dict | None:
        """Get cached API response.

        Args:
            endpoint: API endpoint name
            params: Request parameters

        Returns:
            Cached response or None
        """
        if not self.is_connected:
            return None

        try:
            param_str = json.dumps(params, sort_keys=True)
            identifier = self._hash_string(f"{endpoint}:{param_str}")
            key = self._make_key(self.config["prefixes"]["api"], identifier)

            data = self.client.get(key)
            return json.loads(data) if data else None
        except redis.RedisError as e:
            logger.error(f"API cache read error: {e}")
            return None

    # Cache Management
    def invalidate_pattern(self, pattern: str) -> int:
        """Invalidate all keys matching pattern.

        Args:
            pattern: Key pattern (e.g., "scamatlas:api:*")

        Returns:
            Number of keys deleted
        """
        if not self.is_connected:
            return 0

        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                return self.client.delete(*keys)
            return 0
        except redis.RedisError as e:
            logger.error(f"Cache invalidation error: {e}")
            return 0

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dict with cache stats
        """
        if not self.is_connected:
            return {"status": "disconnected", "message": "Redis not available"}

        try:
            info = self.client.info("memory")
            prefix_counts = {}
            for name, prefix in self.config.get("prefixes", {}).items():
                prefix_counts[name] = len(list(self.client.scan_iter(match=f"{prefix}*", count=1000)))

            return {
                "status": "connected",
                "used_memory": info.get("used_memory_human", "unknown"),
                "total_keys": self.client.dbsize(),
                "keys_by_type": prefix_counts,
            }
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}


class RedisGeocodeCache:
    """Geocode cache backed by Redis, for sharing results across processes."""

    def __init__(self, cache: RedisCache):
        self.cache = cache

    def get(self, key: str) -> GeocodeResult | None:
        data = self.cache.get_geocode(key)
        return GeocodeResult.from_dict(data) if data else None

    def put(self, key: str, result: GeocodeResult) -> None:
        self.cache.cache_geocode(key, result.to_dict())


# Singleton instance
_cache: RedisCache | None = None


def get_cache() -> RedisCache:
    """Get the singleton cache instance."""
    global _cache
    if _cache is None:
        _cache = RedisCache()
    return _cache
