"""
Cache strategies using Strategy Pattern.
Allows switching between different cache backends (Redis, In-Memory, Null).

The link service caches redirect targets here (cache-aside). Cache errors are
logged and treated as misses: the database stays the source of truth.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class CacheStrategy(ABC):
    """
    Abstract base class for cache strategies.

    All methods are async because cache operations involve I/O (network for Redis).
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Get value from cache.

        Returns:
            Cached value or None if not found
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        """
        Set value in cache with TTL (Time To Live).

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (default: 1 hour)

        Returns:
            True if successful, False otherwise
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete key from cache.

        Returns:
            True if deleted, False if key didn't exist
        """
        pass


class RedisCache(CacheStrategy):
    """
    Redis cache implementation.

    Shared by every API process, so a deactivation invalidates the redirect
    target for all of them at once.
    """

    def __init__(self, redis_client):
        """
        Args:
            redis_client: Redis client instance (redis.Redis)
        """
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis.get(key)
            return value.decode('utf-8') if value else None
        except Exception as e:
            logger.warning(f"Redis get error for {key}: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        try:
            return bool(self.redis.setex(key, max(int(ttl), 1), value))
        except Exception as e:
            logger.warning(f"Redis set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(key))
        except Exception as e:
            logger.warning(f"Redis delete error for {key}: {e}")
            return False


class InMemoryCache(CacheStrategy):
    """
    In-memory cache implementation using Python dict.

    Expired entries are dropped when read, and swept whenever the cache is
    full. If it is still full after the sweep, the oldest entries go first.
    Not shared between processes, so use it for development and tests.
    """

    def __init__(self, max_entries: int = 10000):
        self._cache: Dict[str, Tuple[str, float]] = {}
        self.max_entries = max(int(max_entries), 1)

    def size(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._cache[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        if key not in self._cache and len(self._cache) >= self.max_entries:
            self._evict()
        self._cache[key] = (value, time.monotonic() + ttl)
        return True

    def _evict(self) -> None:
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]

        # dicts keep insertion order
        while len(self._cache) >= self.max_entries:
            del self._cache[next(iter(self._cache))]

    async def delete(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            return True
        return False


class NullCache(CacheStrategy):
    """
    Null Object Pattern - cache that does nothing.
    Every read is a miss, so every redirect hits the database.
    """

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return True
