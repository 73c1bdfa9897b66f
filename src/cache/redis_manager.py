# coding: utf-8
"""
Redis document store

Async Redis client with connection pooling and graceful degradation: when
Redis is down every read returns the caller's default and every write
reports False, so core logic keeps running on default documents.
"""
import json
from typing import Any, List, Optional
from contextlib import asynccontextmanager

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from loguru import logger

from config.cache_config import CacheConfig
from src.core.exceptions import StoreUnavailableError


class RedisDocumentStore:
    """
    JSON document store on Redis

    Usage:
        >>> store = RedisDocumentStore()
        >>> await store.initialize()
        >>> await store.set("signal:BTCUSDT", {"direction": "LONG"}, ttl=86400)
        >>> doc = await store.get("signal:BTCUSDT")
        >>> await store.close()
    """

    def __init__(self, url: Optional[str] = None):
        self._url = url or CacheConfig.REDIS_URL
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_available = False
        self._stats = {
            "hits": 0,
            "misses": 0,
            "errors": 0,
            "sets": 0,
            "deletes": 0,
        }

    async def initialize(self) -> bool:
        """
        Initialize Redis connection pool

        Returns:
            True if Redis is available, False otherwise
        """
        if not CacheConfig.CACHE_ENABLED:
            logger.info("Redis store is disabled in configuration")
            return False

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=CacheConfig.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_connect_timeout=CacheConfig.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=CacheConfig.REDIS_SOCKET_TIMEOUT,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()

            self._is_available = True
            logger.info(
                f"Redis store initialized (url={self._url}, "
                f"max_connections={CacheConfig.REDIS_MAX_CONNECTIONS})"
            )
            return True

        except RedisConnectionError as e:
            logger.warning(f"Redis connection failed: {e}. Running on default documents.")
            self._is_available = False
            return False

        except Exception as e:
            logger.error(f"Unexpected error initializing Redis: {e}")
            self._is_available = False
            return False

    async def close(self):
        """Close Redis connections gracefully"""
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")

        if self._pool:
            try:
                await self._pool.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis pool: {e}")

        self._is_available = False

    @asynccontextmanager
    async def lifespan(self):
        """
        Context manager for store lifespan

        Usage:
            async with store.lifespan():
                await store.get("dual_portfolio_data")
        """
        await self.initialize()
        try:
            yield self
        finally:
            await self.close()

    def _key(self, key: str) -> str:
        if CacheConfig.CACHE_NAMESPACE:
            return f"{CacheConfig.CACHE_NAMESPACE}{CacheConfig.CACHE_KEY_SEPARATOR}{key}"
        return key

    def _strip(self, key: str) -> str:
        if CacheConfig.CACHE_NAMESPACE:
            prefix = f"{CacheConfig.CACHE_NAMESPACE}{CacheConfig.CACHE_KEY_SEPARATOR}"
            if key.startswith(prefix):
                return key[len(prefix):]
        return key

    def _on_error(self, op: str, key: str, error: Exception) -> None:
        self._stats["errors"] += 1
        logger.warning(f"Redis {op} error for key '{key}': {error}")
        if CacheConfig.CACHE_RAISE_ON_ERROR:
            raise StoreUnavailableError(f"{op} {key}: {error}") from error

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get document

        Args:
            key: Document key
            default: Returned when the key is missing or Redis is down

        Returns:
            Deserialized JSON document or default
        """
        if not self._is_available:
            return default

        try:
            value = await self._client.get(self._key(key))
        except RedisError as e:
            self._on_error("GET", key, e)
            return default

        if value is None:
            self._stats["misses"] += 1
            if CacheConfig.CACHE_LOG_MISSES:
                logger.debug(f"Store MISS: {key}")
            return default

        self._stats["hits"] += 1
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Store value for '{key}' is not JSON, returning raw string")
            return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store document

        Args:
            key: Document key
            value: JSON-serializable document
            ttl: Time-to-live in seconds (None = no expiry)

        Returns:
            True if written, False otherwise
        """
        if not self._is_available:
            return False

        try:
            serialized = json.dumps(value, ensure_ascii=False, default=str)
            if ttl:
                await self._client.setex(self._key(key), int(ttl), serialized)
            else:
                await self._client.set(self._key(key), serialized)
            self._stats["sets"] += 1
            logger.debug(f"Store SET: {key} (TTL={ttl}s)")
            return True

        except RedisError as e:
            self._on_error("SET", key, e)
            return False

        except (TypeError, ValueError) as e:
            self._stats["errors"] += 1
            logger.error(f"Document for '{key}' is not serializable: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """
        Delete document

        Returns:
            True if key was deleted, False otherwise
        """
        if not self._is_available:
            return False

        try:
            result = await self._client.delete(self._key(key))
            self._stats["deletes"] += 1
            return result > 0

        except RedisError as e:
            self._on_error("DELETE", key, e)
            return False

    async def scan(self, prefix: str) -> List[str]:
        """
        List keys starting with prefix

        Args:
            prefix: Key prefix (e.g. 'signal:')

        Returns:
            Matching keys without namespace
        """
        if not self._is_available:
            return []

        try:
            keys = []
            async for key in self._client.scan_iter(match=f"{self._key(prefix)}*"):
                keys.append(self._strip(key))
            return sorted(keys)

        except RedisError as e:
            self._on_error("SCAN", prefix, e)
            return []

    def get_stats(self) -> dict:
        """
        Get store statistics

        Returns:
            Dict with hits, misses, errors, etc.
        """
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total if total > 0 else 0

        return {
            **self._stats,
            "total_requests": total,
            "hit_rate": round(hit_rate, 2),
            "is_available": self._is_available,
        }

    def is_available(self) -> bool:
        """Check if Redis is available"""
        return self._is_available


# Process-wide store (constructed once at the edge, injected everywhere else)
_document_store = None


def get_document_store():
    """
    Get global document store instance (singleton)

    Returns:
        RedisDocumentStore, or MemoryDocumentStore when caching is disabled
    """
    global _document_store
    if _document_store is None:
        if CacheConfig.CACHE_ENABLED:
            _document_store = RedisDocumentStore()
        else:
            from src.cache.memory_store import MemoryDocumentStore
            _document_store = MemoryDocumentStore()
    return _document_store
