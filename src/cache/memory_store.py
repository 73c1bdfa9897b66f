# coding: utf-8
"""
In-memory document store

Same contract as RedisDocumentStore. Documents are JSON round-tripped on
write so callers never share mutable state with the store.
"""
import json
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger


class MemoryDocumentStore:
    """TTL-aware dict store for tests and single-process runs."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._available = True

    async def initialize(self) -> bool:
        return True

    async def close(self):
        self._data.clear()

    @asynccontextmanager
    async def lifespan(self):
        yield self

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return False
        return True

    async def get(self, key: str, default: Any = None) -> Any:
        if not self._available or not self._alive(key):
            return default
        return json.loads(self._data[key][0])

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self._available:
            return False
        expires_at = self._clock() + ttl if ttl else None
        self._data[key] = (json.dumps(value, default=str), expires_at)
        logger.debug(f"Memory store SET: {key} (TTL={ttl}s)")
        return True

    async def delete(self, key: str) -> bool:
        if not self._available or not self._alive(key):
            return False
        del self._data[key]
        return True

    async def scan(self, prefix: str) -> List[str]:
        if not self._available:
            return []
        return sorted(k for k in list(self._data) if k.startswith(prefix) and self._alive(k))

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until expiry, None if missing or persistent."""
        if not self._alive(key):
            return None
        expires_at = self._data[key][1]
        return None if expires_at is None else expires_at - self._clock()

    def set_available(self, available: bool) -> None:
        """Simulate an outage: reads return defaults, writes return False."""
        self._available = available

    def is_available(self) -> bool:
        return self._available

    def get_stats(self) -> dict:
        return {"keys": len(self._data), "is_available": self._available}
