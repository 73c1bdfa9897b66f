# coding: utf-8
"""
Document store contract

All durable state of the engine is a handful of JSON documents accessed
via whole-document read-modify-write.
"""
from typing import Any, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class DocumentStore(Protocol):
    """get / set / delete / scan over JSON documents with optional TTL."""

    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def scan(self, prefix: str) -> List[str]:
        ...

    def is_available(self) -> bool:
        ...
