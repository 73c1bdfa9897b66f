# coding: utf-8
"""
Cache module - document store for all durable engine state.
"""

from src.cache.base import DocumentStore
from src.cache.redis_manager import RedisDocumentStore, get_document_store
from src.cache.memory_store import MemoryDocumentStore
from src.cache.cache_keys import StoreKeys

__all__ = [
    "DocumentStore",
    "RedisDocumentStore",
    "MemoryDocumentStore",
    "get_document_store",
    "StoreKeys",
]
