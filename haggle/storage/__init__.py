"""Keyed TTL stores backing rules, sessions, tokens and analytics."""

from .base import KeyedStore
from .keys import compose_key
from .memory_store import MemoryStore
from .redis_store import RedisStore

__all__ = ["KeyedStore", "MemoryStore", "RedisStore", "compose_key"]
