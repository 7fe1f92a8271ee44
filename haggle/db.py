"""
Store connection and engine initialization.
"""

import logging
from typing import Optional

from haggle.config import EngineSettings, get_engine_settings
from haggle.error_handling import retry_with_backoff
from haggle.services import NegotiationEngine, build_engine
from haggle.storage import KeyedStore, MemoryStore, RedisStore

logger = logging.getLogger(__name__)

# Global store and engine
store: Optional[KeyedStore] = None
engine: Optional[NegotiationEngine] = None


async def init_store(settings: Optional[EngineSettings] = None) -> NegotiationEngine:
    """Initialize the keyed store and build the engine on top of it"""
    global store, engine

    settings = settings or get_engine_settings()
    backend = settings.storage.backend.lower()

    if backend == "redis":
        redis_store = RedisStore.from_url(
            settings.storage.redis_url,
            prefix=settings.storage.key_prefix,
            lock_timeout_seconds=settings.storage.lock_timeout_seconds,
        )
        try:
            await retry_with_backoff(redis_store.ping)
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await redis_store.close()
            raise
        store = redis_store
    elif backend == "memory":
        store = MemoryStore()
        logger.info("Using in-memory store")
    else:
        raise ValueError(f"Unknown storage backend: {settings.storage.backend}")

    engine = build_engine(settings, store)
    return engine


async def close_store():
    """Close the keyed store"""
    global store, engine

    if store:
        await store.close()
        logger.info("Store closed")
    store = None
    engine = None


def get_store() -> KeyedStore:
    """Get the keyed store"""
    if store is None:
        raise RuntimeError("Store not initialized")
    return store


def get_engine() -> NegotiationEngine:
    """Get the negotiation engine"""
    if engine is None:
        raise RuntimeError("Engine not initialized")
    return engine
