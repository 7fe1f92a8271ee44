"""
Redis-backed keyed store.

Shares state between API workers. TTLs use native key expiry, locks use
redis-py's distributed lock, and the sliding window is a sorted set updated
in a MULTI/EXEC pipeline.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import uuid4

import redis.asyncio as redis

from .base import KeyedStore


logger = logging.getLogger(__name__)


class RedisStore(KeyedStore):
    """
    KeyedStore over a redis.asyncio client.

    Attributes:
        client: Redis client created with decode_responses=True
        prefix: Namespace prepended to every key
        lock_timeout_seconds: Lease and wait limit for per-key locks
    """

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "haggle",
        lock_timeout_seconds: float = 10.0
    ):
        self.client = client
        self.prefix = prefix
        self.lock_timeout_seconds = lock_timeout_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'RedisStore':
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _k(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    @staticmethod
    def _px(ttl_seconds: Optional[float]) -> Optional[int]:
        if ttl_seconds is None:
            return None
        return max(1, int(ttl_seconds * 1000))

    async def ping(self) -> bool:
        return await self.client.ping()

    async def get(self, key: str) -> Optional[dict]:
        raw = await self.client.get(self._k(key))
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: dict, ttl_seconds: Optional[float] = None) -> None:
        await self.client.set(self._k(key), json.dumps(value), px=self._px(ttl_seconds))

    async def delete(self, key: str) -> bool:
        return await self.client.delete(self._k(key)) > 0

    async def set_if_absent(
        self, key: str, value: dict, ttl_seconds: Optional[float] = None
    ) -> bool:
        result = await self.client.set(
            self._k(key), json.dumps(value), px=self._px(ttl_seconds), nx=True
        )
        return bool(result)

    async def scan(self, prefix: str) -> List[str]:
        strip = len(self.prefix) + 1
        return [
            key[strip:]
            async for key in self.client.scan_iter(match=f"{self._k(prefix)}*")
        ]

    async def append(self, key: str, value: dict) -> None:
        await self.client.rpush(self._k(key), json.dumps(value))

    async def read_list(self, key: str) -> List[dict]:
        return [json.loads(raw) for raw in await self.client.lrange(self._k(key), 0, -1)]

    async def hit(
        self, key: str, now: datetime, window_seconds: float
    ) -> Tuple[int, datetime]:
        full_key = self._k(key)
        score = now.timestamp()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(full_key, 0, score - window_seconds)
            pipe.zadd(full_key, {f"{score}:{uuid4().hex}": score})
            pipe.zcard(full_key)
            pipe.zrange(full_key, 0, 0, withscores=True)
            pipe.expire(full_key, max(1, int(window_seconds) + 1))
            _, _, count, oldest, _ = await pipe.execute()
        oldest_at = datetime.fromtimestamp(oldest[0][1], tz=timezone.utc) if oldest else now
        return count, oldest_at

    def lock(self, key: str):
        return self.client.lock(
            self._k(f"lock:{key}"),
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_timeout_seconds,
        )

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection closed")
