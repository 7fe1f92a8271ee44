"""
In-process keyed store with expiry-on-read.

Entries past their TTL are invisible to every read as soon as they expire;
sweep() reclaims their memory. Values are JSON round-tripped on the way in
and out so callers never share mutable state with the store.
"""

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Tuple

from haggle.clock import SystemClock
from .base import KeyedStore


logger = logging.getLogger(__name__)


class MemoryStore(KeyedStore):
    """
    Dictionary-backed store driven by an injectable clock.

    Attributes:
        clock: Time source used for TTL checks
    """

    def __init__(self, clock=None):
        self.clock = clock or SystemClock()
        self._data: Dict[str, Tuple[str, Optional[datetime]]] = {}
        self._lists: Dict[str, List[str]] = {}
        self._windows: Dict[str, Deque[datetime]] = {}
        self._window_ttl: Dict[str, datetime] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[datetime]:
        if ttl_seconds is None:
            return None
        return self.clock.now() + timedelta(seconds=ttl_seconds)

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and self.clock.now() >= expires_at:
            del self._data[key]
            return None
        return raw

    async def get(self, key: str) -> Optional[dict]:
        raw = self._live(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: dict, ttl_seconds: Optional[float] = None) -> None:
        self._data[key] = (json.dumps(value), self._expiry(ttl_seconds))

    async def delete(self, key: str) -> bool:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return existed

    async def set_if_absent(
        self, key: str, value: dict, ttl_seconds: Optional[float] = None
    ) -> bool:
        # No await between the check and the write, so this is atomic on the loop
        if self._live(key) is not None:
            return False
        self._data[key] = (json.dumps(value), self._expiry(ttl_seconds))
        return True

    async def scan(self, prefix: str) -> List[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._live(key) is not None]

    async def append(self, key: str, value: dict) -> None:
        self._lists.setdefault(key, []).append(json.dumps(value))

    async def read_list(self, key: str) -> List[dict]:
        return [json.loads(raw) for raw in self._lists.get(key, [])]

    async def hit(
        self, key: str, now: datetime, window_seconds: float
    ) -> Tuple[int, datetime]:
        window = self._windows.setdefault(key, deque())
        cutoff = now - timedelta(seconds=window_seconds)
        while window and window[0] <= cutoff:
            window.popleft()
        window.append(now)
        self._window_ttl[key] = now + timedelta(seconds=window_seconds)
        return len(window), window[0]

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def sweep(self) -> int:
        """Drop expired entries, idle rate-limit windows and unused locks."""
        now = self.clock.now()
        expired = [
            key for key, (_, expires_at) in self._data.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._data[key]

        idle_windows = [key for key, until in self._window_ttl.items() if now >= until]
        for key in idle_windows:
            self._windows.pop(key, None)
            del self._window_ttl[key]

        for key in [k for k, lock in self._locks.items() if not lock.locked()]:
            del self._locks[key]

        if expired or idle_windows:
            logger.info(f"Swept {len(expired)} expired keys and {len(idle_windows)} idle windows")
        return len(expired)
