"""
Keyed store interface.

Rules, sessions, tokens, rate-limit windows and analytics records all live
behind this interface so the engine never depends on a storage technology.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, List, Optional, Tuple


class KeyedStore(ABC):
    """Async key/value store with per-key TTL, locks and list append."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict]:
        """Return the value for key, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: dict, ttl_seconds: Optional[float] = None) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove key; True if something was removed."""

    @abstractmethod
    async def set_if_absent(
        self, key: str, value: dict, ttl_seconds: Optional[float] = None
    ) -> bool:
        """Atomically store value only if key holds nothing; True on success."""

    @abstractmethod
    async def scan(self, prefix: str) -> List[str]:
        """List live keys starting with prefix."""

    @abstractmethod
    async def append(self, key: str, value: dict) -> None:
        """Append value to the list stored under key."""

    @abstractmethod
    async def read_list(self, key: str) -> List[dict]:
        """Return every value appended under key, oldest first."""

    @abstractmethod
    async def hit(
        self, key: str, now: datetime, window_seconds: float
    ) -> Tuple[int, datetime]:
        """
        Record one event in a sliding window.

        Args:
            key: Window key
            now: Instant of the event
            window_seconds: Width of the window

        Returns:
            (events inside the window including this one, oldest event instant)
        """

    @abstractmethod
    def lock(self, key: str) -> AsyncContextManager:
        """Mutual exclusion for everything done under key."""

    async def sweep(self) -> int:
        """Reclaim expired entries; returns how many were dropped."""
        return 0

    async def close(self) -> None:
        return None
