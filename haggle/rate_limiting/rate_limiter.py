"""
Rate limiter for offer submissions.

Blocks automated floor discovery by capping how many offers one identity
can submit for one SKU inside a sliding window.
"""

import logging
from datetime import timedelta

from haggle.clock import SystemClock
from haggle.error_handling import RateLimited
from haggle.storage import KeyedStore, compose_key


logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window limiter keyed by (identity kind, identity, SKU).

    Every attempt is recorded, including refused ones, so a client that
    keeps hammering stays blocked until it backs off for a full window.

    Attributes:
        store: Keyed store holding the windows
        max_offers: Offers allowed per window
        window_seconds: Width of the sliding window in seconds
    """

    def __init__(
        self,
        store: KeyedStore,
        max_offers: int = 10,
        window_seconds: int = 60,
        clock=None
    ):
        """
        Initialize rate limiter with configuration.

        Args:
            store: Keyed store holding the windows
            max_offers: Offers allowed per window (default: 10)
            window_seconds: Window width in seconds (default: 60)
            clock: Time source (default: SystemClock)
        """
        self.store = store
        self.max_offers = max_offers
        self.window_seconds = window_seconds
        self.clock = clock or SystemClock()

    @staticmethod
    def _key(kind: str, identity: str, sku: str) -> str:
        return "ratelimit:" + compose_key(kind, identity, sku)

    async def check(self, identity: str, sku: str, kind: str = "user") -> int:
        """
        Record an offer attempt and enforce the window limit.

        Args:
            identity: User id or device id
            sku: Product the offer is for
            kind: Namespace of the identity, "user" or "device"

        Returns:
            Offers still allowed in the current window

        Raises:
            RateLimited: If the attempt exceeds the limit
        """
        now = self.clock.now()
        count, oldest = await self.store.hit(self._key(kind, identity, sku), now, self.window_seconds)

        if count > self.max_offers:
            reopens_at = oldest + timedelta(seconds=self.window_seconds)
            retry_after = max(0.0, (reopens_at - now).total_seconds())
            logger.warning(
                f"Rate limit hit for {kind} {identity} on SKU {sku}: "
                f"{count} attempts in {self.window_seconds}s"
            )
            raise RateLimited(
                "Too many offers, please wait before trying again",
                {"retry_after_seconds": round(retry_after, 1)},
                retry_after=retry_after,
            )

        return self.max_offers - count
