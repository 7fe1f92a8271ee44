"""
Fraud detector for negotiation traffic.

Screens shoppers when they open a session and offers as they arrive. Each
signal becomes a FraudFlag with a severity; high-severity flags stop a new
negotiation from starting, the others are carried on the session into
analytics.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from haggle.clock import SystemClock
from haggle.config import FraudConfig
from haggle.models import FraudFlag, FraudSeverity, NegotiationSession
from haggle.storage import KeyedStore, compose_key


logger = logging.getLogger(__name__)

EXTREME_LOWBALL = "extreme_lowball"
EXCESSIVE_NEGOTIATIONS = "excessive_negotiations"
MULTI_ACCOUNT_IP = "multi_account_ip"
DUPLICATE_OFFER = "duplicate_offer"

SESSIONS_PREFIX = "fraud-sessions:"
IP_PREFIX = "fraud-ip:"


class FraudDetector:
    """
    Raises fraud flags for shoppers and offers.

    Attributes:
        store: Keyed store holding session counters and IP records
        config: Detection thresholds
    """

    def __init__(self, store: KeyedStore, config: Optional[FraudConfig] = None, clock=None):
        self.store = store
        self.config = config or FraudConfig()
        self.clock = clock or SystemClock()

    def _flag(self, name: str, severity: FraudSeverity) -> FraudFlag:
        return FraudFlag(flag=name, severity=severity, timestamp=self.clock.now())

    def offer_flags(self, offer_price: float, base_price: float) -> List[FraudFlag]:
        """
        Flags raised by a single offer.

        Args:
            offer_price: Price the shopper offered
            base_price: List price of the SKU

        Returns:
            An extreme_lowball flag when the offer sits below the lowball ratio
        """
        if offer_price < base_price * self.config.lowball_ratio:
            return [self._flag(EXTREME_LOWBALL, FraudSeverity.MEDIUM)]
        return []

    def duplicate_flag(self, session: NegotiationSession, offer_price: float) -> Optional[FraudFlag]:
        """A duplicate_offer flag if the session already saw this offer."""
        if session.has_offered(offer_price):
            return self._flag(DUPLICATE_OFFER, FraudSeverity.LOW)
        return None

    async def screen_new_session(self, user_id: str, ip_address: Optional[str] = None) -> List[FraudFlag]:
        """
        Record a session start and flag abusive patterns.

        Counts the sessions a user opened inside the session window, and the
        other users seen from the same IP address inside the IP window.

        Args:
            user_id: Shopper opening the session
            ip_address: Client address, when known

        Returns:
            Flags raised; high-severity ones should block the session
        """
        now = self.clock.now()
        flags = []

        count, _ = await self.store.hit(
            SESSIONS_PREFIX + compose_key(user_id), now, self.config.session_window_seconds
        )
        if count > self.config.max_sessions_per_user:
            logger.warning(f"User {user_id} opened {count} negotiations inside the session window")
            flags.append(self._flag(EXCESSIVE_NEGOTIATIONS, FraudSeverity.HIGH))

        if ip_address:
            others = await self._record_ip(ip_address, user_id, now)
            if others > self.config.max_accounts_per_ip:
                logger.warning(f"IP {ip_address} used by {others} other users inside the IP window")
                flags.append(self._flag(MULTI_ACCOUNT_IP, FraudSeverity.HIGH))

        return flags

    async def _record_ip(self, ip_address: str, user_id: str, now: datetime) -> int:
        """Remember user_id on ip_address; returns how many other users it has seen."""
        key = IP_PREFIX + compose_key(ip_address)
        since = now - timedelta(seconds=self.config.ip_window_seconds)

        async with self.store.lock(key):
            record = await self.store.get(key) or {"users": {}}
            users = {
                user: seen for user, seen in record["users"].items()
                if datetime.fromisoformat(seen) >= since
            }
            users[user_id] = now.isoformat()
            await self.store.set(key, {"users": users}, self.config.ip_window_seconds)

        return len(users) - 1
