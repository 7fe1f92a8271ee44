"""
Session manager - lifecycle and persistence of negotiation sessions.

One session exists per (SKU, user). Sessions expire lazily: any read after
expires_at moves an active session to expired. Stored sessions outlive their
expiry by a retention window so terminal outcomes can be replayed, then the
store drops them.
"""

import logging
import uuid
from datetime import timedelta
from typing import AsyncContextManager, List, Optional

from haggle.analytics import AnalyticsAggregator
from haggle.clock import SystemClock
from haggle.evaluation.justifications import justify
from haggle.models import (
    AnalyticsRecord,
    Decision,
    FraudFlag,
    NegotiationSession,
    OfferResult,
    Segment,
    SessionStatus,
    round_money,
)
from haggle.storage import KeyedStore, compose_key


logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
SESSION_ID_PREFIX = "session-id:"


def margin_impact(base_price: float, final_price: float, cost_price: Optional[float]) -> float:
    """
    Change in margin caused by the negotiated price, in percentage points.

    Without a known unit cost the discount itself is the best estimate.
    """
    if cost_price is None or final_price <= 0:
        return -((base_price - final_price) / base_price * 100)
    base_margin = (base_price - cost_price) / base_price * 100
    final_margin = (final_price - cost_price) / final_price * 100
    return final_margin - base_margin


def build_analytics_record(
    session: NegotiationSession,
    cost_price: Optional[float] = None
) -> AnalyticsRecord:
    """Convert a closed session into its analytics record."""
    discount_pct = 0.0
    discount_given = 0.0
    revenue = 0.0
    impact = 0.0

    if session.status == SessionStatus.ACCEPTED and session.final_price is not None:
        revenue = round_money(session.final_price * session.quantity)
        if session.base_price:
            discount_pct = (session.base_price - session.final_price) / session.base_price * 100
            discount_given = round_money(
                max(session.base_price - session.final_price, 0) * session.quantity
            )
            impact = margin_impact(session.base_price, session.final_price, cost_price)

    return AnalyticsRecord(
        date=session.closed_at.date(),
        sku=session.sku,
        segment=session.segment,
        outcome=session.status,
        rounds=session.current_round,
        discount_pct=discount_pct,
        time_to_decision_seconds=(session.closed_at - session.created_at).total_seconds(),
        revenue=revenue,
        margin_impact=impact,
        closed_at=session.closed_at,
        session_id=session.session_id,
        discount_given=discount_given,
        perks_offered=list(session.perks_offered),
        bundle_offered=session.bundle_offered,
        fraud_flags=[flag.flag for flag in session.fraud_flags],
    )


class SessionManager:
    """
    Owns negotiation sessions from creation until the store drops them.

    Attributes:
        store: Keyed store holding sessions
        analytics: Receives one record per terminal transition
        ttl_seconds: Negotiation window of a session
        retention_seconds: How long a session is kept after its window closes
    """

    def __init__(
        self,
        store: KeyedStore,
        analytics: AnalyticsAggregator,
        clock=None,
        ttl_seconds: int = 900,
        retention_seconds: int = 3600
    ):
        self.store = store
        self.analytics = analytics
        self.clock = clock or SystemClock()
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds

    @staticmethod
    def _key(sku: str, user_id: str) -> str:
        return SESSION_PREFIX + compose_key(sku, user_id)

    @staticmethod
    def _id_key(session_id: str) -> str:
        return SESSION_ID_PREFIX + compose_key(session_id)

    def lock(self, sku: str, user_id: str) -> AsyncContextManager:
        """Serialize everything done to the session for (sku, user_id)."""
        return self.store.lock(self._key(sku, user_id))

    async def get(self, sku: str, user_id: str) -> Optional[NegotiationSession]:
        data = await self.store.get(self._key(sku, user_id))
        return NegotiationSession.from_dict(data) if data is not None else None

    async def get_by_id(self, session_id: str) -> Optional[NegotiationSession]:
        """
        Look a session up by its id.

        Returns:
            The session, or None if the id is unknown or has been replaced
        """
        pointer = await self.store.get(self._id_key(session_id))
        if pointer is None:
            return None
        session = await self.get(pointer["sku"], pointer["user_id"])
        if session is None or session.session_id != session_id:
            return None
        return session

    async def save(self, session: NegotiationSession) -> None:
        now = self.clock.now()
        keep_until = session.expires_at + timedelta(seconds=self.retention_seconds)
        ttl = max((keep_until - now).total_seconds(), 1.0)

        await self.store.set(self._key(session.sku, session.user_id), session.to_dict(), ttl)
        await self.store.set(
            self._id_key(session.session_id),
            {"sku": session.sku, "user_id": session.user_id},
            ttl,
        )

    async def create(
        self,
        sku: str,
        user_id: str,
        segment: Segment,
        max_rounds: int,
        base_price: float,
        quantity: int = 1,
        language: str = "en",
        fraud_flags: Optional[List[FraudFlag]] = None,
        ip_address: Optional[str] = None
    ) -> NegotiationSession:
        now = self.clock.now()
        session = NegotiationSession(
            session_id=str(uuid.uuid4()),
            sku=sku,
            user_id=user_id,
            segment=segment,
            max_rounds=max_rounds,
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            quantity=quantity,
            language=language,
            base_price=base_price,
            fraud_flags=list(fraud_flags or []),
            ip_address=ip_address,
        )
        await self.save(session)
        logger.info(
            f"Created negotiation session {session.session_id} for SKU {sku} "
            f"(user {user_id}, segment {segment.value})"
        )
        return session

    def replaceable(self, session: Optional[NegotiationSession]) -> bool:
        """
        True if a new session should be started instead of reusing session.

        An active session is reused, and so is a terminal one still inside
        its window so its outcome can be replayed.
        """
        if session is None:
            return True
        return session.is_terminal and session.is_expired(self.clock.now())

    async def load_or_create(
        self,
        sku: str,
        user_id: str,
        segment: Segment,
        max_rounds: int,
        base_price: float,
        quantity: int = 1,
        language: str = "en"
    ) -> NegotiationSession:
        """
        Return the session for (sku, user_id), creating one if needed.

        An existing session is reused while it is active, and while a
        terminal session is still inside its window so its outcome can be
        replayed. A terminal session whose window has passed is replaced.
        Callers must hold lock(sku, user_id).
        """
        session = await self.get(sku, user_id)
        if not self.replaceable(session):
            return session
        return await self.create(sku, user_id, segment, max_rounds, base_price, quantity, language)

    async def close(
        self,
        session: NegotiationSession,
        status: SessionStatus,
        cost_price: Optional[float] = None
    ) -> AnalyticsRecord:
        """
        Move a session to a terminal state and report it to analytics.

        The session is not saved here; callers save once they have attached
        the response to replay.

        Returns:
            The analytics record written for the transition
        """
        session.transition(status, self.clock.now())
        record = build_analytics_record(session, cost_price)
        await self.analytics.record_outcome(record)
        logger.info(
            f"Session {session.session_id} closed as {session.status.value} "
            f"after {session.current_round} rounds"
        )
        return record

    async def expire_if_due(self, session: NegotiationSession) -> bool:
        """
        Expire an active session whose window has passed.

        Returns:
            True if the session was expired by this call
        """
        if session.is_terminal or not session.is_expired(self.clock.now()):
            return False

        await self.close(session, SessionStatus.EXPIRED)
        session.last_result = OfferResult(
            session_id=session.session_id,
            status=Decision.EXPIRED,
            current_round=session.current_round,
            max_rounds=session.max_rounds,
            expires_at=session.expires_at,
            justification=justify(Decision.EXPIRED, session.language),
        )
        await self.save(session)
        return True

    async def all_sessions(self, sku: Optional[str] = None) -> List[NegotiationSession]:
        prefix = SESSION_PREFIX + compose_key(sku) + ":" if sku is not None else SESSION_PREFIX
        sessions = []
        for key in await self.store.scan(prefix):
            data = await self.store.get(key)
            if data is not None:
                sessions.append(NegotiationSession.from_dict(data))
        return sessions

    async def has_active(self, sku: str) -> bool:
        """True if any shopper is still inside an open negotiation for sku."""
        now = self.clock.now()
        for session in await self.all_sessions(sku):
            if session.sku == sku and not session.is_terminal and not session.is_expired(now):
                return True
        return False

    async def count_active(self) -> int:
        now = self.clock.now()
        return sum(
            1 for session in await self.all_sessions()
            if not session.is_terminal and not session.is_expired(now)
        )

    async def sweep(self) -> int:
        """
        Expire overdue sessions, then reclaim store memory.

        Returns:
            Number of sessions expired by the sweep
        """
        expired = 0
        for session in await self.all_sessions():
            if session.is_terminal or not session.is_expired(self.clock.now()):
                continue
            async with self.lock(session.sku, session.user_id):
                # Re-read under the lock; an offer may have closed it meanwhile
                current = await self.get(session.sku, session.user_id)
                if current is not None and await self.expire_if_due(current):
                    expired += 1

        dropped = await self.store.sweep()
        if expired or dropped:
            logger.info(f"Sweep expired {expired} sessions and dropped {dropped} stale keys")
        return expired
