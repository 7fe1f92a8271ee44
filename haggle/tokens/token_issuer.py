"""
Discount token issuer.

A discount token is the only artifact checkout trusts: it binds an agreed
unit price to one SKU and one session, and it can be redeemed exactly once.
"""

import logging
import secrets
from datetime import timedelta
from typing import Optional

from haggle.clock import SystemClock
from haggle.error_handling import AlreadyRedeemed, TokenExpired, TokenInvalid
from haggle.models import DiscountToken, NegotiationSession
from haggle.storage import KeyedStore


logger = logging.getLogger(__name__)

TOKEN_PREFIX = "token:"
REDEEMED_PREFIX = "token-redeemed:"
MAX_TOKEN_TTL_SECONDS = 24 * 60 * 60


class TokenIssuer:
    """
    Mints, validates and redeems single-use discount tokens.

    Attributes:
        store: Keyed store holding tokens and redemption markers
        ttl_seconds: Token lifetime, capped at 24 hours
    """

    def __init__(self, store: KeyedStore, clock=None, ttl_seconds: int = MAX_TOKEN_TTL_SECONDS):
        self.store = store
        self.clock = clock or SystemClock()
        self.ttl_seconds = min(ttl_seconds, MAX_TOKEN_TTL_SECONDS)

    @staticmethod
    def _key(token: str) -> str:
        return f"{TOKEN_PREFIX}{token}"

    async def _load(self, token: str) -> Optional[DiscountToken]:
        data = await self.store.get(self._key(token))
        return DiscountToken.from_dict(data) if data is not None else None

    async def _store(self, record: DiscountToken) -> None:
        # Keep the record a little past expiry so late callers get TokenExpired
        ttl = (record.expires_at - self.clock.now()).total_seconds() + self.ttl_seconds
        await self.store.set(self._key(record.token), record.to_dict(), max(ttl, 1.0))

    async def issue(self, session: NegotiationSession, price: float) -> DiscountToken:
        """
        Mint a token for an accepted session.

        Args:
            session: Session that reached agreement
            price: Agreed unit price

        Returns:
            The new token
        """
        now = self.clock.now()
        record = DiscountToken(
            token=secrets.token_hex(16),
            sku=session.sku,
            session_id=session.session_id,
            user_id=session.user_id,
            price=price,
            quantity=session.quantity,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        await self._store(record)
        logger.info(f"Issued discount token for session {session.session_id} at price {price}")
        return record

    async def validate(self, token: str) -> DiscountToken:
        """
        Check that a token can still be redeemed.

        Raises:
            TokenInvalid: Unknown token
            AlreadyRedeemed: Token was used already
            TokenExpired: Token lifetime has passed
        """
        record = await self._load(token)
        if record is None:
            raise TokenInvalid("Discount token not recognised")
        if record.redeemed:
            raise AlreadyRedeemed("Discount token has already been redeemed",
                                  {"redeemed_at": record.redeemed_at.isoformat()
                                   if record.redeemed_at else None})
        if record.is_expired(self.clock.now()):
            raise TokenExpired("Discount token has expired",
                               {"expired_at": record.expires_at.isoformat()})
        return record

    async def redeem(self, token: str) -> DiscountToken:
        """
        Redeem a token exactly once.

        The redemption marker is claimed with set_if_absent before the record
        is touched, so of several concurrent calls exactly one succeeds.

        Returns:
            The redeemed token

        Raises:
            TokenInvalid: Unknown token
            AlreadyRedeemed: Token was used already
            TokenExpired: Token lifetime has passed
        """
        record = await self.validate(token)
        now = self.clock.now()

        claimed = await self.store.set_if_absent(
            f"{REDEEMED_PREFIX}{token}",
            {"redeemed_at": now.isoformat()},
            self.ttl_seconds * 2,
        )
        if not claimed:
            logger.warning(f"Rejected second redemption of token for session {record.session_id}")
            raise AlreadyRedeemed("Discount token has already been redeemed")

        record.redeemed = True
        record.redeemed_at = now
        await self._store(record)
        logger.info(f"Redeemed discount token for session {record.session_id}")
        return record
