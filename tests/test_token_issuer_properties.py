"""
Property-based tests for discount tokens.

A token is bound to one session and one price and can be redeemed at most
once, however many callers race for it.
"""

import pytest
import asyncio
from datetime import timedelta
from hypothesis import given, settings, strategies as st

from haggle.clock import ManualClock
from haggle.error_handling import AlreadyRedeemed, TokenExpired, TokenInvalid
from haggle.models import NegotiationSession, Segment
from haggle.storage import MemoryStore
from haggle.tokens import TokenIssuer


def make_session(clock) -> NegotiationSession:
    now = clock.now()
    return NegotiationSession(
        session_id="s-1",
        sku="PHONE-1",
        user_id="u-1",
        segment=Segment.NEW,
        max_rounds=3,
        created_at=now,
        expires_at=now + timedelta(minutes=15),
        quantity=2,
    )


@given(callers=st.integers(min_value=1, max_value=20))
@settings(max_examples=50)
def test_concurrent_redemption_succeeds_once(callers):
    """
    **Feature: price-negotiation, Property 3: Single redemption**

    Of any number of concurrent redemptions of one token, exactly one
    succeeds and the rest see AlreadyRedeemed.
    """
    clock = ManualClock()
    issuer = TokenIssuer(MemoryStore(clock), clock=clock)

    async def run():
        token = await issuer.issue(make_session(clock), 38250)
        return await asyncio.gather(
            *[issuer.redeem(token.token) for _ in range(callers)],
            return_exceptions=True,
        )

    results = asyncio.run(run())

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(f, AlreadyRedeemed) for f in failures)


def test_token_binds_session_and_price():
    clock = ManualClock()
    issuer = TokenIssuer(MemoryStore(clock), clock=clock)

    async def run():
        token = await issuer.issue(make_session(clock), 38250)
        return token, await issuer.validate(token.token)

    token, validated = asyncio.run(run())

    assert len(token.token) == 32
    assert validated.price == 38250
    assert validated.session_id == "s-1"
    assert validated.sku == "PHONE-1"
    assert validated.quantity == 2
    assert validated.redeemed is False


def test_redeem_then_validate_reports_redeemed():
    clock = ManualClock()
    issuer = TokenIssuer(MemoryStore(clock), clock=clock)

    async def run():
        token = await issuer.issue(make_session(clock), 38250)
        redeemed = await issuer.redeem(token.token)
        with pytest.raises(AlreadyRedeemed):
            await issuer.validate(token.token)
        with pytest.raises(AlreadyRedeemed):
            await issuer.redeem(token.token)
        return redeemed

    redeemed = asyncio.run(run())
    assert redeemed.redeemed is True
    assert redeemed.redeemed_at is not None


def test_expired_token_cannot_be_redeemed():
    clock = ManualClock()
    issuer = TokenIssuer(MemoryStore(clock), clock=clock, ttl_seconds=3600)

    async def run():
        token = await issuer.issue(make_session(clock), 38250)
        clock.advance(seconds=3601)
        with pytest.raises(TokenExpired):
            await issuer.redeem(token.token)

    asyncio.run(run())


def test_unknown_token_is_invalid():
    issuer = TokenIssuer(MemoryStore(ManualClock()))
    with pytest.raises(TokenInvalid):
        asyncio.run(issuer.validate("nope"))


def test_token_lifetime_capped_at_one_day():
    issuer = TokenIssuer(MemoryStore(ManualClock()), ttl_seconds=7 * 24 * 3600)
    assert issuer.ttl_seconds == 24 * 3600
