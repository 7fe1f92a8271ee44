"""
Tests for fraud screening and the negotiation feature flag.

These tests verify lowball, session-count and shared-IP signals, how the
engine acts on them, and how the feature flag gates new negotiations.
"""

import pytest
import asyncio
from hypothesis import given, settings, strategies as st

from haggle.clock import ManualClock
from haggle.config import EngineSettings, FraudConfig
from haggle.error_handling import (
    DuplicateOffer,
    NegotiationUnavailable,
    SuspiciousActivity,
    ValidationError,
)
from haggle.fraud import FraudDetector
from haggle.models import (
    Decision,
    FeatureFlag,
    FraudSeverity,
    OfferRequest,
    Segment,
    SegmentRule,
)
from haggle.storage import MemoryStore
from tests.factories import make_engine, make_rule


def offer(price, user_id="u-1", sku="PHONE-1", **kwargs) -> OfferRequest:
    return OfferRequest(sku=sku, user_id=user_id, offer_price=price, **kwargs)


def make_detector(**overrides):
    clock = ManualClock()
    return FraudDetector(MemoryStore(clock), FraudConfig(**overrides), clock=clock), clock


@given(
    base_price=st.floats(min_value=10, max_value=100000),
    fraction=st.floats(min_value=0.01, max_value=1.5),
)
@settings(max_examples=100)
def test_lowball_flag_below_half_of_base_price(base_price, fraction):
    """
    **Feature: price-negotiation, Property 14: Lowball detection**

    An offer is flagged as an extreme lowball exactly when it is below half
    the list price, and the flag is medium severity.
    """
    detector, _ = make_detector()
    offer_price = base_price * fraction

    flags = detector.offer_flags(offer_price, base_price)

    if offer_price < base_price * 0.5:
        assert [(f.flag, f.severity) for f in flags] == [("extreme_lowball", FraudSeverity.MEDIUM)]
    else:
        assert flags == []


def test_excessive_sessions_flagged_high_inside_window():
    detector, clock = make_detector(max_sessions_per_user=2, session_window_seconds=3600)

    async def run():
        results = [await detector.screen_new_session("u-1") for _ in range(3)]
        clock.advance(seconds=3601)
        results.append(await detector.screen_new_session("u-1"))
        return results

    results = asyncio.run(run())

    assert results[0] == results[1] == []
    assert [(f.flag, f.severity) for f in results[2]] == [("excessive_negotiations", FraudSeverity.HIGH)]
    assert results[3] == []


def test_many_users_from_one_ip_flagged_high():
    detector, clock = make_detector(max_accounts_per_ip=2, ip_window_seconds=600)

    async def run():
        flags = [await detector.screen_new_session(f"user-{i}", "10.0.0.1") for i in range(4)]
        same_user_again = await detector.screen_new_session("user-0", "10.0.0.1")
        other_ip = await detector.screen_new_session("user-9", "10.0.0.2")
        clock.advance(seconds=601)
        after_window = await detector.screen_new_session("user-5", "10.0.0.1")
        return flags, same_user_again, other_ip, after_window

    flags, same_user_again, other_ip, after_window = asyncio.run(run())

    assert flags[:3] == [[], [], []]
    assert [f.flag for f in flags[3]] == ["multi_account_ip"]
    assert flags[3][0].severity == FraudSeverity.HIGH
    assert [f.flag for f in same_user_again] == ["multi_account_ip"]
    assert other_ip == []
    assert after_window == []


def test_blocked_session_is_refused_and_counted():
    settings = EngineSettings(fraud=FraudConfig(max_sessions_per_user=1))
    engine = make_engine(settings=settings)

    async def run():
        await engine.rules.upsert(make_rule())
        await engine.rules.upsert(make_rule(sku="TABLET-1"))
        first = await engine.submit_offer(offer(30000))
        with pytest.raises(SuspiciousActivity) as exc_info:
            await engine.submit_offer(offer(30000, sku="TABLET-1"))
        # The open session is not screened again
        again = await engine.submit_offer(offer(31000))
        today = engine.clock.now().date()
        dashboard = await engine.analytics.dashboard(today, today)
        realtime = await engine.realtime()
        stored = await engine.sessions.get("TABLET-1", "u-1")
        return first, again, exc_info.value, dashboard, realtime, stored

    first, again, error, dashboard, realtime, stored = asyncio.run(run())

    assert error.code == "SUSPICIOUS_ACTIVITY"
    assert error.details["flags"] == ["excessive_negotiations"]
    assert again.session_id == first.session_id
    assert again.current_round == 2
    assert stored is None
    assert dashboard["blocked_attempts"] == 1
    assert realtime["recent_blocked"] == 1


def test_shared_ip_blocks_new_accounts():
    settings = EngineSettings(fraud=FraudConfig(max_accounts_per_ip=1))
    engine = make_engine(settings=settings)

    async def run():
        await engine.rules.upsert(make_rule())
        await engine.submit_offer(offer(30000, user_id="a", ip_address="10.0.0.1"))
        await engine.submit_offer(offer(30000, user_id="b", ip_address="10.0.0.1"))
        with pytest.raises(SuspiciousActivity):
            await engine.submit_offer(offer(30000, user_id="c", ip_address="10.0.0.1"))
        return await engine.submit_offer(offer(30000, user_id="d", ip_address="10.0.0.2"))

    result = asyncio.run(run())
    assert result.status == Decision.COUNTER


def test_lowball_flag_reaches_analytics():
    engine = make_engine()

    async def run():
        await engine.rules.upsert(make_rule(max_rounds=1))
        first = await engine.submit_offer(offer(20000))
        closed = await engine.submit_offer(offer(21000))
        session = await engine.get_session(first.session_id)
        today = engine.clock.now().date()
        rows = await engine.analytics.rollup(today, today, group_by=[])
        csv_text = await engine.analytics.export_csv(today, today)
        return first, closed, session, rows[0], csv_text

    first, closed, session, row, csv_text = asyncio.run(run())

    assert first.status == Decision.FINAL
    assert closed.status == Decision.REJECT
    assert [f.flag for f in session.fraud_flags] == ["extreme_lowball"]
    assert row.flagged_count == 1
    assert row.fraud_flags["extreme_lowball"] == 1
    assert row.fraud_flags["multi_account_ip"] == 0
    assert "flagged_count" in csv_text.splitlines()[0]


def test_repeated_offer_is_flagged_but_still_evaluated():
    engine = make_engine()

    async def run():
        await engine.rules.upsert(make_rule())
        first = await engine.submit_offer(offer(30000))
        second = await engine.submit_offer(offer(30000))
        return first, second, await engine.get_session(first.session_id)

    first, second, session = asyncio.run(run())

    assert (first.current_round, second.current_round) == (1, 2)
    assert [(f.flag, f.severity) for f in session.fraud_flags] == [("duplicate_offer", FraudSeverity.LOW)]


def test_repeated_offer_refused_when_configured():
    settings = EngineSettings(fraud=FraudConfig(reject_duplicate_offers=True))
    engine = make_engine(settings=settings)

    async def run():
        await engine.rules.upsert(make_rule())
        first = await engine.submit_offer(offer(30000))
        with pytest.raises(DuplicateOffer):
            await engine.submit_offer(offer(30000))
        different = await engine.submit_offer(offer(30500))
        return first, different, await engine.get_session(first.session_id)

    first, different, session = asyncio.run(run())

    assert different.current_round == 2
    assert [r.offer_price for r in session.history] == [30000, 30500]
    assert [f.flag for f in session.fraud_flags] == ["duplicate_offer"]


def test_disabled_feature_flag_blocks_new_negotiations_only():
    engine = make_engine()

    async def run():
        await engine.rules.upsert(make_rule())
        open_session = await engine.submit_offer(offer(30000, user_id="early"))
        await engine.feature_flags.put(FeatureFlag(enabled=False), updated_by="ops")
        with pytest.raises(NegotiationUnavailable):
            await engine.submit_offer(offer(30000, user_id="late"))
        continued = await engine.submit_offer(offer(31000, user_id="early"))
        return open_session, continued, await engine.feature_flags.get()

    open_session, continued, stored = asyncio.run(run())

    assert continued.session_id == open_session.session_id
    assert continued.current_round == 2
    assert stored.enabled is False
    assert stored.updated_by == "ops"


def test_feature_flag_targets_skus_and_segments():
    engine = make_engine(purchase_counts={"vip-user": 7})
    segment_rules = [
        SegmentRule(Segment.NEW, 5, 0, 0),
        SegmentRule(Segment.RETURNING, 10, 1, 4),
        SegmentRule(Segment.VIP, 15, 5, None),
    ]

    async def run():
        await engine.rules.upsert(make_rule(segment_rules=segment_rules))
        await engine.rules.upsert(make_rule(sku="TABLET-1"))
        await engine.feature_flags.put(FeatureFlag(target_segments=[Segment.VIP], target_skus=["PHONE-1"]))
        vip = await engine.submit_offer(offer(30000, user_id="vip-user"))
        with pytest.raises(NegotiationUnavailable):
            await engine.submit_offer(offer(30000, user_id="new-user"))
        with pytest.raises(NegotiationUnavailable):
            await engine.submit_offer(offer(30000, user_id="vip-user", sku="TABLET-1"))
        return vip

    assert asyncio.run(run()).status == Decision.COUNTER


@given(user_id=st.text(min_size=1, max_size=20), rollout=st.floats(min_value=0, max_value=100))
@settings(max_examples=100)
def test_rollout_bucket_is_stable(user_id, rollout):
    """
    **Feature: price-negotiation, Property 15: Stable rollout**

    A shopper's rollout bucket never changes, so the same shopper always gets
    the same answer for the same rollout percentage.
    """
    flag = FeatureFlag(rollout_pct=rollout)

    bucket = FeatureFlag.bucket(user_id)

    assert 0 <= bucket < 100
    assert bucket == FeatureFlag.bucket(user_id)
    assert flag.is_enabled_for(user_id, "PHONE-1", Segment.NEW) == (bucket < rollout)


def test_zero_rollout_closes_negotiation_to_everyone():
    flag = FeatureFlag(rollout_pct=0)
    full = FeatureFlag(rollout_pct=100)

    for user_id in ("a", "b", "c", "d"):
        assert not flag.is_enabled_for(user_id, "PHONE-1", Segment.NEW)
        assert full.is_enabled_for(user_id, "PHONE-1", Segment.NEW)


@pytest.mark.parametrize("rollout", [-1, 100.5])
def test_rollout_outside_percent_range_is_rejected(rollout):
    with pytest.raises(ValidationError):
        FeatureFlag(rollout_pct=rollout)


def test_feature_flag_round_trips_through_dict():
    flag = FeatureFlag(enabled=False, rollout_pct=25, target_segments=["vip"], target_skus=["PHONE-1"])

    restored = FeatureFlag.from_dict(flag.to_dict())

    assert restored == flag
    assert restored.target_segments == [Segment.VIP]
