"""
Tests for the analytics aggregator.

Rollups, dashboard totals, the realtime window and CSV export are all
computed from recorded outcomes.
"""

import csv
import io
import pytest
import asyncio
from datetime import timedelta
from hypothesis import given, settings, strategies as st

from haggle.analytics import AnalyticsAggregator, summarize
from haggle.clock import ManualClock
from haggle.error_handling import ValidationError
from haggle.models import AnalyticsRecord, Segment, SessionStatus
from haggle.storage import MemoryStore


def make_record(clock, sku="PHONE-1", segment=Segment.NEW, outcome=SessionStatus.ACCEPTED,
                rounds=2, discount_pct=10.0, revenue=40500.0, perks=None, bundle=False,
                closed_at=None):
    closed_at = closed_at or clock.now()
    accepted = outcome == SessionStatus.ACCEPTED
    return AnalyticsRecord(
        date=closed_at.date(),
        sku=sku,
        segment=segment,
        outcome=outcome,
        rounds=rounds,
        discount_pct=discount_pct if accepted else 0.0,
        time_to_decision_seconds=120.0,
        revenue=revenue if accepted else 0.0,
        margin_impact=-discount_pct if accepted else 0.0,
        closed_at=closed_at,
        discount_given=4500.0 if accepted else 0.0,
        perks_offered=perks or [],
        bundle_offered=bundle,
    )


def make_aggregator(clock):
    return AnalyticsAggregator(MemoryStore(clock), clock=clock)


@given(outcomes=st.lists(
    st.sampled_from([SessionStatus.ACCEPTED, SessionStatus.REJECTED, SessionStatus.EXPIRED]),
    min_size=1,
    max_size=30,
))
@settings(max_examples=100)
def test_summary_counts_add_up(outcomes):
    """
    **Feature: price-negotiation, Property 10: Rollup consistency**

    Outcome counts always add up to the total and conversion is the
    accepted share.
    """
    clock = ManualClock()
    records = [make_record(clock, outcome=o) for o in outcomes]

    row = summarize(records)

    accepted = outcomes.count(SessionStatus.ACCEPTED)
    assert row.accepted_count + row.rejected_count + row.expired_count == row.total_negotiations
    assert row.conversion_rate == pytest.approx(accepted / len(outcomes) * 100)
    assert row.total_revenue == pytest.approx(40500 * accepted)
    assert sum(row.round_distribution.values()) == len(outcomes)


def test_rollup_groups_by_date_and_sku():
    clock = ManualClock()
    aggregator = make_aggregator(clock)

    async def run():
        await aggregator.record_outcome(make_record(clock, sku="A"))
        await aggregator.record_outcome(make_record(clock, sku="A", outcome=SessionStatus.REJECTED))
        await aggregator.record_outcome(make_record(clock, sku="B"))
        clock.advance(days=1)
        await aggregator.record_outcome(make_record(clock, sku="A"))
        start = clock.now().date() - timedelta(days=1)
        return await aggregator.rollup(start, clock.now().date())

    rows = asyncio.run(run())

    assert [(r.group["date"], r.group["sku"], r.total_negotiations) for r in rows] == [
        ("2024-01-01", "A", 2),
        ("2024-01-01", "B", 1),
        ("2024-01-02", "A", 1),
    ]
    assert rows[0].conversion_rate == pytest.approx(50)


def test_rollup_by_segment_and_sku_filter():
    clock = ManualClock()
    aggregator = make_aggregator(clock)

    async def run():
        await aggregator.record_outcome(make_record(clock, segment=Segment.VIP))
        await aggregator.record_outcome(make_record(clock, segment=Segment.NEW, outcome=SessionStatus.EXPIRED))
        await aggregator.record_outcome(make_record(clock, sku="OTHER", segment=Segment.VIP))
        today = clock.now().date()
        return await aggregator.rollup(today, today, sku="PHONE-1", group_by=["segment"])

    rows = asyncio.run(run())

    assert [(r.group, r.total_negotiations) for r in rows] == [
        ({"segment": "new"}, 1),
        ({"segment": "vip"}, 1),
    ]


def test_rollup_rejects_unknown_grouping():
    clock = ManualClock()
    aggregator = make_aggregator(clock)
    today = clock.now().date()
    with pytest.raises(ValidationError):
        asyncio.run(aggregator.rollup(today, today, group_by=["region"]))
    with pytest.raises(ValidationError):
        asyncio.run(aggregator.rollup(today, today - timedelta(days=1)))


def test_perk_usage_and_segment_breakdown():
    clock = ManualClock()
    records = [
        make_record(clock, perks=["free_shipping"], bundle=True),
        make_record(clock, segment=Segment.VIP, outcome=SessionStatus.REJECTED,
                    perks=["free_shipping", "extended_warranty"]),
        make_record(clock, rounds=5),
    ]

    row = summarize(records)

    assert row.perk_usage == {"free_shipping": 2, "free_gift": 0, "extended_warranty": 1, "bundle": 1}
    assert row.segment_breakdown["new"]["conversion_rate"] == pytest.approx(100)
    assert row.segment_breakdown["vip"]["conversion_rate"] == pytest.approx(0)
    assert row.round_distribution == {"round1": 0, "round2": 2, "round3": 0, "round4_plus": 1}
    assert row.total_discount_given == 9000


def test_dashboard_conversion_lift():
    clock = ManualClock()
    aggregator = make_aggregator(clock)

    async def run():
        await aggregator.record_outcome(make_record(clock))
        await aggregator.record_outcome(make_record(clock, outcome=SessionStatus.REJECTED))
        today = clock.now().date()
        return await aggregator.dashboard(today, today, baseline_conversion_rate=20.0)

    dashboard = asyncio.run(run())

    assert dashboard["totals"]["conversion_rate"] == pytest.approx(50)
    assert dashboard["conversion_lift"] == pytest.approx(30)
    assert len(dashboard["rows"]) == 1


def test_realtime_uses_trailing_window():
    clock = ManualClock()
    aggregator = make_aggregator(clock)

    async def run():
        await aggregator.record_outcome(make_record(clock))
        await aggregator.record_round(clock.now(), 40.0)
        clock.advance(hours=25)
        await aggregator.record_outcome(make_record(clock))
        await aggregator.record_outcome(make_record(clock, outcome=SessionStatus.REJECTED))
        await aggregator.record_round(clock.now(), 10.0)
        await aggregator.record_round(clock.now(), 20.0)
        return await aggregator.realtime(active_sessions=3)

    view = asyncio.run(run())

    assert view["active_negotiations"] == 3
    assert view["recent_accepted"] == 1
    assert view["recent_closed"] == 2
    assert view["avg_response_time_ms"] == pytest.approx(15)


def test_export_csv_has_header_and_rows():
    clock = ManualClock()
    aggregator = make_aggregator(clock)

    async def run():
        await aggregator.record_outcome(make_record(clock, perks=["free_gift"]))
        await aggregator.record_outcome(make_record(clock, segment=Segment.VIP))
        today = clock.now().date()
        return await aggregator.export_csv(today, today)

    content = asyncio.run(run())
    rows = list(csv.DictReader(io.StringIO(content)))

    assert len(rows) == 2
    assert rows[0]["sku"] == "PHONE-1"
    assert {r["segment"] for r in rows} == {"new", "vip"}
    assert rows[0]["conversion_rate"] == "100.00"
    assert sum(int(r["free_gift_offered"]) for r in rows) == 1


def test_fraud_flags_and_blocked_attempts_are_reported():
    clock = ManualClock()
    aggregator = make_aggregator(clock)

    async def run():
        flagged = make_record(clock, outcome=SessionStatus.REJECTED)
        flagged.fraud_flags = ["extreme_lowball", "duplicate_offer"]
        await aggregator.record_outcome(flagged)
        await aggregator.record_outcome(make_record(clock))
        await aggregator.record_block(clock.now(), "PHONE-1", ["multi_account_ip"])
        await aggregator.record_block(clock.now(), "TABLET-1", ["excessive_negotiations"])
        today = clock.now().date()
        dashboard = await aggregator.dashboard(today, today, sku="PHONE-1")
        clock.advance(hours=25)
        return dashboard, await aggregator.realtime(active_sessions=0)

    dashboard, later = asyncio.run(run())

    totals = dashboard["totals"]
    assert totals["flagged_count"] == 1
    assert totals["fraud_flags"]["extreme_lowball"] == 1
    assert totals["fraud_flags"]["duplicate_offer"] == 1
    assert totals["fraud_flags"]["excessive_negotiations"] == 0
    assert dashboard["blocked_attempts"] == 1
    assert later["recent_blocked"] == 0
