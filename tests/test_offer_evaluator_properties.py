"""
Property-based tests for the offer evaluator.

These tests verify the pricing guardrails hold for any rule, segment and
sequence of offers.
"""

import pytest
from dataclasses import replace
from datetime import timedelta
from hypothesis import given, settings, strategies as st

from haggle.clock import ManualClock
from haggle.config import ConcessionConfig
from haggle.evaluation import (
    ceil_to_step,
    classify_segment,
    effective_max_discount_pct,
    evaluate,
    floor_price,
)
from haggle.models import (
    Decision,
    NegotiationRule,
    NegotiationSession,
    Round,
    Segment,
    SegmentRule,
    price_after_discount,
)
from tests.factories import make_rule


CONFIG = ConcessionConfig()


@st.composite
def rules(draw, clearance=None):
    base_price = draw(st.integers(min_value=100, max_value=200000))
    max_pct = draw(st.floats(min_value=0, max_value=90, allow_nan=False))
    fraction = draw(st.floats(min_value=0.1, max_value=1.0))
    min_price = round(price_after_discount(base_price, max_pct) * fraction, 2)

    caps = draw(st.lists(st.floats(min_value=0, max_value=100, allow_nan=False), min_size=3, max_size=3))
    segment_rules = draw(st.one_of(st.just([]), st.just([
        SegmentRule(Segment.NEW, caps[0], 0, 0),
        SegmentRule(Segment.RETURNING, caps[1], 1, 4),
        SegmentRule(Segment.VIP, caps[2], 5, None),
    ])))

    if clearance is None:
        clearance_flag = draw(st.booleans())
        stock_level = draw(st.integers(min_value=1, max_value=500))
    elif clearance:
        clearance_flag = True
        stock_level = draw(st.integers(min_value=1, max_value=500))
    else:
        clearance_flag = False
        stock_level = draw(st.integers(min_value=1, max_value=CONFIG.overstock_threshold))

    return NegotiationRule(
        sku="SKU-1",
        base_price=base_price,
        min_price=min_price,
        max_discount_pct=max_pct,
        max_rounds=draw(st.integers(min_value=1, max_value=5)),
        clearance_flag=clearance_flag,
        stock_level=stock_level,
        segment_rules=segment_rules,
    )


segments = st.sampled_from(list(Segment))


def new_session(rule: NegotiationRule, segment: Segment = Segment.NEW, language: str = "en") -> NegotiationSession:
    now = ManualClock().now()
    return NegotiationSession(
        session_id="s-1",
        sku=rule.sku,
        user_id="u-1",
        segment=segment,
        max_rounds=rule.max_rounds,
        created_at=now,
        expires_at=now + timedelta(minutes=15),
        language=language,
        base_price=rule.base_price,
    )


def play(rule, session, offer, segment):
    """Evaluate the next round the way the engine does and record it."""
    round_number = session.current_round + 1
    evaluation = evaluate(rule, replace(session, current_round=round_number), offer, segment, CONFIG)
    session.record_round(Round(
        round_number, offer, evaluation.decision, evaluation.justification,
        ManualClock().now(), counter_price=evaluation.counter_price,
    ))
    return evaluation


@given(rule=rules(), segment=segments)
@settings(max_examples=100)
def test_floor_within_bounds(rule, segment):
    """
    **Feature: price-negotiation, Property 1: Floor within bounds**

    For all valid rules, min_price <= floor <= base_price.
    """
    floor = floor_price(rule, effective_max_discount_pct(rule, segment, CONFIG))
    assert rule.min_price <= floor <= rule.base_price


@given(rule=rules(), segment=segments, markup=st.floats(min_value=0, max_value=0.5))
@settings(max_examples=100)
def test_offer_at_or_above_floor_is_accepted_exactly(rule, segment, markup):
    """
    **Feature: price-negotiation, Property 2: Accept at offer**

    Any offer at or above the floor is accepted at exactly that price.
    """
    floor = floor_price(rule, effective_max_discount_pct(rule, segment, CONFIG))
    offer = floor * (1 + markup)

    evaluation = evaluate(rule, replace(new_session(rule, segment), current_round=1), offer, segment, CONFIG)

    assert evaluation.decision == Decision.ACCEPT
    assert evaluation.counter_price is None
    assert evaluation.floor == floor


@given(rule=rules(), segment=segments, offers=st.lists(st.floats(min_value=0.01, max_value=1.0), min_size=6, max_size=6))
@settings(max_examples=100)
def test_counters_monotonic_and_above_floor(rule, segment, offers):
    """
    **Feature: price-negotiation, Property 4: Monotonic concessions**

    Counter prices across a session never increase and never go below
    the floor; the session ends after at most max_rounds + 1 offers.
    """
    session = new_session(rule, segment)
    floor = floor_price(rule, effective_max_discount_pct(rule, segment, CONFIG))
    counters = []

    for share in offers:
        evaluation = play(rule, session, floor * share * 0.999, segment)
        if evaluation.counter_price is not None:
            counters.append(evaluation.counter_price)
        if evaluation.decision == Decision.REJECT:
            break
        assert session.current_round <= session.max_rounds

    assert session.history[-1].decision == Decision.REJECT
    assert session.current_round == rule.max_rounds + 1
    assert all(c >= floor for c in counters)
    assert all(later <= earlier for earlier, later in zip(counters, counters[1:]))
    assert counters[-1] == floor


@given(rule=rules(clearance=False), segment=segments)
@settings(max_examples=100)
def test_segment_cap_respected_without_clearance(rule, segment):
    """
    **Feature: price-negotiation, Property 5: Segment caps**

    Without clearance or overstock, no shopper is offered more than the
    discount their segment allows.
    """
    effective = effective_max_discount_pct(rule, segment, CONFIG)
    segment_rule = rule.segment_rule_for(segment)
    cap = segment_rule.max_discount_pct if segment_rule else rule.max_discount_pct

    assert effective <= min(cap, rule.max_discount_pct)
    assert floor_price(rule, effective) >= price_after_discount(rule.base_price, cap)


@given(rule=rules(clearance=True), segment=segments)
@settings(max_examples=100)
def test_rule_maximum_respected_with_clearance(rule, segment):
    effective = effective_max_discount_pct(rule, segment, CONFIG)

    assert effective <= rule.max_discount_pct
    assert floor_price(rule, effective) >= price_after_discount(rule.base_price, rule.max_discount_pct)


def test_concession_schedule_for_reference_rule():
    rule = make_rule()
    session = new_session(rule)

    first = play(rule, session, 30000, Segment.NEW)
    second = play(rule, session, 30000, Segment.NEW)
    third = play(rule, session, 30000, Segment.NEW)
    fourth = play(rule, session, 30000, Segment.NEW)

    assert (first.decision, first.counter_price) == (Decision.COUNTER, 41625)
    assert (second.decision, second.counter_price) == (Decision.COUNTER, 40613)
    assert (third.decision, third.counter_price) == (Decision.FINAL, 38250)
    assert fourth.decision == Decision.REJECT

    # Step sizes shrink: 3375, then 1012
    assert 45000 - 41625 > 41625 - 40613


def test_final_round_offers_perks_and_bundles():
    rule = make_rule(
        max_rounds=1,
        bundle_pairs=[
            {"main_sku": "PHONE-1", "bundle_sku": "CASE-1", "bundle_price": 2500,
             "bundle_description": {"en": "Phone case", "rw": "Agasanduku"}},
            {"main_sku": "TABLET-1", "bundle_sku": "PEN-1", "bundle_price": 900},
        ],
        fallback_perks={"extended_warranty": {"enabled": True, "months": 24}},
    )

    evaluation = play(rule, new_session(rule, language="rw"), 30000, Segment.NEW)

    assert evaluation.decision == Decision.FINAL
    assert [p.type for p in evaluation.alt_perks] == ["free_shipping", "extended_warranty"]
    assert evaluation.alt_perks[1].months == 24
    assert [(b.bundle_sku, b.description) for b in evaluation.bundle_suggestions] == [("CASE-1", "Agasanduku")]


def test_free_shipping_threshold_applies_to_counter_price():
    rule = make_rule(max_rounds=1, fallback_perks={"free_shipping": {"enabled": True, "threshold": 40000}})

    evaluation = play(rule, new_session(rule), 30000, Segment.NEW)

    assert evaluation.alt_perks == []


def test_clearance_lifts_segment_cap_up_to_rule_maximum():
    rule = make_rule(
        clearance_flag=True,
        segment_rules=[
            SegmentRule(Segment.NEW, 7, 0, 0),
            SegmentRule(Segment.RETURNING, 14, 1, None),
        ],
    )

    assert effective_max_discount_pct(rule, Segment.NEW, CONFIG) == 12
    assert effective_max_discount_pct(rule, Segment.RETURNING, CONFIG) == 15


def test_overstock_counts_as_clearance():
    rule = make_rule(stock_level=500, segment_rules=[SegmentRule(Segment.NEW, 5, 0, None)])
    assert effective_max_discount_pct(rule, Segment.NEW, CONFIG) == 10


@pytest.mark.parametrize("count,expected", [
    (0, Segment.NEW),
    (1, Segment.RETURNING),
    (4, Segment.RETURNING),
    (5, Segment.VIP),
    (50, Segment.VIP),
])
def test_default_segment_bands(count, expected):
    assert classify_segment(make_rule(), count) == expected


def test_rule_segment_bands_take_precedence():
    rule = make_rule(segment_rules=[
        SegmentRule(Segment.NEW, 5, 0, 2),
        SegmentRule(Segment.VIP, 15, 3, None),
    ])
    assert classify_segment(rule, 2) == Segment.NEW
    assert classify_segment(rule, 3) == Segment.VIP


def test_unknown_language_falls_back_to_english():
    rule = make_rule()
    english = play(rule, new_session(rule, language="en"), 30000, Segment.NEW)
    unknown = play(rule, new_session(rule, language="xx"), 30000, Segment.NEW)
    assert unknown.justification == english.justification


def test_low_stock_adds_urgency():
    rule = make_rule(stock_level=3)
    evaluation = play(rule, new_session(rule), 30000, Segment.NEW)
    assert evaluation.justification.endswith("Only 3 left in stock!")


@pytest.mark.parametrize("value,step,expected", [
    (41625.0, 1, 41625),
    (40612.5, 1, 40613),
    (40612.5, 50, 40650),
    (100.001, 0.01, 100.01),
    (99.99, 0, 99.99),
])
def test_ceil_to_step(value, step, expected):
    assert ceil_to_step(value, step) == pytest.approx(expected)
