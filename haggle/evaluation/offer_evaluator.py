"""
Offer evaluator - decides how to answer one shopper offer.

Everything here is a pure function of the rule, the session and the offer,
so a decision can always be replayed from the same inputs. The floor is
derived from the rule on every call; nothing here caches a price.
"""

import math
from typing import List, Optional

from haggle.config import ConcessionConfig
from haggle.models import (
    AltPerk,
    BundleSuggestion,
    Decision,
    Evaluation,
    NegotiationRule,
    NegotiationSession,
    Segment,
    price_after_discount,
    round_money,
)
from .justifications import justify, localized, perk_description, supported_language


# Purchase-count bands used when a rule defines no segment rules
DEFAULT_RETURNING_MIN_PURCHASES = 1
DEFAULT_VIP_MIN_PURCHASES = 5


def classify_segment(rule: NegotiationRule, purchase_count: int) -> Segment:
    """
    Map a shopper's purchase count onto a segment.

    Args:
        rule: Rule whose segment bands apply
        purchase_count: Completed purchases by the shopper

    Returns:
        The segment whose band covers purchase_count
    """
    purchase_count = max(purchase_count, 0)
    for segment_rule in rule.segment_rules:
        if segment_rule.covers(purchase_count):
            return segment_rule.segment

    if purchase_count >= DEFAULT_VIP_MIN_PURCHASES:
        return Segment.VIP
    if purchase_count >= DEFAULT_RETURNING_MIN_PURCHASES:
        return Segment.RETURNING
    return Segment.NEW


def is_clearance(rule: NegotiationRule, config: ConcessionConfig) -> bool:
    return rule.clearance_flag or rule.stock_level > config.overstock_threshold


def effective_max_discount_pct(
    rule: NegotiationRule,
    segment: Segment,
    config: ConcessionConfig
) -> float:
    """
    Deepest discount this shopper may reach on this rule.

    The segment cap applies first. Clearance and overstock add a bonus on
    top, but the result never exceeds the rule's own maximum.
    """
    segment_rule = rule.segment_rule_for(segment)
    cap = rule.max_discount_pct
    if segment_rule is not None:
        cap = min(cap, segment_rule.max_discount_pct)

    if is_clearance(rule, config):
        cap = min(cap + config.clearance_bonus_pct, rule.max_discount_pct)

    return cap


def floor_price(rule: NegotiationRule, effective_pct: float) -> float:
    return max(rule.min_price, price_after_discount(rule.base_price, effective_pct))


def ceil_to_step(value: float, step: float) -> float:
    """Round value up to the next multiple of step."""
    if step <= 0:
        return round_money(value)
    # Trim float noise so an exact multiple is not pushed up a whole step
    units = math.ceil(round(value / step, 6))
    return round_money(units * step)


def concession_fraction(round_number: int, schedule: List[float]) -> float:
    """Share of the remaining gap conceded in a round; the last entry repeats."""
    index = min(max(round_number - 1, 0), len(schedule) - 1)
    return schedule[index]


def next_counter(
    rule: NegotiationRule,
    session: NegotiationSession,
    floor: float,
    config: ConcessionConfig
) -> float:
    """
    Next counter price on the concession curve.

    Each round concedes a shrinking fraction of the distance between the
    previous counter (the list price on round one) and the floor.
    """
    anchor = session.last_counter if session.last_counter is not None else rule.base_price
    anchor = max(anchor, floor)

    fraction = concession_fraction(session.current_round, config.schedule)
    step = max(fraction * (anchor - floor), config.min_decrement)

    counter = max(floor, ceil_to_step(anchor - step, config.price_step))
    return min(counter, anchor)


def build_alt_perks(rule: NegotiationRule, price: float, language: str) -> List[AltPerk]:
    """Non-price concessions the rule allows at the given price."""
    perks = []
    fallback = rule.fallback_perks

    shipping = fallback.free_shipping
    if shipping.enabled and (shipping.threshold is None or price >= shipping.threshold):
        perks.append(AltPerk(
            type="free_shipping",
            description=perk_description("free_shipping", language),
            threshold=shipping.threshold,
        ))

    gift = fallback.free_gift
    if gift.enabled:
        perks.append(AltPerk(
            type="free_gift",
            description=localized(gift.description, language, perk_description("free_gift", language)),
        ))

    warranty = fallback.extended_warranty
    if warranty.enabled:
        perks.append(AltPerk(
            type="extended_warranty",
            description=perk_description("extended_warranty", language, months=warranty.months),
            months=warranty.months,
        ))

    return perks


def build_bundle_suggestions(rule: NegotiationRule, language: str) -> List[BundleSuggestion]:
    return [
        BundleSuggestion(
            bundle_sku=pair.bundle_sku,
            bundle_price=pair.bundle_price,
            description=localized(pair.bundle_description, language, pair.bundle_sku),
        )
        for pair in rule.bundle_pairs
        if pair.main_sku == rule.sku
    ]


def evaluate(
    rule: NegotiationRule,
    session: NegotiationSession,
    offer_price: float,
    segment: Segment,
    config: Optional[ConcessionConfig] = None
) -> Evaluation:
    """
    Decide how to answer an offer.

    session.current_round must already count the offer being evaluated.
    Round limits come from the rule, so a rule edited mid-session applies
    from the next offer on.

    Args:
        rule: Current rule for the SKU
        session: Session the offer belongs to
        offer_price: Shopper's per-unit offer
        segment: Shopper's segment
        config: Concession settings (default: ConcessionConfig())

    Returns:
        Evaluation with the decision, floor and justification
    """
    config = config or ConcessionConfig()
    language = supported_language(session.language)
    round_number = session.current_round

    effective_pct = effective_max_discount_pct(rule, segment, config)
    floor = floor_price(rule, effective_pct)

    def explain(decision: Decision, price: Optional[float] = None) -> str:
        return justify(
            decision,
            language,
            round_number=round_number,
            offer=offer_price,
            price=price,
            floor=floor,
            product_name=rule.product_name,
            stock_level=rule.stock_level,
        )

    if offer_price >= floor:
        return Evaluation(
            decision=Decision.ACCEPT,
            floor=floor,
            justification=explain(Decision.ACCEPT, offer_price),
            effective_max_discount_pct=effective_pct,
        )

    if round_number > rule.max_rounds:
        return Evaluation(
            decision=Decision.REJECT,
            floor=floor,
            justification=explain(Decision.REJECT),
            effective_max_discount_pct=effective_pct,
            alt_perks=build_alt_perks(rule, floor, language),
        )

    if round_number >= rule.max_rounds:
        return Evaluation(
            decision=Decision.FINAL,
            floor=floor,
            counter_price=floor,
            justification=explain(Decision.FINAL, floor),
            effective_max_discount_pct=effective_pct,
            alt_perks=build_alt_perks(rule, floor, language),
            bundle_suggestions=build_bundle_suggestions(rule, language),
        )

    counter = next_counter(rule, session, floor, config)
    return Evaluation(
        decision=Decision.COUNTER,
        floor=floor,
        counter_price=counter,
        justification=explain(Decision.COUNTER, counter),
        effective_max_discount_pct=effective_pct,
    )
