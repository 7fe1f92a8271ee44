"""Offer evaluation: segments, floors, the concession curve and justifications."""

from .offer_evaluator import (
    ceil_to_step,
    classify_segment,
    effective_max_discount_pct,
    evaluate,
    floor_price,
    next_counter,
)
from .justifications import justify, justify_decline, supported_language

__all__ = [
    "ceil_to_step",
    "classify_segment",
    "effective_max_discount_pct",
    "evaluate",
    "floor_price",
    "next_counter",
    "justify",
    "justify_decline",
    "supported_language",
]
