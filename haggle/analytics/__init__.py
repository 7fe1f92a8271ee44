"""Negotiation analytics."""

from .aggregator import FRAUD_FLAGS, AnalyticsAggregator, RollupRow, summarize

__all__ = ["FRAUD_FLAGS", "AnalyticsAggregator", "RollupRow", "summarize"]
