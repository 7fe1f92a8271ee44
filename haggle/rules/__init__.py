"""Negotiation rule and feature flag storage."""

from .feature_flags import FeatureFlagStore
from .rule_store import RuleStore

__all__ = ["FeatureFlagStore", "RuleStore"]
