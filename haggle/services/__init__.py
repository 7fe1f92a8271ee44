"""Negotiation orchestration."""

from .negotiation_engine import NegotiationEngine, build_engine
from .purchase_history import PurchaseHistory, StaticPurchaseHistory

__all__ = ["NegotiationEngine", "build_engine", "PurchaseHistory", "StaticPurchaseHistory"]
