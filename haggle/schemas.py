"""API request and response models.

Wire JSON is camelCase; the engine's dataclasses stay snake_case and are
converted at the router boundary.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from haggle.models import Decision, FraudSeverity, Segment, SessionStatus


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OfferBody(CamelModel):
    """Offer submitted by a shopper"""
    sku: str
    user_id: str
    offer_price: float
    quantity: int = 1
    session_id: Optional[str] = None
    language: Optional[str] = None
    device_id: Optional[str] = None


class AltPerkOut(CamelModel):
    type: str
    description: str
    threshold: Optional[float] = None
    months: Optional[int] = None


class BundleSuggestionOut(CamelModel):
    bundle_sku: str
    bundle_price: float
    description: str


class OfferResponse(CamelModel):
    """Engine answer to an offer, confirmation or decline"""
    session_id: str
    status: Decision
    current_round: int
    max_rounds: int
    expires_at: datetime
    justification: str
    counter_price: Optional[float] = None
    final_price: Optional[float] = None
    alt_perks: List[AltPerkOut] = Field(default_factory=list)
    bundle_suggestions: List[BundleSuggestionOut] = Field(default_factory=list)
    discount_token: Optional[str] = None
    rate_limit_remaining: Optional[int] = None


class RoundOut(CamelModel):
    round_number: int
    offer_price: float
    decision: Decision
    justification: str
    timestamp: datetime
    counter_price: Optional[float] = None
    processing_ms: float = 0.0


class FraudFlagOut(CamelModel):
    flag: str
    severity: FraudSeverity
    timestamp: datetime


class SessionResponse(CamelModel):
    """Current view of a negotiation session"""
    session_id: str
    sku: str
    user_id: str
    segment: Segment
    quantity: int
    language: str
    status: SessionStatus
    current_round: int
    max_rounds: int
    final_offered: bool
    history: List[RoundOut]
    created_at: datetime
    expires_at: datetime
    final_price: Optional[float] = None
    last_counter: Optional[float] = None
    discount_token: Optional[str] = None
    closed_at: Optional[datetime] = None
    fraud_flags: List[FraudFlagOut] = Field(default_factory=list)


class TokenResponse(CamelModel):
    token: str
    sku: str
    session_id: str
    user_id: str
    price: float
    quantity: int
    issued_at: datetime
    expires_at: datetime
    redeemed: bool
    redeemed_at: Optional[datetime] = None


class SegmentRuleIn(CamelModel):
    segment: Segment
    max_discount_pct: float
    min_purchase_count: int = 0
    max_purchase_count: Optional[int] = None


class BundlePairIn(CamelModel):
    main_sku: str
    bundle_sku: str
    bundle_price: float
    bundle_description: Dict[str, str] = Field(default_factory=dict)


class FreeShippingIn(CamelModel):
    enabled: bool = True
    threshold: Optional[float] = None


class FreeGiftIn(CamelModel):
    enabled: bool = False
    description: Dict[str, str] = Field(default_factory=dict)


class ExtendedWarrantyIn(CamelModel):
    enabled: bool = False
    months: int = 12


class FallbackPerksIn(CamelModel):
    free_shipping: FreeShippingIn = Field(default_factory=FreeShippingIn)
    free_gift: FreeGiftIn = Field(default_factory=FreeGiftIn)
    extended_warranty: ExtendedWarrantyIn = Field(default_factory=ExtendedWarrantyIn)


class RuleBody(CamelModel):
    """Negotiation rule as written by an admin"""
    sku: str
    base_price: float
    min_price: float
    max_discount_pct: float = 15
    max_rounds: int = 3
    clearance_flag: bool = False
    stock_level: int = 0
    segment_rules: List[SegmentRuleIn] = Field(default_factory=list)
    bundle_pairs: List[BundlePairIn] = Field(default_factory=list)
    fallback_perks: FallbackPerksIn = Field(default_factory=FallbackPerksIn)
    enabled: bool = True
    priority: int = 0
    product_name: Dict[str, str] = Field(default_factory=dict)
    cost_price: Optional[float] = None
    category: Optional[str] = None


class RuleResponse(RuleBody):
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class RollupRowOut(CamelModel):
    group: Dict[str, str]
    total_negotiations: int
    accepted_count: int
    rejected_count: int
    expired_count: int
    conversion_rate: float
    avg_rounds: float
    avg_discount_pct: float
    avg_margin_impact: float
    avg_time_to_decision_seconds: float
    total_revenue: float
    total_discount_given: float
    round_distribution: Dict[str, int]
    segment_breakdown: Dict[str, Dict[str, float]]
    perk_usage: Dict[str, int]
    flagged_count: int = 0
    fraud_flags: Dict[str, int] = Field(default_factory=dict)


class DashboardResponse(CamelModel):
    start_date: str
    end_date: str
    sku: Optional[str] = None
    rows: List[RollupRowOut]
    totals: RollupRowOut
    baseline_conversion_rate: float
    conversion_lift: float
    blocked_attempts: int = 0


class RealtimeResponse(CamelModel):
    active_negotiations: int
    recent_accepted: int
    recent_closed: int
    recent_blocked: int = 0
    avg_response_time_ms: float
    window_hours: int
    timestamp: datetime


class FeatureFlagBody(CamelModel):
    """Negotiation feature flag as written by an admin"""
    enabled: bool = True
    rollout_pct: float = Field(100.0, ge=0, le=100)
    target_segments: List[Segment] = Field(default_factory=list)
    target_skus: List[str] = Field(default_factory=list)


class FeatureFlagResponse(FeatureFlagBody):
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class SweepResponse(CamelModel):
    expired_sessions: int
