"""
Data models for the price-negotiation engine.

This module defines the core records used throughout the engine. Every
record validates its own invariants at construction time and converts to
and from plain dictionaries for the keyed store.
"""

import hashlib
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from haggle.error_handling.errors import ValidationError


MAX_ROUNDS_LIMIT = 5


class Segment(str, Enum):
    """Customer segments, ordered by purchase history."""
    NEW = "new"
    RETURNING = "returning"
    VIP = "vip"


class SessionStatus(str, Enum):
    """Negotiation session lifecycle states."""
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {SessionStatus.ACCEPTED, SessionStatus.REJECTED, SessionStatus.EXPIRED}
)


class Decision(str, Enum):
    """Outcome of evaluating one offer."""
    ACCEPT = "accept"
    COUNTER = "counter"
    FINAL = "final"
    REJECT = "reject"
    EXPIRED = "expired"


class FraudSeverity(str, Enum):
    """How strongly a fraud signal counts against a shopper."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def round_money(value: float) -> float:
    return round(float(value), 2)


def price_after_discount(base_price: float, discount_pct: float) -> float:
    """Price left after taking discount_pct percent off base_price."""
    return round_money(base_price * (100 - discount_pct) / 100)


def _invalid(message: str, details: Any = None) -> ValidationError:
    return ValidationError(message, details)


@dataclass
class SegmentRule:
    """Discount cap for one band of the purchase-count axis.

    Attributes:
        segment: Segment this band classifies into
        max_discount_pct: Largest discount this segment may ever receive
        min_purchase_count: First purchase count in the band (inclusive)
        max_purchase_count: Last purchase count in the band, None if unbounded
    """
    segment: Segment
    max_discount_pct: float
    min_purchase_count: int = 0
    max_purchase_count: Optional[int] = None

    def __post_init__(self):
        try:
            self.segment = Segment(self.segment)
        except ValueError:
            raise _invalid(f"Unknown segment: {self.segment}")
        if not 0 <= self.max_discount_pct <= 100:
            raise _invalid("Segment maxDiscountPct must be between 0 and 100",
                           {"segment": self.segment.value})
        if self.min_purchase_count < 0:
            raise _invalid("minPurchaseCount cannot be negative",
                           {"segment": self.segment.value})
        if self.max_purchase_count is not None and self.max_purchase_count < self.min_purchase_count:
            raise _invalid("maxPurchaseCount cannot be below minPurchaseCount",
                           {"segment": self.segment.value})

    def covers(self, purchase_count: int) -> bool:
        if purchase_count < self.min_purchase_count:
            return False
        return self.max_purchase_count is None or purchase_count <= self.max_purchase_count

    def to_dict(self) -> dict:
        data = asdict(self)
        data["segment"] = self.segment.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'SegmentRule':
        return cls(**data)


def validate_segment_partition(segment_rules: List[SegmentRule]) -> None:
    """Check that segment rules tile [0, infinity) with no gap or overlap.

    Raises:
        ValidationError: On duplicate segments, gaps, overlaps or a bounded tail
    """
    if not segment_rules:
        return

    names = [rule.segment for rule in segment_rules]
    if len(set(names)) != len(names):
        raise _invalid("Each segment may appear only once in segmentRules")

    ordered = sorted(segment_rules, key=lambda r: r.min_purchase_count)
    expected_start = 0
    for index, rule in enumerate(ordered):
        if rule.min_purchase_count != expected_start:
            raise _invalid(
                "segmentRules leave a purchase-count gap or overlap",
                {"segment": rule.segment.value, "expected_min": expected_start},
            )
        is_last = index == len(ordered) - 1
        if rule.max_purchase_count is None:
            if not is_last:
                raise _invalid("Only the highest segment may be unbounded",
                               {"segment": rule.segment.value})
        else:
            if is_last:
                raise _invalid("The highest segment must have no maxPurchaseCount",
                               {"segment": rule.segment.value})
            expected_start = rule.max_purchase_count + 1


@dataclass
class BundlePair:
    """A face-saving bundle alternative offered when the floor is reached."""
    main_sku: str
    bundle_sku: str
    bundle_price: float
    bundle_description: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.bundle_price <= 0:
            raise _invalid("bundlePrice must be positive", {"bundle_sku": self.bundle_sku})

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'BundlePair':
        return cls(**data)


@dataclass
class FreeShippingPerk:
    enabled: bool = True
    threshold: Optional[float] = None  # None = always available


@dataclass
class FreeGiftPerk:
    enabled: bool = False
    description: Dict[str, str] = field(default_factory=dict)


@dataclass
class ExtendedWarrantyPerk:
    enabled: bool = False
    months: int = 12


@dataclass
class FallbackPerks:
    """Non-price concessions offered once rounds are exhausted."""
    free_shipping: FreeShippingPerk = None
    free_gift: FreeGiftPerk = None
    extended_warranty: ExtendedWarrantyPerk = None

    def __post_init__(self):
        if self.free_shipping is None:
            self.free_shipping = FreeShippingPerk()
        elif isinstance(self.free_shipping, dict):
            self.free_shipping = FreeShippingPerk(**self.free_shipping)
        if self.free_gift is None:
            self.free_gift = FreeGiftPerk()
        elif isinstance(self.free_gift, dict):
            self.free_gift = FreeGiftPerk(**self.free_gift)
        if self.extended_warranty is None:
            self.extended_warranty = ExtendedWarrantyPerk()
        elif isinstance(self.extended_warranty, dict):
            self.extended_warranty = ExtendedWarrantyPerk(**self.extended_warranty)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'FallbackPerks':
        return cls(**(data or {}))


@dataclass
class NegotiationRule:
    """Merchant guardrails for negotiating one SKU.

    Attributes:
        sku: Product identifier
        base_price: List price per unit
        min_price: Absolute per-unit floor
        max_discount_pct: Largest discount the merchant allows
        max_rounds: Offers a shopper gets before the final counter (1-5)
        clearance_flag: Product is on clearance
        stock_level: Units in stock
        segment_rules: Per-segment discount caps partitioning purchase counts
        bundle_pairs: Bundle alternatives suggested at the final round
        fallback_perks: Non-price concessions
        enabled: Whether negotiation is open for this SKU
        priority: Admin ordering hint, higher first
        product_name: Localized product name used in messages
        cost_price: Unit cost, used for margin impact when known
        category: Catalog category
    """
    sku: str
    base_price: float
    min_price: float
    max_discount_pct: float = 15
    max_rounds: int = 3
    clearance_flag: bool = False
    stock_level: int = 0
    segment_rules: List[SegmentRule] = field(default_factory=list)
    bundle_pairs: List[BundlePair] = field(default_factory=list)
    fallback_perks: FallbackPerks = None
    enabled: bool = True
    priority: int = 0
    product_name: Dict[str, str] = field(default_factory=dict)
    cost_price: Optional[float] = None
    category: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    def __post_init__(self):
        self.segment_rules = [
            r if isinstance(r, SegmentRule) else SegmentRule.from_dict(r)
            for r in self.segment_rules
        ]
        self.bundle_pairs = [
            b if isinstance(b, BundlePair) else BundlePair.from_dict(b)
            for b in self.bundle_pairs
        ]
        if self.fallback_perks is None or isinstance(self.fallback_perks, dict):
            self.fallback_perks = FallbackPerks.from_dict(self.fallback_perks)
        self.updated_at = _parse_dt(self.updated_at)
        self.validate()

    def validate(self) -> None:
        """Reject rules that could ever produce an out-of-bounds price."""
        if not self.sku or not str(self.sku).strip():
            raise _invalid("sku is required")
        if self.base_price <= 0:
            raise _invalid("basePrice must be positive", {"sku": self.sku})
        if self.min_price <= 0:
            raise _invalid("minPrice must be positive", {"sku": self.sku})
        if self.min_price > self.base_price:
            raise _invalid("minPrice cannot exceed basePrice", {"sku": self.sku})
        if not 0 <= self.max_discount_pct <= 100:
            raise _invalid("maxDiscountPct must be between 0 and 100", {"sku": self.sku})
        if not 1 <= self.max_rounds <= MAX_ROUNDS_LIMIT:
            raise _invalid(
                f"maxRounds must be between 1 and {MAX_ROUNDS_LIMIT}",
                {"sku": self.sku, "max_rounds": self.max_rounds},
            )
        if self.stock_level < 0:
            raise _invalid("stockLevel cannot be negative", {"sku": self.sku})
        deepest = price_after_discount(self.base_price, self.max_discount_pct)
        if self.min_price > deepest:
            raise _invalid(
                "minPrice exceeds basePrice after the maximum discount",
                {"sku": self.sku, "min_price": self.min_price, "max_discounted_price": deepest},
            )
        if self.cost_price is not None and self.cost_price < 0:
            raise _invalid("costPrice cannot be negative", {"sku": self.sku})
        validate_segment_partition(self.segment_rules)

    def segment_rule_for(self, segment: Segment) -> Optional[SegmentRule]:
        for rule in self.segment_rules:
            if rule.segment == segment:
                return rule
        return None

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "base_price": self.base_price,
            "min_price": self.min_price,
            "max_discount_pct": self.max_discount_pct,
            "max_rounds": self.max_rounds,
            "clearance_flag": self.clearance_flag,
            "stock_level": self.stock_level,
            "segment_rules": [r.to_dict() for r in self.segment_rules],
            "bundle_pairs": [b.to_dict() for b in self.bundle_pairs],
            "fallback_perks": self.fallback_perks.to_dict(),
            "enabled": self.enabled,
            "priority": self.priority,
            "product_name": dict(self.product_name),
            "cost_price": self.cost_price,
            "category": self.category,
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'NegotiationRule':
        return cls(**data)


@dataclass
class AltPerk:
    """A non-price concession offered in a response."""
    type: str
    description: str
    threshold: Optional[float] = None
    months: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BundleSuggestion:
    bundle_sku: str
    bundle_price: float
    description: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Evaluation:
    """Decision produced by the offer evaluator for one round."""
    decision: Decision
    floor: float
    justification: str
    counter_price: Optional[float] = None
    effective_max_discount_pct: float = 0.0
    alt_perks: List[AltPerk] = field(default_factory=list)
    bundle_suggestions: List[BundleSuggestion] = field(default_factory=list)


@dataclass
class Round:
    """One offer and the engine's answer to it."""
    round_number: int
    offer_price: float
    decision: Decision
    justification: str
    timestamp: datetime
    counter_price: Optional[float] = None
    processing_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "round_number": self.round_number,
            "offer_price": self.offer_price,
            "decision": self.decision.value,
            "justification": self.justification,
            "timestamp": _iso(self.timestamp),
            "counter_price": self.counter_price,
            "processing_ms": self.processing_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Round':
        data = data.copy()
        data["decision"] = Decision(data["decision"])
        data["timestamp"] = _parse_dt(data["timestamp"])
        return cls(**data)


@dataclass
class OfferResult:
    """What the shopper sees after submitting an offer."""
    session_id: str
    status: Decision
    current_round: int
    max_rounds: int
    expires_at: datetime
    justification: str
    counter_price: Optional[float] = None
    final_price: Optional[float] = None
    alt_perks: List[AltPerk] = field(default_factory=list)
    bundle_suggestions: List[BundleSuggestion] = field(default_factory=list)
    discount_token: Optional[str] = None
    rate_limit_remaining: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "current_round": self.current_round,
            "max_rounds": self.max_rounds,
            "expires_at": _iso(self.expires_at),
            "justification": self.justification,
            "counter_price": self.counter_price,
            "final_price": self.final_price,
            "alt_perks": [p.to_dict() for p in self.alt_perks],
            "bundle_suggestions": [b.to_dict() for b in self.bundle_suggestions],
            "discount_token": self.discount_token,
            "rate_limit_remaining": self.rate_limit_remaining,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'OfferResult':
        data = data.copy()
        data["status"] = Decision(data["status"])
        data["expires_at"] = _parse_dt(data["expires_at"])
        data["alt_perks"] = [AltPerk(**p) for p in data.get("alt_perks", [])]
        data["bundle_suggestions"] = [
            BundleSuggestion(**b) for b in data.get("bundle_suggestions", [])
        ]
        return cls(**data)


@dataclass
class FraudFlag:
    """Abuse signal attached to a session or to a blocked attempt."""
    flag: str
    severity: FraudSeverity
    timestamp: datetime

    def __post_init__(self):
        self.severity = FraudSeverity(self.severity)

    def to_dict(self) -> dict:
        return {
            "flag": self.flag,
            "severity": self.severity.value,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FraudFlag':
        return cls(data["flag"], data["severity"], _parse_dt(data["timestamp"]))


@dataclass
class NegotiationSession:
    """State of one shopper haggling over one SKU.

    Attributes:
        session_id: Unique identifier
        sku: Product being negotiated
        user_id: Shopper identifier
        segment: Segment the shopper was classified into at creation
        quantity: Units the shopper intends to buy
        language: Language used for justifications
        current_round: Offers evaluated so far
        max_rounds: Rounds allowed before the final counter
        status: Lifecycle state, terminal states never change
        history: Every evaluated offer
        created_at: Creation instant
        expires_at: created_at + TTL, never extended
        final_price: Agreed unit price once accepted
        discount_token: Token minted on acceptance
        last_counter: Most recent counter price
        last_result: Stored response replayed for offers to a terminal session
        closed_at: Instant of the terminal transition
        base_price: List price when the session opened, for discount reporting
        perks_offered: Perk types shown to the shopper
        bundle_offered: Whether a bundle alternative was shown
        fraud_flags: Abuse signals raised while the session was open
        ip_address: Client address the session was opened from
    """
    session_id: str
    sku: str
    user_id: str
    segment: Segment
    max_rounds: int
    created_at: datetime
    expires_at: datetime
    quantity: int = 1
    language: str = "en"
    current_round: int = 0
    status: SessionStatus = SessionStatus.ACTIVE
    history: List[Round] = field(default_factory=list)
    final_price: Optional[float] = None
    discount_token: Optional[str] = None
    last_counter: Optional[float] = None
    last_result: Optional[OfferResult] = None
    closed_at: Optional[datetime] = None
    base_price: Optional[float] = None
    perks_offered: List[str] = field(default_factory=list)
    bundle_offered: bool = False
    fraud_flags: List[FraudFlag] = field(default_factory=list)
    ip_address: Optional[str] = None

    def __post_init__(self):
        self.segment = Segment(self.segment)
        self.status = SessionStatus(self.status)

    def add_flag(self, flag: FraudFlag) -> bool:
        """Attach a fraud flag once per flag name; returns True if it was new."""
        if any(existing.flag == flag.flag for existing in self.fraud_flags):
            return False
        self.fraud_flags.append(flag)
        return True

    def has_offered(self, offer_price: float) -> bool:
        """True if an earlier round already carried this exact offer."""
        return any(r.offer_price == offer_price for r in self.history)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def final_offered(self) -> bool:
        """True once the take-it-or-leave-it counter has been made."""
        return bool(self.history) and self.history[-1].decision == Decision.FINAL

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def record_round(self, round_: Round) -> None:
        if self.is_terminal:
            raise ValueError(f"Cannot record a round in state: {self.status.value}")
        if round_.round_number != self.current_round + 1:
            raise ValueError(
                f"Round {round_.round_number} does not follow round {self.current_round}"
            )
        self.history.append(round_)
        self.current_round = round_.round_number
        if round_.counter_price is not None:
            self.last_counter = round_.counter_price

    def transition(self, status: SessionStatus, now: datetime) -> None:
        """Move to a terminal state; sessions only ever move forward."""
        status = SessionStatus(status)
        if self.is_terminal:
            raise ValueError(f"Cannot leave terminal state: {self.status.value}")
        if status == SessionStatus.ACTIVE:
            raise ValueError("Cannot transition back to active")
        self.status = status
        self.closed_at = now

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "sku": self.sku,
            "user_id": self.user_id,
            "segment": self.segment.value,
            "max_rounds": self.max_rounds,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "quantity": self.quantity,
            "language": self.language,
            "current_round": self.current_round,
            "status": self.status.value,
            "history": [r.to_dict() for r in self.history],
            "final_price": self.final_price,
            "discount_token": self.discount_token,
            "last_counter": self.last_counter,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "closed_at": _iso(self.closed_at),
            "base_price": self.base_price,
            "perks_offered": list(self.perks_offered),
            "bundle_offered": self.bundle_offered,
            "fraud_flags": [f.to_dict() for f in self.fraud_flags],
            "ip_address": self.ip_address,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'NegotiationSession':
        data = data.copy()
        data["created_at"] = _parse_dt(data["created_at"])
        data["expires_at"] = _parse_dt(data["expires_at"])
        data["closed_at"] = _parse_dt(data.get("closed_at"))
        data["history"] = [Round.from_dict(r) for r in data.get("history", [])]
        data["fraud_flags"] = [FraudFlag.from_dict(f) for f in data.get("fraud_flags", [])]
        if data.get("last_result"):
            data["last_result"] = OfferResult.from_dict(data["last_result"])
        return cls(**data)


@dataclass
class DiscountToken:
    """Single-use redemption token bound to an agreed price."""
    token: str
    sku: str
    session_id: str
    user_id: str
    price: float
    issued_at: datetime
    expires_at: datetime
    quantity: int = 1
    redeemed: bool = False
    redeemed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict:
        data = asdict(self)
        data["issued_at"] = _iso(self.issued_at)
        data["expires_at"] = _iso(self.expires_at)
        data["redeemed_at"] = _iso(self.redeemed_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'DiscountToken':
        data = data.copy()
        for key in ("issued_at", "expires_at", "redeemed_at"):
            data[key] = _parse_dt(data.get(key))
        return cls(**data)


@dataclass
class AnalyticsRecord:
    """One terminal session transition, as seen by reporting."""
    date: date
    sku: str
    segment: Segment
    outcome: SessionStatus
    rounds: int
    discount_pct: float
    time_to_decision_seconds: float
    revenue: float
    margin_impact: float
    closed_at: datetime
    session_id: str = ""
    discount_given: float = 0.0
    perks_offered: List[str] = field(default_factory=list)
    bundle_offered: bool = False
    fraud_flags: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.segment = Segment(self.segment)
        self.outcome = SessionStatus(self.outcome)
        if self.outcome == SessionStatus.ACTIVE:
            raise ValueError("Analytics records only describe terminal sessions")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        data["segment"] = self.segment.value
        data["outcome"] = self.outcome.value
        data["closed_at"] = _iso(self.closed_at)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'AnalyticsRecord':
        data = data.copy()
        if isinstance(data["date"], str):
            data["date"] = date.fromisoformat(data["date"])
        data["closed_at"] = _parse_dt(data["closed_at"])
        return cls(**data)


@dataclass
class OfferRequest:
    """A shopper's numeric offer for one SKU."""
    sku: str
    user_id: str
    offer_price: float
    quantity: int = 1
    session_id: Optional[str] = None
    language: Optional[str] = None
    device_id: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass
class FeatureFlag:
    """Switch and targeting for negotiation as a whole.

    Attributes:
        enabled: Master switch
        rollout_pct: Share of shoppers (bucketed by user id) who may negotiate
        target_segments: Segments allowed to negotiate, empty for all
        target_skus: SKUs open to negotiation, empty for all
    """
    enabled: bool = True
    rollout_pct: float = 100.0
    target_segments: List[Segment] = field(default_factory=list)
    target_skus: List[str] = field(default_factory=list)
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    def __post_init__(self):
        if not 0 <= self.rollout_pct <= 100:
            raise _invalid("rolloutPct must be between 0 and 100", {"rollout_pct": self.rollout_pct})
        self.target_segments = [Segment(s) for s in self.target_segments]

    @staticmethod
    def bucket(user_id: str) -> int:
        """Stable 0-99 rollout bucket for a shopper."""
        return int(hashlib.sha256(user_id.encode("utf-8")).hexdigest(), 16) % 100

    def is_enabled_for(self, user_id: str, sku: str, segment: Segment) -> bool:
        if not self.enabled:
            return False
        if self.target_skus and sku not in self.target_skus:
            return False
        if self.target_segments and Segment(segment) not in self.target_segments:
            return False
        return self.bucket(user_id) < self.rollout_pct

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "rollout_pct": self.rollout_pct,
            "target_segments": [s.value for s in self.target_segments],
            "target_skus": list(self.target_skus),
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FeatureFlag':
        data = data.copy()
        data["updated_at"] = _parse_dt(data.get("updated_at"))
        return cls(**data)
