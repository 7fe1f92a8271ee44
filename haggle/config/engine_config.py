"""Engine configuration settings for the price-negotiation service."""

from dataclasses import dataclass, field
from typing import List
import os


@dataclass
class SessionConfig:
    """Negotiation session lifetime configuration."""
    ttl_seconds: int = 900
    retention_seconds: int = 3600
    default_language: str = "en"


@dataclass
class RateLimitConfig:
    """Offer submission throttling per (identity, SKU)."""
    max_offers: int = 10
    window_seconds: int = 60


@dataclass
class ConcessionConfig:
    """Offer evaluation and concession schedule configuration."""
    schedule: List[float] = field(default_factory=lambda: [0.50, 0.30, 0.20, 0.15])
    min_decrement: float = 1.0
    price_step: float = 1.0
    overstock_threshold: int = 100
    clearance_bonus_pct: float = 5.0


@dataclass
class TokenConfig:
    """Discount token configuration."""
    ttl_seconds: int = 86400


@dataclass
class StorageConfig:
    """Keyed store configuration."""
    backend: str = "memory"
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "haggle"
    lock_timeout_seconds: float = 10.0


@dataclass
class FraudConfig:
    """Abuse detection thresholds."""
    lowball_ratio: float = 0.5
    max_sessions_per_user: int = 20
    session_window_seconds: int = 86400
    max_accounts_per_ip: int = 5
    ip_window_seconds: int = 3600
    reject_duplicate_offers: bool = False


@dataclass
class AnalyticsConfig:
    """Analytics aggregation configuration."""
    realtime_window_hours: int = 24
    baseline_conversion_rate: float = 0.0


@dataclass
class EngineSettings:
    """Main engine configuration settings."""
    session: SessionConfig = None
    rate_limiting: RateLimitConfig = None
    concession: ConcessionConfig = None
    tokens: TokenConfig = None
    storage: StorageConfig = None
    analytics: AnalyticsConfig = None
    fraud: FraudConfig = None

    def __post_init__(self):
        """Initialize nested configs if not provided."""
        if self.session is None:
            self.session = SessionConfig()
        if self.rate_limiting is None:
            self.rate_limiting = RateLimitConfig()
        if self.concession is None:
            self.concession = ConcessionConfig()
        if self.tokens is None:
            self.tokens = TokenConfig()
        if self.storage is None:
            self.storage = StorageConfig()
        if self.analytics is None:
            self.analytics = AnalyticsConfig()
        if self.fraud is None:
            self.fraud = FraudConfig()


def _float_list(raw: str) -> List[float]:
    return [float(part) for part in raw.split(",") if part.strip()]


# Default engine configuration
ENGINE_CONFIG = {
    "session": {
        "ttl_seconds": int(os.getenv("SESSION_TTL_SECONDS", "900")),
        "retention_seconds": int(os.getenv("SESSION_RETENTION_SECONDS", "3600")),
        "default_language": os.getenv("DEFAULT_LANGUAGE", "en"),
    },
    "rate_limiting": {
        "max_offers": int(os.getenv("RATE_LIMIT_MAX_OFFERS", "10")),
        "window_seconds": int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
    },
    "concession": {
        "schedule": _float_list(os.getenv("CONCESSION_SCHEDULE", "0.50,0.30,0.20,0.15")),
        "min_decrement": float(os.getenv("CONCESSION_MIN_DECREMENT", "1")),
        "price_step": float(os.getenv("PRICE_STEP", "1")),
        "overstock_threshold": int(os.getenv("OVERSTOCK_THRESHOLD", "100")),
        "clearance_bonus_pct": float(os.getenv("CLEARANCE_BONUS_PCT", "5")),
    },
    "tokens": {
        "ttl_seconds": int(os.getenv("TOKEN_TTL_SECONDS", "86400")),
    },
    "storage": {
        "backend": os.getenv("STORAGE_BACKEND", "memory"),
        "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379"),
        "key_prefix": os.getenv("STORE_KEY_PREFIX", "haggle"),
        "lock_timeout_seconds": float(os.getenv("STORE_LOCK_TIMEOUT_SECONDS", "10")),
    },
    "analytics": {
        "realtime_window_hours": int(os.getenv("ANALYTICS_REALTIME_WINDOW_HOURS", "24")),
        "baseline_conversion_rate": float(os.getenv("BASELINE_CONVERSION_RATE", "0")),
    },
    "fraud": {
        "lowball_ratio": float(os.getenv("FRAUD_LOWBALL_RATIO", "0.5")),
        "max_sessions_per_user": int(os.getenv("FRAUD_MAX_SESSIONS_PER_USER", "20")),
        "session_window_seconds": int(os.getenv("FRAUD_SESSION_WINDOW_SECONDS", "86400")),
        "max_accounts_per_ip": int(os.getenv("FRAUD_MAX_ACCOUNTS_PER_IP", "5")),
        "ip_window_seconds": int(os.getenv("FRAUD_IP_WINDOW_SECONDS", "3600")),
        "reject_duplicate_offers": os.getenv("REJECT_DUPLICATE_OFFERS", "false").lower() == "true",
    },
}


def get_engine_settings() -> EngineSettings:
    """Get engine settings from configuration."""
    return EngineSettings(
        session=SessionConfig(**ENGINE_CONFIG["session"]),
        rate_limiting=RateLimitConfig(**ENGINE_CONFIG["rate_limiting"]),
        concession=ConcessionConfig(**ENGINE_CONFIG["concession"]),
        tokens=TokenConfig(**ENGINE_CONFIG["tokens"]),
        storage=StorageConfig(**ENGINE_CONFIG["storage"]),
        analytics=AnalyticsConfig(**ENGINE_CONFIG["analytics"]),
        fraud=FraudConfig(**ENGINE_CONFIG["fraud"]),
    )
