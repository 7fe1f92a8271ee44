"""Configuration module for the negotiation engine."""

from .engine_config import (
    ENGINE_CONFIG,
    AnalyticsConfig,
    ConcessionConfig,
    EngineSettings,
    FraudConfig,
    RateLimitConfig,
    SessionConfig,
    StorageConfig,
    TokenConfig,
    get_engine_settings,
)

__all__ = [
    'ENGINE_CONFIG',
    'AnalyticsConfig',
    'ConcessionConfig',
    'EngineSettings',
    'FraudConfig',
    'RateLimitConfig',
    'SessionConfig',
    'StorageConfig',
    'TokenConfig',
    'get_engine_settings',
]
