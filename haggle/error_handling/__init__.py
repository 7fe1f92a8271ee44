"""
Error handling module for the negotiation engine.

Provides the error taxonomy and retry logic for infrastructure calls.
Session expiry is not an error: it comes back as an `expired` decision.
"""

from .errors import (
    AlreadyRedeemed,
    DuplicateOffer,
    NegotiationError,
    NegotiationUnavailable,
    NotFound,
    RateLimited,
    RuleDisabled,
    RuleInUse,
    SuspiciousActivity,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from .retry import RetryConfig, retry_with_backoff

__all__ = [
    'AlreadyRedeemed',
    'DuplicateOffer',
    'NegotiationError',
    'NegotiationUnavailable',
    'NotFound',
    'RateLimited',
    'RuleDisabled',
    'RuleInUse',
    'SuspiciousActivity',
    'TokenExpired',
    'TokenInvalid',
    'ValidationError',
    'RetryConfig',
    'retry_with_backoff',
]
