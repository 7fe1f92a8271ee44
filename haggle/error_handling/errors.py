"""
Error taxonomy for the negotiation engine.

Every failure a caller can act on is a NegotiationError carrying a stable
machine-readable code. The HTTP layer maps each class to a status code;
terminal negotiation outcomes are never raised, they are returned as data.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class NegotiationError(Exception):
    """Structured error with a stable code for API clients."""

    message: str
    details: Optional[Any] = None
    code: str = field(default="NEGOTIATION_ERROR", init=False)
    status_code: int = field(default=500, init=False)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


@dataclass
class ValidationError(NegotiationError):
    """Caller supplied a malformed request or an invalid rule."""

    code: str = field(default="VALIDATION_ERROR", init=False)
    status_code: int = field(default=400, init=False)


@dataclass
class NotFound(NegotiationError):
    """Unknown SKU, rule, session or token."""

    code: str = field(default="NOT_FOUND", init=False)
    status_code: int = field(default=404, init=False)


@dataclass
class RuleDisabled(NegotiationError):
    code: str = field(default="RULE_DISABLED", init=False)
    status_code: int = field(default=403, init=False)


@dataclass
class RuleInUse(NegotiationError):
    """A rule cannot be deleted while a session is negotiating against it."""

    code: str = field(default="RULE_IN_USE", init=False)
    status_code: int = field(default=409, init=False)


@dataclass
class RateLimited(NegotiationError):
    """Too many offers in the sliding window; retry after backoff."""

    retry_after: float = 0.0
    code: str = field(default="RATE_LIMITED", init=False)
    status_code: int = field(default=429, init=False)


@dataclass
class NegotiationUnavailable(NegotiationError):
    """Negotiation is switched off or not rolled out for this shopper or SKU."""

    code: str = field(default="NEGOTIATION_UNAVAILABLE", init=False)
    status_code: int = field(default=403, init=False)


@dataclass
class SuspiciousActivity(NegotiationError):
    """A high-severity fraud signal blocked a new negotiation."""

    code: str = field(default="SUSPICIOUS_ACTIVITY", init=False)
    status_code: int = field(default=403, init=False)


@dataclass
class DuplicateOffer(NegotiationError):
    code: str = field(default="DUPLICATE_OFFER", init=False)
    status_code: int = field(default=409, init=False)


@dataclass
class TokenInvalid(NegotiationError):
    """Discount token is unknown, already redeemed or expired."""

    code: str = field(default="TOKEN_INVALID", init=False)
    status_code: int = field(default=410, init=False)


@dataclass
class AlreadyRedeemed(TokenInvalid):
    code: str = field(default="TOKEN_ALREADY_REDEEMED", init=False)


@dataclass
class TokenExpired(TokenInvalid):
    code: str = field(default="TOKEN_EXPIRED", init=False)
