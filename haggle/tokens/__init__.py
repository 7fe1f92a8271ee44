"""Single-use discount tokens."""

from .token_issuer import TokenIssuer

__all__ = ["TokenIssuer"]
