"""Abuse screening for negotiations."""

from .fraud_detector import (
    DUPLICATE_OFFER,
    EXCESSIVE_NEGOTIATIONS,
    EXTREME_LOWBALL,
    MULTI_ACCOUNT_IP,
    FraudDetector,
)

__all__ = [
    "DUPLICATE_OFFER",
    "EXCESSIVE_NEGOTIATIONS",
    "EXTREME_LOWBALL",
    "MULTI_ACCOUNT_IP",
    "FraudDetector",
]
