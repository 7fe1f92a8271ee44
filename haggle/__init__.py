"""Haggle - rule-governed price negotiation engine."""

__version__ = "0.1.0"
