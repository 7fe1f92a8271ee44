"""Negotiation session lifecycle."""

from .session_manager import SessionManager, build_analytics_record, margin_impact

__all__ = ["SessionManager", "build_analytics_record", "margin_impact"]
