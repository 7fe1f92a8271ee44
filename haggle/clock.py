"""Time sources for the negotiation engine."""

from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock that only moves when told to.

    Used wherever expiry has to be exercised without sleeping.

    Attributes:
        current: The instant returned by now()
    """

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        """Move the clock forward and return the new instant."""
        self.current = self.current + timedelta(seconds=seconds, **kwargs)
        return self.current
