"""Purchase-history lookup used to segment shoppers."""

from typing import Dict, Optional, Protocol


class PurchaseHistory(Protocol):
    """Anything that can tell how many purchases a shopper has completed."""

    async def purchase_count(self, user_id: str) -> int:
        ...


class StaticPurchaseHistory:
    """In-memory purchase counts; unknown shoppers count as new."""

    def __init__(self, counts: Optional[Dict[str, int]] = None):
        self.counts = dict(counts or {})

    async def purchase_count(self, user_id: str) -> int:
        return self.counts.get(user_id, 0)
