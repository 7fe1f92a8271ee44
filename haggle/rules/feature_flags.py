"""
Feature flag for negotiation as a whole.

One flag switches negotiation on or off and narrows who sees it: a rollout
percentage bucketed by user id, and optional segment and SKU targets.
"""

import logging
from typing import Optional

from haggle.clock import SystemClock
from haggle.models import FeatureFlag
from haggle.storage import KeyedStore


logger = logging.getLogger(__name__)

FEATURE_FLAG_KEY = "feature-flag:negotiation"


class FeatureFlagStore:
    """Admin-managed negotiation feature flag."""

    def __init__(self, store: KeyedStore, clock=None):
        self.store = store
        self.clock = clock or SystemClock()

    async def get(self) -> FeatureFlag:
        """The stored flag, or an enabled flag open to everyone if none is stored."""
        data = await self.store.get(FEATURE_FLAG_KEY)
        return FeatureFlag.from_dict(data) if data is not None else FeatureFlag()

    async def put(self, flag: FeatureFlag, updated_by: Optional[str] = None) -> FeatureFlag:
        flag.updated_at = self.clock.now()
        if updated_by is not None:
            flag.updated_by = updated_by
        await self.store.set(FEATURE_FLAG_KEY, flag.to_dict())
        logger.info(
            f"Negotiation feature flag set: enabled={flag.enabled}, rollout={flag.rollout_pct}%"
        )
        return flag
