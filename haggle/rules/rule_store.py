"""
Rule store for negotiation guardrails.

Holds one NegotiationRule per SKU. Reads always go to the keyed store, so
the next evaluation after a write sees that write.
"""

import logging
from typing import Awaitable, Callable, List, Optional

from haggle.clock import SystemClock
from haggle.error_handling import NotFound, RuleInUse
from haggle.models import NegotiationRule
from haggle.storage import KeyedStore


logger = logging.getLogger(__name__)

RULE_PREFIX = "rule:"


class RuleStore:
    """
    Admin-managed negotiation rules keyed by SKU.

    Attributes:
        store: Keyed store holding the rules
        has_active_session: Async predicate telling whether a SKU is being negotiated
    """

    def __init__(
        self,
        store: KeyedStore,
        has_active_session: Optional[Callable[[str], Awaitable[bool]]] = None,
        clock=None
    ):
        self.store = store
        self.has_active_session = has_active_session
        self.clock = clock or SystemClock()

    @staticmethod
    def _key(sku: str) -> str:
        return f"{RULE_PREFIX}{sku}"

    async def get(self, sku: str) -> Optional[NegotiationRule]:
        """
        Fetch the rule for a SKU.

        Args:
            sku: Product identifier

        Returns:
            The rule, or None if no rule exists
        """
        data = await self.store.get(self._key(sku))
        return NegotiationRule.from_dict(data) if data is not None else None

    async def require(self, sku: str) -> NegotiationRule:
        rule = await self.get(sku)
        if rule is None:
            raise NotFound(f"No negotiation rule for SKU {sku}", {"sku": sku})
        return rule

    async def list(self, enabled_only: bool = False) -> List[NegotiationRule]:
        """
        List rules, highest priority first.

        Args:
            enabled_only: Skip rules that are switched off

        Returns:
            Rules sorted by priority (descending) then SKU
        """
        rules = []
        for key in await self.store.scan(RULE_PREFIX):
            data = await self.store.get(key)
            if data is None:
                continue
            rule = NegotiationRule.from_dict(data)
            if enabled_only and not rule.enabled:
                continue
            rules.append(rule)
        return sorted(rules, key=lambda r: (-r.priority, r.sku))

    async def upsert(self, rule: NegotiationRule, updated_by: Optional[str] = None) -> NegotiationRule:
        """
        Create or replace the rule for rule.sku.

        The rule is re-validated here so a record mutated after construction
        can never be committed with a broken floor.

        Args:
            rule: Rule to store
            updated_by: Admin identity recorded on the rule

        Returns:
            The stored rule

        Raises:
            ValidationError: If the rule violates a pricing invariant
        """
        rule.validate()
        rule.updated_at = self.clock.now()
        if updated_by is not None:
            rule.updated_by = updated_by

        async with self.store.lock(self._key(rule.sku)):
            existed = await self.store.get(self._key(rule.sku)) is not None
            await self.store.set(self._key(rule.sku), rule.to_dict())

        logger.info(f"{'Updated' if existed else 'Created'} negotiation rule for SKU {rule.sku}")
        return rule

    async def delete(self, sku: str) -> None:
        """
        Delete the rule for a SKU.

        Raises:
            NotFound: If no rule exists for the SKU
            RuleInUse: If a shopper is still negotiating this SKU
        """
        async with self.store.lock(self._key(sku)):
            if await self.store.get(self._key(sku)) is None:
                raise NotFound(f"No negotiation rule for SKU {sku}", {"sku": sku})
            if self.has_active_session is not None and await self.has_active_session(sku):
                raise RuleInUse(
                    f"SKU {sku} has an active negotiation session",
                    {"sku": sku},
                )
            await self.store.delete(self._key(sku))

        logger.info(f"Deleted negotiation rule for SKU {sku}")
