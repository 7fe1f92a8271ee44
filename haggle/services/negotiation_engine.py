"""
Negotiation engine - wires the collaborators into the offer flow.

An offer passes through the rate limiter, is matched to its session under
the session's lock and is evaluated against the current rule. New sessions
are gated by the feature flag and fraud screening first. Agreement issues a
discount token; closed sessions are reported to analytics.
"""

import logging
import math
import time
from dataclasses import replace
from typing import Optional

from haggle.analytics import AnalyticsAggregator
from haggle.clock import SystemClock
from haggle.config import EngineSettings
from haggle.error_handling import (
    DuplicateOffer,
    NegotiationUnavailable,
    NotFound,
    RuleDisabled,
    SuspiciousActivity,
    ValidationError,
)
from haggle.evaluation import (
    classify_segment,
    effective_max_discount_pct,
    evaluate,
    floor_price,
    justify,
    justify_decline,
    supported_language,
)
from haggle.fraud import FraudDetector
from haggle.models import (
    Decision,
    DiscountToken,
    Evaluation,
    FraudSeverity,
    NegotiationRule,
    NegotiationSession,
    OfferRequest,
    OfferResult,
    Round,
    SessionStatus,
)
from haggle.rate_limiting import RateLimiter
from haggle.rules import FeatureFlagStore, RuleStore
from haggle.session import SessionManager
from haggle.storage import KeyedStore
from haggle.tokens import TokenIssuer
from .purchase_history import PurchaseHistory, StaticPurchaseHistory


logger = logging.getLogger(__name__)

TERMINAL_DECISIONS = {
    SessionStatus.ACCEPTED: Decision.ACCEPT,
    SessionStatus.REJECTED: Decision.REJECT,
    SessionStatus.EXPIRED: Decision.EXPIRED,
}


class NegotiationEngine:
    """
    Orchestrates offers, confirmations and token handling.

    Attributes:
        rules: Rule store
        sessions: Session manager
        tokens: Discount token issuer
        rate_limiter: Offer throttle
        analytics: Analytics aggregator
        fraud: Fraud detector
        feature_flags: Negotiation feature flag
        purchase_history: Purchase counts used for segmentation
        settings: Engine settings
    """

    def __init__(
        self,
        rules: RuleStore,
        sessions: SessionManager,
        tokens: TokenIssuer,
        rate_limiter: RateLimiter,
        analytics: AnalyticsAggregator,
        fraud: FraudDetector,
        feature_flags: FeatureFlagStore,
        purchase_history: Optional[PurchaseHistory] = None,
        clock=None,
        settings: Optional[EngineSettings] = None
    ):
        self.rules = rules
        self.sessions = sessions
        self.tokens = tokens
        self.rate_limiter = rate_limiter
        self.analytics = analytics
        self.fraud = fraud
        self.feature_flags = feature_flags
        self.purchase_history = purchase_history or StaticPurchaseHistory()
        self.clock = clock or SystemClock()
        self.settings = settings or EngineSettings()

    def _validate_request(self, request: OfferRequest) -> None:
        if not request.sku or not request.sku.strip():
            raise ValidationError("sku is required")
        if not request.user_id or not request.user_id.strip():
            raise ValidationError("userId is required")
        if not math.isfinite(request.offer_price) or request.offer_price <= 0:
            raise ValidationError("offerPrice must be a positive number",
                                  {"offer_price": request.offer_price})
        if request.quantity < 1:
            raise ValidationError("quantity must be at least 1", {"quantity": request.quantity})

    async def _enabled_rule(self, sku: str) -> NegotiationRule:
        rule = await self.rules.require(sku)
        if not rule.enabled:
            raise RuleDisabled(f"Negotiation is disabled for SKU {sku}", {"sku": sku})
        return rule

    async def _require_session(self, session_id: str) -> NegotiationSession:
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise NotFound(f"Negotiation session {session_id} not found",
                           {"session_id": session_id})
        return session

    @staticmethod
    def _replay(session: NegotiationSession, remaining: Optional[int] = None) -> OfferResult:
        """Stored response of a terminal session."""
        if session.last_result is None:
            return OfferResult(
                session_id=session.session_id,
                status=TERMINAL_DECISIONS[session.status],
                current_round=session.current_round,
                max_rounds=session.max_rounds,
                expires_at=session.expires_at,
                justification="",
                final_price=session.final_price,
                discount_token=session.discount_token,
                rate_limit_remaining=remaining,
            )
        return replace(session.last_result, rate_limit_remaining=remaining)

    def _result(
        self,
        session: NegotiationSession,
        decision: Decision,
        justification: str,
        evaluation: Optional[Evaluation] = None,
        remaining: Optional[int] = None
    ) -> OfferResult:
        return OfferResult(
            session_id=session.session_id,
            status=decision,
            current_round=session.current_round,
            max_rounds=session.max_rounds,
            expires_at=session.expires_at,
            justification=justification,
            counter_price=evaluation.counter_price if evaluation else None,
            final_price=session.final_price,
            alt_perks=list(evaluation.alt_perks) if evaluation else [],
            bundle_suggestions=list(evaluation.bundle_suggestions) if evaluation else [],
            discount_token=session.discount_token,
            rate_limit_remaining=remaining,
        )

    async def _accept(self, session: NegotiationSession, rule: NegotiationRule, price: float) -> DiscountToken:
        session.final_price = price
        token = await self.tokens.issue(session, price)
        session.discount_token = token.token
        await self.sessions.close(session, SessionStatus.ACCEPTED, rule.cost_price)
        return token

    async def submit_offer(self, request: OfferRequest) -> OfferResult:
        """
        Evaluate one offer.

        Args:
            request: The shopper's offer

        Returns:
            OfferResult describing the decision

        Raises:
            ValidationError: Malformed offer or quantity above stock
            RateLimited: Too many offers in the window
            NotFound: Unknown SKU or session
            RuleDisabled: Negotiation switched off for the SKU
            NegotiationUnavailable: Feature flag keeps the shopper out
            SuspiciousActivity: Fraud screening blocked a new session
            DuplicateOffer: Repeated offer while duplicates are refused
        """
        started = time.perf_counter()
        self._validate_request(request)

        # Throttle before touching the session so refused offers never use a round.
        # The user is always counted; a device id adds a second, independent window.
        remaining = await self.rate_limiter.check(request.user_id, request.sku)
        if request.device_id:
            remaining = min(remaining, await self.rate_limiter.check(
                request.device_id, request.sku, kind="device"
            ))

        rule = await self._enabled_rule(request.sku)
        if request.quantity > rule.stock_level:
            raise ValidationError(
                "Requested quantity exceeds stock",
                {"quantity": request.quantity, "stock_level": rule.stock_level},
            )

        language = supported_language(request.language or self.settings.session.default_language)

        async with self.sessions.lock(request.sku, request.user_id):
            if request.session_id:
                session = await self.sessions.get(request.sku, request.user_id)
                if session is None or session.session_id != request.session_id:
                    raise NotFound(f"Negotiation session {request.session_id} not found",
                                   {"session_id": request.session_id, "sku": request.sku})
            else:
                session = await self.sessions.get(request.sku, request.user_id)
                if self.sessions.replaceable(session):
                    session = await self._open_session(request, rule, language)

            if session.is_terminal or await self.sessions.expire_if_due(session):
                return self._replay(session, remaining)

            duplicate = self.fraud.duplicate_flag(session, request.offer_price)
            if duplicate is not None:
                session.add_flag(duplicate)
                if self.settings.fraud.reject_duplicate_offers:
                    await self.sessions.save(session)
                    raise DuplicateOffer(
                        "This offer was already made in this negotiation",
                        {"session_id": session.session_id, "offer_price": request.offer_price},
                    )

            result = await self._play_round(session, rule, request.offer_price, remaining, started)

        await self.analytics.record_round(self.clock.now(), session.history[-1].processing_ms)
        return result

    async def _open_session(
        self,
        request: OfferRequest,
        rule: NegotiationRule,
        language: str
    ) -> NegotiationSession:
        """
        Start a new session once the feature flag and fraud screening allow it.

        Callers must hold the session lock.
        """
        purchases = await self.purchase_history.purchase_count(request.user_id)
        segment = classify_segment(rule, purchases)

        flag = await self.feature_flags.get()
        if not flag.is_enabled_for(request.user_id, request.sku, segment):
            raise NegotiationUnavailable(
                f"Negotiation is not available for SKU {request.sku}",
                {"sku": request.sku},
            )

        flags = await self.fraud.screen_new_session(request.user_id, request.ip_address)
        if any(f.severity == FraudSeverity.HIGH for f in flags):
            names = [f.flag for f in flags]
            await self.analytics.record_block(self.clock.now(), request.sku, names)
            raise SuspiciousActivity(
                "Negotiation blocked due to suspicious activity",
                {"sku": request.sku, "flags": names},
            )

        return await self.sessions.create(
            request.sku,
            request.user_id,
            segment=segment,
            max_rounds=rule.max_rounds,
            base_price=rule.base_price,
            quantity=request.quantity,
            language=language,
            fraud_flags=flags,
            ip_address=request.ip_address,
        )

    async def _play_round(
        self,
        session: NegotiationSession,
        rule: NegotiationRule,
        offer_price: float,
        remaining: Optional[int],
        started: float
    ) -> OfferResult:
        round_number = session.current_round + 1
        session.max_rounds = rule.max_rounds
        for flag in self.fraud.offer_flags(offer_price, rule.base_price):
            session.add_flag(flag)

        evaluation = evaluate(
            rule,
            replace(session, current_round=round_number),
            offer_price,
            session.segment,
            self.settings.concession,
        )

        session.record_round(Round(
            round_number=round_number,
            offer_price=offer_price,
            decision=evaluation.decision,
            justification=evaluation.justification,
            timestamp=self.clock.now(),
            counter_price=evaluation.counter_price,
            processing_ms=(time.perf_counter() - started) * 1000,
        ))
        for perk in evaluation.alt_perks:
            if perk.type not in session.perks_offered:
                session.perks_offered.append(perk.type)
        if evaluation.bundle_suggestions:
            session.bundle_offered = True

        if evaluation.decision == Decision.ACCEPT:
            await self._accept(session, rule, offer_price)
        elif evaluation.decision == Decision.REJECT:
            await self.sessions.close(session, SessionStatus.REJECTED, rule.cost_price)

        result = self._result(session, evaluation.decision, evaluation.justification,
                              evaluation, remaining)
        session.last_result = result
        await self.sessions.save(session)

        logger.info(
            f"Session {session.session_id} round {round_number}: "
            f"offer {offer_price} -> {evaluation.decision.value}"
        )
        return result

    async def confirm_final(self, session_id: str) -> OfferResult:
        """
        Accept the final counter on the shopper's behalf.

        If the rule changed since the final counter and its floor now sits
        above that counter, the session is rejected instead.

        Raises:
            NotFound: Unknown session
            ValidationError: The session has not received a final counter
            RuleDisabled: Negotiation switched off for the SKU
        """
        located = await self._require_session(session_id)
        async with self.sessions.lock(located.sku, located.user_id):
            session = await self._require_session(session_id)
            if session.is_terminal or await self.sessions.expire_if_due(session):
                return self._replay(session)
            if not session.final_offered:
                raise ValidationError("There is no final counter to accept yet",
                                      {"session_id": session_id,
                                       "current_round": session.current_round})

            rule = await self._enabled_rule(session.sku)
            price = session.last_counter
            floor = floor_price(
                rule, effective_max_discount_pct(rule, session.segment, self.settings.concession)
            )

            if price < floor:
                await self.sessions.close(session, SessionStatus.REJECTED, rule.cost_price)
                decision = Decision.REJECT
                text = justify(Decision.REJECT, session.language, session.current_round,
                               offer=price, floor=floor, product_name=rule.product_name)
                logger.warning(f"Final counter for session {session_id} fell below a raised floor")
            else:
                await self._accept(session, rule, price)
                decision = Decision.ACCEPT
                text = justify(Decision.ACCEPT, session.language, session.current_round,
                               offer=price, price=price, product_name=rule.product_name)

            session.last_result = self._result(session, decision, text)
            await self.sessions.save(session)
            return session.last_result

    async def decline(self, session_id: str) -> OfferResult:
        """Shopper walks away; the session is rejected."""
        located = await self._require_session(session_id)
        async with self.sessions.lock(located.sku, located.user_id):
            session = await self._require_session(session_id)
            if session.is_terminal or await self.sessions.expire_if_due(session):
                return self._replay(session)

            rule = await self.rules.get(session.sku)
            await self.sessions.close(session, SessionStatus.REJECTED,
                                      rule.cost_price if rule else None)
            session.last_result = self._result(
                session, Decision.REJECT, justify_decline(session.language, session.last_counter)
            )
            await self.sessions.save(session)
            return session.last_result

    async def get_session(self, session_id: str) -> NegotiationSession:
        """
        Current view of a session, expiring it first if its window passed.

        Raises:
            NotFound: Unknown session
        """
        located = await self._require_session(session_id)
        async with self.sessions.lock(located.sku, located.user_id):
            session = await self._require_session(session_id)
            await self.sessions.expire_if_due(session)
            return session

    async def validate_token(self, token: str) -> DiscountToken:
        return await self.tokens.validate(token)

    async def redeem_token(self, token: str) -> DiscountToken:
        return await self.tokens.redeem(token)

    async def realtime(self) -> dict:
        return await self.analytics.realtime(await self.sessions.count_active())

    async def sweep(self) -> int:
        """Expire overdue sessions and reclaim store memory."""
        return await self.sessions.sweep()


def build_engine(
    settings: EngineSettings,
    store: KeyedStore,
    clock=None,
    purchase_history: Optional[PurchaseHistory] = None
) -> NegotiationEngine:
    """
    Assemble an engine whose collaborators all share one store and clock.

    Args:
        settings: Engine settings
        store: Keyed store shared by every collaborator
        clock: Time source (default: SystemClock)
        purchase_history: Purchase-count lookup (default: empty in-memory history)

    Returns:
        Ready-to-use NegotiationEngine
    """
    clock = clock or SystemClock()
    analytics = AnalyticsAggregator(
        store, clock=clock, realtime_window_hours=settings.analytics.realtime_window_hours
    )
    sessions = SessionManager(
        store,
        analytics,
        clock=clock,
        ttl_seconds=settings.session.ttl_seconds,
        retention_seconds=settings.session.retention_seconds,
    )
    rules = RuleStore(store, has_active_session=sessions.has_active, clock=clock)
    tokens = TokenIssuer(store, clock=clock, ttl_seconds=settings.tokens.ttl_seconds)
    rate_limiter = RateLimiter(
        store,
        max_offers=settings.rate_limiting.max_offers,
        window_seconds=settings.rate_limiting.window_seconds,
        clock=clock,
    )
    fraud = FraudDetector(store, settings.fraud, clock=clock)
    feature_flags = FeatureFlagStore(store, clock=clock)
    return NegotiationEngine(
        rules=rules,
        sessions=sessions,
        tokens=tokens,
        rate_limiter=rate_limiter,
        analytics=analytics,
        fraud=fraud,
        feature_flags=feature_flags,
        purchase_history=purchase_history,
        clock=clock,
        settings=settings,
    )
