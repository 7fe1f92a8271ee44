"""
Analytics aggregator for negotiation outcomes.

Collects one AnalyticsRecord per closed session plus a latency sample per
evaluated offer, and turns them into rollups, a dashboard, a realtime view
and CSV exports for merchants.
"""

import csv
import io
import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from haggle.clock import SystemClock
from haggle.error_handling import ValidationError
from haggle.models import AnalyticsRecord, Segment, SessionStatus
from haggle.storage import KeyedStore


logger = logging.getLogger(__name__)

OUTCOMES_PREFIX = "analytics:outcomes:"
LATENCY_PREFIX = "analytics:latency:"
BLOCKED_PREFIX = "analytics:blocked:"

GROUP_FIELDS = ("date", "sku", "segment")
PERK_TYPES = ("free_shipping", "free_gift", "extended_warranty")
FRAUD_FLAGS = ("extreme_lowball", "excessive_negotiations", "multi_account_ip", "duplicate_offer")

CSV_FIELDS = [
    "date", "sku", "segment",
    "total_negotiations", "accepted_count", "rejected_count", "expired_count",
    "conversion_rate", "avg_rounds", "avg_discount_pct", "avg_margin_impact",
    "avg_time_to_decision_seconds", "total_revenue", "total_discount_given",
    "round1_count", "round2_count", "round3_count", "round4_plus_count",
    "new_conversion_rate", "returning_conversion_rate", "vip_conversion_rate",
    "free_shipping_offered", "free_gift_offered", "extended_warranty_offered",
    "bundle_offered", "flagged_count",
]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


@dataclass
class RollupRow:
    """Aggregated outcomes for one group of sessions.

    Attributes:
        group: Grouping values, e.g. {"date": "2024-01-01", "sku": "PHONE-1"}
        conversion_rate: Accepted sessions as a percentage of all sessions
        avg_rounds: Mean rounds over accepted and rejected sessions
        avg_discount_pct: Mean discount over accepted sessions
        avg_margin_impact: Mean margin change (percentage points) over accepted sessions
        round_distribution: Sessions by rounds used
        segment_breakdown: Per-segment totals and conversion
        perk_usage: How often each perk type and bundles were offered
        flagged_count: Sessions carrying at least one fraud flag
        fraud_flags: Sessions per fraud flag
    """
    group: Dict[str, str]
    total_negotiations: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    expired_count: int = 0
    conversion_rate: float = 0.0
    avg_rounds: float = 0.0
    avg_discount_pct: float = 0.0
    avg_margin_impact: float = 0.0
    avg_time_to_decision_seconds: float = 0.0
    total_revenue: float = 0.0
    total_discount_given: float = 0.0
    round_distribution: Dict[str, int] = field(default_factory=dict)
    segment_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)
    perk_usage: Dict[str, int] = field(default_factory=dict)
    flagged_count: int = 0
    fraud_flags: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_csv_row(self) -> dict:
        row = {name: self.group.get(name, "") for name in GROUP_FIELDS}
        row.update({
            "total_negotiations": self.total_negotiations,
            "accepted_count": self.accepted_count,
            "rejected_count": self.rejected_count,
            "expired_count": self.expired_count,
            "conversion_rate": f"{self.conversion_rate:.2f}",
            "avg_rounds": f"{self.avg_rounds:.2f}",
            "avg_discount_pct": f"{self.avg_discount_pct:.2f}",
            "avg_margin_impact": f"{self.avg_margin_impact:.2f}",
            "avg_time_to_decision_seconds": f"{self.avg_time_to_decision_seconds:.0f}",
            "total_revenue": f"{self.total_revenue:.2f}",
            "total_discount_given": f"{self.total_discount_given:.2f}",
            "round1_count": self.round_distribution.get("round1", 0),
            "round2_count": self.round_distribution.get("round2", 0),
            "round3_count": self.round_distribution.get("round3", 0),
            "round4_plus_count": self.round_distribution.get("round4_plus", 0),
        })
        for segment in Segment:
            breakdown = self.segment_breakdown.get(segment.value, {})
            row[f"{segment.value}_conversion_rate"] = f"{breakdown.get('conversion_rate', 0.0):.2f}"
        for perk in PERK_TYPES:
            row[f"{perk}_offered"] = self.perk_usage.get(perk, 0)
        row["bundle_offered"] = self.perk_usage.get("bundle", 0)
        row["flagged_count"] = self.flagged_count
        return row


def summarize(records: List[AnalyticsRecord], group: Optional[Dict[str, str]] = None) -> RollupRow:
    """
    Aggregate a list of records into one rollup row.

    Args:
        records: Outcomes to aggregate
        group: Grouping values the records share

    Returns:
        RollupRow for the records
    """
    accepted = [r for r in records if r.outcome == SessionStatus.ACCEPTED]
    rejected = [r for r in records if r.outcome == SessionStatus.REJECTED]
    expired = [r for r in records if r.outcome == SessionStatus.EXPIRED]
    completed = accepted + rejected
    total = len(records)

    row = RollupRow(group=dict(group or {}))
    row.total_negotiations = total
    row.accepted_count = len(accepted)
    row.rejected_count = len(rejected)
    row.expired_count = len(expired)
    row.conversion_rate = len(accepted) / total * 100 if total else 0.0
    row.avg_rounds = _mean([r.rounds for r in completed])
    row.avg_discount_pct = _mean([r.discount_pct for r in accepted])
    row.avg_margin_impact = _mean([r.margin_impact for r in accepted])
    row.avg_time_to_decision_seconds = _mean([r.time_to_decision_seconds for r in completed])
    row.total_revenue = round(sum(r.revenue for r in accepted), 2)
    row.total_discount_given = round(sum(r.discount_given for r in accepted), 2)

    row.round_distribution = {
        "round1": sum(1 for r in records if r.rounds == 1),
        "round2": sum(1 for r in records if r.rounds == 2),
        "round3": sum(1 for r in records if r.rounds == 3),
        "round4_plus": sum(1 for r in records if r.rounds >= 4),
    }

    for segment in Segment:
        in_segment = [r for r in records if r.segment == segment]
        if not in_segment:
            continue
        seg_accepted = [r for r in in_segment if r.outcome == SessionStatus.ACCEPTED]
        row.segment_breakdown[segment.value] = {
            "total": len(in_segment),
            "accepted": len(seg_accepted),
            "conversion_rate": len(seg_accepted) / len(in_segment) * 100,
            "avg_discount_pct": _mean([r.discount_pct for r in seg_accepted]),
        }

    row.perk_usage = {perk: sum(1 for r in records if perk in r.perks_offered) for perk in PERK_TYPES}
    row.perk_usage["bundle"] = sum(1 for r in records if r.bundle_offered)
    row.flagged_count = sum(1 for r in records if r.fraud_flags)
    row.fraud_flags = {flag: sum(1 for r in records if flag in r.fraud_flags) for flag in FRAUD_FLAGS}
    return row


class AnalyticsAggregator:
    """
    Records negotiation outcomes and reports on them.

    Attributes:
        store: Keyed store holding outcome and latency lists
        realtime_window_hours: Look-back window for the realtime view
    """

    def __init__(self, store: KeyedStore, clock=None, realtime_window_hours: int = 24):
        self.store = store
        self.clock = clock or SystemClock()
        self.realtime_window_hours = realtime_window_hours

    async def record_outcome(self, record: AnalyticsRecord) -> None:
        await self.store.append(f"{OUTCOMES_PREFIX}{record.date.isoformat()}", record.to_dict())
        logger.info(
            f"Recorded {record.outcome.value} outcome for SKU {record.sku} "
            f"after {record.rounds} rounds"
        )

    async def record_round(self, at: datetime, processing_ms: float) -> None:
        """Store one offer-processing latency sample."""
        await self.store.append(
            f"{LATENCY_PREFIX}{at.date().isoformat()}",
            {"at": at.isoformat(), "processing_ms": processing_ms},
        )

    async def record_block(self, at: datetime, sku: str, flags: Sequence[str]) -> None:
        """Store a negotiation attempt refused by fraud screening."""
        await self.store.append(
            f"{BLOCKED_PREFIX}{at.date().isoformat()}",
            {"at": at.isoformat(), "sku": sku, "flags": list(flags)},
        )
        logger.warning(f"Blocked negotiation for SKU {sku}: {', '.join(flags)}")

    async def blocked(self, start: date, end: date, sku: Optional[str] = None) -> List[dict]:
        """Blocked attempts between start and end (inclusive) for an optional SKU."""
        attempts = []
        for day in _days(start, end):
            for data in await self.store.read_list(f"{BLOCKED_PREFIX}{day.isoformat()}"):
                if sku is None or data["sku"] == sku:
                    attempts.append(data)
        return attempts

    async def outcomes(self, start: date, end: date, sku: Optional[str] = None) -> List[AnalyticsRecord]:
        """Every recorded outcome between start and end (inclusive) for an optional SKU."""
        records = []
        for day in _days(start, end):
            for data in await self.store.read_list(f"{OUTCOMES_PREFIX}{day.isoformat()}"):
                record = AnalyticsRecord.from_dict(data)
                if sku is None or record.sku == sku:
                    records.append(record)
        return records

    async def rollup(
        self,
        start: date,
        end: date,
        sku: Optional[str] = None,
        group_by: Sequence[str] = ("date", "sku")
    ) -> List[RollupRow]:
        """
        Aggregate outcomes into rows grouped by day, SKU and/or segment.

        Args:
            start: First day included
            end: Last day included
            sku: Restrict to one SKU
            group_by: Any of "date", "sku", "segment"; empty for one overall row

        Returns:
            One RollupRow per group, ordered by group values

        Raises:
            ValidationError: On an unknown grouping field or start after end
        """
        if start > end:
            raise ValidationError("startDate must not be after endDate",
                                  {"start": start.isoformat(), "end": end.isoformat()})
        unknown = [name for name in group_by if name not in GROUP_FIELDS]
        if unknown:
            raise ValidationError(f"Cannot group analytics by {', '.join(unknown)}",
                                  {"allowed": list(GROUP_FIELDS)})

        groups: Dict[tuple, List[AnalyticsRecord]] = defaultdict(list)
        for record in await self.outcomes(start, end, sku):
            values = {
                "date": record.date.isoformat(),
                "sku": record.sku,
                "segment": record.segment.value,
            }
            groups[tuple(values[name] for name in group_by)].append(record)

        return [
            summarize(records, dict(zip(group_by, key)))
            for key, records in sorted(groups.items())
        ]

    async def dashboard(
        self,
        start: date,
        end: date,
        sku: Optional[str] = None,
        baseline_conversion_rate: Optional[float] = None,
        group_by: Sequence[str] = ("date", "sku")
    ) -> dict:
        """
        Rollups plus overall totals and conversion lift.

        Conversion lift is the overall conversion rate minus the supplied
        conversion rate of non-negotiated traffic, in percentage points.
        """
        rows = await self.rollup(start, end, sku, group_by)
        totals = summarize(await self.outcomes(start, end, sku))
        baseline = baseline_conversion_rate or 0.0
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "sku": sku,
            "rows": [row.to_dict() for row in rows],
            "totals": totals.to_dict(),
            "baseline_conversion_rate": baseline,
            "conversion_lift": totals.conversion_rate - baseline,
            "blocked_attempts": len(await self.blocked(start, end, sku)),
        }

    async def realtime(self, active_sessions: int) -> dict:
        """
        Live view over the trailing window.

        Args:
            active_sessions: Sessions currently negotiating

        Returns:
            Active sessions, recent closed, accepted and blocked counts and
            mean response latency
        """
        now = self.clock.now()
        since = now - timedelta(hours=self.realtime_window_hours)

        recent = [
            record for record in await self.outcomes(since.date(), now.date())
            if record.closed_at >= since
        ]

        latencies = []
        for day in _days(since.date(), now.date()):
            for sample in await self.store.read_list(f"{LATENCY_PREFIX}{day.isoformat()}"):
                if datetime.fromisoformat(sample["at"]) >= since:
                    latencies.append(sample["processing_ms"])

        blocked = [
            attempt for attempt in await self.blocked(since.date(), now.date())
            if datetime.fromisoformat(attempt["at"]) >= since
        ]

        return {
            "active_negotiations": active_sessions,
            "recent_accepted": sum(1 for r in recent if r.outcome == SessionStatus.ACCEPTED),
            "recent_closed": len(recent),
            "recent_blocked": len(blocked),
            "avg_response_time_ms": _mean(latencies),
            "window_hours": self.realtime_window_hours,
            "timestamp": now.isoformat(),
        }

    async def export_csv(self, start: date, end: date, sku: Optional[str] = None) -> str:
        """Render the date/SKU/segment rollup as CSV text."""
        rows = await self.rollup(start, end, sku, group_by=GROUP_FIELDS)
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row.to_csv_row())
        logger.info(f"Exported {len(rows)} analytics rows for {start} to {end}")
        return buffer.getvalue()
