"""
Administrative routes: rules, the feature flag, analytics and maintenance.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import Response

from haggle.db import get_engine
from haggle.models import FeatureFlag, NegotiationRule
from haggle.schemas import (
    DashboardResponse,
    FeatureFlagBody,
    FeatureFlagResponse,
    RealtimeResponse,
    RuleBody,
    RuleResponse,
    SweepResponse,
)
from haggle.services import NegotiationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/negotiation/admin")

DEFAULT_REPORT_DAYS = 30


def _date_range(engine: NegotiationEngine, start_date: Optional[date], end_date: Optional[date]):
    end = end_date or engine.clock.now().date()
    start = start_date or end - timedelta(days=DEFAULT_REPORT_DAYS)
    return start, end


@router.post("/rules", response_model=RuleResponse)
async def upsert_rule(
    body: RuleBody,
    admin_user: Optional[str] = Header(None, alias="X-Admin-User"),
    engine: NegotiationEngine = Depends(get_engine)
):
    """
    Create or replace the negotiation rule for a SKU.

    Returns:
        The stored rule
    """
    rule = await engine.rules.upsert(NegotiationRule.from_dict(body.model_dump()), updated_by=admin_user)
    return RuleResponse.model_validate(rule.to_dict())


@router.delete("/rules/{sku}")
async def delete_rule(sku: str, engine: NegotiationEngine = Depends(get_engine)):
    await engine.rules.delete(sku)
    return {"deleted": sku}


@router.get("/feature-flag", response_model=FeatureFlagResponse)
async def get_feature_flag(engine: NegotiationEngine = Depends(get_engine)):
    flag = await engine.feature_flags.get()
    return FeatureFlagResponse.model_validate(flag.to_dict())


@router.put("/feature-flag", response_model=FeatureFlagResponse)
async def put_feature_flag(
    body: FeatureFlagBody,
    admin_user: Optional[str] = Header(None, alias="X-Admin-User"),
    engine: NegotiationEngine = Depends(get_engine)
):
    """
    Switch negotiation on or off and set its rollout targets.

    Applies to sessions opened after the change.
    """
    flag = await engine.feature_flags.put(FeatureFlag.from_dict(body.model_dump()), updated_by=admin_user)
    return FeatureFlagResponse.model_validate(flag.to_dict())


@router.get("/analytics", response_model=DashboardResponse)
async def analytics_dashboard(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    sku: Optional[str] = Query(None),
    group_by: str = Query("date,sku", alias="groupBy", description="Comma-separated: date, sku, segment"),
    baseline_conversion_rate: Optional[float] = Query(None, alias="baselineConversionRate"),
    engine: NegotiationEngine = Depends(get_engine)
):
    """
    Rollups, totals and conversion lift for a date range.

    The baseline defaults to BASELINE_CONVERSION_RATE when not given.
    """
    start, end = _date_range(engine, start_date, end_date)
    if baseline_conversion_rate is None:
        baseline_conversion_rate = engine.settings.analytics.baseline_conversion_rate
    fields = [name.strip() for name in group_by.split(",") if name.strip()]
    dashboard = await engine.analytics.dashboard(
        start, end, sku, baseline_conversion_rate, group_by=fields
    )
    return DashboardResponse.model_validate(dashboard)


@router.get("/analytics/realtime", response_model=RealtimeResponse)
async def analytics_realtime(engine: NegotiationEngine = Depends(get_engine)):
    """Active sessions, recent acceptances and response latency"""
    return RealtimeResponse.model_validate(await engine.realtime())


@router.get("/analytics/export")
async def analytics_export(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    sku: Optional[str] = Query(None),
    engine: NegotiationEngine = Depends(get_engine)
):
    """Download the rollup as CSV"""
    start, end = _date_range(engine, start_date, end_date)
    content = await engine.analytics.export_csv(start, end, sku)
    filename = f"negotiation-analytics-{start.isoformat()}-{end.isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/sweep", response_model=SweepResponse)
async def sweep(engine: NegotiationEngine = Depends(get_engine)):
    """Expire overdue sessions and reclaim store memory"""
    expired = await engine.sweep()
    return SweepResponse(expired_sessions=expired)
