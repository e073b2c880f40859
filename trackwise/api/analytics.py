"""Analytics endpoints for the dashboard: session summaries and heatmaps."""

import uuid
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query

from ..core.aggregation_service import AggregationService, Scope, TimeWindow, analytics_pool
from ..core.clock import ensure_utc
from ..core.database import SessionLocal
from ..core.errors import ScopeResolutionError
from ..core.scope import get_domain_scope
from ..crud.analytics import SqlAnalyticsRepository
from .. import schemas

router = APIRouter(prefix="/analytics", tags=["Analytics"])

aggregation_service = AggregationService(SqlAnalyticsRepository(SessionLocal))


def get_aggregation_service() -> AggregationService:
    return aggregation_service


@router.get("", response_model=schemas.AnalyticsResponse)
async def get_analytics(
    domain_id: Optional[uuid.UUID] = Query(None, alias="domainId", description="Restrict to one domain"),
    start_date: Optional[datetime] = Query(None, alias="startDate", description="Earliest session start"),
    end_date: Optional[datetime] = Query(None, alias="endDate", description="Latest session start"),
    limit: int = Query(100, ge=1, le=1000, description="Sessions to list"),
    scope: Scope = Depends(get_domain_scope),
    service: AggregationService = Depends(get_aggregation_service),
) -> schemas.AnalyticsResponse:
    """Session summary, rankings and hourly activity for the caller's domains."""
    if domain_id is not None:
        if domain_id not in scope:
            raise ScopeResolutionError("Domain not found", http_status=404)
        scope = frozenset({domain_id})

    window = TimeWindow(start=ensure_utc(start_date), end=ensure_utc(end_date))
    return await analytics_pool.run(service.analytics, scope, window, limit)


@router.get("/heatmap", response_model=schemas.HeatmapResponse)
async def get_heatmap(
    domain: Optional[str] = Query(None, description="Exact domain name"),
    days: int = Query(7, ge=1, le=365, description="Look-back window in days"),
    page: Optional[str] = Query(None, description="Substring of the page path"),
    scope: Scope = Depends(get_domain_scope),
    service: AggregationService = Depends(get_aggregation_service),
) -> schemas.HeatmapResponse:
    """Exit hotspots, click points and conversions for the caller's domains."""
    domain_name = domain.strip().lower() if domain else None
    return await analytics_pool.run(service.heatmap, scope, days, domain_name, page or None)
