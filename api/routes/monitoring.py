"""Monitoring and metrics API routes."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)

router = APIRouter()


def get_metrics_collector() -> MetricsCollector:
    """Dependency returning a metrics collector (overridden in tests)."""
    return MetricsCollector()


class SubredditMetricsResponse(BaseModel):
    """Response model for subreddit metrics."""

    subreddit: str
    total_reports: int
    reports_last_24h: int
    reports_last_7d: int
    last_fetched_at: Optional[str]
    failed_units: int
    completed_units: int


class SystemMetricsResponse(BaseModel):
    """Response model for pipeline metrics."""

    total_reports: int
    reports_by_subreddit: dict
    reports_by_source: dict
    processed_reports: int
    unprocessed_reports: int
    stalled_reports: int
    incident_reports: int
    total_comments: int
    analyzed_comments: int
    location_stats_count: int
    cache_stats: dict
    scheduler_stats: dict


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    version: str
    database: str
    cache: str
    scheduler: str
    timestamp: str


@router.get("/monitoring/health", response_model=HealthResponse)
async def health_check():
    """Comprehensive health check."""
    from sqlalchemy import text

    from db.database import engine

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)[:50]}"

    try:
        from cache.redis_cache import get_cache
        cache_status = get_cache().get_stats().get("status", "unknown")
    except Exception:
        cache_status = "unavailable"

    try:
        from scheduler.scheduler import get_scheduler
        scheduler = get_scheduler()
        if scheduler.is_running:
            scheduler_status = "running"
        elif scheduler.is_available:
            scheduler_status = "stopped"
        else:
            scheduler_status = "unavailable"
    except Exception:
        scheduler_status = "unavailable"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version="0.1.0",
        database=db_status,
        cache=cache_status,
        scheduler=scheduler_status,
        timestamp=datetime.utcnow().isoformat(),
    )


@router.get("/monitoring/metrics", response_model=SystemMetricsResponse)
async def get_system_metrics(collector: MetricsCollector = Depends(get_metrics_collector)):
    """Get overall pipeline metrics."""
    with collector:
        metrics = collector.get_system_metrics()
    return SystemMetricsResponse(**metrics.__dict__)


@router.get("/monitoring/subreddits", response_model=list[SubredditMetricsResponse])
async def get_subreddit_metrics(collector: MetricsCollector = Depends(get_metrics_collector)):
    """Get ingestion metrics per subreddit."""
    with collector:
        return [SubredditMetricsResponse(**m.__dict__) for m in collector.get_all_subreddit_metrics()]


@router.get("/monitoring/stalled")
async def get_stalled_reports(
    limit: int = Query(20, ge=1, le=100),
    collector: MetricsCollector = Depends(get_metrics_collector),
):
    """Get reports that used up their processing attempts."""
    with collector:
        stalled = collector.get_stalled_reports(limit=limit)
    return {"stalled": stalled, "total": len(stalled)}


@router.get("/monitoring/errors")
async def get_recent_errors(
    limit: int = Query(20, ge=1, le=100),
    collector: MetricsCollector = Depends(get_metrics_collector),
):
    """Get recently failed fetch units."""
    with collector:
        errors = collector.get_recent_errors(limit=limit)
    return {"errors": errors, "total": len(errors)}


@router.get("/monitoring/activity")
async def get_recent_activity(
    hours: int = Query(24, ge=1, le=168),
    collector: MetricsCollector = Depends(get_metrics_collector),
):
    """Get a summary of recent pipeline activity."""
    with collector:
        return collector.get_recent_activity(hours=hours)
