"""Scam report, location and statistics API routes."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from cache.decorators import cached_response
from data_models.location_stat import LocationStat
from data_models.scam_report import ScamCategory, ScamReport, ScamReportDetail, VerificationStatus
from services.scam_reports import ReportNotFoundError, ScamReportService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_report_service() -> ScamReportService:
    """Dependency returning the report service (overridden in tests)."""
    return ScamReportService()


class ReportListResponse(BaseModel):
    """Response model for report list."""

    reports: list[ScamReport]
    total: int
    filters: dict


class CountResponse(BaseModel):
    """Response for counter updates."""

    success: bool
    count: int


class FlagRequest(BaseModel):
    """Request model for flagging a report."""

    report_type: Literal["fake", "inappropriate", "duplicate", "other"]
    reason: Optional[str] = None


class CountrySummaryResponse(BaseModel):
    """Response model for a country risk summary."""

    country: str
    total_reports: int
    risk_level: Optional[str]
    message: str


@router.get("/reports", response_model=ReportListResponse)
async def list_reports(
    country: Optional[str] = Query(None, description="Filter by country"),
    scam_type: Optional[ScamCategory] = Query(None, description="Filter by scam category"),
    verification_status: Optional[VerificationStatus] = Query(None, description="Filter by moderation state"),
    sort_by: Literal["date", "upvotes", "views"] = Query("date"),
    limit: int = Query(50, ge=1, le=200, description="Maximum reports to return"),
    service: ScamReportService = Depends(get_report_service),
):
    """List processed scam reports."""
    reports = service.list_reports(
        country=country,
        scam_type=scam_type.value if scam_type else None,
        verification_status=verification_status.value if verification_status else None,
        sort_by=sort_by,
        limit=limit,
    )
    return ReportListResponse(
        reports=reports,
        total=len(reports),
        filters={
            "country": country,
            "scam_type": scam_type.value if scam_type else None,
            "verification_status": verification_status.value if verification_status else None,
            "sort_by": sort_by,
        },
    )


@router.get("/reports/search", response_model=list[ScamReport])
async def search_reports(
    q: str = Query(..., min_length=2, description="Search text"),
    country: Optional[str] = Query(None),
    scam_type: Optional[ScamCategory] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    service: ScamReportService = Depends(get_report_service),
):
    """Search processed reports by title, body and summary."""
    return service.search_reports(
        q,
        country=country,
        scam_type=scam_type.value if scam_type else None,
        limit=limit,
    )


@router.get("/reports/{report_id}", response_model=ScamReportDetail)
async def get_report(report_id: str, service: ScamReportService = Depends(get_report_service)):
    """Get a single report with its comments."""
    try:
        return service.get_report(report_id)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")


@router.post("/reports/{report_id}/helpful", response_model=CountResponse)
async def mark_helpful(report_id: str, service: ScamReportService = Depends(get_report_service)):
    """Mark a report as helpful."""
    try:
        return CountResponse(success=True, count=service.mark_helpful(report_id))
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")


@router.post("/reports/{report_id}/report", response_model=CountResponse)
async def flag_report(
    report_id: str,
    request: FlagRequest,
    service: ScamReportService = Depends(get_report_service),
):
    """Flag a report for moderation."""
    try:
        count = service.report_story(report_id, request.report_type, request.reason)
    except ReportNotFoundError:
        raise HTTPException(status_code=404, detail="Report not found")
    return CountResponse(success=True, count=count)


@router.get("/locations/stats", response_model=list[LocationStat])
async def get_location_stats(
    country: Optional[str] = Query(None, description="Filter by country"),
    limit: int = Query(100, ge=1, le=500),
    service: ScamReportService = Depends(get_report_service),
):
    """Get location rollups sorted by incident count."""
    return service.get_location_stats(country=country, limit=limit)


@router.get("/locations/top-countries")
@cached_response(category="stats")
async def get_top_countries(
    limit: int = Query(10, ge=1, le=100),
    service: ScamReportService = Depends(get_report_service),
):
    """Get the countries with the most incidents."""
    return service.get_top_countries(limit=limit)


@router.get("/locations/summary/{country}", response_model=CountrySummaryResponse)
async def get_country_summary(country: str, service: ScamReportService = Depends(get_report_service)):
    """Get a short risk summary for a country (aliases such as UK or Turkey accepted)."""
    return CountrySummaryResponse(**service.summarize_country(country))


@router.get("/stats/scam-types")
@cached_response(category="stats")
async def get_scam_type_stats(service: ScamReportService = Depends(get_report_service)):
    """Get incident counts and shares per category."""
    return service.get_scam_type_stats()


@router.get("/stats/trending", response_model=list[ScamReport])
async def get_trending(
    period: Literal["day", "week", "month"] = Query("week"),
    limit: int = Query(10, ge=1, le=50),
    service: ScamReportService = Depends(get_report_service),
):
    """Get recent reports ranked by views and upvotes."""
    return service.get_trending(period=period, limit=limit)


@router.get("/stats/total")
@cached_response(category="stats")
async def get_total(service: ScamReportService = Depends(get_report_service)):
    """Get the total number of recorded incidents."""
    return {"total": service.get_total_scam_count()}


@router.get("/stats/helpful-comments")
async def get_helpful_comments(
    limit: int = Query(20, ge=1, le=100),
    report_id: Optional[str] = Query(None, description="Only comments on this report"),
    service: ScamReportService = Depends(get_report_service),
):
    """Get comments that contain advice for travellers."""
    return service.get_helpful_comments(limit=limit, report_id=report_id)
