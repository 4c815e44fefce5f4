"""Pipeline control API routes: batches, job ledger, enrichment, location repair."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from cache.decorators import invalidate_api_cache
from data_models.fetch_job import BatchResult
from db.database import SessionLocal
from processing.errors import ConfigurationError
from scheduler.job_ledger import FetchJobLedger

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ledger() -> FetchJobLedger:
    """Dependency returning the fetch job ledger (overridden in tests)."""
    return FetchJobLedger()


def get_session_factory():
    """Dependency returning the session factory (overridden in tests)."""
    return SessionLocal


class BatchRequest(BaseModel):
    """Request model for running one batch."""

    batch_number: int = Field(0, ge=0)
    batch_size: int = Field(5, ge=1, le=50)
    per_term_limit: int = Field(100, ge=1, le=100)
    start_offset: int = Field(0, ge=0)


class ScrapeUrlRequest(BaseModel):
    """Request model for scraping one thread URL."""

    url: str


class ResetRequest(BaseModel):
    """Request model for returning reports to the unprocessed state."""

    report_ids: Optional[list[str]] = None
    only_failed: bool = False


@router.post("/pipeline/batch", response_model=BatchResult)
def run_batch(request: BatchRequest):
    """Run one slice of the (subreddit x keyword) matrix."""
    from scheduler.batch import BatchRunner

    runner = BatchRunner()
    try:
        return runner.run_batch(
            request.batch_number,
            request.batch_size,
            request.per_term_limit,
            start_offset=request.start_offset,
        )
    finally:
        runner.scraper.close()


@router.post("/pipeline/stop-jobs")
async def stop_jobs(ledger: FetchJobLedger = Depends(get_ledger)):
    """Mark every pending or processing unit as failed."""
    return {"stopped": ledger.stop_all_jobs()}


@router.get("/pipeline/jobs/stats")
async def get_job_stats(
    recent: int = Query(10, ge=1, le=100),
    ledger: FetchJobLedger = Depends(get_ledger),
):
    """Summarize the fetch job ledger."""
    return ledger.get_job_stats(recent=recent)


@router.delete("/pipeline/jobs")
async def clear_jobs(ledger: FetchJobLedger = Depends(get_ledger)):
    """Delete the fetch job history."""
    return {"deleted": ledger.clear_job_history()}


@router.post("/pipeline/process")
def process_reports(limit: int = Query(10, ge=1, le=100)):
    """Enrich unprocessed reports."""
    from processing.enrichment import EnrichmentEngine

    try:
        engine = EnrichmentEngine()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    summary = engine.process_unprocessed(limit=limit)
    invalidate_api_cache()
    return summary


@router.post("/pipeline/comments/analyze")
def analyze_comments(limit: int = Query(20, ge=1, le=200)):
    """Mine comments of processed reports for additional incidents."""
    from processing.comment_analysis import CommentAnalyzer

    try:
        analyzer = CommentAnalyzer()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    summary = analyzer.analyze_comments(limit=limit)
    invalidate_api_cache()
    return summary


@router.post("/pipeline/reset")
def reset_reports(request: ResetRequest, session_factory=Depends(get_session_factory)):
    """Return reports to the unprocessed state (needs no model or geocoder credentials)."""
    from processing.enrichment import reset_reports as reset_enrichment

    reset = reset_enrichment(request.report_ids, request.only_failed, session_factory=session_factory)
    invalidate_api_cache()
    return {"reset": reset}


@router.post("/pipeline/locations/normalize")
def normalize_locations(
    limit: int = Query(50, ge=1, le=500),
    only_missing: bool = Query(True),
):
    """Geocode processed incidents and re-key them to canonical names."""
    from processing.geocoding import get_geocoder
    from processing.location_backfill import LocationBackfill

    try:
        backfill = LocationBackfill(geocoder=get_geocoder())
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    summary = backfill.normalize_report_locations(limit=limit, only_missing=only_missing)
    invalidate_api_cache()
    return summary


@router.post("/pipeline/locations/regeocode")
def regeocode_locations(
    force: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1),
):
    """Recompute coordinates of processed incidents."""
    from processing.geocoding import get_geocoder
    from processing.location_backfill import LocationBackfill

    try:
        backfill = LocationBackfill(geocoder=get_geocoder())
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    summary = backfill.regeocode_reports(force=force, limit=limit)
    invalidate_api_cache()
    return summary


@router.post("/pipeline/locations/reprocess-unknown")
def reprocess_unknown_locations(limit: int = Query(10, ge=1, le=100)):
    """Re-classify processed incidents whose country is unknown."""
    from processing.enrichment import EnrichmentEngine
    from processing.location_backfill import LocationBackfill

    try:
        engine = EnrichmentEngine()
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    backfill = LocationBackfill(geocoder=engine.geocoder, aggregator=engine.aggregator)
    summary = backfill.reprocess_unknown_locations(engine, limit=limit)
    invalidate_api_cache()
    return summary


@router.post("/pipeline/scrape-url")
def scrape_url(request: ScrapeUrlRequest):
    """Scrape and store a single Reddit thread through Firecrawl."""
    from ingestion.web.firecrawl_scraper import FirecrawlScraper

    try:
        with FirecrawlScraper() as scraper:
            result = scraper.scrape_url(request.url)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not result["success"]:
        raise HTTPException(status_code=422, detail=result["error"])
    return result
