"""Metrics collection for the ScamAtlas aggregator.

Provides pipeline counts, fetch job status and stalled report tracking.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from db.database import SessionLocal
from db.models import FetchJobModel, LocationStatModel, RawCommentModel, ScamReportModel

logger = logging.getLogger(__name__)


@dataclass
class SubredditMetrics:
    """Ingestion metrics for a single subreddit."""

    subreddit: str
    total_reports: int
    reports_last_24h: int
    reports_last_7d: int
    last_fetched_at: Optional[str]
    failed_units: int
    completed_units: int


@dataclass
class SystemMetrics:
    """Overall pipeline metrics."""

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


class MetricsCollector:
    """Collects and aggregates pipeline metrics."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        max_attempts: int = 3,
    ):
        """Initialize metrics collector.

        Args:
            session_factory: Session factory (defaults to SessionLocal)
            max_attempts: Attempts after which an unprocessed report counts as stalled
        """
        self.session_factory = session_factory or SessionLocal
        self.max_attempts = max_attempts
        self.db = None

    def __enter__(self):
        self.db = self.session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.db:
            self.db.close()

    def _ensure_db(self):
        """Ensure database session exists."""
        if self.db is None:
            self.db = self.session_factory()

    def _count(self, *criteria) -> int:
        return self.db.query(func.count(ScamReportModel.id)).filter(*criteria).scalar() or 0

    def get_subreddit_metrics(self, subreddit: str) -> SubredditMetrics:
        """Get ingestion metrics for one subreddit."""
        self._ensure_db()

        now = datetime.utcnow()
        jobs = self.db.query(FetchJobModel).filter(FetchJobModel.subreddit == subreddit).all()
        fetched = [j.last_fetched_at for j in jobs if j.last_fetched_at]

        return SubredditMetrics(
            subreddit=subreddit,
            total_reports=self._count(ScamReportModel.subreddit == subreddit),
            reports_last_24h=self._count(
                ScamReportModel.subreddit == subreddit,
                ScamReportModel.scraped_at >= now - timedelta(days=1),
            ),
            reports_last_7d=self._count(
                ScamReportModel.subreddit == subreddit,
                ScamReportModel.scraped_at >= now - timedelta(days=7),
            ),
            last_fetched_at=max(fetched).isoformat() if fetched else None,
            failed_units=sum(1 for j in jobs if j.status == "failed"),
            completed_units=sum(1 for j in jobs if j.status == "completed"),
        )

    def get_all_subreddit_metrics(self) -> list[SubredditMetrics]:
        """Get metrics for every subreddit seen in reports or the job ledger."""
        self._ensure_db()
        names = {r[0] for r in self.db.query(ScamReportModel.subreddit).distinct().all()}
        names |= {r[0] for r in self.db.query(FetchJobModel.subreddit).distinct().all()}
        return [self.get_subreddit_metrics(name) for name in sorted(names)]

    def get_system_metrics(self) -> SystemMetrics:
        """Get overall pipeline metrics."""
        self._ensure_db()

        total = self._count()
        processed = self._count(ScamReportModel.is_processed == True)
        stalled = self._count(
            ScamReportModel.is_processed == False,
            ScamReportModel.processing_attempts >= self.max_attempts,
        )
        incidents = self._count(
            ScamReportModel.is_processed == True,
            ScamReportModel.is_scam_story == True,
        )

        by_subreddit = dict(
            self.db.query(ScamReportModel.subreddit, func.count(ScamReportModel.id))
            .group_by(ScamReportModel.subreddit)
            .all()
        )
        by_source = dict(
            self.db.query(ScamReportModel.source, func.count(ScamReportModel.id))
            .group_by(ScamReportModel.source)
            .all()
        )

        total_comments = self.db.query(func.count(RawCommentModel.id)).scalar() or 0
        analyzed_comments = self.db.query(func.count(RawCommentModel.id)).filter(
            RawCommentModel.is_analyzed_for_scam == True
        ).scalar() or 0
        location_stats = self.db.query(func.count(LocationStatModel.id)).scalar() or 0

        return SystemMetrics(
            total_reports=total,
            reports_by_subreddit=by_subreddit,
            reports_by_source=by_source,
            processed_reports=processed,
            unprocessed_reports=total - processed,
            stalled_reports=stalled,
            incident_reports=incidents,
            total_comments=total_comments,
            analyzed_comments=analyzed_comments,
            location_stats_count=location_stats,
            cache_stats=self._get_cache_stats(),
            scheduler_stats=self._get_scheduler_stats(),
        )

    def _get_cache_stats(self) -> dict:
        """Get cache statistics."""
        try:
            from cache.redis_cache import get_cache
            return get_cache().get_stats()
        except Exception as e:
            return {"status": "unavailable", "error": str(e)}

    def _get_scheduler_stats(self) -> dict:
        """Get scheduler statistics."""
        try:
            from scheduler.scheduler import get_crawl_cursor, get_scheduler
            scheduler = get_scheduler()
            if not scheduler.is_available:
                return {"status": "unavailable"}

            return {
                "status": "running" if scheduler.is_running else "stopped",
                "available": scheduler.is_available,
                "total_jobs": len(scheduler.get_jobs()),
                "crawl_cursor": get_crawl_cursor(),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}

    def get_stalled_reports(self, limit: int = 20) -> list[dict]:
        """Get reports that used up their attempts without being processed.

        Args:
            limit: Maximum reports to return

        Returns:
            List of dicts with the last recorded error
        """
        self._ensure_db()

        reports = (
            self.db.query(ScamReportModel)
            .filter(
                ScamReportModel.is_processed == False,
                ScamReportModel.processing_attempts >= self.max_attempts,
            )
            .order_by(ScamReportModel.last_attempt_at.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "id": r.id,
                "reddit_id": r.reddit_id,
                "title": r.title,
                "attempts": r.processing_attempts,
                "last_error": (r.processing_errors or [None])[-1],
                "last_attempt_at": r.last_attempt_at.isoformat() if r.last_attempt_at else None,
            }
            for r in reports
        ]

    def get_recent_errors(self, limit: int = 20) -> list[dict]:
        """Get recent failed fetch units."""
        self._ensure_db()

        jobs = (
            self.db.query(FetchJobModel)
            .filter(FetchJobModel.status == "failed")
            .order_by(FetchJobModel.last_fetched_at.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "subreddit": j.subreddit,
                "keyword": j.keyword,
                "error": j.error_message,
                "timestamp": j.last_fetched_at.isoformat() if j.last_fetched_at else None,
            }
            for j in jobs
        ]

    def get_recent_activity(self, hours: int = 24) -> dict:
        """Get recent activity summary.

        Args:
            hours: Hours to look back
        """
        self._ensure_db()
        cutoff = datetime.utcnow() - timedelta(hours=hours)

        jobs = self.db.query(FetchJobModel).filter(FetchJobModel.last_fetched_at >= cutoff).all()
        return {
            "period_hours": hours,
            "new_reports": self._count(ScamReportModel.scraped_at >= cutoff),
            "processed_reports": self._count(
                ScamReportModel.is_processed == True,
                ScamReportModel.processed_at >= cutoff,
            ),
            "units_fetched": len(jobs),
            "units_completed": sum(1 for j in jobs if j.status == "completed"),
            "units_failed": sum(1 for j in jobs if j.status == "failed"),
        }
