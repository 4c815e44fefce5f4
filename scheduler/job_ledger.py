"""Fetch job ledger: one row per (subreddit, keyword) work unit."""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from data_models.fetch_job import FetchJobStatus
from db.database import SessionLocal
from db.models import FetchJobModel

logger = logging.getLogger(__name__)

MANUAL_STOP_REASON = "Manually stopped"


class FetchJobLedger:
    """Upserts progress of work units across time-boxed batch runs."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        """Initialize the ledger.

        Args:
            session_factory: Session factory (defaults to SessionLocal)
        """
        self.session_factory = session_factory or SessionLocal

    def _upsert(
        self,
        subreddit: str,
        keyword: str,
        status: FetchJobStatus,
        error_message: str | None = None,
        posts_processed: int = 0,
    ) -> None:
        db = self.session_factory()
        try:
            for attempt in range(2):
                job = (
                    db.query(FetchJobModel)
                    .filter(FetchJobModel.subreddit == subreddit, FetchJobModel.keyword == keyword)
                    .first()
                )
                if job is None:
                    job = FetchJobModel(subreddit=subreddit, keyword=keyword, posts_processed=0)
                    db.add(job)

                job.status = status.value
                job.error_message = error_message
                if status in (FetchJobStatus.COMPLETED, FetchJobStatus.FAILED):
                    job.last_fetched_at = datetime.utcnow()
                job.posts_processed = (job.posts_processed or 0) + posts_processed

                try:
                    db.commit()
                    return
                except IntegrityError:
                    # Row created concurrently, update it instead
                    db.rollback()
                    if attempt == 1:
                        raise
        except Exception as e:
            db.rollback()
            logger.error(f"Error updating fetch job r/{subreddit} '{keyword}': {e}")
            raise
        finally:
            db.close()

    def mark_processing(self, subreddit: str, keyword: str) -> None:
        """Record that a unit has started."""
        self._upsert(subreddit, keyword, FetchJobStatus.PROCESSING)

    def mark_completed(self, subreddit: str, keyword: str, posts_processed: int) -> None:
        """Record a successful unit and add to its cumulative post count."""
        self._upsert(subreddit, keyword, FetchJobStatus.COMPLETED, posts_processed=posts_processed)

    def mark_failed(self, subreddit: str, keyword: str, error_message: str) -> None:
        """Record a failed unit with the upstream error."""
        self._upsert(subreddit, keyword, FetchJobStatus.FAILED, error_message=error_message)

    def get_job(self, subreddit: str, keyword: str) -> FetchJobModel | None:
        db = self.session_factory()
        try:
            return (
                db.query(FetchJobModel)
                .filter(FetchJobModel.subreddit == subreddit, FetchJobModel.keyword == keyword)
                .first()
            )
        finally:
            db.close()

    def stop_all_jobs(self) -> int:
        """Flip every pending or processing job to failed.

        Returns:
            Number of jobs stopped
        """
        db = self.session_factory()
        try:
            stopped = (
                db.query(FetchJobModel)
                .filter(
                    FetchJobModel.status.in_(
                        [FetchJobStatus.PENDING.value, FetchJobStatus.PROCESSING.value]
                    )
                )
                .update(
                    {
                        FetchJobModel.status: FetchJobStatus.FAILED.value,
                        FetchJobModel.error_message: MANUAL_STOP_REASON,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            logger.info(f"Stopped {stopped} fetch jobs")
            return stopped
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_job_stats(self, recent: int = 10) -> dict:
        """Summarize the ledger.

        Args:
            recent: Number of most recently fetched jobs to include

        Returns:
            Dict with counts per status, total posts and recent jobs
        """
        db = self.session_factory()
        try:
            by_status = {status.value: 0 for status in FetchJobStatus}
            for status, count in (
                db.query(FetchJobModel.status, func.count(FetchJobModel.id))
                .group_by(FetchJobModel.status)
                .all()
            ):
                by_status[status] = count

            total_posts = db.query(func.sum(FetchJobModel.posts_processed)).scalar() or 0

            recent_jobs = (
                db.query(FetchJobModel)
                .filter(FetchJobModel.last_fetched_at.isnot(None))
                .order_by(FetchJobModel.last_fetched_at.desc())
                .limit(recent)
                .all()
            )

            return {
                "total": sum(by_status.values()),
                **by_status,
                "total_posts_processed": int(total_posts),
                "recent_jobs": [
                    {
                        "subreddit": job.subreddit,
                        "keyword": job.keyword,
                        "status": job.status,
                        "posts_processed": job.posts_processed,
                        "last_fetched_at": job.last_fetched_at.isoformat() if job.last_fetched_at else None,
                        "error_message": job.error_message,
                    }
                    for job in recent_jobs
                ],
            }
        finally:
            db.close()

    def clear_job_history(self) -> int:
        """Delete every ledger row.

        Returns:
            Number of rows deleted
        """
        db = self.session_factory()
        try:
            deleted = db.query(FetchJobModel).delete(synchronize_session=False)
            db.commit()
            logger.info(f"Cleared {deleted} fetch jobs")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
