"""APScheduler integration for the ingestion and enrichment pipeline.

Provides background scheduling of the crawl, enrichment and comment
analysis jobs with persistence.
"""

import logging
import os
import threading
from datetime import datetime
from typing import Callable

import yaml
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_JOBS = {
    "reddit_batch": {"enabled": True, "interval_minutes": 60, "batch_size": 5, "per_term_limit": 100},
    "enrich_reports": {"enabled": True, "interval_minutes": 15, "limit": 10},
    "analyze_comments": {"enabled": True, "interval_minutes": 60, "limit": 20},
}


class PipelineScheduler:
    """Manages scheduled pipeline jobs.

    Uses APScheduler with SQLite persistence for job state.
    """

    def __init__(
        self,
        db_url: str | None = None,
        config_path: str = "configs/scheduler.yaml",
    ):
        """Initialize scheduler.

        Args:
            db_url: SQLAlchemy URL for job persistence
            config_path: Path to scheduler configuration
        """
        self.config = self._load_config(config_path)
        self.scheduler = None
        self._running = False

        if not os.getenv("SCHEDULER_ENABLED", "true").lower() == "true":
            logger.info("Scheduler disabled via SCHEDULER_ENABLED env var")
            return

        db_url = db_url or os.getenv("DATABASE_URL", "sqlite:///./data/scamatlas.db")
        # Separate database for APScheduler state
        jobs_db = db_url.replace("scamatlas.db", "scheduler_jobs.db")

        scheduler_config = self.config.get("scheduler", {})
        self.scheduler = BackgroundScheduler(
            jobstores={"default": SQLAlchemyJobStore(url=jobs_db)},
            executors={
                "default": ThreadPoolExecutor(max_workers=scheduler_config.get("max_workers", 3)),
            },
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # Only one instance per job
                "misfire_grace_time": 3600,
            },
            timezone=scheduler_config.get("timezone", "UTC"),
        )
        logger.info("Scheduler initialized successfully")

    def _load_config(self, config_path: str) -> dict:
        """Load scheduler configuration."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f) or {}
        return {"jobs": DEFAULT_JOBS}

    @property
    def is_available(self) -> bool:
        """Check if scheduler is available."""
        return self.scheduler is not None

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running and self.scheduler is not None

    def add_pipeline_job(
        self,
        name: str,
        func: Callable,
        interval_minutes: int | None = None,
        cron_expression: str | None = None,
        enabled: bool = True,
        **kwargs,
    ) -> str | None:
        """Add a scheduled pipeline job.

        Args:
            name: Job name
            func: Module-level function to call
            interval_minutes: Run interval (used if no cron)
            cron_expression: Cron expression for scheduling
            enabled: Whether job is enabled
            **kwargs: Arguments to pass to function

        Returns:
            Job ID or None if failed
        """
        if not self.is_available or not enabled:
            return None

        job_id = f"pipeline_{name}"

        try:
            if cron_expression:
                trigger = CronTrigger.from_crontab(cron_expression)
            else:
                trigger = IntervalTrigger(minutes=interval_minutes or 60)

            # Module-level function so the job store can serialize it
            self.scheduler.add_job(
                func,
                trigger=trigger,
                kwargs=kwargs,
                id=job_id,
                name=f"Pipeline {name}",
                replace_existing=True,
            )
            logger.info(f"Added pipeline job: {job_id}")
            return job_id
        except Exception as e:
            logger.error(f"Failed to add job {job_id}: {e}")
            return None

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if not self.is_available:
            return False
        try:
            self.scheduler.remove_job(job_id)
            logger.info(f"Removed job: {job_id}")
            return True
        except Exception as e:
            logger.warning(f"Failed to remove job {job_id}: {e}")
            return False

    def pause_job(self, job_id: str) -> bool:
        """Pause a scheduled job."""
        if not self.is_available:
            return False
        try:
            self.scheduler.pause_job(job_id)
            logger.info(f"Paused job: {job_id}")
            return True
        except Exception as e:
            logger.warning(f"Failed to pause job {job_id}: {e}")
            return False

    def resume_job(self, job_id: str) -> bool:
        """Resume a paused job."""
        if not self.is_available:
            return False
        try:
            self.scheduler.resume_job(job_id)
            logger.info(f"Resumed job: {job_id}")
            return True
        except Exception as e:
            logger.warning(f"Failed to resume job {job_id}: {e}")
            return False

    def run_job_now(self, job_id: str) -> bool:
        """Trigger immediate execution of a job.

        Args:
            job_id: Job identifier

        Returns:
            True if triggered
        """
        if not self.is_available:
            return False
        try:
            job = self.scheduler.get_job(job_id)
            if job:
                job.modify(next_run_time=datetime.now())
                logger.info(f"Triggered job: {job_id}")
                return True
            return False
        except Exception as e:
            logger.warning(f"Failed to trigger job {job_id}: {e}")
            return False

    @staticmethod
    def _job_info(job) -> dict:
        return {
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
            "pending": job.pending,
        }

    def get_jobs(self) -> list[dict]:
        """Get all scheduled jobs."""
        if not self.is_available:
            return []
        return [self._job_info(job) for job in self.scheduler.get_jobs()]

    def get_job(self, job_id: str) -> dict | None:
        """Get a specific job by ID."""
        if not self.is_available:
            return None
        job = self.scheduler.get_job(job_id)
        return self._job_info(job) if job else None

    def start(self) -> bool:
        """Start the scheduler.

        Returns:
            True if started
        """
        if not self.is_available:
            return False
        if self._running:
            logger.warning("Scheduler already running")
            return True
        try:
            self.scheduler.start()
            self._running = True
            logger.info("Scheduler started")
            return True
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            return False

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Wait for running jobs to complete
        """
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=wait)
            self._running = False
            logger.info("Scheduler stopped")


# --------------------------------------------------------------------------
# Standalone job functions (module-level so APScheduler can persist them)
# --------------------------------------------------------------------------

_crawl_cursor = {"batch": 0, "offset": 0}
_crawl_lock = threading.Lock()


def get_crawl_cursor() -> dict:
    """Return where the next scheduled crawl will start."""
    with _crawl_lock:
        return dict(_crawl_cursor)


def run_scheduled_crawl(batch_size: int = 5, per_term_limit: int = 100) -> dict:
    """Crawl the work unit matrix, resuming where the previous run stopped.

    Returns:
        Crawl summary dict
    """
    from scheduler.batch import run_reddit_crawl

    cursor = get_crawl_cursor()
    logger.info(f"Running scheduled crawl from batch {cursor['batch']} offset {cursor['offset']}")
    try:
        summary = run_reddit_crawl(
            batch_size=batch_size,
            per_term_limit=per_term_limit,
            start_batch=cursor["batch"],
            start_offset=cursor["offset"],
        )
    except Exception as e:
        logger.error(f"Scheduled crawl failed: {e}")
        return {"job": "reddit_batch", "status": "failed", "error": str(e)}

    with _crawl_lock:
        if summary["stopped_early"]:
            _crawl_cursor.update(batch=summary["next_batch"], offset=summary["resume_offset"])
        else:
            _crawl_cursor.update(batch=0, offset=0)
    return summary


def run_scheduled_enrichment(limit: int = 10) -> dict:
    """Scheduled entry point for the enrichment engine."""
    from processing.enrichment import run_enrichment

    try:
        return run_enrichment(limit=limit)
    except Exception as e:
        logger.error(f"Scheduled enrichment failed: {e}")
        return {"job": "enrich_reports", "status": "failed", "error": str(e)}


def run_scheduled_comment_analysis(limit: int = 20) -> dict:
    """Scheduled entry point for comment analysis."""
    from processing.comment_analysis import run_comment_analysis

    try:
        return run_comment_analysis(limit=limit)
    except Exception as e:
        logger.error(f"Scheduled comment analysis failed: {e}")
        return {"job": "analyze_comments", "status": "failed", "error": str(e)}


JOB_FUNCTIONS = {
    "reddit_batch": (run_scheduled_crawl, ("batch_size", "per_term_limit")),
    "enrich_reports": (run_scheduled_enrichment, ("limit",)),
    "analyze_comments": (run_scheduled_comment_analysis, ("limit",)),
}


# Singleton instance
_scheduler: PipelineScheduler | None = None


def get_scheduler() -> PipelineScheduler:
    """Get the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = PipelineScheduler()
    return _scheduler


def init_scheduler(auto_register: bool = True) -> PipelineScheduler:
    """Initialize and configure the scheduler.

    Args:
        auto_register: Register jobs from config

    Returns:
        Configured scheduler instance
    """
    scheduler = get_scheduler()

    if not scheduler.is_available:
        logger.warning("Scheduler not available, skipping initialization")
        return scheduler

    if auto_register:
        register_default_jobs(scheduler)

    return scheduler


def register_default_jobs(scheduler: PipelineScheduler) -> list[str]:
    """Register the pipeline jobs listed in the scheduler config.

    Returns:
        IDs of the jobs added
    """
    job_ids = []
    for name, job_config in scheduler.config.get("jobs", DEFAULT_JOBS).items():
        if name not in JOB_FUNCTIONS:
            logger.warning(f"Unknown job in scheduler config: {name}")
            continue
        if not job_config.get("enabled", True):
            continue

        func, arg_names = JOB_FUNCTIONS[name]
        kwargs = {arg: job_config[arg] for arg in arg_names if arg in job_config}
        job_id = scheduler.add_pipeline_job(
            name=name,
            func=func,
            interval_minutes=job_config.get("interval_minutes"),
            cron_expression=job_config.get("cron"),
            **kwargs,
        )
        if job_id:
            job_ids.append(job_id)
    return job_ids
