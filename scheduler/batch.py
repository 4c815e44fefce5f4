"""Resumable, time-boxed batch runner over the (subreddit x keyword) matrix.

Work unit ``i`` maps to ``subreddits[i // len(keywords)]`` and
``keywords[i % len(keywords)]``. One call to ``run_batch`` processes a
fixed-size slice of that index space and returns the cursor for the next
call, so a host with a hard execution limit can walk the whole matrix in
several invocations.
"""

import logging
import os
import time
from datetime import datetime
from typing import Callable

import yaml

from data_models.fetch_job import BatchResult
from ingestion.base_scraper import BaseScraper, FetchOutcome
from ingestion.rate_limiter import RateLimiter
from scheduler.job_ledger import FetchJobLedger

logger = logging.getLogger(__name__)


class BatchRunner:
    """Runs slices of the work unit matrix and records progress in the ledger."""

    def __init__(
        self,
        scraper: BaseScraper | None = None,
        ledger: FetchJobLedger | None = None,
        subreddits: list[str] | None = None,
        keywords: list[str] | None = None,
        config_path: str = "configs/pipeline.yaml",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the batch runner.

        Args:
            scraper: Source scraper (RedditScraper if None)
            ledger: Fetch job ledger
            subreddits: Subreddits to search (scraper defaults if None)
            keywords: Search terms (scraper defaults if None)
            config_path: Path to pipeline configuration
            clock: Monotonic clock used for the runtime ceiling
            sleep: Sleep function used between units
        """
        self.config = self._load_config(config_path)
        if scraper is None:
            from ingestion.social.reddit_scraper import RedditScraper

            scraper = RedditScraper()
        self.scraper = scraper
        self.ledger = ledger or FetchJobLedger()
        self.subreddits = subreddits or list(getattr(scraper, "subreddits", []))
        self.keywords = keywords or list(getattr(scraper, "keywords", []))
        self.clock = clock

        batch_config = self.config.get("batch", {})
        self.default_batch_size = batch_config.get("size", 5)
        self.default_per_term_limit = batch_config.get("per_term_limit", 100)
        self.max_runtime_seconds = batch_config.get("max_runtime_seconds", 540)
        self.pause_between_units = batch_config.get("pause_between_units", 0.5)
        self.rate_limiter = RateLimiter(delay_seconds=self.pause_between_units, sleep=sleep, clock=clock)

    def _load_config(self, config_path: str) -> dict:
        """Load pipeline configuration."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f) or {}
        return {
            "batch": {
                "size": 5,
                "per_term_limit": 100,
                "max_runtime_seconds": 540,
                "pause_between_units": 0.5,
            },
        }

    @property
    def total_units(self) -> int:
        return len(self.subreddits) * len(self.keywords)

    def unit_at(self, index: int) -> tuple[str, str]:
        """Return the (subreddit, keyword) pair for a work unit index."""
        if not 0 <= index < self.total_units:
            raise IndexError(f"Work unit {index} outside 0..{self.total_units - 1}")
        return (
            self.subreddits[index // len(self.keywords)],
            self.keywords[index % len(self.keywords)],
        )

    def _run_unit(self, subreddit: str, keyword: str, per_term_limit: int) -> FetchOutcome:
        """Fetch one unit and record it in the ledger. Never raises."""
        self.ledger.mark_processing(subreddit, keyword)
        try:
            outcome = self.scraper.run(subreddit, keyword, per_term_limit, skip_comments=True)
        except Exception as e:
            logger.error(f"Work unit r/{subreddit} '{keyword}' crashed: {e}")
            outcome = FetchOutcome(subreddit=subreddit, keyword=keyword, success=False, error=str(e))

        if outcome.success:
            self.ledger.mark_completed(subreddit, keyword, len(outcome.posts))
        else:
            self.ledger.mark_failed(subreddit, keyword, outcome.error or "Unknown error")
        return outcome

    def run_batch(
        self,
        batch_number: int = 0,
        batch_size: int | None = None,
        per_term_limit: int | None = None,
        start_offset: int = 0,
        max_runtime_seconds: float | None = None,
    ) -> BatchResult:
        """Process work units ``[batch_number * batch_size, +batch_size)``.

        Args:
            batch_number: Slice index
            batch_size: Units per slice
            per_term_limit: Search result limit per unit
            start_offset: Units of this slice already done by an earlier,
                time-boxed call (``BatchResult.resume_offset``)
            max_runtime_seconds: Override for the runtime ceiling

        Returns:
            BatchResult. ``next_batch`` is 0 once the matrix is exhausted; if
            the ceiling cut the slice short it equals ``batch_number`` and
            ``resume_offset`` points at the first unit still to run.
        """
        batch_size = batch_size or self.default_batch_size
        per_term_limit = per_term_limit or self.default_per_term_limit
        ceiling = self.max_runtime_seconds if max_runtime_seconds is None else max_runtime_seconds
        started = self.clock()

        total = self.total_units
        start = batch_number * batch_size
        end = min(start + batch_size, total)
        result = BatchResult(
            batch_number=batch_number,
            batch_size=batch_size,
            next_batch=0,
            total_units=total,
        )

        if start >= total:
            logger.info(f"Batch {batch_number} is past the end of {total} work units")
            return result

        logger.info(
            f"Running batch {batch_number}: units {start + start_offset}..{end - 1} of {total}"
        )

        index = start + start_offset
        while index < end:
            if self.clock() - started >= ceiling:
                result.stopped_early = True
                logger.warning(
                    f"Batch {batch_number} hit its {ceiling}s ceiling, resuming at unit {index}"
                )
                break

            subreddit, keyword = self.unit_at(index)
            outcome = self._run_unit(subreddit, keyword, per_term_limit)

            result.units_attempted += 1
            result.posts_found += len(outcome.posts)
            result.posts_saved += outcome.posts_saved
            if outcome.success:
                result.units_completed += 1
            else:
                result.units_failed += 1
                result.errors.append(f"r/{subreddit} '{keyword}': {outcome.error}")

            index += 1
            if index < end:
                self.rate_limiter.pause(self.pause_between_units)

        if result.stopped_early:
            result.next_batch = batch_number
            result.resume_offset = index - start
        else:
            result.next_batch = batch_number + 1 if end < total else 0

        result.elapsed_seconds = round(self.clock() - started, 2)
        logger.info(
            f"Batch {batch_number} done: {result.units_completed} completed, "
            f"{result.units_failed} failed, {result.posts_saved} new posts, next={result.next_batch}"
        )
        return result

    def run_all(
        self,
        batch_size: int | None = None,
        per_term_limit: int | None = None,
        start_batch: int = 0,
        start_offset: int = 0,
        max_runtime_seconds: float | None = None,
    ) -> dict:
        """Walk batches until the matrix is exhausted or the ceiling is reached.

        Args:
            batch_size: Units per batch
            per_term_limit: Results requested per search
            start_batch: Batch to start from
            start_offset: Units of the first batch already done
            max_runtime_seconds: Ceiling for the whole walk

        Returns:
            Summary dict with the cursor to resume from
        """
        ceiling = self.max_runtime_seconds if max_runtime_seconds is None else max_runtime_seconds
        started = self.clock()
        batch_number = start_batch
        offset = start_offset
        batches = []

        while True:
            remaining = ceiling - (self.clock() - started)
            result = self.run_batch(
                batch_number,
                batch_size,
                per_term_limit,
                start_offset=offset,
                max_runtime_seconds=max(remaining, 0),
            )
            batches.append(result)
            if result.stopped_early or result.next_batch == 0:
                break
            batch_number, offset = result.next_batch, 0

        last = batches[-1]
        summary = {
            "batches_run": len(batches),
            "units_completed": sum(b.units_completed for b in batches),
            "units_failed": sum(b.units_failed for b in batches),
            "posts_found": sum(b.posts_found for b in batches),
            "posts_saved": sum(b.posts_saved for b in batches),
            "stopped_early": last.stopped_early,
            "next_batch": last.next_batch,
            "resume_offset": last.resume_offset,
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(f"Full crawl pass complete: {summary}")
        return summary


def run_reddit_batch(batch_number: int = 0, batch_size: int = 5, per_term_limit: int = 100) -> dict:
    """Run one batch with default collaborators (scheduler/CLI entry point).

    Returns:
        BatchResult as a dict
    """
    runner = BatchRunner()
    try:
        return runner.run_batch(batch_number, batch_size, per_term_limit).model_dump()
    finally:
        runner.scraper.close()


def run_reddit_crawl(
    batch_size: int = 5,
    per_term_limit: int = 100,
    start_batch: int = 0,
    start_offset: int = 0,
) -> dict:
    """Walk the whole matrix within one runtime ceiling (scheduled job).

    Returns:
        Crawl summary dict
    """
    runner = BatchRunner()
    try:
        return runner.run_all(
            batch_size=batch_size,
            per_term_limit=per_term_limit,
            start_batch=start_batch,
            start_offset=start_offset,
        )
    finally:
        runner.scraper.close()
