"""Tests for the fetch job ledger and the time-boxed batch runner."""

import math

import pytest

from data_models.fetch_job import FetchJobStatus
from ingestion.base_scraper import FetchOutcome
from data_models.reddit_post import RawPostCreate
from scheduler.batch import BatchRunner
from scheduler.job_ledger import MANUAL_STOP_REASON, FetchJobLedger

SUBREDDITS = ["travel", "solotravel", "scams"]
KEYWORDS = ["scam", "taxi", "fraud", "atm"]


class FakeScraper:
    """Records work units and returns one post per unit."""

    def __init__(self, failing: set | None = None, crashing: set | None = None, clock=None, cost: float = 0):
        self.failing = failing or set()
        self.crashing = crashing or set()
        self.clock = clock
        self.cost = cost
        self.units: list[tuple[str, str]] = []

    def run(self, subreddit, keyword, limit=100, skip_comments=False):
        self.units.append((subreddit, keyword))
        if self.clock is not None:
            self.clock.now += self.cost
        if (subreddit, keyword) in self.crashing:
            raise RuntimeError("scraper crashed")
        if (subreddit, keyword) in self.failing:
            return FetchOutcome(subreddit, keyword, success=False, error="HTTP 429", throttled=True)
        post = RawPostCreate(
            reddit_id=f"{subreddit}-{keyword}",
            subreddit=subreddit,
            title="t",
            url=f"https://reddit.com/r/{subreddit}/comments/x/",
        )
        return FetchOutcome(subreddit, keyword, posts=[post], posts_saved=1)

    def close(self):
        pass


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_runner(session_factory, scraper=None, clock=None) -> BatchRunner:
    return BatchRunner(
        scraper=scraper or FakeScraper(),
        ledger=FetchJobLedger(session_factory),
        subreddits=SUBREDDITS,
        keywords=KEYWORDS,
        clock=clock or FakeClock(),
        sleep=lambda seconds: None,
    )


def test_unit_mapping(session_factory):
    runner = make_runner(session_factory)

    assert runner.total_units == 12
    assert runner.unit_at(0) == ("travel", "scam")
    assert runner.unit_at(5) == ("solotravel", "taxi")
    assert runner.unit_at(11) == ("scams", "atm")
    with pytest.raises(IndexError):
        runner.unit_at(12)


@pytest.mark.parametrize(
    "subreddits, keywords, batch_size",
    [
        ([], KEYWORDS, 5),
        (["travel"], ["scam", "taxi"], 5),
        (SUBREDDITS, KEYWORDS, 4),
        (SUBREDDITS, KEYWORDS, 5),
        (SUBREDDITS, KEYWORDS, 1),
    ],
    ids=["empty-matrix", "smaller-than-batch", "exact-multiple", "partial-last-batch", "batch-size-one"],
)
def test_batches_cover_every_unit_once(session_factory, subreddits, keywords, batch_size):
    scraper = FakeScraper()
    runner = BatchRunner(
        scraper=scraper,
        ledger=FetchJobLedger(session_factory),
        subreddits=subreddits,
        keywords=keywords,
        clock=FakeClock(),
        sleep=lambda seconds: None,
    )

    batch, results = 0, []
    while True:
        result = runner.run_batch(batch, batch_size=batch_size)
        results.append(result)
        if result.next_batch == 0:
            break
        batch = result.next_batch

    expected_units = [(subreddit, keyword) for subreddit in subreddits for keyword in keywords]
    batches = max(1, math.ceil(len(expected_units) / batch_size))
    assert [r.next_batch for r in results] == [*range(1, batches), 0]
    assert results[-1].is_exhausted
    assert scraper.units == expected_units

    stats = FetchJobLedger(session_factory).get_job_stats()
    assert stats["completed"] == len(expected_units)
    assert stats["total_posts_processed"] == len(expected_units)


def test_pauses_only_between_units(session_factory):
    sleeps = []
    runner = BatchRunner(
        scraper=FakeScraper(),
        ledger=FetchJobLedger(session_factory),
        subreddits=SUBREDDITS,
        keywords=KEYWORDS,
        clock=FakeClock(),
        sleep=sleeps.append,
    )

    runner.run_batch(0, batch_size=3)

    assert sleeps == [runner.pause_between_units] * 2


def test_batch_past_end_does_nothing(session_factory):
    scraper = FakeScraper()
    result = make_runner(session_factory, scraper).run_batch(7, batch_size=5)

    assert result.next_batch == 0
    assert result.units_attempted == 0
    assert scraper.units == []


def test_failed_unit_does_not_stop_batch(session_factory):
    scraper = FakeScraper(failing={("travel", "taxi")}, crashing={("travel", "fraud")})
    runner = make_runner(session_factory, scraper)

    result = runner.run_batch(0, batch_size=4)

    assert result.units_attempted == 4
    assert result.units_completed == 2
    assert result.units_failed == 2
    assert len(result.errors) == 2

    ledger = FetchJobLedger(session_factory)
    failed = ledger.get_job("travel", "taxi")
    assert failed.status == FetchJobStatus.FAILED.value
    assert failed.error_message == "HTTP 429"
    assert failed.last_fetched_at is not None
    assert ledger.get_job("travel", "fraud").error_message == "scraper crashed"


def test_ceiling_stops_and_resumes(session_factory):
    clock = FakeClock()
    scraper = FakeScraper(clock=clock, cost=100)
    runner = make_runner(session_factory, scraper, clock)

    first = runner.run_batch(1, batch_size=5, max_runtime_seconds=250)

    assert first.stopped_early
    assert first.units_attempted == 3
    assert first.next_batch == 1
    assert first.resume_offset == 3

    second = runner.run_batch(
        first.next_batch, batch_size=5, start_offset=first.resume_offset, max_runtime_seconds=1000
    )

    assert not second.stopped_early
    assert second.units_attempted == 2
    assert second.next_batch == 2
    assert scraper.units == [runner.unit_at(i) for i in range(5, 10)]


def test_run_all_reports_cursor(session_factory):
    clock = FakeClock()
    scraper = FakeScraper(clock=clock, cost=100)
    runner = make_runner(session_factory, scraper, clock)

    summary = runner.run_all(batch_size=5, max_runtime_seconds=650)

    assert summary["stopped_early"]
    assert summary["units_completed"] == 7
    assert summary["next_batch"] == 1
    assert summary["resume_offset"] == 2

    rest = runner.run_all(
        batch_size=5,
        start_batch=summary["next_batch"],
        start_offset=summary["resume_offset"],
        max_runtime_seconds=10000,
    )

    assert not rest["stopped_early"]
    assert rest["next_batch"] == 0
    assert len(set(scraper.units)) == 12
    assert len(scraper.units) == 12


def test_mark_completed_accumulates_posts(session_factory):
    ledger = FetchJobLedger(session_factory)
    ledger.mark_processing("travel", "scam")
    ledger.mark_completed("travel", "scam", 4)
    ledger.mark_completed("travel", "scam", 3)

    job = ledger.get_job("travel", "scam")
    assert job.status == FetchJobStatus.COMPLETED.value
    assert job.posts_processed == 7


def test_stop_all_jobs(session_factory):
    ledger = FetchJobLedger(session_factory)
    ledger.mark_processing("travel", "scam")
    ledger.mark_processing("travel", "taxi")
    ledger.mark_completed("travel", "fraud", 1)

    assert ledger.stop_all_jobs() == 2

    job = ledger.get_job("travel", "scam")
    assert job.status == FetchJobStatus.FAILED.value
    assert job.error_message == MANUAL_STOP_REASON
    assert ledger.get_job("travel", "fraud").status == FetchJobStatus.COMPLETED.value


def test_job_stats_and_clear(session_factory):
    ledger = FetchJobLedger(session_factory)
    ledger.mark_completed("travel", "scam", 2)
    ledger.mark_failed("travel", "taxi", "HTTP 500")

    stats = ledger.get_job_stats(recent=5)
    assert stats["total"] == 2
    assert stats["completed"] == 1
    assert stats["failed"] == 1
    assert stats["pending"] == 0
    assert len(stats["recent_jobs"]) == 2

    assert ledger.clear_job_history() == 2
    assert ledger.get_job_stats()["total"] == 0
