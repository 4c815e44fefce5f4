"""Tests for scheduled job registration and the scheduled crawl cursor."""

import pytest

from scheduler import scheduler as scheduler_module
from scheduler.scheduler import (
    JOB_FUNCTIONS,
    PipelineScheduler,
    get_crawl_cursor,
    register_default_jobs,
    run_scheduled_crawl,
)


@pytest.fixture
def cursor(monkeypatch):
    monkeypatch.setattr(scheduler_module, "_crawl_cursor", {"batch": 0, "offset": 0})


def crawl_summary(stopped_early: bool, next_batch: int = 0, resume_offset: int = 0) -> dict:
    return {
        "batches_run": 1,
        "units_completed": 3,
        "units_failed": 0,
        "posts_found": 10,
        "posts_saved": 4,
        "stopped_early": stopped_early,
        "next_batch": next_batch,
        "resume_offset": resume_offset,
    }


def test_scheduled_crawl_resumes_from_cursor(cursor, monkeypatch):
    calls = []

    def fake_crawl(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            return crawl_summary(True, next_batch=4, resume_offset=2)
        return crawl_summary(False)

    monkeypatch.setattr("scheduler.batch.run_reddit_crawl", fake_crawl)

    run_scheduled_crawl(batch_size=5, per_term_limit=50)
    assert get_crawl_cursor() == {"batch": 4, "offset": 2}

    run_scheduled_crawl(batch_size=5, per_term_limit=50)
    assert calls[1]["start_batch"] == 4
    assert calls[1]["start_offset"] == 2
    assert calls[1]["per_term_limit"] == 50
    assert get_crawl_cursor() == {"batch": 0, "offset": 0}


def test_scheduled_crawl_failure_keeps_cursor(cursor, monkeypatch):
    scheduler_module._crawl_cursor.update(batch=3, offset=1)

    def broken_crawl(**kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr("scheduler.batch.run_reddit_crawl", broken_crawl)

    result = run_scheduled_crawl()

    assert result["status"] == "failed"
    assert get_crawl_cursor() == {"batch": 3, "offset": 1}


def test_disabled_scheduler(monkeypatch):
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    scheduler = PipelineScheduler()

    assert not scheduler.is_available
    assert register_default_jobs(scheduler) == []
    assert scheduler.get_jobs() == []
    assert not scheduler.start()


def test_register_default_jobs(monkeypatch, tmp_path):
    monkeypatch.setenv("SCHEDULER_ENABLED", "true")
    scheduler = PipelineScheduler(db_url=f"sqlite:///{tmp_path}/scamatlas.db")

    job_ids = register_default_jobs(scheduler)
    assert sorted(job_ids) == sorted(f"pipeline_{name}" for name in JOB_FUNCTIONS)

    assert scheduler.start()
    try:
        jobs = {job["id"]: job for job in scheduler.get_jobs()}
        assert "interval[0:15:00]" in jobs["pipeline_enrich_reports"]["trigger"]
        assert jobs["pipeline_reddit_batch"]["next_run"] is not None

        assert scheduler.pause_job("pipeline_enrich_reports")
        assert scheduler.get_job("pipeline_enrich_reports")["next_run"] is None
        assert scheduler.resume_job("pipeline_enrich_reports")
        assert scheduler.remove_job("pipeline_analyze_comments")
        assert scheduler.get_job("pipeline_analyze_comments") is None
    finally:
        scheduler.shutdown(wait=False)
    assert not scheduler.is_running
