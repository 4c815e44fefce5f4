"""Scheduler module for the ScamAtlas aggregator."""

from scheduler.batch import BatchRunner, run_reddit_batch, run_reddit_crawl
from scheduler.job_ledger import FetchJobLedger
from scheduler.scheduler import PipelineScheduler, get_scheduler, init_scheduler

__all__ = [
    "BatchRunner",
    "FetchJobLedger",
    "PipelineScheduler",
    "get_scheduler",
    "init_scheduler",
    "run_reddit_batch",
    "run_reddit_crawl",
]
