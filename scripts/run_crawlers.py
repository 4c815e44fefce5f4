#!/usr/bin/env python
"""CLI for running the ScamAtlas crawl, enrichment and maintenance jobs."""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv()


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def run_batch(batch_number: int, batch_size: int, per_term_limit: int, start_offset: int = 0) -> dict:
    """Run one slice of the work unit matrix.

    Returns:
        BatchResult as a dict
    """
    from scheduler.batch import BatchRunner

    runner = BatchRunner()
    try:
        return runner.run_batch(
            batch_number, batch_size, per_term_limit, start_offset=start_offset
        ).model_dump()
    finally:
        runner.scraper.close()


def run_crawl_all(batch_size: int, per_term_limit: int, start_batch: int = 0) -> dict:
    """Walk the whole matrix within the runtime ceiling."""
    from scheduler.batch import run_reddit_crawl

    return run_reddit_crawl(batch_size=batch_size, per_term_limit=per_term_limit, start_batch=start_batch)


def run_enrichment(limit: int) -> dict:
    """Classify, geocode and aggregate unprocessed reports."""
    from processing.enrichment import run_enrichment as enrich

    return enrich(limit=limit)


def run_comment_analysis(limit: int) -> dict:
    """Mine comments of processed reports for additional incidents."""
    from processing.comment_analysis import run_comment_analysis as analyze

    return analyze(limit=limit)


def backfill_comments(limit: int) -> dict:
    """Fetch comment threads for stored posts that have none."""
    from ingestion.social.reddit_scraper import RedditScraper

    with RedditScraper() as scraper:
        return scraper.backfill_comments(limit=limit)


def backfill_locations(limit: int, only_missing: bool = True) -> dict:
    """Geocode processed incidents and re-key them to canonical names."""
    from processing.location_backfill import LocationBackfill

    return LocationBackfill().normalize_report_locations(limit=limit, only_missing=only_missing)


def regeocode_locations(force: bool, limit: int | None = None) -> dict:
    """Recompute coordinates of processed incidents."""
    from processing.location_backfill import LocationBackfill

    return LocationBackfill().regeocode_reports(force=force, limit=limit)


def reprocess_unknown_locations(limit: int) -> dict:
    """Re-classify processed incidents whose country is unknown."""
    from processing.enrichment import EnrichmentEngine
    from processing.location_backfill import LocationBackfill

    engine = EnrichmentEngine()
    backfill = LocationBackfill(geocoder=engine.geocoder, aggregator=engine.aggregator)
    return backfill.reprocess_unknown_locations(engine, limit=limit)


def scrape_url(url: str) -> dict:
    """Scrape a single Reddit thread through Firecrawl."""
    from ingestion.web.firecrawl_scraper import FirecrawlScraper

    with FirecrawlScraper() as scraper:
        return scraper.scrape_url(url)


def crawl_firecrawl(subreddit: str, keyword: str, limit: int) -> dict:
    """Crawl one (subreddit, keyword) search through Firecrawl."""
    from ingestion.web.firecrawl_scraper import FirecrawlScraper

    with FirecrawlScraper() as scraper:
        return scraper.run(subreddit, keyword, limit).to_dict()


def main():
    parser = argparse.ArgumentParser(
        description="ScamAtlas Aggregator CLI - Crawl Reddit, enrich reports, maintain the job ledger"
    )
    parser.add_argument("--batch", "-b", type=int, metavar="N", help="Run batch number N")
    parser.add_argument("--offset", type=int, default=0, help="Units of the batch already done (default: 0)")
    parser.add_argument("--crawl-all", action="store_true", help="Walk every batch until done or out of time")
    parser.add_argument("--batch-size", type=int, default=5, help="Work units per batch (default: 5)")
    parser.add_argument("--per-term", type=int, default=100, help="Results requested per search (default: 100)")
    parser.add_argument("--process", "-p", action="store_true", help="Enrich unprocessed reports")
    parser.add_argument("--comments", "-c", action="store_true", help="Analyze comments for extra incidents")
    parser.add_argument("--backfill-comments", action="store_true", help="Fetch comments for posts without any")
    parser.add_argument("--backfill-locations", action="store_true", help="Geocode incidents and apply canonical names")
    parser.add_argument(
        "--all-locations", action="store_true", help="With --backfill-locations, revisit located incidents too"
    )
    parser.add_argument("--regeocode", action="store_true", help="Recompute coordinates of incidents without any")
    parser.add_argument("--force", action="store_true", help="With --regeocode, recompute every located incident")
    parser.add_argument("--reprocess-unknown", action="store_true", help="Re-classify incidents whose country is unknown")
    parser.add_argument("--scrape-url", type=str, metavar="URL", help="Scrape one thread through Firecrawl")
    parser.add_argument(
        "--firecrawl",
        nargs=2,
        metavar=("SUBREDDIT", "KEYWORD"),
        help="Crawl one subreddit search through Firecrawl",
    )
    parser.add_argument("--stop-jobs", action="store_true", help="Mark pending and processing units as failed")
    parser.add_argument("--job-stats", action="store_true", help="Print fetch job ledger statistics")
    parser.add_argument("--clear-jobs", action="store_true", help="Delete the fetch job history")
    parser.add_argument("--reset", action="store_true", help="Return reports to the unprocessed state")
    parser.add_argument("--only-failed", action="store_true", help="With --reset, only reports with errors")
    parser.add_argument("--limit", "-l", type=int, default=10, help="Limit for processing jobs (default: 10)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    setup_logging(args.verbose)
    ran = False

    if args.stop_jobs or args.job_stats or args.clear_jobs:
        from scheduler.job_ledger import FetchJobLedger

        ledger = FetchJobLedger()
        if args.stop_jobs:
            print(f"\nStopped {ledger.stop_all_jobs()} jobs")
        if args.clear_jobs:
            print(f"\nDeleted {ledger.clear_job_history()} jobs")
        if args.job_stats:
            print(f"\nJob stats: {ledger.get_job_stats()}")
        ran = True

    if args.batch is not None:
        logging.info(f"Running batch {args.batch}")
        print(f"\nBatch result: {run_batch(args.batch, args.batch_size, args.per_term, args.offset)}")
        ran = True
    elif args.crawl_all:
        logging.info("Crawling all batches")
        print(f"\nCrawl result: {run_crawl_all(args.batch_size, args.per_term)}")
        ran = True

    if args.scrape_url:
        print(f"\nScrape result: {scrape_url(args.scrape_url)}")
        ran = True

    if args.firecrawl:
        subreddit, keyword = args.firecrawl
        print(f"\nFirecrawl result: {crawl_firecrawl(subreddit, keyword, args.limit)}")
        ran = True

    if args.backfill_comments:
        print(f"\nComment backfill result: {backfill_comments(args.limit)}")
        ran = True

    if args.reset:
        from processing.enrichment import reset_reports

        count = reset_reports(only_failed=args.only_failed)
        print(f"\nReset {count} reports")
        ran = True

    if args.process:
        logging.info(f"Running enrichment (limit: {args.limit})")
        print(f"\nEnrichment result: {run_enrichment(args.limit)}")
        ran = True

    if args.comments:
        logging.info(f"Running comment analysis (limit: {args.limit})")
        print(f"\nComment analysis result: {run_comment_analysis(args.limit)}")
        ran = True

    if args.backfill_locations:
        print(f"\nLocation backfill result: {backfill_locations(args.limit, not args.all_locations)}")
        ran = True

    if args.regeocode:
        print(f"\nRe-geocoding result: {regeocode_locations(args.force, args.limit)}")
        ran = True

    if args.reprocess_unknown:
        print(f"\nUnknown-location reprocessing result: {reprocess_unknown_locations(args.limit)}")
        ran = True

    if not ran:
        parser.print_help()


if __name__ == "__main__":
    main()
