"""Social media scrapers."""

from ingestion.social.reddit_scraper import RedditScraper, scrape_reddit

__all__ = ["RedditScraper", "scrape_reddit"]
