"""Scraping-service ingestion path."""

from ingestion.web.firecrawl_scraper import FirecrawlScraper
from ingestion.web.markdown_parser import ParseError, RedditMarkdownParser, detect_layout

__all__ = ["FirecrawlScraper", "RedditMarkdownParser", "ParseError", "detect_layout"]
