"""Reddit ingestion through the Firecrawl scraping service.

Used when the JSON endpoints are blocked or a single thread URL has to be
ingested by hand. Pages come back as markdown and go through
``RedditMarkdownParser`` before reaching the dedup store.
"""

import logging
import os
from urllib.parse import quote_plus

from dotenv import load_dotenv

from ingestion.base_scraper import BaseScraper, FetchOutcome
from ingestion.web.markdown_parser import ParseError, RedditMarkdownParser
from processing.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)


def _doc_field(doc, name: str, default=None):
    """Read a field from a Firecrawl document object or dict."""
    if isinstance(doc, dict):
        return doc.get(name, default)
    return getattr(doc, name, default)


def _doc_url(doc) -> str | None:
    metadata = _doc_field(doc, "metadata") or {}
    if isinstance(metadata, dict):
        return metadata.get("sourceURL") or metadata.get("source_url") or metadata.get("url")
    return getattr(metadata, "source_url", None) or getattr(metadata, "url", None)


class FirecrawlScraper(BaseScraper):
    """Scrapes Reddit threads as markdown via Firecrawl."""

    source_name = "firecrawl"

    def __init__(
        self,
        config_path: str = "configs/scraping.yaml",
        app=None,
        api_key: str | None = None,
        parser: RedditMarkdownParser | None = None,
        **kwargs,
    ):
        """Initialize the Firecrawl scraper.

        Args:
            config_path: Path to scraping config
            app: Firecrawl client (created lazily from the API key if None)
            api_key: Firecrawl API key. Defaults to FIRECRAWL_API_KEY env var.
            parser: Markdown parser
            **kwargs: Forwarded to BaseScraper
        """
        super().__init__(config_path, **kwargs)
        self.api_key = api_key or os.getenv("FIRECRAWL_API_KEY")
        self._app = app
        self.parser = parser or RedditMarkdownParser()
        self.base_url = self.config.get("reddit", {}).get("base_url", "https://www.reddit.com").rstrip("/")

    @property
    def app(self):
        """Lazy-load Firecrawl client."""
        if self._app is None:
            if not self.api_key:
                raise ConfigurationError("FIRECRAWL_API_KEY not found in environment")
            from firecrawl import Firecrawl

            self._app = Firecrawl(api_key=self.api_key)
        return self._app

    def _parse_document(self, outcome: FetchOutcome, markdown: str, url: str) -> bool:
        """Parse one scraped page into the outcome. Returns False on ParseError."""
        try:
            post = self.parser.parse_post(markdown, url)
        except ParseError as e:
            logger.warning(f"Skipping unparseable page: {e}")
            outcome.comment_errors.append(str(e))
            return False

        outcome.posts.append(post)
        comments = self.parser.parse_comments(markdown, post.reddit_id)
        if comments:
            outcome.comments[post.reddit_id] = comments
        return True

    def scrape_url(self, url: str) -> dict:
        """Scrape and store a single Reddit thread.

        Args:
            url: Thread URL

        Returns:
            Summary dict
        """
        outcome = FetchOutcome(subreddit="", keyword=url)
        self.rate_limiter.wait()
        try:
            doc = self.app.scrape(url, formats=["markdown", "links"])
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Firecrawl scrape failed for {url}: {e}")
            return {"success": False, "url": url, "error": str(e)}

        markdown = _doc_field(doc, "markdown") or ""
        if not self._parse_document(outcome, markdown, url):
            return {"success": False, "url": url, "error": outcome.comment_errors[-1]}

        post = outcome.posts[0]
        outcome.subreddit = post.subreddit
        self.save_outcome(outcome)
        return {
            "success": True,
            "url": url,
            "post_id": post.reddit_id,
            "title": post.title,
            "is_new": outcome.posts_saved == 1,
            "comments_scraped": len(outcome.comments.get(post.reddit_id, [])),
            "comments_saved": outcome.comments_saved,
        }

    def run(
        self,
        subreddit: str,
        keyword: str,
        limit: int = 20,
        skip_comments: bool = False,
    ) -> FetchOutcome:
        """Crawl a subreddit search page and store every thread it links to.

        Args:
            subreddit: Subreddit name
            keyword: Search query
            limit: Maximum pages to crawl
            skip_comments: Drop parsed comments instead of storing them

        Returns:
            FetchOutcome with saved counts
        """
        outcome = FetchOutcome(subreddit=subreddit, keyword=keyword)
        search_url = (
            f"{self.base_url}/r/{subreddit}/search/?q={quote_plus(keyword)}&restrict_sr=1&sort=new"
        )

        self.rate_limiter.wait()
        try:
            job = self.app.crawl(
                url=search_url,
                limit=limit,
                include_paths=[rf"/r/{subreddit}/comments/.*"],
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Firecrawl crawl failed for r/{subreddit} '{keyword}': {e}")
            outcome.success = False
            outcome.error = str(e)
            return outcome

        documents = _doc_field(job, "data") or []
        if isinstance(job, list):
            documents = job

        for doc in documents:
            url = _doc_url(doc)
            if not url or "/comments/" not in url:
                continue
            self._parse_document(outcome, _doc_field(doc, "markdown") or "", url)

        if skip_comments:
            outcome.comments = {}

        logger.info(f"Crawled {len(documents)} pages, parsed {len(outcome.posts)} posts from r/{subreddit}")
        return self.save_outcome(outcome)
