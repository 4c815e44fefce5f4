"""Base scraper class with common functionality."""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

import httpx
import yaml

from data_models.reddit_post import RawCommentCreate, RawPostCreate
from db.store import IngestionStore
from ingestion.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_SCRAPING_CONFIG = {
    "global_settings": {
        "request_timeout": 30,
    },
    "user_agents": {
        "default": "ScamAtlas/1.0",
    },
    "rate_limit": {
        "reddit": {"delay_seconds": 1, "cooldown_seconds": 60, "max_retries": 1},
        "comments_backfill": {"delay_seconds": 2, "cooldown_seconds": 60, "max_retries": 1},
    },
    "reddit": {
        "base_url": "https://www.reddit.com",
        "retry_limit": 10,
        "retry_keep": 5,
        "max_comment_threads": 20,
        "max_comments_per_thread": 50,
    },
}


class FetchError(Exception):
    """Raised when an upstream request cannot be completed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_throttled(self) -> bool:
        return self.status_code == 429


@dataclass
class FetchOutcome:
    """Result of fetching one (subreddit, keyword) work unit."""

    subreddit: str
    keyword: str
    success: bool = True
    posts: list[RawPostCreate] = field(default_factory=list)
    comments: dict[str, list[RawCommentCreate]] = field(default_factory=dict)
    posts_saved: int = 0
    comments_saved: int = 0
    throttled: bool = False
    error: str | None = None
    comment_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "subreddit": self.subreddit,
            "keyword": self.keyword,
            "success": self.success,
            "posts_found": len(self.posts),
            "posts_saved": self.posts_saved,
            "comments_saved": self.comments_saved,
            "throttled": self.throttled,
            "error": self.error,
        }


class BaseScraper(ABC):
    """Abstract base class for all Reddit ingestion paths."""

    source_name: str = "base"

    def __init__(
        self,
        config_path: str = "configs/scraping.yaml",
        client: httpx.Client | None = None,
        rate_limiter: RateLimiter | None = None,
        store: IngestionStore | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """Initialize the scraper with configuration.

        Args:
            config_path: Path to scraping configuration YAML
            client: Preconfigured HTTP client (created lazily if None)
            rate_limiter: Rate limiter (built from config if None)
            store: Ingestion store (default session factory if None)
            sleep: Sleep function forwarded to the default rate limiter
        """
        self.config = self._load_config(config_path)
        self._client = client
        limiter_kwargs = {"sleep": sleep} if sleep else {}
        self.rate_limiter = rate_limiter or RateLimiter.from_config(
            self.config.get("rate_limit", {}).get("reddit", {}), **limiter_kwargs
        )
        self.store = store or IngestionStore()

    def _load_config(self, config_path: str) -> dict:
        """Load scraping configuration."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
            return {**DEFAULT_SCRAPING_CONFIG, **loaded}
        logger.warning(f"Config not found at {config_path}, using defaults")
        return dict(DEFAULT_SCRAPING_CONFIG)

    def _create_client(self) -> httpx.Client:
        """Create HTTP client with configured settings."""
        timeout = self.config.get("global_settings", {}).get("request_timeout", 30)
        user_agent = self.config.get("user_agents", {}).get("default", "ScamAtlas/1.0")

        return httpx.Client(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )

    @property
    def client(self) -> httpx.Client:
        """Lazy-load HTTP client."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def fetch_json(
        self,
        url: str,
        params: dict | None = None,
        on_throttle: Callable[[dict], dict] | None = None,
    ) -> dict | list:
        """Fetch a JSON document with rate limiting and a single throttle retry.

        Args:
            url: URL to fetch
            params: Query parameters
            on_throttle: Rewrites the query parameters for the retry after a 429

        Returns:
            Decoded JSON body

        Raises:
            FetchError: On a non-2xx response, transport failure, or bad JSON
        """
        params = dict(params or {})
        self.rate_limiter.reset()

        while True:
            self.rate_limiter.wait()
            try:
                response = self.client.get(url, params=params)
            except httpx.RequestError as e:
                logger.error(f"Request error for {url}: {e}")
                raise FetchError(f"Request error: {e}") from e

            if response.status_code == 429:
                logger.warning(f"HTTP 429 for {url}")
                if not self.rate_limiter.can_retry:
                    raise FetchError("Rate limited by upstream", status_code=429)
                self.rate_limiter.cooldown()
                if on_throttle is not None:
                    params = on_throttle(params)
                continue

            if response.status_code >= 400:
                logger.warning(f"HTTP error {response.status_code} for {url}")
                raise FetchError(f"HTTP {response.status_code}", status_code=response.status_code)

            try:
                return response.json()
            except ValueError as e:
                raise FetchError(f"Invalid JSON from {url}: {e}") from e

    @abstractmethod
    def run(
        self,
        subreddit: str,
        keyword: str,
        limit: int = 100,
        skip_comments: bool = False,
    ) -> FetchOutcome:
        """Fetch one (subreddit, keyword) unit and store what was found.

        Implementations must not raise for upstream failures; the outcome
        carries ``success=False`` and the error instead.
        """
        pass

    def save_outcome(self, outcome: FetchOutcome) -> FetchOutcome:
        """Persist posts and their comments through the dedup store.

        Args:
            outcome: Fetch outcome with posts and comments

        Returns:
            The same outcome with saved counts filled in
        """
        for post in outcome.posts:
            if self.store.upsert_post(post):
                outcome.posts_saved += 1

        for reddit_id, comments in outcome.comments.items():
            outcome.comments_saved += self.store.upsert_comments_batch(reddit_id, comments)

        logger.info(
            f"Saved {outcome.posts_saved} new posts and {outcome.comments_saved} comments "
            f"from {self.source_name} (r/{outcome.subreddit}, '{outcome.keyword}')"
        )
        return outcome

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
