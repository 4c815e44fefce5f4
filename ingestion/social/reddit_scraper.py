"""Reddit scraper using the public JSON search endpoints (no API key required)."""

import logging
import time
from datetime import datetime
from typing import Callable

from sqlalchemy import select

from data_models.reddit_post import RawCommentCreate, RawPostCreate
from db.models import RawCommentModel, ScamReportModel
from ingestion.base_scraper import BaseScraper, FetchError, FetchOutcome
from ingestion.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class RedditScraper(BaseScraper):
    """Searches travel subreddits for scam stories and their comment threads."""

    source_name = "reddit"

    # Subreddits where travellers report scams
    DEFAULT_SUBREDDITS = [
        "travel",
        "solotravel",
        "scams",
        "digitalnomad",
        "traveladvice",
    ]

    # Search terms combined with every subreddit
    DEFAULT_KEYWORDS = [
        "travel scam",
        "scam",
        "scammed",
        "rip off",
        "timeshare",
        "taxi",
        "tour",
        "fraud",
        "fake",
        "warning",
        "avoid",
        "pickpocket",
        "atm",
        "booking",
        "visa",
        "airport",
        "police",
        "ticket",
    ]

    def __init__(self, config_path: str = "configs/scraping.yaml", **kwargs):
        """Initialize Reddit scraper.

        Args:
            config_path: Path to scraping config
            **kwargs: Forwarded to BaseScraper (client, rate_limiter, store, sleep)
        """
        super().__init__(config_path, **kwargs)
        reddit_config = self.config.get("reddit", {})
        self.base_url = reddit_config.get("base_url", "https://www.reddit.com").rstrip("/")
        self.retry_limit = reddit_config.get("retry_limit", 10)
        self.retry_keep = reddit_config.get("retry_keep", 5)
        self.max_comment_threads = reddit_config.get("max_comment_threads", 20)
        self.max_comments_per_thread = reddit_config.get("max_comments_per_thread", 50)
        self.subreddits = reddit_config.get("subreddits") or list(self.DEFAULT_SUBREDDITS)
        self.keywords = reddit_config.get("keywords") or list(self.DEFAULT_KEYWORDS)

    def _post_to_create(self, post: dict, subreddit: str) -> RawPostCreate | None:
        """Convert a Reddit listing child to RawPostCreate.

        Args:
            post: Reddit post data dict
            subreddit: Subreddit that was searched

        Returns:
            RawPostCreate or None if the post has no ID
        """
        reddit_id = post.get("id")
        if not reddit_id:
            return None

        selftext = post.get("selftext") or ""
        if selftext in ("[removed]", "[deleted]"):
            selftext = ""

        created_utc = post.get("created_utc")
        permalink = post.get("permalink") or f"/r/{subreddit}/comments/{reddit_id}/"

        return RawPostCreate(
            reddit_id=reddit_id,
            subreddit=post.get("subreddit") or subreddit,
            title=post.get("title") or "Untitled Post",
            body=selftext,
            author=post.get("author") or "deleted",
            url=f"https://reddit.com{permalink}",
            permalink=permalink,
            created_utc=datetime.utcfromtimestamp(created_utc) if created_utc else None,
            upvotes=post.get("score", 0) or 0,
            num_comments=post.get("num_comments", 0) or 0,
            source="reddit_api",
        )

    def _flatten_comments(self, children: list[dict], post_id: str) -> list[RawCommentCreate]:
        """Walk a comment tree depth-first and keep real comments."""
        comments = []
        for child in children:
            if child.get("kind") != "t1":
                continue
            data = child.get("data", {})
            body = data.get("body")
            if data.get("id") and body and body not in ("[removed]", "[deleted]"):
                created_utc = data.get("created_utc")
                parent_id = data.get("parent_id") or post_id
                comments.append(
                    RawCommentCreate(
                        reddit_comment_id=data["id"],
                        body=body,
                        author=data.get("author") or "deleted",
                        upvotes=data.get("score", 0) or 0,
                        created_utc=datetime.utcfromtimestamp(created_utc) if created_utc else None,
                        parent_id=parent_id.split("_", 1)[-1],
                    )
                )

            replies = data.get("replies")
            if isinstance(replies, dict):
                nested = replies.get("data", {}).get("children", [])
                comments.extend(self._flatten_comments(nested, post_id))
        return comments

    def search_posts(self, subreddit: str, keyword: str, limit: int = 100) -> FetchOutcome:
        """Search a subreddit for a keyword.

        After a 429 the scraper cools down and retries once with a reduced
        limit, keeping only the first few posts. A second 429 is reported as
        an unsuccessful outcome.

        Args:
            subreddit: Subreddit name (without r/)
            keyword: Search query
            limit: Number of results to request

        Returns:
            FetchOutcome with parsed posts (not yet stored)
        """
        outcome = FetchOutcome(subreddit=subreddit, keyword=keyword)
        url = f"{self.base_url}/r/{subreddit}/search.json"
        params = {"q": keyword, "restrict_sr": "on", "sort": "new", "limit": limit}

        def reduce_limit(current: dict) -> dict:
            outcome.throttled = True
            return {**current, "limit": min(self.retry_limit, current.get("limit", limit))}

        try:
            data = self.fetch_json(url, params=params, on_throttle=reduce_limit)
        except FetchError as e:
            logger.error(f"Error searching r/{subreddit} for '{keyword}': {e}")
            outcome.success = False
            outcome.throttled = outcome.throttled or e.is_throttled
            outcome.error = str(e)
            return outcome

        children = data.get("data", {}).get("children", []) if isinstance(data, dict) else []
        if outcome.throttled:
            children = children[: self.retry_keep]

        for child in children:
            post = self._post_to_create(child.get("data", {}), subreddit)
            if post:
                outcome.posts.append(post)

        logger.info(f"Found {len(outcome.posts)} posts in r/{subreddit} for '{keyword}'")
        return outcome

    def fetch_comments(self, subreddit: str, post_id: str) -> list[RawCommentCreate]:
        """Fetch the comment tree of one post.

        Args:
            subreddit: Subreddit name
            post_id: Reddit post ID

        Returns:
            Flattened list of comments

        Raises:
            FetchError: If the comment page cannot be fetched
        """
        url = f"{self.base_url}/r/{subreddit}/comments/{post_id}.json"
        data = self.fetch_json(url, params={"limit": 500, "depth": 10})

        if not isinstance(data, list) or len(data) < 2:
            return []
        children = data[1].get("data", {}).get("children", [])
        return self._flatten_comments(children, post_id)

    def run(
        self,
        subreddit: str,
        keyword: str,
        limit: int = 100,
        skip_comments: bool = False,
    ) -> FetchOutcome:
        """Search, store posts, then fetch and store comments for small threads.

        Args:
            subreddit: Subreddit name
            keyword: Search query
            limit: Number of results to request
            skip_comments: Skip comment fetching entirely

        Returns:
            FetchOutcome with saved counts
        """
        outcome = self.search_posts(subreddit, keyword, limit)
        if not outcome.posts:
            return outcome

        # Posts first so comments always find their parent
        for post in outcome.posts:
            if self.store.upsert_post(post):
                outcome.posts_saved += 1

        if not skip_comments:
            eligible = [
                p for p in outcome.posts
                if 0 < p.num_comments <= self.max_comments_per_thread
            ][: self.max_comment_threads]

            for post in eligible:
                try:
                    comments = self.fetch_comments(post.subreddit, post.reddit_id)
                except FetchError as e:
                    logger.warning(f"Could not fetch comments for {post.reddit_id}: {e}")
                    outcome.comment_errors.append(f"{post.reddit_id}: {e}")
                    continue
                outcome.comments[post.reddit_id] = comments
                outcome.comments_saved += self.store.upsert_comments_batch(post.reddit_id, comments)

        logger.info(
            f"r/{subreddit} '{keyword}': {outcome.posts_saved} new posts, "
            f"{outcome.comments_saved} comments"
        )
        return outcome

    def backfill_comments(
        self,
        limit: int = 50,
        max_comments: int = 200,
        max_runtime_seconds: float = 480,
        clock: Callable[[], float] = time.monotonic,
    ) -> dict:
        """Fetch comments for stored posts that have none yet.

        Args:
            limit: Maximum posts to visit
            max_comments: Skip posts reporting more comments than this
            max_runtime_seconds: Stop cleanly once this much time has passed
            clock: Monotonic clock (injected in tests)

        Returns:
            Summary dict
        """
        started = clock()
        backfill_limiter = RateLimiter.from_config(
            self.config.get("rate_limit", {}).get("comments_backfill", {}),
            sleep=self.rate_limiter.sleep_func,
        )
        limiter, self.rate_limiter = self.rate_limiter, backfill_limiter

        db = self.store.session_factory()
        try:
            has_comments = select(RawCommentModel.report_id).distinct()
            candidates = (
                db.query(ScamReportModel.reddit_id, ScamReportModel.subreddit)
                .filter(
                    ScamReportModel.num_comments > 0,
                    ScamReportModel.num_comments <= max_comments,
                    ScamReportModel.id.not_in(has_comments),
                )
                .order_by(ScamReportModel.upvotes.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()

        visited = 0
        comments_saved = 0
        errors = []
        stopped_early = False
        try:
            for reddit_id, subreddit in candidates:
                if clock() - started >= max_runtime_seconds:
                    stopped_early = True
                    logger.warning("Comment backfill reached its runtime ceiling, stopping")
                    break
                visited += 1
                try:
                    comments = self.fetch_comments(subreddit, reddit_id)
                except FetchError as e:
                    errors.append(f"{reddit_id}: {e}")
                    continue
                comments_saved += self.store.upsert_comments_batch(reddit_id, comments)
        finally:
            self.rate_limiter = limiter

        summary = {
            "candidates": len(candidates),
            "posts_visited": visited,
            "comments_saved": comments_saved,
            "errors": errors,
            "stopped_early": stopped_early,
            "elapsed_seconds": round(clock() - started, 2),
        }
        logger.info(f"Comment backfill complete: {summary}")
        return summary


def scrape_reddit(subreddit: str, keyword: str, limit: int = 100) -> dict:
    """Convenience function to run the Reddit scraper for one work unit.

    Returns:
        Fetch summary dict
    """
    with RedditScraper() as scraper:
        return scraper.run(subreddit, keyword, limit).to_dict()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    result = scrape_reddit("travel", "scam", limit=25)
    print(result)
