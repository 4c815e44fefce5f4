"""Tests for the Reddit JSON scraper."""

import httpx

from db.models import RawCommentModel, ScamReportModel
from db.store import IngestionStore
from ingestion.rate_limiter import RateLimiter
from ingestion.social.reddit_scraper import RedditScraper


def listing(count: int, num_comments: int = 0) -> dict:
    return {
        "data": {
            "children": [
                {
                    "kind": "t3",
                    "data": {
                        "id": f"p{i}",
                        "subreddit": "travel",
                        "title": f"Scam story {i}",
                        "selftext": "Got overcharged" if i else "[removed]",
                        "author": "traveller",
                        "permalink": f"/r/travel/comments/p{i}/scam_story/",
                        "created_utc": 1700000000 + i,
                        "score": i,
                        "num_comments": num_comments,
                    },
                }
                for i in range(count)
            ]
        }
    }


def comment_page(post_id: str) -> list:
    return [
        listing(1),
        {
            "data": {
                "children": [
                    {
                        "kind": "t1",
                        "data": {
                            "id": f"{post_id}c1",
                            "body": "Happened to me too",
                            "author": "a",
                            "score": 3,
                            "parent_id": f"t3_{post_id}",
                            "replies": {
                                "data": {
                                    "children": [
                                        {
                                            "kind": "t1",
                                            "data": {
                                                "id": f"{post_id}c2",
                                                "body": "Same here",
                                                "author": "b",
                                                "parent_id": f"t1_{post_id}c1",
                                                "replies": "",
                                            },
                                        }
                                    ]
                                }
                            },
                        },
                    },
                    {"kind": "t1", "data": {"id": f"{post_id}c3", "body": "[deleted]"}},
                    {"kind": "more", "data": {"count": 4}},
                ]
            }
        },
    ]


class Sleeps:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_scraper(handler, session_factory, sleeps: Sleeps | None = None) -> RedditScraper:
    sleeps = sleeps or Sleeps()
    return RedditScraper(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        rate_limiter=RateLimiter(delay_seconds=0, cooldown_seconds=60, max_retries=1, sleep=sleeps),
        store=IngestionStore(session_factory),
    )


def test_search_parses_posts(session_factory):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=listing(3))

    outcome = make_scraper(handler, session_factory).search_posts("travel", "taxi scam", limit=25)

    assert outcome.success
    assert [p.reddit_id for p in outcome.posts] == ["p0", "p1", "p2"]
    assert outcome.posts[0].body == ""
    assert outcome.posts[1].url == "https://reddit.com/r/travel/comments/p1/scam_story/"
    assert outcome.posts[1].created_utc is not None
    params = seen[0].url.params
    assert seen[0].url.path == "/r/travel/search.json"
    assert params["q"] == "taxi scam"
    assert params["restrict_sr"] == "on"
    assert params["sort"] == "new"
    assert params["limit"] == "25"


def test_throttled_search_retries_with_reduced_limit(session_factory):
    limits = []
    responses = [httpx.Response(429), httpx.Response(200, json=listing(10))]

    def handler(request):
        limits.append(request.url.params["limit"])
        return responses.pop(0)

    sleeps = Sleeps()
    outcome = make_scraper(handler, session_factory, sleeps).search_posts("travel", "scam", limit=100)

    assert outcome.success
    assert outcome.throttled
    assert limits == ["100", "10"]
    assert len(outcome.posts) == 5
    assert 60 in sleeps.calls


def test_second_throttle_fails_unit(session_factory):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429)

    outcome = make_scraper(handler, session_factory).search_posts("travel", "scam")

    assert not outcome.success
    assert outcome.throttled
    assert outcome.posts == []
    assert len(calls) == 2


def test_http_error_fails_unit(session_factory):
    outcome = make_scraper(lambda request: httpx.Response(503), session_factory).search_posts("travel", "scam")

    assert not outcome.success
    assert "503" in outcome.error


def test_fetch_comments_flattens_tree(session_factory):
    def handler(request):
        return httpx.Response(200, json=comment_page("p1"))

    comments = make_scraper(handler, session_factory).fetch_comments("travel", "p1")

    assert [c.reddit_comment_id for c in comments] == ["p1c1", "p1c2"]
    assert comments[0].parent_id == "p1"
    assert comments[1].parent_id == "p1c1"


def test_run_stores_posts_and_isolates_comment_failures(session_factory):
    def handler(request):
        path = request.url.path
        if path.endswith("search.json"):
            return httpx.Response(200, json=listing(3, num_comments=2))
        if "/comments/p1" in path:
            return httpx.Response(500)
        post_id = path.rsplit("/", 1)[-1].removesuffix(".json")
        return httpx.Response(200, json=comment_page(post_id))

    outcome = make_scraper(handler, session_factory).run("travel", "scam")

    assert outcome.success
    assert outcome.posts_saved == 3
    assert outcome.comments_saved == 4
    assert len(outcome.comment_errors) == 1
    assert outcome.comment_errors[0].startswith("p1:")

    db = session_factory()
    try:
        assert db.query(ScamReportModel).count() == 3
        assert db.query(RawCommentModel).count() == 4
    finally:
        db.close()


def test_run_is_idempotent(session_factory):
    def handler(request):
        if request.url.path.endswith("search.json"):
            return httpx.Response(200, json=listing(2, num_comments=2))
        post_id = request.url.path.rsplit("/", 1)[-1].removesuffix(".json")
        return httpx.Response(200, json=comment_page(post_id))

    scraper = make_scraper(handler, session_factory)
    scraper.run("travel", "scam")
    second = scraper.run("travel", "scam")

    assert second.posts_saved == 0
    assert second.comments_saved == 0


def test_skip_comments_and_large_threads(session_factory):
    requests = []

    def handler(request):
        requests.append(request.url.path)
        return httpx.Response(200, json=listing(2, num_comments=500))

    scraper = make_scraper(handler, session_factory)
    scraper.run("travel", "scam")
    scraper.run("travel", "fraud", skip_comments=True)

    assert all(path.endswith("search.json") for path in requests)


def test_backfill_comments_visits_posts_without_comments(session_factory, add_report):
    add_report(reddit_id="p1", num_comments=2, upvotes=5)
    add_report(reddit_id="p2", num_comments=0)

    def handler(request):
        return httpx.Response(200, json=comment_page("p1"))

    scraper = make_scraper(handler, session_factory)
    summary = scraper.backfill_comments(limit=10)

    assert summary["candidates"] == 1
    assert summary["posts_visited"] == 1
    assert summary["comments_saved"] == 2
    assert not summary["stopped_early"]

    again = scraper.backfill_comments(limit=10)
    assert again["candidates"] == 0
