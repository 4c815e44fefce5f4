"""Structured extraction of Reddit threads from scraped markdown.

The scraping service returns a rendered thread as markdown whose shape
depends on which Reddit front end was rendered. Two layouts are known:

* ``old``: old.reddit.com, ``submitted ... by u/name`` and ``N points``
* ``new``: www.reddit.com, ``r/sub • 5 hr. ago``, ``N upvotes · N comments``

Parsing is best effort. A thread without a post ID or a title raises
``ParseError``; missing author, score or comments degrade to defaults.
"""

import hashlib
import logging
import re

from data_models.reddit_post import RawCommentCreate, RawPostCreate

logger = logging.getLogger(__name__)

POST_ID_RE = re.compile(r"comments/([a-z0-9]+)", re.IGNORECASE)
SUBREDDIT_RE = re.compile(r"/r/([A-Za-z0-9_]+)")
AUTHOR_RE = re.compile(r"(?:^|[\s\[(])u/([A-Za-z0-9_-]+)")
SUBMITTED_BY_RE = re.compile(r"submitted .*?\bby\s+(?:u/)?([A-Za-z0-9_-]+)", re.IGNORECASE)
SCORE_RE = re.compile(r"(\d[\d,]*)\s*(?:points?|upvotes?)\b", re.IGNORECASE)
COMMENT_COUNT_RE = re.compile(r"(\d[\d,]*)\s*comments?\b", re.IGNORECASE)
HEADING_RE = re.compile(r"^#\s+(.+)$")
COMMENT_SECTION_RE = re.compile(
    r"^(?:#+\s*comments\b|sorted by\b|sort by\b|view all comments\b)", re.IGNORECASE
)
METADATA_RE = re.compile(
    r"(?:\bsubmitted\b.*\bago\b|^\s*r/[A-Za-z0-9_]+\s*[•·]|\bpoints?\b.*upvoted|"
    r"^\s*\d[\d,]*\s*(?:points?|upvotes?)\b|^\s*\d[\d,]*\s*comments?\b|"
    r"^\s*(?:reply|share|save|report|permalink|embed)\s*$|\bago\s*$)",
    re.IGNORECASE,
)
BULLET_RE = re.compile(r"^\s*(?:[-*]\s+|\[[–-]\]\s*)")

MIN_COMMENT_LENGTH = 10


class ParseError(Exception):
    """Raised when a scraped page cannot be turned into a post."""

    def __init__(self, reason: str, url: str | None = None):
        super().__init__(f"{reason} ({url})" if url else reason)
        self.reason = reason
        self.url = url


def _to_int(value: str) -> int:
    return int(value.replace(",", ""))


def detect_layout(markdown: str) -> str:
    """Guess which Reddit front end rendered the markdown.

    Returns:
        "old", "new" or "unknown"
    """
    if re.search(r"\bsubmitted\b", markdown, re.IGNORECASE) or re.search(
        r"\d\s*points?\b", markdown, re.IGNORECASE
    ):
        return "old"
    if re.search(r"\d\s*upvotes?\b", markdown, re.IGNORECASE) or re.search(
        r"^\s*r/[A-Za-z0-9_]+\s*[•·]", markdown, re.MULTILINE
    ):
        return "new"
    return "unknown"


class RedditMarkdownParser:
    """Turns scraped thread markdown into post and comment records."""

    def _split_sections(self, markdown: str) -> tuple[list[str], list[str]]:
        """Split into post lines and comment lines at the comment marker."""
        lines = markdown.splitlines()
        for i, line in enumerate(lines):
            if COMMENT_SECTION_RE.match(line.strip()):
                return lines[:i], lines[i:]
        return lines, []

    def _clean_body(self, lines: list[str]) -> str:
        kept = []
        for line in lines:
            stripped = line.strip()
            if not stripped:
                if kept and kept[-1] != "":
                    kept.append("")
                continue
            if METADATA_RE.search(stripped) or AUTHOR_RE.fullmatch(" " + stripped):
                continue
            stripped = BULLET_RE.sub("", stripped)
            stripped = stripped.replace("[deleted]", "").replace("[removed]", "").strip()
            if stripped:
                kept.append(stripped)
        return "\n".join(kept).strip()

    def parse_post(self, markdown: str, url: str) -> RawPostCreate:
        """Parse a thread page into a post record.

        Args:
            markdown: Markdown returned by the scraping service
            url: URL of the thread

        Returns:
            RawPostCreate with ``source="firecrawl"``

        Raises:
            ParseError: If the URL has no post ID or no title can be found
        """
        id_match = POST_ID_RE.search(url)
        if not id_match:
            raise ParseError("URL does not point at a Reddit thread", url)
        reddit_id = id_match.group(1).lower()

        if not markdown or not markdown.strip():
            raise ParseError("Empty page", url)

        sub_match = SUBREDDIT_RE.search(url)
        subreddit = sub_match.group(1) if sub_match else "unknown"

        post_lines, comment_lines = self._split_sections(markdown)

        title = None
        title_index = -1
        for i, line in enumerate(post_lines):
            heading = HEADING_RE.match(line.strip())
            if heading:
                title = heading.group(1).strip()
                title_index = i
                break
        if title is None:
            for i, line in enumerate(post_lines):
                stripped = line.strip()
                if stripped and not METADATA_RE.search(stripped) and not AUTHOR_RE.match(stripped):
                    title = stripped.lstrip("# ").strip()
                    title_index = i
                    break
        if not title:
            raise ParseError("No title found", url)

        post_text = "\n".join(post_lines)
        author = "deleted"
        submitted = SUBMITTED_BY_RE.search(post_text)
        author_match = submitted or AUTHOR_RE.search(post_text)
        if author_match:
            author = author_match.group(1)

        score_match = SCORE_RE.search(post_text)
        upvotes = _to_int(score_match.group(1)) if score_match else 0

        count_match = COMMENT_COUNT_RE.search(post_text) or COMMENT_COUNT_RE.search(
            "\n".join(comment_lines[:1])
        )
        num_comments = _to_int(count_match.group(1)) if count_match else 0

        body = self._clean_body(post_lines[title_index + 1:])

        return RawPostCreate(
            reddit_id=reddit_id,
            subreddit=subreddit,
            title=title[:500],
            body=body,
            author=author,
            url=url,
            permalink=f"/r/{subreddit}/comments/{reddit_id}/",
            upvotes=upvotes,
            num_comments=num_comments,
            source="firecrawl",
        )

    def parse_comments(self, markdown: str, post_id: str) -> list[RawCommentCreate]:
        """Parse the comment section of a thread page.

        A comment starts at a line carrying a ``u/name`` handle and runs
        until the next such line. Comment IDs are derived from the post ID,
        author and body so re-scraping the same page yields the same IDs.

        Args:
            markdown: Markdown returned by the scraping service
            post_id: Reddit ID of the parent post

        Returns:
            List of comments (possibly empty)
        """
        _, comment_lines = self._split_sections(markdown)

        blocks: list[tuple[str, list[str]]] = []
        for line in comment_lines[1:]:
            author_match = AUTHOR_RE.search(" " + line.strip())
            if author_match and len(line.strip()) < 120:
                blocks.append((author_match.group(1), [line]))
            elif blocks:
                blocks[-1][1].append(line)

        comments = []
        seen = set()
        for author, lines in blocks:
            block_text = "\n".join(lines)
            score_match = SCORE_RE.search(block_text)
            body = self._clean_body(lines[1:])
            if len(body) < MIN_COMMENT_LENGTH:
                continue
            if "View all comments" in body or "sorted by" in body.lower():
                continue

            digest = hashlib.sha1(f"{post_id}:{author}:{body}".encode()).hexdigest()[:12]
            comment_id = f"fc_{digest}"
            if comment_id in seen:
                continue
            seen.add(comment_id)

            comments.append(
                RawCommentCreate(
                    reddit_comment_id=comment_id,
                    body=body,
                    author=author,
                    upvotes=_to_int(score_match.group(1)) if score_match else 0,
                    parent_id=post_id,
                )
            )

        logger.debug(f"Parsed {len(comments)} comments for {post_id} ({detect_layout(markdown)} layout)")
        return comments
