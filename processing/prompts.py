"""Prompts sent to the classification model."""

from data_models.scam_report import ScamCategory

SCAM_CATEGORY_VALUES = "|".join(c.value for c in ScamCategory)

SCAM_ANALYSIS_SYSTEM_PROMPT = f"""You are an expert at analyzing travel scam stories from Reddit.
Read the post and its comments and decide whether it describes a scam that happened to a traveller.

Respond with a single JSON object and nothing else, using exactly these fields:
{{
  "isScamStory": true or false,
  "confidence": number between 0 and 1,
  "country": "country where it happened, or \\"Unknown\\"",
  "city": "city if mentioned, otherwise null",
  "specificLocation": "street, landmark, airport or venue if mentioned, otherwise null",
  "scamType": "{SCAM_CATEGORY_VALUES}",
  "scamMethods": ["how the scam worked"],
  "targetDemographics": ["who was targeted"],
  "moneyLost": number or null,
  "currency": "ISO currency code or null",
  "warningSignals": ["signs the traveller could have noticed"],
  "preventionTips": ["advice for other travellers"],
  "resolution": "how it ended, or null",
  "summary": "two sentence summary"
}}

Use "other" for scamType when no category fits. If the post is not about a scam,
set isScamStory to false and confidence to 0."""


COMMENT_ANALYSIS_INSTRUCTIONS = (
    "The following is a Reddit comment replying to a travel scam thread. "
    "Only set isScamStory to true if the commenter describes a scam that happened "
    "to them or someone they travelled with."
)


def build_story_content(
    title: str,
    subreddit: str,
    author: str,
    upvotes: int,
    body: str,
    comments: list[str] | None = None,
    max_comments: int = 10,
) -> str:
    """Format a report for the classifier.

    Args:
        title: Post title
        subreddit: Subreddit name
        author: Post author
        upvotes: Post score
        body: Post body text
        comments: Top comment bodies, highest score first
        max_comments: Maximum comments to include

    Returns:
        User message content
    """
    parts = [
        f"Title: {title}",
        f"Subreddit: r/{subreddit}",
        f"Author: u/{author}",
        f"Upvotes: {upvotes}",
        "",
        "Story:",
        body or "(no body text)",
    ]
    if comments:
        parts.extend(["", "Top comments:"])
        parts.extend(f"- {c}" for c in comments[:max_comments])
    return "\n".join(parts)


def build_comment_content(
    comment_body: str,
    parent_title: str,
    parent_country: str | None,
    parent_city: str | None,
) -> str:
    """Format a comment with its thread context for the classifier."""
    location = ", ".join(p for p in (parent_city, parent_country) if p) or "Unknown"
    return "\n".join(
        [
            COMMENT_ANALYSIS_INSTRUCTIONS,
            "",
            f"Thread title: {parent_title}",
            f"Thread location: {location}",
            "",
            "Comment:",
            comment_body,
        ]
    )
