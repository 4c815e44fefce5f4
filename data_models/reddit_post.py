"""Schemas for raw Reddit posts and comments before enrichment."""

from datetime import datetime

from pydantic import BaseModel, Field


class RawPostCreate(BaseModel):
    """Schema for a Reddit post about to be stored."""

    reddit_id: str = Field(..., description="Reddit-assigned post ID (e.g. '1abc23')")
    subreddit: str
    title: str
    body: str = ""
    author: str = "deleted"
    url: str = Field(..., description="Canonical thread URL")
    permalink: str | None = None
    created_utc: datetime | None = None
    upvotes: int = 0
    num_comments: int = 0
    source: str = Field(default="reddit_api", description="Ingestion path: reddit_api or firecrawl")


class RawCommentCreate(BaseModel):
    """Schema for a Reddit comment about to be stored."""

    reddit_comment_id: str
    body: str
    author: str = "deleted"
    upvotes: int = 0
    created_utc: datetime | None = None
    parent_id: str | None = None
