"""SQLAlchemy ORM models for the ScamAtlas aggregator."""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


class ScamReportModel(Base):
    """A Reddit thread and the enrichment layered onto it.

    The raw post fields are written once at ingestion. Classification,
    location and engagement fields are filled in by the enrichment engine.
    """

    __tablename__ = "scam_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    # Raw post
    reddit_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True, index=True)
    subreddit: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    author: Mapped[str] = mapped_column(String(100), default="deleted")
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="")
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    permalink: Mapped[str | None] = mapped_column(String(1024))
    created_utc: Mapped[datetime | None] = mapped_column(DateTime)
    upvotes: Mapped[int] = mapped_column(Integer, default=0)
    num_comments: Mapped[int] = mapped_column(Integer, default=0)
    source: Mapped[str] = mapped_column(String(30), default="reddit_api")
    scraped_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    # Processing status
    is_processed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    processing_attempts: Mapped[int] = mapped_column(Integer, default=0)
    processing_errors: Mapped[list | None] = mapped_column(JSON, default=list)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Classification
    is_scam_story: Mapped[bool] = mapped_column(Boolean, default=False)
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    scam_type: Mapped[str | None] = mapped_column(String(30), index=True)
    scam_methods: Mapped[list | None] = mapped_column(JSON, default=list)
    target_demographics: Mapped[list | None] = mapped_column(JSON, default=list)
    money_lost: Mapped[float | None] = mapped_column(Float)
    currency: Mapped[str | None] = mapped_column(String(10))
    warning_signals: Mapped[list | None] = mapped_column(JSON, default=list)
    prevention_tips: Mapped[list | None] = mapped_column(JSON, default=list)
    resolution: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)

    # Location
    country: Mapped[str | None] = mapped_column(String(100), index=True)
    city: Mapped[str | None] = mapped_column(String(100))
    specific_location: Mapped[str | None] = mapped_column(String(300))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)

    # Moderation and engagement
    verification_status: Mapped[str] = mapped_column(String(30), default="unverified", index=True)
    helpful_count: Mapped[int] = mapped_column(Integer, default=0)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    report_count: Mapped[int] = mapped_column(Integer, default=0)

    comments: Mapped[list["RawCommentModel"]] = relationship(
        back_populates="report",
        cascade="all, delete-orphan",
    )


class RawCommentModel(Base):
    """A reply attached to exactly one scam report."""

    __tablename__ = "scam_comments"
    __table_args__ = (
        UniqueConstraint("report_id", "reddit_comment_id", name="uq_comment_per_report"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    report_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scam_reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reddit_comment_id: Mapped[str] = mapped_column(String(20), nullable=False)
    author: Mapped[str] = mapped_column(String(100), default="deleted")
    body: Mapped[str] = mapped_column(Text, nullable=False)
    upvotes: Mapped[int] = mapped_column(Integer, default=0)
    created_utc: Mapped[datetime | None] = mapped_column(DateTime)
    parent_id: Mapped[str | None] = mapped_column(String(20))
    scraped_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Analysis
    is_analyzed_for_scam: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_scam_report: Mapped[bool] = mapped_column(Boolean, default=False)
    contains_advice: Mapped[bool] = mapped_column(Boolean, default=False)
    is_helpful: Mapped[bool] = mapped_column(Boolean, default=False)
    extracted_scam_type: Mapped[str | None] = mapped_column(String(30))
    extracted_country: Mapped[str | None] = mapped_column(String(100))
    extracted_city: Mapped[str | None] = mapped_column(String(100))

    report: Mapped[ScamReportModel] = relationship(back_populates="comments")


class FetchJobModel(Base):
    """Progress of one (subreddit, keyword) work unit across batch runs."""

    __tablename__ = "fetch_jobs"
    __table_args__ = (
        UniqueConstraint("subreddit", "keyword", name="uq_fetch_job_unit"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    subreddit: Mapped[str] = mapped_column(String(100), nullable=False)
    keyword: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    last_fetched_at: Mapped[datetime | None] = mapped_column(DateTime)
    error_message: Mapped[str | None] = mapped_column(Text)
    posts_processed: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class LocationStatModel(Base):
    """Rollup of incidents for one (country, city) pair.

    A null city is the country-level aggregate.
    """

    __tablename__ = "location_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    location_key: Mapped[str] = mapped_column(String(220), nullable=False, unique=True, index=True)
    country: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    city: Mapped[str | None] = mapped_column(String(100))
    total_scams: Mapped[int] = mapped_column(Integer, default=0, index=True)
    top_scam_types: Mapped[list | None] = mapped_column(JSON, default=list)
    average_money_lost: Mapped[float | None] = mapped_column(Float)
    loss_samples: Mapped[int] = mapped_column(Integer, default=0)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
