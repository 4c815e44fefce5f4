"""Scam report schemas and the enumerations shared across the pipeline."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ScamCategory(str, Enum):
    """Categories the classifier may assign to an incident."""

    TAXI = "taxi"
    ACCOMMODATION = "accommodation"
    TOUR = "tour"
    POLICE = "police"
    ATM = "atm"
    RESTAURANT = "restaurant"
    SHOPPING = "shopping"
    VISA = "visa"
    AIRPORT = "airport"
    PICKPOCKET = "pickpocket"
    ROMANCE = "romance"
    TIMESHARE = "timeshare"
    FAKE_TICKET = "fake_ticket"
    CURRENCY_EXCHANGE = "currency_exchange"
    OTHER = "other"


class VerificationStatus(str, Enum):
    """Moderation state of a report."""

    UNVERIFIED = "unverified"
    COMMUNITY_VERIFIED = "community_verified"
    MOD_VERIFIED = "mod_verified"
    AI_FLAGGED = "ai_flagged"  # Classified as not a scam


class ScamComment(BaseModel):
    """Read model for a stored comment."""

    id: str
    reddit_comment_id: str
    author: str
    body: str
    upvotes: int = 0
    created_utc: datetime | None = None
    contains_advice: bool = False
    is_helpful: bool = False
    is_scam_report: bool = False

    class Config:
        from_attributes = True


class ScamReport(BaseModel):
    """Read model for a processed scam report."""

    id: str
    reddit_id: str
    subreddit: str
    author: str
    title: str
    body: str = ""
    url: str
    created_utc: datetime | None = None
    upvotes: int = 0
    num_comments: int = 0

    is_processed: bool = False
    is_scam_story: bool = False
    confidence: float = Field(default=0.0, ge=0, le=1)
    scam_type: ScamCategory | None = None
    scam_methods: list[str] = Field(default_factory=list)
    target_demographics: list[str] = Field(default_factory=list)
    money_lost: float | None = None
    currency: str | None = None
    warning_signals: list[str] = Field(default_factory=list)
    prevention_tips: list[str] = Field(default_factory=list)
    resolution: str | None = None
    summary: str | None = None

    country: str | None = None
    city: str | None = None
    specific_location: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    helpful_count: int = 0
    view_count: int = 0
    report_count: int = 0

    class Config:
        from_attributes = True
        use_enum_values = True


class ScamReportDetail(ScamReport):
    """A report with its stored comments."""

    comments: list[ScamComment] = Field(default_factory=list)
