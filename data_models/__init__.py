"""Data models for the ScamAtlas aggregator."""

from data_models.classification import (
    ClassificationOutcome,
    ClassificationResult,
    LLMScamAnalysis,
)
from data_models.fetch_job import BatchResult, FetchJobStatus
from data_models.geocode import GeocodeOutcome, GeocodeResult
from data_models.location_stat import LocationStat, TopScamType
from data_models.reddit_post import RawCommentCreate, RawPostCreate
from data_models.scam_report import (
    ScamCategory,
    ScamComment,
    ScamReport,
    ScamReportDetail,
    VerificationStatus,
)

__all__ = [
    "RawPostCreate",
    "RawCommentCreate",
    "ScamCategory",
    "ScamReport",
    "ScamReportDetail",
    "ScamComment",
    "VerificationStatus",
    "ClassificationOutcome",
    "ClassificationResult",
    "LLMScamAnalysis",
    "GeocodeOutcome",
    "GeocodeResult",
    "LocationStat",
    "TopScamType",
    "FetchJobStatus",
    "BatchResult",
]
