"""Services for the ScamAtlas aggregator."""

from services.country_aliases import resolve_country_alias
from services.scam_reports import ReportNotFoundError, ScamReportService

__all__ = [
    "ReportNotFoundError",
    "ScamReportService",
    "resolve_country_alias",
]
