"""Scam report service - read-side queries and community feedback."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from data_models.location_stat import LocationStat
from data_models.scam_report import ScamCategory, ScamComment, ScamReport, ScamReportDetail
from db.database import SessionLocal
from db.models import LocationStatModel, RawCommentModel, ScamReportModel
from processing.aggregator import location_key
from services.country_aliases import resolve_country_alias

logger = logging.getLogger(__name__)

TRENDING_WINDOWS = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

REPORT_TYPES = ("fake", "inappropriate", "duplicate", "other")

SORT_COLUMNS = {
    "date": ScamReportModel.created_utc,
    "upvotes": ScamReportModel.upvotes,
    "views": ScamReportModel.view_count,
}

NO_DATA_MESSAGE = (
    "No specific scam data available. Stay vigilant - common scams include fake tickets, "
    "bogus accommodations, overpriced taxis, and tourist traps. "
    "Use official platforms and payment protection."
)


def risk_level(total_reports: int) -> str:
    """Bucket a report count into a coarse risk label."""
    if total_reports >= 10:
        return "HIGH RISK"
    if total_reports >= 5:
        return "MEDIUM RISK"
    return "LOW RISK"


def trending_score(report: ScamReportModel) -> float:
    return (report.view_count or 0) * 0.3 + (report.upvotes or 0) * 0.7


def _unique(values, limit: int) -> list[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
        if len(seen) >= limit:
            break
    return seen


class ReportNotFoundError(LookupError):
    """The requested report does not exist."""


class ScamReportService:
    """Service for browsing processed reports and location rollups."""

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self.session_factory = session_factory or SessionLocal

    def list_reports(
        self,
        country: str | None = None,
        scam_type: str | None = None,
        verification_status: str | None = None,
        sort_by: str = "date",
        limit: int = 50,
    ) -> list[ScamReport]:
        """List processed reports.

        Args:
            country: Filter by country (aliases accepted)
            scam_type: Filter by category
            verification_status: Filter by moderation state
            sort_by: One of date, upvotes, views
            limit: Maximum reports to return

        Returns:
            List of ScamReport
        """
        db = self.session_factory()
        try:
            query = db.query(ScamReportModel).filter(ScamReportModel.is_processed == True)
            if country:
                query = query.filter(ScamReportModel.country == resolve_country_alias(country))
            if scam_type:
                query = query.filter(ScamReportModel.scam_type == scam_type)
            if verification_status:
                query = query.filter(ScamReportModel.verification_status == verification_status)

            column = SORT_COLUMNS.get(sort_by, ScamReportModel.created_utc)
            reports = query.order_by(column.desc()).limit(limit).all()
            return [ScamReport.model_validate(r) for r in reports]
        finally:
            db.close()

    def get_report(self, report_id: str, count_view: bool = True) -> ScamReportDetail:
        """Get a report with its top comments, counting the view.

        Raises:
            ReportNotFoundError: If no report has this ID
        """
        db = self.session_factory()
        try:
            report = db.get(ScamReportModel, report_id)
            if report is None:
                raise ReportNotFoundError(report_id)

            if count_view:
                report.view_count = (report.view_count or 0) + 1
                db.commit()

            comments = (
                db.query(RawCommentModel)
                .filter(RawCommentModel.report_id == report_id)
                .order_by(RawCommentModel.upvotes.desc())
                .limit(50)
                .all()
            )
            detail = ScamReportDetail.model_validate(report)
            detail.comments = [ScamComment.model_validate(c) for c in comments]
            return detail
        finally:
            db.close()

    def search_reports(
        self,
        text: str,
        country: str | None = None,
        scam_type: str | None = None,
        verification_status: str | None = None,
        limit: int = 50,
    ) -> list[ScamReport]:
        """Case-insensitive substring search over title, body and summary."""
        pattern = f"%{text.strip()}%"
        db = self.session_factory()
        try:
            query = db.query(ScamReportModel).filter(
                ScamReportModel.is_processed == True,
                or_(
                    ScamReportModel.title.ilike(pattern),
                    ScamReportModel.body.ilike(pattern),
                    ScamReportModel.summary.ilike(pattern),
                ),
            )
            if country:
                query = query.filter(ScamReportModel.country == resolve_country_alias(country))
            if scam_type:
                query = query.filter(ScamReportModel.scam_type == scam_type)
            if verification_status:
                query = query.filter(ScamReportModel.verification_status == verification_status)
            reports = query.order_by(ScamReportModel.upvotes.desc()).limit(limit).all()
            return [ScamReport.model_validate(r) for r in reports]
        finally:
            db.close()

    def get_location_stats(self, country: str | None = None, limit: int = 100) -> list[LocationStat]:
        """Get rollups sorted by total incidents, most first."""
        db = self.session_factory()
        try:
            query = db.query(LocationStatModel)
            if country:
                query = query.filter(LocationStatModel.country == resolve_country_alias(country))
            stats = query.order_by(LocationStatModel.total_scams.desc()).limit(limit).all()
            return [LocationStat.model_validate(s) for s in stats]
        finally:
            db.close()

    def get_top_countries(self, limit: int = 10) -> list[dict]:
        """Sum rollups per country.

        Returns:
            List of {"country", "total_scams", "cities"} dicts
        """
        db = self.session_factory()
        try:
            rows = (
                db.query(
                    LocationStatModel.country,
                    func.sum(LocationStatModel.total_scams).label("total_scams"),
                    func.count(LocationStatModel.city).label("cities"),
                )
                .group_by(LocationStatModel.country)
                .order_by(func.sum(LocationStatModel.total_scams).desc())
                .limit(limit)
                .all()
            )
            return [
                {"country": r.country, "total_scams": int(r.total_scams or 0), "cities": r.cities}
                for r in rows
            ]
        finally:
            db.close()

    def get_trending(self, period: str = "week", limit: int = 10) -> list[ScamReport]:
        """Get recent processed reports ranked by views and upvotes.

        Args:
            period: One of day, week, month
            limit: Maximum reports to return
        """
        window = TRENDING_WINDOWS.get(period, TRENDING_WINDOWS["week"])
        cutoff = datetime.utcnow() - window
        db = self.session_factory()
        try:
            reports = (
                db.query(ScamReportModel)
                .filter(
                    ScamReportModel.is_processed == True,
                    ScamReportModel.created_utc >= cutoff,
                )
                .all()
            )
            reports.sort(key=trending_score, reverse=True)
            return [ScamReport.model_validate(r) for r in reports[:limit]]
        finally:
            db.close()

    def get_scam_type_stats(self) -> list[dict]:
        """Count processed reports per category with their share in percent."""
        db = self.session_factory()
        try:
            rows = (
                db.query(ScamReportModel.scam_type, func.count(ScamReportModel.id))
                .filter(
                    ScamReportModel.is_processed == True,
                    ScamReportModel.is_scam_story == True,
                )
                .group_by(ScamReportModel.scam_type)
                .all()
            )
        finally:
            db.close()

        counts = {scam_type: count for scam_type, count in rows if scam_type}
        total = sum(counts.values())
        stats = [
            {
                "type": category.value,
                "count": counts.get(category.value, 0),
                "percentage": (counts.get(category.value, 0) / total * 100) if total else 0.0,
            }
            for category in ScamCategory
        ]
        stats.sort(key=lambda s: s["count"], reverse=True)
        return stats

    def get_total_scam_count(self) -> int:
        """Count incidents across stories and comment-derived rollup entries.

        Stored incident stories are counted directly; a rollup whose total
        exceeds the stories stored at its location contributes the surplus.
        """
        db = self.session_factory()
        try:
            stories = (
                db.query(ScamReportModel.country, ScamReportModel.city)
                .filter(
                    ScamReportModel.is_processed == True,
                    ScamReportModel.is_scam_story == True,
                )
                .all()
            )
            stats = db.query(LocationStatModel.location_key, LocationStatModel.total_scams).all()
        finally:
            db.close()

        per_location: dict[str, int] = {}
        for country, city in stories:
            key = location_key(country or "Unknown", city)
            per_location[key] = per_location.get(key, 0) + 1

        surplus = sum(max(0, (total or 0) - per_location.get(key, 0)) for key, total in stats)
        return len(stories) + surplus

    def get_helpful_comments(self, limit: int = 20, report_id: str | None = None) -> list[dict]:
        """Get comments flagged as advice, with their story's title and country."""
        db = self.session_factory()
        try:
            query = (
                db.query(RawCommentModel, ScamReportModel.title, ScamReportModel.country)
                .join(ScamReportModel, RawCommentModel.report_id == ScamReportModel.id)
                .filter(RawCommentModel.contains_advice == True)
            )
            if report_id:
                query = query.filter(RawCommentModel.report_id == report_id)
            rows = query.order_by(RawCommentModel.upvotes.desc()).limit(limit).all()
            return [
                {
                    **ScamComment.model_validate(comment).model_dump(),
                    "report_id": comment.report_id,
                    "story_title": title or "Unknown",
                    "story_country": country or "Unknown",
                }
                for comment, title, country in rows
            ]
        finally:
            db.close()

    def mark_helpful(self, report_id: str) -> int:
        """Increment a report's helpful count.

        Returns:
            The new helpful count

        Raises:
            ReportNotFoundError: If no report has this ID
        """
        db = self.session_factory()
        try:
            report = db.get(ScamReportModel, report_id)
            if report is None:
                raise ReportNotFoundError(report_id)
            report.helpful_count = (report.helpful_count or 0) + 1
            db.commit()
            return report.helpful_count
        finally:
            db.close()

    def report_story(self, report_id: str, report_type: str, reason: str | None = None) -> int:
        """Flag a report for moderation.

        Returns:
            The new report count

        Raises:
            ValueError: If the report type is not recognised
            ReportNotFoundError: If no report has this ID
        """
        if report_type not in REPORT_TYPES:
            raise ValueError(f"Unknown report type: {report_type}")

        db = self.session_factory()
        try:
            report = db.get(ScamReportModel, report_id)
            if report is None:
                raise ReportNotFoundError(report_id)
            report.report_count = (report.report_count or 0) + 1
            db.commit()
            logger.info(f"Report {report_id} flagged as {report_type}: {reason or '-'}")
            return report.report_count
        finally:
            db.close()

    def summarize_country(self, country: str) -> dict:
        """Build a short risk summary for a country.

        Args:
            country: Country name or alias

        Returns:
            Dict with the canonical country, report count, risk level and message
        """
        canonical = resolve_country_alias(country)
        db = self.session_factory()
        try:
            stories = (
                db.query(ScamReportModel)
                .filter(
                    ScamReportModel.is_processed == True,
                    ScamReportModel.is_scam_story == True,
                    func.lower(ScamReportModel.country) == canonical.lower(),
                )
                .order_by(ScamReportModel.upvotes.desc())
                .all()
            )
            rollup_total = (
                db.query(func.sum(LocationStatModel.total_scams))
                .filter(func.lower(LocationStatModel.country) == canonical.lower())
                .scalar()
            ) or 0

            total_reports = max(int(rollup_total), len(stories))
            if total_reports == 0:
                return {
                    "country": canonical,
                    "total_reports": 0,
                    "risk_level": None,
                    "message": f"{canonical}: {NO_DATA_MESSAGE}",
                }

            types = []
            for story in stories:
                types.extend(story.scam_methods or [story.scam_type])
            types_text = ", ".join(_unique(types, 3)) or "various types"
            warnings_text = ". ".join(
                _unique((w for s in stories for w in (s.warning_signals or [])), 2)
            )
            tips_text = ". ".join(
                _unique((t for s in stories for t in (s.prevention_tips or [])), 2)
            )
        finally:
            db.close()

        level = risk_level(total_reports)
        message = f"{canonical}: {level}, {total_reports} scam reports. Types: {types_text}."
        if warnings_text:
            message += f" Warnings: {warnings_text}."
        if tips_text:
            message += f" Tips: {tips_text}"

        return {
            "country": canonical,
            "total_reports": total_reports,
            "risk_level": level,
            "message": message,
        }
