"""Enrichment engine: classify stored reports, geocode incidents, update rollups."""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import yaml
from dotenv import load_dotenv
from sqlalchemy.orm import Session

from data_models.classification import ClassificationOutcome, ClassificationResult
from data_models.geocode import GeocodeOutcome
from data_models.scam_report import VerificationStatus
from db.database import SessionLocal
from db.models import RawCommentModel, ScamReportModel
from ingestion.rate_limiter import RateLimiter
from processing.aggregator import Aggregator, AveragingPolicy
from processing.classifier import ScamClassifier, get_classifier
from processing.errors import ConfigurationError, TransientEnrichmentError
from processing.geocoding import GeocodeNormalizer, get_geocoder
from processing.prompts import build_story_content

load_dotenv()

logger = logging.getLogger(__name__)

UNKNOWN_COUNTRY = "Unknown"

DEFAULT_ENRICHMENT_CONFIG = {
    "max_attempts": 3,
    "delay_seconds": 1.0,
    "max_comments_in_prompt": 10,
    "batch_limit": 10,
    "max_runtime_seconds": 480,
    "averaging": "decayed",
}


@dataclass
class ProcessingResult:
    """Result of enriching a single report.

    ``skipped`` is set when another run had already processed the report,
    in which case nothing was written or aggregated.
    """

    report_id: str
    success: bool
    outcome: str | None = None
    is_incident: bool = False
    category: str | None = None
    country: str | None = None
    city: str | None = None
    geocoded: bool = False
    aggregated: bool = False
    skipped: bool = False
    error: str | None = None


def _append_error(report: ScamReportModel, message: str) -> None:
    # Reassign so the JSON column is flagged dirty
    report.processing_errors = [*(report.processing_errors or []), message]


def cleared_enrichment() -> dict:
    """Column values of a report that carries no classification or location."""
    return {
        "is_scam_story": False,
        "confidence": 0.0,
        "scam_type": None,
        "scam_methods": [],
        "target_demographics": [],
        "money_lost": None,
        "currency": None,
        "warning_signals": [],
        "prevention_tips": [],
        "resolution": None,
        "summary": None,
        "country": None,
        "city": None,
        "specific_location": None,
        "latitude": None,
        "longitude": None,
        "verification_status": VerificationStatus.UNVERIFIED.value,
    }


def reset_reports(
    report_ids: list[str] | None = None,
    only_failed: bool = False,
    session_factory: Callable[[], Session] | None = None,
) -> int:
    """Return reports to the unprocessed state with their enrichment cleared.

    Rollups already counted are left alone; reset them with
    ``Aggregator.reset`` before reprocessing incidents.

    Args:
        report_ids: Reports to reset (all if None)
        only_failed: Only reset reports that recorded processing errors
        session_factory: Session factory (defaults to SessionLocal)

    Returns:
        Number of reports reset
    """
    db = (session_factory or SessionLocal)()
    try:
        query = db.query(ScamReportModel)
        if report_ids is not None:
            query = query.filter(ScamReportModel.id.in_(report_ids))

        count = 0
        for report in query.all():
            if only_failed and not report.processing_errors:
                continue
            values = {
                **cleared_enrichment(),
                "is_processed": False,
                "processed_at": None,
                "processing_attempts": 0,
                "processing_errors": [],
                "last_attempt_at": None,
            }
            for column, value in values.items():
                setattr(report, column, value)
            count += 1

        db.commit()
        logger.info(f"Reset {count} reports for reprocessing")
        return count
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class EnrichmentEngine:
    """Turns raw stored reports into classified, located incidents.

    A report is claimed with a conditional update before the model is
    called and marked processed with another one afterwards. Only the run
    whose final update wins aggregates it, so overlapping runs count each
    report once.
    """

    def __init__(
        self,
        classifier: ScamClassifier | None = None,
        geocoder: GeocodeNormalizer | None = None,
        aggregator: Aggregator | None = None,
        session_factory: Callable[[], Session] | None = None,
        config_path: str = "configs/pipeline.yaml",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the engine.

        Args:
            classifier: Scam classifier (singleton if None)
            geocoder: Geocode normalizer (singleton if None)
            aggregator: Location rollup writer
            session_factory: Session factory (defaults to SessionLocal)
            config_path: Path to pipeline configuration
            clock: Monotonic clock for the runtime ceiling
            sleep: Sleep function used between model calls

        Raises:
            ConfigurationError: If the classifier or geocoder is not configured
        """
        self.config = self._load_config(config_path)
        self.session_factory = session_factory or SessionLocal
        self.classifier = classifier or get_classifier()
        self.geocoder = geocoder or get_geocoder()
        self.aggregator = aggregator or Aggregator(
            self.session_factory,
            averaging=AveragingPolicy(self.config.get("averaging", "decayed")),
        )
        self.clock = clock
        self.rate_limiter = RateLimiter(
            delay_seconds=self.config["delay_seconds"], sleep=sleep, clock=clock
        )

    def _load_config(self, config_path: str) -> dict:
        """Load the enrichment section of the pipeline config."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                loaded = (yaml.safe_load(f) or {}).get("enrichment", {})
            return {**DEFAULT_ENRICHMENT_CONFIG, **loaded}
        return dict(DEFAULT_ENRICHMENT_CONFIG)

    @property
    def max_attempts(self) -> int:
        return self.config["max_attempts"]

    def _build_content(self, db: Session, report: ScamReportModel) -> str:
        max_comments = self.config["max_comments_in_prompt"]
        comments = (
            db.query(RawCommentModel.body)
            .filter(RawCommentModel.report_id == report.id)
            .order_by(RawCommentModel.upvotes.desc())
            .limit(max_comments)
            .all()
        )
        return build_story_content(
            title=report.title,
            subreddit=report.subreddit,
            author=report.author,
            upvotes=report.upvotes or 0,
            body=report.body,
            comments=[c.body for c in comments],
            max_comments=max_comments,
        )

    def _locate(self, classification: ClassificationResult) -> tuple[str, str | None, tuple | None]:
        """Geocode an incident and return canonical (country, city, coordinates).

        Raises:
            TransientEnrichmentError: If the geocoder is temporarily unavailable
        """
        if not classification.has_country:
            return UNKNOWN_COUNTRY, classification.city, None

        hint = ", ".join(
            part
            for part in (
                classification.specific_location,
                classification.city,
                classification.country,
            )
            if part
        )
        geocode = self.geocoder.resolve(hint, classification.country)

        if geocode.outcome == GeocodeOutcome.UNAVAILABLE:
            raise TransientEnrichmentError(f"Geocoder unavailable: {geocode.error}")
        if not geocode.is_resolved:
            return classification.country, classification.city, None

        country = geocode.canonical_country or classification.country
        city = geocode.canonical_city or classification.city
        return country, city, geocode.coordinates

    def _unprocessed(self, db: Session, report_id: str):
        return db.query(ScamReportModel).filter(
            ScamReportModel.id == report_id,
            ScamReportModel.is_processed == False,
        )

    def _claim(self, db: Session, report_id: str) -> bool:
        """Count an attempt on the report unless it is already processed."""
        claimed = self._unprocessed(db, report_id).update(
            {
                "processing_attempts": ScamReportModel.processing_attempts + 1,
                "last_attempt_at": datetime.utcnow(),
            },
            synchronize_session=False,
        )
        db.commit()
        return claimed == 1

    def _release(self, db: Session, report_id: str) -> None:
        """Give back an attempt that failed on configuration, not on the report."""
        self._unprocessed(db, report_id).update(
            {"processing_attempts": ScamReportModel.processing_attempts - 1},
            synchronize_session=False,
        )
        db.commit()

    def _finalize(self, db: Session, report_id: str, values: dict) -> bool:
        """Store the enrichment and mark the report processed.

        Returns:
            False if another run marked the report processed first
        """
        values = {**values, "is_processed": True, "processed_at": datetime.utcnow()}
        finalized = self._unprocessed(db, report_id).update(values, synchronize_session=False)
        db.commit()
        return finalized == 1

    def _incident_values(
        self,
        classification: ClassificationResult,
        country: str,
        city: str | None,
        coordinates: tuple | None,
    ) -> dict:
        values = cleared_enrichment()
        values.update(
            is_scam_story=True,
            confidence=classification.confidence,
            scam_type=classification.category.value,
            scam_methods=classification.scam_methods,
            target_demographics=classification.target_demographics,
            money_lost=classification.loss_amount,
            currency=classification.currency,
            warning_signals=classification.warning_signals,
            prevention_tips=classification.prevention_tips,
            resolution=classification.resolution,
            summary=classification.summary,
            country=country,
            city=city,
            specific_location=classification.specific_location,
        )
        if coordinates:
            values["latitude"], values["longitude"] = coordinates
        return values

    def _not_incident_values(self, report: ScamReportModel, classification: ClassificationResult) -> dict:
        values = cleared_enrichment()
        values.update(
            scam_type=classification.category.value,
            summary=classification.summary,
            verification_status=VerificationStatus.AI_FLAGGED.value,
        )
        if classification.outcome == ClassificationOutcome.FAILED:
            values["processing_errors"] = [
                *(report.processing_errors or []),
                classification.error or "Classification failed",
            ]
        return values

    def enrich_report(self, report_id: str) -> ProcessingResult:
        """Classify one report, locate it, persist it, then update its rollup.

        A failed classification is terminal: the report is processed with
        confidence 0 and flagged. A transient geocoder failure leaves the
        report unprocessed with its attempt counted. A report that is
        already processed is skipped without calling the model.

        Args:
            report_id: ScamReportModel ID

        Returns:
            ProcessingResult with outcomes
        """
        db = self.session_factory()
        try:
            report = db.get(ScamReportModel, report_id)
            if report is None:
                return ProcessingResult(report_id=report_id, success=False, error="Report not found")
            if report.is_processed or not self._claim(db, report_id):
                logger.info(f"Report {report_id} is already processed, skipping")
                return ProcessingResult(report_id=report_id, success=True, skipped=True)

            try:
                classification = self.classifier.classify(self._build_content(db, report))
                result = ProcessingResult(
                    report_id=report_id,
                    success=True,
                    outcome=classification.outcome.value,
                    is_incident=classification.is_incident,
                    category=classification.category.value,
                )

                coordinates = None
                if classification.is_incident:
                    country, city, coordinates = self._locate(classification)
                    values = self._incident_values(classification, country, city, coordinates)
                    result.country, result.city = country, city
                    result.geocoded = coordinates is not None
                else:
                    values = self._not_incident_values(report, classification)
                    result.error = classification.error

                finalized = self._finalize(db, report_id, values)
            except ConfigurationError:
                db.rollback()
                self._release(db, report_id)
                raise
            except Exception as e:
                db.rollback()
                logger.warning(f"Enrichment of report {report_id} failed: {e}")
                return self._record_failure(db, report_id, str(e))

            if not finalized:
                logger.info(f"Report {report_id} was processed by another run, discarding result")
                return ProcessingResult(report_id=report_id, success=True, skipped=True)

            if classification.is_incident:
                try:
                    self.aggregator.record_incident(
                        result.country,
                        result.city,
                        result.category,
                        loss_amount=classification.loss_amount,
                        coordinates=coordinates,
                    )
                    result.aggregated = True
                except Exception as e:
                    logger.error(f"Could not aggregate report {report_id}: {e}")
                    result.error = f"Aggregation failed: {e}"
                    report = db.get(ScamReportModel, report_id)
                    _append_error(report, result.error)
                    db.commit()

            logger.info(
                f"Report {report_id}: {result.outcome}"
                + (f" ({result.category} in {result.city or '-'}, {result.country})" if result.is_incident else "")
            )
            return result
        finally:
            db.close()

    def _record_failure(self, db: Session, report_id: str, error: str) -> ProcessingResult:
        # The attempt was already counted when the report was claimed
        report = db.get(ScamReportModel, report_id)
        _append_error(report, error)
        db.commit()
        if report.processing_attempts >= self.max_attempts:
            logger.error(f"Report {report_id} reached {self.max_attempts} attempts and is stalled")
        return ProcessingResult(report_id=report_id, success=False, error=error)

    def process_unprocessed(
        self,
        limit: int | None = None,
        max_runtime_seconds: float | None = None,
    ) -> dict:
        """Enrich the oldest unprocessed reports that still have attempts left.

        Args:
            limit: Maximum reports to process
            max_runtime_seconds: Stop cleanly once this much time has passed

        Returns:
            Summary statistics
        """
        limit = limit or self.config["batch_limit"]
        if max_runtime_seconds is None:
            max_runtime_seconds = self.config["max_runtime_seconds"]
        started = self.clock()

        db = self.session_factory()
        try:
            report_ids = [
                row.id
                for row in db.query(ScamReportModel.id)
                .filter(
                    ScamReportModel.is_processed == False,
                    ScamReportModel.processing_attempts < self.max_attempts,
                )
                .order_by(ScamReportModel.scraped_at.asc())
                .limit(limit)
                .all()
            ]
        finally:
            db.close()

        if not report_ids:
            logger.info("No unprocessed reports found")

        results: list[ProcessingResult] = []
        stopped_early = False
        for i, report_id in enumerate(report_ids):
            if self.clock() - started >= max_runtime_seconds:
                stopped_early = True
                logger.warning("Enrichment reached its runtime ceiling, stopping")
                break
            if i > 0:
                self.rate_limiter.pause(self.config["delay_seconds"])
            results.append(self.enrich_report(report_id))

        summary = {
            "total_processed": len(results),
            "successful": sum(1 for r in results if r.success and not r.skipped),
            "failed": sum(1 for r in results if not r.success),
            "skipped": sum(1 for r in results if r.skipped),
            "incidents": sum(1 for r in results if r.is_incident),
            "geocoded": sum(1 for r in results if r.geocoded),
            "aggregated": sum(1 for r in results if r.aggregated),
            "stopped_early": stopped_early,
            "elapsed_seconds": round(self.clock() - started, 2),
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(f"Enrichment complete: {summary}")
        return summary

    def reset_for_reprocessing(
        self,
        report_ids: list[str] | None = None,
        only_failed: bool = False,
    ) -> int:
        """Return reports to the unprocessed state (see ``reset_reports``)."""
        return reset_reports(report_ids, only_failed, session_factory=self.session_factory)


def run_enrichment(limit: int = 10) -> dict:
    """Run the enrichment engine on unprocessed reports.

    Args:
        limit: Maximum reports to process

    Returns:
        Summary statistics
    """
    engine = EnrichmentEngine()
    return engine.process_unprocessed(limit=limit)
