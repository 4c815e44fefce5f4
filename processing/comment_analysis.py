"""Secondary path: mine comment threads of processed reports for extra incidents."""

import logging
import time
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from data_models.geocode import GeocodeOutcome
from db.database import SessionLocal
from db.models import RawCommentModel, ScamReportModel
from ingestion.rate_limiter import RateLimiter
from processing.aggregator import Aggregator
from processing.classifier import ScamClassifier, get_classifier
from processing.errors import ConfigurationError
from processing.geocoding import GeocodeNormalizer, get_geocoder
from processing.prompts import build_comment_content

logger = logging.getLogger(__name__)

ADVICE_KEYWORDS = (
    "should",
    "always",
    "never",
    "tip",
    "advice",
    "recommend",
    "avoid",
    "careful",
    "watch out",
    "be aware",
    "pro tip",
    "learned",
    "experience",
)

INCIDENT_KEYWORDS = (
    "scam",
    "scammed",
    "ripped off",
    "happened to me",
    "i was",
    "i got",
    "my experience",
    "we were",
    "they tried",
    "charged",
    "paid",
    "cost",
    "price",
    "fee",
    "taxi",
    "airport",
    "hotel",
    "tour",
    "restaurant",
    "police",
    "atm",
)

MIN_COMMENT_LENGTH = 200
MIN_COMMENT_CONFIDENCE = 0.6
HELPFUL_MIN_LENGTH = 50


def assess_advice(body: str) -> tuple[bool, bool]:
    """Return (contains_advice, is_helpful) for a comment body."""
    lowered = body.lower()
    contains_advice = any(keyword in lowered for keyword in ADVICE_KEYWORDS)
    return contains_advice, contains_advice and len(body) > HELPFUL_MIN_LENGTH


def passes_incident_heuristic(body: str) -> bool:
    """Cheap pre-filter deciding whether a comment is worth a model call."""
    if len(body) <= MIN_COMMENT_LENGTH:
        return False
    lowered = body.lower()
    return any(keyword in lowered for keyword in INCIDENT_KEYWORDS)


class CommentAnalyzer:
    """Classifies long comments and counts the incidents they describe."""

    def __init__(
        self,
        classifier: ScamClassifier | None = None,
        geocoder: GeocodeNormalizer | None = None,
        aggregator: Aggregator | None = None,
        session_factory: Callable[[], Session] | None = None,
        delay_seconds: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory or SessionLocal
        self.classifier = classifier or get_classifier()
        self.geocoder = geocoder or get_geocoder()
        self.aggregator = aggregator or Aggregator(self.session_factory)
        self.delay_seconds = delay_seconds
        self.rate_limiter = RateLimiter(delay_seconds=delay_seconds, sleep=sleep, clock=clock)
        self.clock = clock

    def _analyze(self, comment: RawCommentModel, parent: ScamReportModel) -> bool:
        """Classify one comment and aggregate it if it describes an incident.

        Returns:
            True if the comment was counted as an incident
        """
        content = build_comment_content(comment.body, parent.title, parent.country, parent.city)
        classification = self.classifier.classify(content)
        if not classification.is_incident or classification.confidence <= MIN_COMMENT_CONFIDENCE:
            return False

        country = classification.country if classification.has_country else parent.country
        city = classification.city or parent.city
        coordinates = None
        if classification.has_country:
            hint = ", ".join(p for p in (classification.specific_location, city, country) if p)
            geocode = self.geocoder.resolve(hint, country)
            if geocode.is_resolved:
                country = geocode.canonical_country or country
                city = geocode.canonical_city or city
                coordinates = geocode.coordinates
            elif geocode.outcome == GeocodeOutcome.UNAVAILABLE:
                logger.warning(f"Geocoder unavailable for comment {comment.id}, using parent location")
        if coordinates is None and parent.latitude is not None and parent.longitude is not None:
            coordinates = (parent.latitude, parent.longitude)

        country = country or "Unknown"
        self.aggregator.record_incident(
            country,
            city,
            classification.category.value,
            loss_amount=classification.loss_amount,
            coordinates=coordinates,
        )
        comment.is_scam_report = True
        comment.extracted_scam_type = classification.category.value
        comment.extracted_country = country
        comment.extracted_city = city
        return True

    def _claim(self, db: Session, comment: RawCommentModel) -> bool:
        """Mark the comment analyzed unless another run already did.

        The advice flags are stored with the claim, so every visited
        comment ends up analyzed whatever the model says.
        """
        contains_advice, is_helpful = assess_advice(comment.body)
        claimed = (
            db.query(RawCommentModel)
            .filter(
                RawCommentModel.id == comment.id,
                RawCommentModel.is_analyzed_for_scam == False,
            )
            .update(
                {
                    "is_analyzed_for_scam": True,
                    "contains_advice": contains_advice,
                    "is_helpful": is_helpful,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return claimed == 1

    def _release(self, db: Session, comment_id: str) -> None:
        """Return a claimed comment to the queue after a configuration error."""
        db.query(RawCommentModel).filter(RawCommentModel.id == comment_id).update(
            {"is_analyzed_for_scam": False}, synchronize_session=False
        )
        db.commit()

    def analyze_comments(self, limit: int = 20, max_runtime_seconds: float = 480) -> dict:
        """Analyze comments of processed reports that were not looked at yet.

        Each comment is claimed before the model is called, so overlapping
        runs never aggregate the same comment twice.

        Args:
            limit: Maximum comments to visit
            max_runtime_seconds: Stop cleanly once this much time has passed

        Returns:
            Summary statistics
        """
        started = self.clock()
        db = self.session_factory()
        analyzed = 0
        classified = 0
        incidents = 0
        skipped = 0
        errors = []
        stopped_early = False
        try:
            rows = (
                db.query(RawCommentModel, ScamReportModel)
                .join(ScamReportModel, RawCommentModel.report_id == ScamReportModel.id)
                .filter(
                    ScamReportModel.is_processed == True,
                    RawCommentModel.is_analyzed_for_scam == False,
                )
                .order_by(RawCommentModel.upvotes.desc())
                .limit(limit)
                .all()
            )

            for comment, parent in rows:
                if self.clock() - started >= max_runtime_seconds:
                    stopped_early = True
                    logger.warning("Comment analysis reached its runtime ceiling, stopping")
                    break

                if not self._claim(db, comment):
                    logger.debug(f"Comment {comment.id} was analyzed by another run")
                    skipped += 1
                    continue
                analyzed += 1

                if not passes_incident_heuristic(comment.body):
                    continue
                if classified > 0:
                    self.rate_limiter.pause(self.delay_seconds)
                classified += 1
                try:
                    if self._analyze(comment, parent):
                        incidents += 1
                        db.commit()
                except ConfigurationError:
                    db.rollback()
                    self._release(db, comment.id)
                    raise
                except Exception as e:
                    db.rollback()
                    logger.warning(f"Error analyzing comment {comment.id}: {e}")
                    errors.append(f"{comment.id}: {e}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        summary = {
            "comments_analyzed": analyzed,
            "model_calls": classified,
            "incidents_found": incidents,
            "skipped": skipped,
            "errors": errors,
            "stopped_early": stopped_early,
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(f"Comment analysis complete: {summary}")
        return summary


def run_comment_analysis(limit: int = 20) -> dict:
    """Run the comment analyzer once."""
    return CommentAnalyzer().analyze_comments(limit=limit)
