"""Repair locations of processed reports after the fact.

Three passes are available:
- ``normalize_report_locations`` geocodes incidents and re-keys them to
  canonical country and city names;
- ``regeocode_reports`` recomputes coordinates, reusing a country's known
  point for incidents whose city is unknown;
- ``reprocess_unknown_locations`` re-classifies incidents stored with an
  unknown country.

When a report moves to another (country, city), its incident is retracted
from the old rollup and recorded on the new one.
"""

import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from sqlalchemy.orm import Session

from data_models.geocode import GeocodeOutcome
from db.database import SessionLocal
from db.models import ScamReportModel
from ingestion.rate_limiter import RateLimiter
from processing.aggregator import Aggregator, location_key
from processing.enrichment import UNKNOWN_COUNTRY, reset_reports
from processing.geocoding import GeocodeNormalizer, build_location_query, get_geocoder

if TYPE_CHECKING:
    from processing.enrichment import EnrichmentEngine

logger = logging.getLogger(__name__)

# Coordinates closer than this are considered unchanged
COORDINATE_TOLERANCE = 0.001


def _known(value: str | None) -> str | None:
    return value if value and value != UNKNOWN_COUNTRY else None


class LocationBackfill:
    """Fills in coordinates and canonical names on reports and their rollups."""

    def __init__(
        self,
        geocoder: GeocodeNormalizer | None = None,
        aggregator: Aggregator | None = None,
        session_factory: Callable[[], Session] | None = None,
        delay_seconds: float = 0.15,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the backfill.

        Args:
            geocoder: Geocode normalizer (singleton if None)
            aggregator: Location rollup writer
            session_factory: Session factory (defaults to SessionLocal)
            delay_seconds: Spacing between geocoder requests
            sleep: Sleep function (injected in tests)
            clock: Monotonic clock (injected in tests)
        """
        self.session_factory = session_factory or SessionLocal
        self._geocoder = geocoder
        self.aggregator = aggregator or Aggregator(self.session_factory)
        self.rate_limiter = RateLimiter(delay_seconds=delay_seconds, sleep=sleep, clock=clock)

    @property
    def geocoder(self) -> GeocodeNormalizer:
        # Resolved on first use; reprocessing geocodes through the engine instead
        if self._geocoder is None:
            self._geocoder = get_geocoder()
        return self._geocoder

    def _located_incidents(self, db: Session):
        return db.query(ScamReportModel).filter(
            ScamReportModel.is_processed == True,
            ScamReportModel.is_scam_story == True,
            ScamReportModel.country.is_not(None),
            ScamReportModel.country != UNKNOWN_COUNTRY,
        )

    def _move_incident(
        self,
        report: ScamReportModel,
        old_country: str,
        old_city: str | None,
        coordinates: tuple[float, float] | None,
    ) -> None:
        """Move a report's incident between rollups after a rename."""
        if report.scam_type:
            self.aggregator.retract_incident(old_country, old_city, report.scam_type)
            self.aggregator.record_incident(
                report.country,
                report.city,
                report.scam_type,
                loss_amount=report.money_lost,
                coordinates=coordinates,
            )

    def normalize_report_locations(self, limit: int = 50, only_missing: bool = True) -> dict:
        """Geocode processed incidents and store canonical names and coordinates.

        Rollup rows keep whichever coordinates they already have; only rows
        without any receive the backfilled point.

        Args:
            limit: Maximum reports to visit
            only_missing: Only visit reports without coordinates

        Returns:
            Summary statistics
        """
        db = self.session_factory()
        updated = 0
        renamed = 0
        not_found = 0
        unavailable = 0
        try:
            query = self._located_incidents(db)
            if only_missing:
                query = query.filter(ScamReportModel.latitude.is_(None))
            reports = query.limit(limit).all()

            for report in reports:
                hint = ", ".join(
                    part
                    for part in (report.specific_location, _known(report.city), report.country)
                    if part
                )
                self.rate_limiter.wait()
                result = self.geocoder.resolve(hint, report.country)
                if result.outcome == GeocodeOutcome.UNAVAILABLE:
                    unavailable += 1
                    continue
                if not result.is_resolved:
                    not_found += 1
                    continue

                old_country, old_city = report.country, report.city
                report.country = result.canonical_country or old_country
                report.city = result.canonical_city or old_city
                report.latitude, report.longitude = result.coordinates
                db.commit()

                if location_key(report.country, report.city) != location_key(old_country, old_city):
                    logger.info(
                        f"Report {report.id} moved from {old_city or '-'}, {old_country} "
                        f"to {report.city or '-'}, {report.country}"
                    )
                    self._move_incident(report, old_country, old_city, result.coordinates)
                    renamed += 1
                else:
                    self.aggregator.attach_coordinates(report.country, report.city, result.coordinates)
                updated += 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        summary = {
            "candidates": len(reports),
            "updated": updated,
            "renamed": renamed,
            "not_found": not_found,
            "unavailable": unavailable,
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(f"Location normalization complete: {summary}")
        return summary

    def regeocode_reports(self, force: bool = False, limit: int | None = None) -> dict:
        """Recompute coordinates of processed incidents.

        Incidents whose city is unknown take the coordinates already stored
        for another incident in the same country, and only fall back to
        geocoding the country itself when there are none.

        Args:
            force: Revisit every incident that has coordinates and overwrite
                them; otherwise only incidents without coordinates
            limit: Maximum reports to visit (all if None)

        Returns:
            Summary statistics
        """
        db = self.session_factory()
        updated = 0
        reused = 0
        skipped = 0
        not_found = 0
        unavailable = 0
        try:
            country_coordinates = {
                report.country: (report.latitude, report.longitude)
                for report in self._located_incidents(db).filter(
                    ScamReportModel.latitude.is_not(None),
                    ScamReportModel.longitude.is_not(None),
                    ScamReportModel.city.is_not(None),
                    ScamReportModel.city != UNKNOWN_COUNTRY,
                )
            }

            query = self._located_incidents(db)
            if force:
                query = query.filter(ScamReportModel.latitude.is_not(None))
            else:
                query = query.filter(ScamReportModel.latitude.is_(None))
            if limit:
                query = query.limit(limit)
            reports = query.all()

            for report in reports:
                city = _known(report.city)
                if city is None and report.country in country_coordinates:
                    coordinates = country_coordinates[report.country]
                    reused += 1
                else:
                    location_query = build_location_query(report.country, city)
                    if not location_query:
                        skipped += 1
                        continue
                    self.rate_limiter.wait()
                    result = self.geocoder.resolve(location_query, report.country)
                    if result.outcome == GeocodeOutcome.UNAVAILABLE:
                        unavailable += 1
                        continue
                    if not result.is_resolved:
                        not_found += 1
                        continue
                    coordinates = result.coordinates

                needs_update = (
                    force
                    or report.latitude is None
                    or abs(report.latitude - coordinates[0]) > COORDINATE_TOLERANCE
                    or abs(report.longitude - coordinates[1]) > COORDINATE_TOLERANCE
                )
                if not needs_update:
                    continue

                report.latitude, report.longitude = coordinates
                db.commit()
                self.aggregator.attach_coordinates(report.country, report.city, coordinates)
                updated += 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        summary = {
            "candidates": len(reports),
            "updated": updated,
            "reused_country_coordinates": reused,
            "skipped": skipped,
            "not_found": not_found,
            "unavailable": unavailable,
            "force": force,
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(f"Re-geocoding complete: {summary}")
        return summary

    def reprocess_unknown_locations(self, engine: "EnrichmentEngine", limit: int = 10) -> dict:
        """Re-classify processed incidents stored with an unknown country.

        Each report is taken out of the "Unknown" rollup, reset and enriched
        again, which records it under its new location.

        Args:
            engine: Enrichment engine used for the new classification
            limit: Maximum reports to visit

        Returns:
            Summary with processed, fixed and failed counts
        """
        db = self.session_factory()
        try:
            stale = [
                (report.id, report.city, report.scam_type)
                for report in db.query(ScamReportModel)
                .filter(
                    ScamReportModel.is_processed == True,
                    ScamReportModel.country == UNKNOWN_COUNTRY,
                )
                .limit(limit)
                .all()
            ]
        finally:
            db.close()

        processed = 0
        fixed = 0
        failed = 0
        for index, (report_id, city, category) in enumerate(stale):
            if index:
                engine.rate_limiter.pause(engine.config["delay_seconds"])
            if not reset_reports([report_id], session_factory=self.session_factory):
                continue
            if category:
                self.aggregator.retract_incident(UNKNOWN_COUNTRY, city, category)

            result = engine.enrich_report(report_id)
            if not result.success:
                failed += 1
                continue
            if result.skipped:
                continue
            processed += 1
            if result.is_incident and _known(result.country):
                fixed += 1

        summary = {
            "candidates": len(stale),
            "processed": processed,
            "fixed": fixed,
            "failed": failed,
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(f"Unknown-location reprocessing complete: {summary}")
        return summary
