"""Per-location incident rollups.

Each call to ``record_incident`` is an additive patch on one
``LocationStatModel`` row, so rollups tolerate any arrival order.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.database import SessionLocal
from db.models import LocationStatModel

logger = logging.getLogger(__name__)

TOP_SCAM_TYPES_LIMIT = 5


class AveragingPolicy(str, Enum):
    """How ``average_money_lost`` absorbs a new loss amount."""

    DECAYED = "decayed"  # new = old + (amount - old) / 2
    MEAN = "mean"  # true running mean over loss_samples


def location_key(country: str, city: str | None = None) -> str:
    """Stable identifier of a (country, city) rollup row."""
    return f"{country.strip().lower()}|{(city or '').strip().lower()}"


def update_top_scam_types(
    top_types: list[dict] | None,
    category: str,
    limit: int = TOP_SCAM_TYPES_LIMIT,
) -> list[dict]:
    """Insert or increment a category, sort by count, keep the top entries.

    The sort is stable, so among equal counts earlier entries stay ahead
    and a newly inserted category is the first to be evicted.

    Args:
        top_types: Current list of {"type", "count"} dicts
        category: Category to count
        limit: Maximum entries kept

    Returns:
        New list, at most ``limit`` entries, sorted descending by count
    """
    entries = [dict(entry) for entry in (top_types or [])]
    for entry in entries:
        if entry["type"] == category:
            entry["count"] += 1
            break
    else:
        entries.append({"type": category, "count": 1})

    entries.sort(key=lambda entry: entry["count"], reverse=True)
    return entries[:limit]


def remove_scam_type(top_types: list[dict] | None, category: str) -> list[dict]:
    """Decrement a category, dropping it when its count reaches zero."""
    entries = []
    for entry in top_types or []:
        entry = dict(entry)
        if entry["type"] == category:
            entry["count"] -= 1
            if entry["count"] <= 0:
                continue
        entries.append(entry)

    entries.sort(key=lambda entry: entry["count"], reverse=True)
    return entries


def update_average_loss(
    current: float | None,
    samples: int,
    amount: float,
    policy: AveragingPolicy = AveragingPolicy.DECAYED,
) -> float:
    """Fold a new loss amount into the running average."""
    if current is None or samples <= 0:
        return amount
    if policy == AveragingPolicy.MEAN:
        return current + (amount - current) / (samples + 1)
    return current + (amount - current) / 2


class Aggregator:
    """Maintains LocationStat rows."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        averaging: AveragingPolicy = AveragingPolicy.DECAYED,
    ):
        """Initialize the aggregator.

        Args:
            session_factory: Session factory (defaults to SessionLocal)
            averaging: Running-average policy for money lost
        """
        self.session_factory = session_factory or SessionLocal
        self.averaging = AveragingPolicy(averaging)

    def _apply(
        self,
        stat: LocationStatModel,
        category: str,
        loss_amount: float | None,
        coordinates: tuple[float, float] | None,
    ) -> None:
        stat.total_scams = (stat.total_scams or 0) + 1
        stat.top_scam_types = update_top_scam_types(stat.top_scam_types, category)

        if loss_amount is not None and loss_amount >= 0:
            stat.average_money_lost = update_average_loss(
                stat.average_money_lost, stat.loss_samples or 0, loss_amount, self.averaging
            )
            stat.loss_samples = (stat.loss_samples or 0) + 1

        # First coordinates win
        if coordinates and stat.latitude is None and stat.longitude is None:
            stat.latitude, stat.longitude = coordinates

        stat.last_updated = datetime.utcnow()

    def record_incident(
        self,
        country: str,
        city: str | None,
        category: str,
        loss_amount: float | None = None,
        coordinates: tuple[float, float] | None = None,
    ) -> dict:
        """Add one incident to the (country, city) rollup.

        Args:
            country: Canonical country name
            city: Canonical city name, None for a country-level incident
            category: Scam category value
            loss_amount: Money lost, if reported
            coordinates: (latitude, longitude), kept only if none stored yet

        Returns:
            Snapshot of the updated row
        """
        key = location_key(country, city)
        db = self.session_factory()
        try:
            for attempt in range(2):
                stat = (
                    db.query(LocationStatModel)
                    .filter(LocationStatModel.location_key == key)
                    .first()
                )
                if stat is None:
                    stat = LocationStatModel(
                        location_key=key,
                        country=country.strip(),
                        city=city.strip() if city else None,
                        total_scams=0,
                        top_scam_types=[],
                        loss_samples=0,
                    )
                    db.add(stat)

                self._apply(stat, category, loss_amount, coordinates)
                try:
                    db.commit()
                    break
                except IntegrityError:
                    # Row created concurrently, apply the patch to it instead
                    db.rollback()
                    if attempt == 1:
                        raise

            logger.debug(f"Recorded {category} incident for {key} (total {stat.total_scams})")
            return {
                "country": stat.country,
                "city": stat.city,
                "total_scams": stat.total_scams,
                "top_scam_types": stat.top_scam_types,
                "average_money_lost": stat.average_money_lost,
                "latitude": stat.latitude,
                "longitude": stat.longitude,
            }
        except Exception as e:
            db.rollback()
            logger.error(f"Error recording incident for {key}: {e}")
            raise
        finally:
            db.close()

    def attach_coordinates(
        self,
        country: str,
        city: str | None,
        coordinates: tuple[float, float],
    ) -> bool:
        """Fill in coordinates for an existing rollup that has none.

        Returns:
            True if the row was updated
        """
        key = location_key(country, city)
        db = self.session_factory()
        try:
            stat = (
                db.query(LocationStatModel)
                .filter(LocationStatModel.location_key == key)
                .first()
            )
            if stat is None or stat.latitude is not None or stat.longitude is not None:
                return False
            stat.latitude, stat.longitude = coordinates
            stat.last_updated = datetime.utcnow()
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def retract_incident(self, country: str, city: str | None, category: str) -> bool:
        """Take one incident back out of a (country, city) rollup.

        The running loss average cannot be unwound and is left as it is.
        A row whose count drops to zero is deleted.

        Returns:
            True if a rollup row was found
        """
        key = location_key(country, city)
        db = self.session_factory()
        try:
            stat = (
                db.query(LocationStatModel)
                .filter(LocationStatModel.location_key == key)
                .first()
            )
            if stat is None:
                return False

            stat.total_scams = max((stat.total_scams or 0) - 1, 0)
            if stat.total_scams == 0:
                db.delete(stat)
            else:
                stat.top_scam_types = remove_scam_type(stat.top_scam_types, category)
                stat.last_updated = datetime.utcnow()
            db.commit()
            logger.debug(f"Retracted {category} incident from {key}")
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def reset(self, country: str | None = None) -> int:
        """Delete rollups, optionally for one country only.

        Returns:
            Number of rows deleted
        """
        db = self.session_factory()
        try:
            query = db.query(LocationStatModel)
            if country:
                query = query.filter(LocationStatModel.country == country)
            deleted = query.delete(synchronize_session=False)
            db.commit()
            logger.info(f"Reset {deleted} location stats")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
