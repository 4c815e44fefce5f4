"""Geocoding result types."""

from dataclasses import dataclass
from enum import Enum


class GeocodeOutcome(str, Enum):
    """Closed set of geocoding outcomes."""

    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"  # Transient upstream failure, retry later


@dataclass
class GeocodeResult:
    """Result of resolving one location query."""

    outcome: GeocodeOutcome
    query: str
    latitude: float | None = None
    longitude: float | None = None
    canonical_country: str | None = None
    canonical_city: str | None = None
    corrected: bool = False
    error: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.outcome == GeocodeOutcome.RESOLVED

    @property
    def coordinates(self) -> tuple[float, float] | None:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "query": self.query,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "canonical_country": self.canonical_country,
            "canonical_city": self.canonical_city,
            "corrected": self.corrected,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GeocodeResult":
        return cls(
            outcome=GeocodeOutcome(data["outcome"]),
            query=data.get("query", ""),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            canonical_country=data.get("canonical_country"),
            canonical_city=data.get("canonical_city"),
            corrected=data.get("corrected", False),
        )
