"""Shared fixtures: in-memory database and fake pipeline collaborators."""

import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from data_models.classification import ClassificationOutcome, ClassificationResult
from data_models.geocode import GeocodeOutcome, GeocodeResult
from data_models.scam_report import ScamCategory
from db.models import Base, RawCommentModel, ScamReportModel


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def add_report(session_factory):
    """Insert a ScamReportModel row and return its ID."""
    counter = {"n": 0}

    def _add(**fields) -> str:
        counter["n"] += 1
        values = {
            "reddit_id": f"post{counter['n']}",
            "subreddit": "travel",
            "author": "traveller",
            "title": f"Story {counter['n']}",
            "body": "",
            "url": f"https://reddit.com/r/travel/comments/post{counter['n']}/",
            "created_utc": datetime.utcnow(),
            "scraped_at": datetime.utcnow(),
            "processing_errors": [],
            "scam_methods": [],
            "target_demographics": [],
            "warning_signals": [],
            "prevention_tips": [],
        }
        values.update(fields)
        db = session_factory()
        try:
            report = ScamReportModel(**values)
            db.add(report)
            db.commit()
            return report.id
        finally:
            db.close()

    return _add


@pytest.fixture
def add_comment(session_factory):
    """Insert a RawCommentModel row under a report and return its ID."""
    counter = {"n": 0}

    def _add(report_id: str, body: str, **fields) -> str:
        counter["n"] += 1
        db = session_factory()
        try:
            comment = RawCommentModel(
                report_id=report_id,
                reddit_comment_id=fields.pop("reddit_comment_id", f"c{counter['n']}"),
                body=body,
                **fields,
            )
            db.add(comment)
            db.commit()
            return comment.id
        finally:
            db.close()

    return _add


def incident(
    category: ScamCategory = ScamCategory.TAXI,
    country: str = "Thailand",
    city: str | None = "Bangkok",
    confidence: float = 0.9,
    loss_amount: float | None = None,
    **fields,
) -> ClassificationResult:
    """Build an incident classification."""
    return ClassificationResult(
        outcome=ClassificationOutcome.INCIDENT,
        is_incident=True,
        confidence=confidence,
        category=category,
        country=country,
        city=city,
        loss_amount=loss_amount,
        summary=fields.pop("summary", "Taxi driver refused the meter"),
        **fields,
    )


def not_incident() -> ClassificationResult:
    return ClassificationResult(
        outcome=ClassificationOutcome.NOT_INCIDENT,
        is_incident=False,
        category=ScamCategory.OTHER,
        summary="General travel question",
    )


class FakeClassifier:
    """Returns queued classifications and records the content it saw."""

    def __init__(self, *results: ClassificationResult):
        self.results = list(results)
        self.calls: list[str] = []

    def classify(self, content: str) -> ClassificationResult:
        self.calls.append(content)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeGeocoder:
    """Resolves queries from a fixed table keyed by lowercase location hint."""

    def __init__(self, table: dict | None = None, outcome: GeocodeOutcome | None = None):
        self.table = table or {}
        self.outcome = outcome
        self.queries: list[tuple[str, str | None]] = []

    def resolve(self, location_hint: str | None, country_hint: str | None = None) -> GeocodeResult:
        self.queries.append((location_hint, country_hint))
        query = location_hint or ""
        if self.outcome is not None:
            return GeocodeResult(self.outcome, query=query, error="forced")
        for key, (lat, lon, country, city) in self.table.items():
            if key in query.lower():
                return GeocodeResult(
                    GeocodeOutcome.RESOLVED,
                    query=query,
                    latitude=lat,
                    longitude=lon,
                    canonical_country=country,
                    canonical_city=city,
                )
        return GeocodeResult(GeocodeOutcome.NOT_FOUND, query=query)


BANGKOK = {"bangkok": (13.7563, 100.5018, "Thailand", "Bangkok")}


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder(BANGKOK)


class FakeCache:
    """Stands in for RedisCache when Redis is not running."""

    def __init__(self):
        self.responses: dict = {}
        self.config = {"prefixes": {"api": "scamatlas:api:", "geocode": "scamatlas:geo:"}}

    def get_api_response(self, endpoint: str, params: dict):
        return self.responses.get((endpoint, tuple(sorted(params.items()))))

    def cache_api_response(self, endpoint, params, data, category="default", ttl=None) -> bool:
        self.responses[(endpoint, tuple(sorted(params.items())))] = data
        return True

    def invalidate_pattern(self, pattern: str) -> int:
        count = len(self.responses)
        self.responses.clear()
        return count

    def get_stats(self) -> dict:
        return {"status": "connected"}


@pytest.fixture
def fake_cache(monkeypatch):
    cache = FakeCache()
    monkeypatch.setattr("cache.decorators.get_cache", lambda: cache)
    return cache
