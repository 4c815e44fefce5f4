"""Tests for location normalization, re-geocoding and unknown-location reprocessing."""

from conftest import BANGKOK, FakeClassifier, FakeGeocoder, incident

from data_models.scam_report import ScamCategory
from db.models import LocationStatModel, ScamReportModel
from processing.aggregator import Aggregator, location_key
from processing.enrichment import EnrichmentEngine
from processing.location_backfill import LocationBackfill

GEOCODES = {
    **BANGKOK,
    "bkk": (13.7563, 100.5018, "Thailand", "Bangkok"),
    "laos": (19.8563, 102.4955, "Laos", None),
}


def make_backfill(session_factory, geocoder=None, sleeps=None) -> LocationBackfill:
    return LocationBackfill(
        geocoder or FakeGeocoder(GEOCODES),
        Aggregator(session_factory),
        session_factory,
        sleep=sleeps.append if sleeps is not None else (lambda seconds: None),
        clock=lambda: 0.0,
    )


def load_report(session_factory, report_id: str) -> ScamReportModel:
    db = session_factory()
    try:
        return db.get(ScamReportModel, report_id)
    finally:
        db.close()


def load_stats(session_factory) -> dict[str, LocationStatModel]:
    db = session_factory()
    try:
        return {stat.location_key: stat for stat in db.query(LocationStatModel).all()}
    finally:
        db.close()


def test_normalize_fills_missing_coordinates(session_factory, add_report):
    Aggregator(session_factory).record_incident("Thailand", "Bangkok", "taxi")
    add_report(is_processed=True, is_scam_story=True, country="Thailand", city="Bangkok", scam_type="taxi")
    add_report(is_processed=True, is_scam_story=True, country="Laos", city="Vang Vieng", scam_type="taxi")
    add_report(is_processed=True, is_scam_story=True, country="Unknown", scam_type="taxi")
    geocoder = FakeGeocoder(BANGKOK)
    sleeps = []

    summary = make_backfill(session_factory, geocoder, sleeps).normalize_report_locations()

    assert summary["candidates"] == 2
    assert summary["updated"] == 1
    assert summary["renamed"] == 0
    assert summary["not_found"] == 1
    assert sorted(geocoder.queries) == [("Bangkok, Thailand", "Thailand"), ("Vang Vieng, Laos", "Laos")]
    assert sleeps == [0.15, 0.15]
    stat = load_stats(session_factory)[location_key("Thailand", "Bangkok")]
    assert (stat.latitude, stat.longitude) == (13.7563, 100.5018)


def test_normalize_moves_report_to_canonical_names(session_factory, add_report):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", "Bangkok", "taxi")
    aggregator.record_incident("Thailand", "BKK", "shopping", loss_amount=40)
    report_id = add_report(
        is_processed=True,
        is_scam_story=True,
        country="Thailand",
        city="BKK",
        scam_type="shopping",
        money_lost=40,
        latitude=13.7,
        longitude=100.5,
    )
    backfill = make_backfill(session_factory)

    assert backfill.normalize_report_locations()["candidates"] == 0
    summary = backfill.normalize_report_locations(only_missing=False)

    assert summary["updated"] == 1
    assert summary["renamed"] == 1
    report = load_report(session_factory, report_id)
    assert (report.country, report.city) == ("Thailand", "Bangkok")
    assert (report.latitude, report.longitude) == (13.7563, 100.5018)

    stats = load_stats(session_factory)
    assert location_key("Thailand", "BKK") not in stats
    bangkok = stats[location_key("Thailand", "Bangkok")]
    assert bangkok.total_scams == 2
    assert bangkok.top_scam_types == [{"type": "taxi", "count": 1}, {"type": "shopping", "count": 1}]


def test_retract_keeps_row_with_remaining_incidents(session_factory):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", "Bangkok", "taxi")
    aggregator.record_incident("Thailand", "Bangkok", "shopping")

    assert aggregator.retract_incident("Thailand", "Bangkok", "shopping")
    assert not aggregator.retract_incident("Laos", None, "shopping")

    stat = load_stats(session_factory)[location_key("Thailand", "Bangkok")]
    assert stat.total_scams == 1
    assert stat.top_scam_types == [{"type": "taxi", "count": 1}]


def test_regeocode_reuses_country_coordinates_for_unknown_cities(session_factory, add_report):
    Aggregator(session_factory).record_incident("Thailand", None, "taxi")
    add_report(
        is_processed=True,
        is_scam_story=True,
        country="Thailand",
        city="Bangkok",
        latitude=13.7563,
        longitude=100.5018,
    )
    unknown_city = add_report(is_processed=True, is_scam_story=True, country="Thailand", city="Unknown")
    no_city = add_report(is_processed=True, is_scam_story=True, country="Thailand")
    laos = add_report(is_processed=True, is_scam_story=True, country="Laos")
    add_report(is_processed=True, is_scam_story=True, country="Cambodia", city="Siem Reap")
    geocoder = FakeGeocoder(GEOCODES)
    sleeps = []

    summary = make_backfill(session_factory, geocoder, sleeps).regeocode_reports()

    assert summary["candidates"] == 4
    assert summary["updated"] == 3
    assert summary["reused_country_coordinates"] == 2
    assert summary["not_found"] == 1
    assert sorted(geocoder.queries) == [("Laos", "Laos"), ("Siem Reap, Cambodia", "Cambodia")]
    assert sleeps == [0.15, 0.15]

    for report_id in (unknown_city, no_city):
        report = load_report(session_factory, report_id)
        assert (report.latitude, report.longitude) == (13.7563, 100.5018)
    assert load_report(session_factory, laos).latitude == 19.8563
    stat = load_stats(session_factory)[location_key("Thailand", None)]
    assert (stat.latitude, stat.longitude) == (13.7563, 100.5018)


def test_regeocode_force_overwrites_existing_coordinates(session_factory, add_report):
    report_id = add_report(
        is_processed=True,
        is_scam_story=True,
        country="Thailand",
        city="Bangkok",
        latitude=10.0,
        longitude=100.0,
    )
    backfill = make_backfill(session_factory)

    assert backfill.regeocode_reports()["candidates"] == 0
    summary = backfill.regeocode_reports(force=True)

    assert summary["candidates"] == 1
    assert summary["updated"] == 1
    report = load_report(session_factory, report_id)
    assert (report.latitude, report.longitude) == (13.7563, 100.5018)


def test_reprocess_unknown_locations(session_factory, add_report):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Unknown", None, "romance")
    report_id = add_report(
        is_processed=True,
        is_scam_story=True,
        country="Unknown",
        scam_type="romance",
        processing_attempts=1,
    )
    add_report(is_processed=True, is_scam_story=True, country="Thailand", city="Bangkok", scam_type="taxi")
    classifier = FakeClassifier(incident(category=ScamCategory.ROMANCE))
    engine = EnrichmentEngine(
        classifier=classifier,
        geocoder=FakeGeocoder(BANGKOK),
        aggregator=aggregator,
        session_factory=session_factory,
        sleep=lambda seconds: None,
    )

    summary = make_backfill(session_factory).reprocess_unknown_locations(engine)

    assert summary["candidates"] == 1
    assert summary["processed"] == 1
    assert summary["fixed"] == 1
    assert summary["failed"] == 0
    assert len(classifier.calls) == 1
    report = load_report(session_factory, report_id)
    assert (report.country, report.city) == ("Thailand", "Bangkok")

    stats = load_stats(session_factory)
    assert location_key("Unknown", None) not in stats
    assert stats[location_key("Thailand", "Bangkok")].top_scam_types == [{"type": "romance", "count": 1}]
