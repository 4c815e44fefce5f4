"""Tests for the enrichment engine."""

import pytest

from conftest import BANGKOK, FakeClassifier, FakeGeocoder, incident, not_incident

from data_models.classification import ClassificationResult
from data_models.geocode import GeocodeOutcome
from data_models.scam_report import ScamCategory, VerificationStatus
from db.models import LocationStatModel, ScamReportModel
from processing.aggregator import Aggregator
from processing.enrichment import EnrichmentEngine, reset_reports
from processing.errors import ConfigurationError


def make_engine(session_factory, classifier, geocoder=None, aggregator=None, **kwargs) -> EnrichmentEngine:
    return EnrichmentEngine(
        classifier=classifier,
        geocoder=geocoder or FakeGeocoder(BANGKOK),
        aggregator=aggregator or Aggregator(session_factory),
        session_factory=session_factory,
        sleep=lambda seconds: None,
        **kwargs,
    )


def load_report(session_factory, report_id: str) -> ScamReportModel:
    db = session_factory()
    try:
        return db.get(ScamReportModel, report_id)
    finally:
        db.close()


def load_stats(session_factory) -> list[LocationStatModel]:
    db = session_factory()
    try:
        return db.query(LocationStatModel).all()
    finally:
        db.close()


def test_bangkok_incident_end_to_end(session_factory, add_report, add_comment):
    report_id = add_report(title="Taxi driver refused the meter", body="Paid 1000 baht for a short ride")
    add_comment(report_id, "Low score comment", upvotes=1)
    add_comment(report_id, "Always insist on the meter", upvotes=10)
    classifier = FakeClassifier(incident(loss_amount=30, specific_location="Khao San Road", currency="USD"))
    geocoder = FakeGeocoder(BANGKOK)

    result = make_engine(session_factory, classifier, geocoder).enrich_report(report_id)

    assert result.success
    assert result.is_incident
    assert result.geocoded
    assert result.aggregated
    assert (result.country, result.city) == ("Thailand", "Bangkok")

    content = classifier.calls[0]
    assert "Taxi driver refused the meter" in content
    assert content.index("Always insist") < content.index("Low score comment")
    assert geocoder.queries == [("Khao San Road, Bangkok, Thailand", "Thailand")]

    report = load_report(session_factory, report_id)
    assert report.is_processed
    assert report.processed_at is not None
    assert report.processing_attempts == 1
    assert report.is_scam_story
    assert report.scam_type == "taxi"
    assert report.money_lost == 30
    assert report.currency == "USD"
    assert report.country == "Thailand"
    assert report.specific_location == "Khao San Road"
    assert (report.latitude, report.longitude) == (13.7563, 100.5018)
    assert report.verification_status == VerificationStatus.UNVERIFIED.value

    [stat] = load_stats(session_factory)
    assert (stat.country, stat.city) == ("Thailand", "Bangkok")
    assert stat.total_scams == 1
    assert stat.top_scam_types == [{"type": "taxi", "count": 1}]
    assert stat.average_money_lost == 30
    assert (stat.latitude, stat.longitude) == (13.7563, 100.5018)


def test_not_incident_is_flagged(session_factory, add_report):
    report_id = add_report()

    result = make_engine(session_factory, FakeClassifier(not_incident())).enrich_report(report_id)

    assert result.success
    assert not result.is_incident
    report = load_report(session_factory, report_id)
    assert report.is_processed
    assert not report.is_scam_story
    assert report.confidence == 0.0
    assert report.verification_status == VerificationStatus.AI_FLAGGED.value
    assert load_stats(session_factory) == []


def test_classifier_failure_is_terminal(session_factory, add_report):
    report_id = add_report()
    classifier = FakeClassifier(ClassificationResult.safe_default("HTTP 500: boom"))

    make_engine(session_factory, classifier).enrich_report(report_id)

    report = load_report(session_factory, report_id)
    assert report.is_processed
    assert not report.is_scam_story
    assert report.confidence == 0.0
    assert report.verification_status == VerificationStatus.AI_FLAGGED.value
    assert report.processing_errors == ["HTTP 500: boom"]


def test_unknown_country_is_aggregated_without_geocoding(session_factory, add_report):
    report_id = add_report()
    geocoder = FakeGeocoder(BANGKOK)
    classifier = FakeClassifier(incident(category=ScamCategory.ROMANCE, country="Unknown", city=None))

    result = make_engine(session_factory, classifier, geocoder).enrich_report(report_id)

    assert result.aggregated
    assert not result.geocoded
    assert geocoder.queries == []
    [stat] = load_stats(session_factory)
    assert stat.country == "Unknown"
    assert stat.city is None


def test_not_found_location_keeps_classifier_names(session_factory, add_report):
    report_id = add_report()
    classifier = FakeClassifier(incident(country="Laos", city="Vang Vieng"))

    result = make_engine(session_factory, classifier).enrich_report(report_id)

    assert result.success
    assert not result.geocoded
    report = load_report(session_factory, report_id)
    assert (report.country, report.city) == ("Laos", "Vang Vieng")
    assert report.latitude is None


def test_unavailable_geocoder_leaves_report_unprocessed(session_factory, add_report):
    report_id = add_report()
    engine = make_engine(
        session_factory,
        FakeClassifier(incident()),
        FakeGeocoder(outcome=GeocodeOutcome.UNAVAILABLE),
    )

    result = engine.enrich_report(report_id)

    assert not result.success
    assert "Geocoder unavailable" in result.error
    report = load_report(session_factory, report_id)
    assert not report.is_processed
    assert report.processing_attempts == 1
    assert len(report.processing_errors) == 1
    assert load_stats(session_factory) == []


def test_stalled_reports_are_skipped(session_factory, add_report):
    stalled = add_report(processing_attempts=3)
    fresh = add_report()
    engine = make_engine(
        session_factory,
        FakeClassifier(incident()),
        FakeGeocoder(outcome=GeocodeOutcome.UNAVAILABLE),
    )

    for _ in range(3):
        engine.process_unprocessed(limit=10)

    assert load_report(session_factory, fresh).processing_attempts == 3
    assert load_report(session_factory, stalled).processing_attempts == 3
    summary = engine.process_unprocessed(limit=10)
    assert summary["total_processed"] == 0


def test_aggregation_failure_is_recorded_on_report(session_factory, add_report):
    class BrokenAggregator:
        def record_incident(self, *args, **kwargs):
            raise RuntimeError("database is locked")

    report_id = add_report()
    engine = make_engine(session_factory, FakeClassifier(incident()), aggregator=BrokenAggregator())

    result = engine.enrich_report(report_id)

    assert result.success
    assert not result.aggregated
    report = load_report(session_factory, report_id)
    assert report.is_processed
    assert report.processing_errors == ["Aggregation failed: database is locked"]


def test_missing_report(session_factory):
    result = make_engine(session_factory, FakeClassifier(incident())).enrich_report("nope")

    assert not result.success
    assert result.error == "Report not found"


def test_process_unprocessed_summary(session_factory, add_report):
    add_report()
    add_report()
    add_report(is_processed=True)
    classifier = FakeClassifier(incident(loss_amount=100), not_incident())
    sleeps = []

    engine = EnrichmentEngine(
        classifier=classifier,
        geocoder=FakeGeocoder(BANGKOK),
        session_factory=session_factory,
        sleep=sleeps.append,
    )
    summary = engine.process_unprocessed(limit=10)

    assert summary["total_processed"] == 2
    assert summary["successful"] == 2
    assert summary["incidents"] == 1
    assert summary["geocoded"] == 1
    assert summary["aggregated"] == 1
    assert not summary["stopped_early"]
    assert sleeps == [1.0]


def test_process_unprocessed_respects_ceiling(session_factory, add_report):
    for _ in range(3):
        add_report()
    ticks = iter([0, 0, 10, 100, 100])

    engine = make_engine(session_factory, FakeClassifier(not_incident()), clock=lambda: next(ticks))
    summary = engine.process_unprocessed(limit=10, max_runtime_seconds=50)

    assert summary["total_processed"] == 2
    assert summary["stopped_early"]


def test_reset_for_reprocessing(session_factory, add_report):
    ok = add_report()
    failed = add_report()
    engine = make_engine(session_factory, FakeClassifier(incident()))
    engine.enrich_report(ok)
    make_engine(session_factory, FakeClassifier(ClassificationResult.safe_default("timeout"))).enrich_report(failed)

    assert engine.reset_for_reprocessing(only_failed=True) == 1
    report = load_report(session_factory, failed)
    assert not report.is_processed
    assert report.processing_attempts == 0
    assert report.processing_errors == []
    assert load_report(session_factory, ok).is_processed

    assert engine.reset_for_reprocessing([ok]) == 1
    assert not load_report(session_factory, ok).is_scam_story


def test_reset_clears_enrichment_before_reclassification(session_factory, add_report):
    report_id = add_report()
    classification = incident(
        loss_amount=50,
        currency="USD",
        specific_location="Khao San Road",
        scam_methods=["rigged meter"],
        warning_signals=["meter off"],
        prevention_tips=["use a ride app"],
    )
    make_engine(session_factory, FakeClassifier(classification)).enrich_report(report_id)
    assert load_report(session_factory, report_id).latitude == 13.7563

    assert reset_reports([report_id], session_factory=session_factory) == 1
    make_engine(session_factory, FakeClassifier(not_incident())).enrich_report(report_id)

    report = load_report(session_factory, report_id)
    assert report.is_processed
    assert not report.is_scam_story
    assert (report.country, report.city, report.specific_location) == (None, None, None)
    assert (report.latitude, report.longitude) == (None, None)
    assert (report.money_lost, report.currency) == (None, None)
    assert report.scam_methods == []
    assert report.warning_signals == []
    assert report.prevention_tips == []
    assert report.processing_attempts == 1


def test_reset_leaves_no_location_behind(session_factory, add_report):
    report_id = add_report(
        is_processed=True,
        is_scam_story=True,
        country="Thailand",
        city="Bangkok",
        latitude=13.7563,
        longitude=100.5018,
        money_lost=50,
        warning_signals=["meter off"],
    )

    reset_reports(session_factory=session_factory)

    report = load_report(session_factory, report_id)
    assert not report.is_processed
    assert report.country is None
    assert report.latitude is None
    assert report.money_lost is None
    assert report.warning_signals == []


def test_enriching_a_processed_report_is_skipped(session_factory, add_report):
    report_id = add_report()
    make_engine(session_factory, FakeClassifier(incident())).process_unprocessed(limit=10)
    late = FakeClassifier(incident())

    result = make_engine(session_factory, late).enrich_report(report_id)

    assert result.success
    assert result.skipped
    assert not result.aggregated
    assert late.calls == []
    assert load_report(session_factory, report_id).processing_attempts == 1
    [stat] = load_stats(session_factory)
    assert stat.total_scams == 1


def test_overlapping_runs_aggregate_once(session_factory, add_report):
    report_id = add_report()

    class RacingClassifier:
        """Lets a second engine finish the same report mid-classification."""

        def __init__(self):
            self.inner = None

        def classify(self, content):
            self.inner = make_engine(session_factory, FakeClassifier(incident())).enrich_report(report_id)
            return incident()

    racing = RacingClassifier()
    result = make_engine(session_factory, racing).enrich_report(report_id)

    assert racing.inner.aggregated
    assert result.skipped
    assert not result.aggregated
    [stat] = load_stats(session_factory)
    assert stat.total_scams == 1
    assert stat.top_scam_types == [{"type": "taxi", "count": 1}]
    assert load_report(session_factory, report_id).processing_attempts == 2


def test_repeated_runs_leave_rollups_unchanged(session_factory, add_report):
    add_report()
    add_report()
    engine = make_engine(session_factory, FakeClassifier(incident(loss_amount=20)))

    first = engine.process_unprocessed(limit=10)
    second = engine.process_unprocessed(limit=10)

    assert first["aggregated"] == 2
    assert second["total_processed"] == 0
    [stat] = load_stats(session_factory)
    assert stat.total_scams == 2
    assert stat.top_scam_types == [{"type": "taxi", "count": 2}]


def test_configuration_error_does_not_consume_an_attempt(session_factory, add_report):
    class UnconfiguredClassifier:
        def classify(self, content):
            raise ConfigurationError("LLM_API_KEY not found in environment")

    report_id = add_report()
    engine = make_engine(session_factory, UnconfiguredClassifier())

    with pytest.raises(ConfigurationError):
        engine.enrich_report(report_id)

    report = load_report(session_factory, report_id)
    assert not report.is_processed
    assert report.processing_attempts == 0
