"""Tests for per-location incident rollups."""

import pytest

from db.models import LocationStatModel
from processing.aggregator import (
    Aggregator,
    AveragingPolicy,
    location_key,
    remove_scam_type,
    update_average_loss,
    update_top_scam_types,
)


def get_stat(session_factory, country: str, city: str | None) -> LocationStatModel:
    db = session_factory()
    try:
        return (
            db.query(LocationStatModel)
            .filter(LocationStatModel.location_key == location_key(country, city))
            .one()
        )
    finally:
        db.close()


def test_location_key_normalizes_case_and_space():
    assert location_key(" Thailand ", "Bangkok") == location_key("thailand", "BANGKOK ")
    assert location_key("Thailand") != location_key("Thailand", "Bangkok")


def test_top_scam_types_sorted_and_capped():
    top = []
    for category in ["taxi", "taxi", "atm", "tour", "visa", "police", "taxi", "atm"]:
        top = update_top_scam_types(top, category)

    assert top[0] == {"type": "taxi", "count": 3}
    assert top[1] == {"type": "atm", "count": 2}
    assert len(top) == 5

    # A sixth category at count 1 is evicted immediately
    top = update_top_scam_types(top, "romance")
    assert len(top) == 5
    assert "romance" not in [entry["type"] for entry in top]


def test_top_scam_types_does_not_mutate_input():
    original = [{"type": "taxi", "count": 1}]
    update_top_scam_types(original, "taxi")
    assert original == [{"type": "taxi", "count": 1}]


def test_decayed_average():
    assert update_average_loss(None, 0, 100) == 100
    assert update_average_loss(100, 1, 50) == 75
    assert update_average_loss(75, 2, 25) == 50


def test_mean_average():
    assert update_average_loss(100, 1, 50, AveragingPolicy.MEAN) == 75
    assert update_average_loss(75, 2, 0, AveragingPolicy.MEAN) == 50


def test_record_incident_creates_and_increments(session_factory):
    aggregator = Aggregator(session_factory)

    snapshot = aggregator.record_incident("Thailand", "Bangkok", "taxi", loss_amount=100)
    assert snapshot["total_scams"] == 1
    assert snapshot["average_money_lost"] == 100

    snapshot = aggregator.record_incident("Thailand", "Bangkok", "taxi", loss_amount=50)
    assert snapshot["total_scams"] == 2
    assert snapshot["average_money_lost"] == 75
    assert snapshot["top_scam_types"] == [{"type": "taxi", "count": 2}]


def test_incident_without_loss_keeps_average(session_factory):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", "Bangkok", "taxi", loss_amount=80)
    aggregator.record_incident("Thailand", "Bangkok", "tour")

    stat = get_stat(session_factory, "Thailand", "Bangkok")
    assert stat.average_money_lost == 80
    assert stat.loss_samples == 1
    assert stat.total_scams == 2


def test_first_coordinates_win(session_factory):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", "Bangkok", "taxi")
    aggregator.record_incident("Thailand", "Bangkok", "taxi", coordinates=(13.75, 100.5))
    aggregator.record_incident("Thailand", "Bangkok", "taxi", coordinates=(1.0, 2.0))

    stat = get_stat(session_factory, "Thailand", "Bangkok")
    assert (stat.latitude, stat.longitude) == (13.75, 100.5)


def test_country_level_rollup_is_separate(session_factory):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", None, "visa")
    aggregator.record_incident("Thailand", "Bangkok", "taxi")

    assert get_stat(session_factory, "Thailand", None).city is None
    assert get_stat(session_factory, "Thailand", None).total_scams == 1
    assert get_stat(session_factory, "Thailand", "Bangkok").total_scams == 1


def test_attach_coordinates_only_fills_empty_rows(session_factory):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", "Bangkok", "taxi")

    assert aggregator.attach_coordinates("Thailand", "Bangkok", (13.75, 100.5)) is True
    assert aggregator.attach_coordinates("Thailand", "Bangkok", (1.0, 2.0)) is False
    assert aggregator.attach_coordinates("Vietnam", "Hanoi", (21.0, 105.8)) is False

    stat = get_stat(session_factory, "Thailand", "Bangkok")
    assert (stat.latitude, stat.longitude) == (13.75, 100.5)


def test_reset_by_country(session_factory):
    aggregator = Aggregator(session_factory)
    aggregator.record_incident("Thailand", "Bangkok", "taxi")
    aggregator.record_incident("Vietnam", "Hanoi", "taxi")

    assert aggregator.reset("Thailand") == 1
    assert aggregator.reset() == 1


def test_invalid_policy_rejected(session_factory):
    with pytest.raises(ValueError):
        Aggregator(session_factory, averaging="median")


def test_top_scam_types_never_exceed_total(session_factory):
    aggregator = Aggregator(session_factory)
    categories = ["taxi", "taxi", "atm", "tour", "visa", "police", "romance", "airport", "taxi", "atm"]
    for category in categories:
        aggregator.record_incident("Thailand", "Bangkok", category)

    stat = get_stat(session_factory, "Thailand", "Bangkok")
    assert stat.total_scams == 10
    assert len(stat.top_scam_types) == 5
    assert stat.top_scam_types[:2] == [{"type": "taxi", "count": 3}, {"type": "atm", "count": 2}]
    assert sum(entry["count"] for entry in stat.top_scam_types) <= stat.total_scams


def test_remove_scam_type_drops_empty_entries():
    top = [{"type": "taxi", "count": 2}, {"type": "atm", "count": 1}]

    assert remove_scam_type(top, "atm") == [{"type": "taxi", "count": 2}]
    assert remove_scam_type(top, "taxi") == [{"type": "taxi", "count": 1}, {"type": "atm", "count": 1}]
    assert remove_scam_type(top, "visa") == top
