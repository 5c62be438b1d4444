"""Tests for the delta engine."""

from datetime import timedelta
from decimal import Decimal

from conftest import make_record
from exposure.analytics import aggregate_records, compare_to_baseline, compute_delta, metric_change
from exposure.models import Aggregate, AgeBucket, Snapshot


def _snapshot(snapshot_id, created_at, count, reserves="0"):
    return Snapshot(
        snapshot_id=snapshot_id,
        created_at=created_at,
        total=Aggregate("total", "total", count=count, reserves=Decimal(reserves)),
    )


def test_no_previous_snapshot_gives_no_delta(as_of):
    assert compute_delta(_snapshot("now", as_of, 90), None) is None


def test_decline_from_100_to_90(as_of):
    previous = _snapshot("prev", as_of - timedelta(days=7), 100)
    current = _snapshot("now", as_of, 90)

    delta = compute_delta(current, previous)

    assert delta.count.change == Decimal("-10")
    assert delta.change_percent == -10.0
    assert delta.direction == "negative"
    assert delta.count.percent_label == "-10.0%"
    assert delta.previous_at == previous.created_at


def test_compute_delta_is_idempotent(as_of):
    previous = aggregate_records(
        [make_record("A", age_days=400), make_record("B", age_days=20)],
        snapshot_id="prev", created_at=as_of - timedelta(days=7),
    )
    current = aggregate_records(
        [make_record("A", age_days=407, cp1=True), make_record("C", age_days=3, reserves="250")],
        snapshot_id="now", created_at=as_of,
    )

    assert compute_delta(current, previous) == compute_delta(current, previous)


def test_age_bucket_and_cp1_changes(as_of):
    previous = aggregate_records(
        [make_record("A", age_days=300), make_record("B", age_days=20)],
        snapshot_id="prev", created_at=as_of - timedelta(days=7),
    )
    current = aggregate_records(
        [make_record("A", age_days=400, cp1=True), make_record("B", age_days=27)],
        snapshot_id="now", created_at=as_of,
    )

    delta = compute_delta(current, previous)

    aged = delta.age_buckets[AgeBucket.OVER_365.value]
    assert aged.change == Decimal("1")
    assert aged.change_percent is None
    assert aged.direction == "positive"
    assert delta.age_buckets[AgeBucket.DAYS_181_365.value].change_percent == -100.0
    assert delta.cp1_rate_points == 50.0


def test_previous_zero_is_not_applicable():
    change = metric_change(5, 0)

    assert change.change_percent is None
    assert change.percent_label == "n/a"
    assert change.direction == "positive"
    assert metric_change(0, 0).direction == "neutral"


def test_small_changes_are_neutral():
    assert metric_change(1004, 1000).direction == "neutral"
    assert metric_change(996, 1000).direction == "neutral"
    assert metric_change(1006, 1000).direction == "positive"


def test_decimal_reserves_change():
    change = metric_change(Decimal("1101.00"), Decimal("1000.00"))

    assert change.change == Decimal("101.00")
    assert change.change_percent == 10.1


def test_compare_to_baseline():
    change = compare_to_baseline(Decimal("110"), Decimal("100"), "open_claims")

    assert change.previous == Decimal("100")
    assert change.change_percent == 10.0
    assert change.direction == "positive"
