"""Tests for the aggregation engine and snapshot model."""

from decimal import Decimal

import pytest

from conftest import make_record
from exposure.analytics import aggregate_records, reconcile
from exposure.models import Aggregate, AgeBucket, Snapshot
from exposure.models.snapshot import AGE_BUCKET, COVERAGE, CP1_COVERAGE, DIMENSIONS, QUEUE, TYPE_GROUP, format_rate
from exposure.utils.config import AggregationConfig
from exposure.utils.errors import ReconciliationError


@pytest.mark.parametrize("days,bucket", [
    (0, AgeBucket.UNDER_60),
    (59, AgeBucket.UNDER_60),
    (60, AgeBucket.DAYS_61_180),
    (180, AgeBucket.DAYS_61_180),
    (181, AgeBucket.DAYS_181_365),
    (365, AgeBucket.DAYS_181_365),
    (366, AgeBucket.OVER_365),
])
def test_age_bucket_boundaries(days, bucket):
    assert AgeBucket.from_days(days) == bucket


def test_scenario_with_and_without_evaluation(as_of):
    records = [
        make_record("A", age_days=10, reserves="100"),
        make_record("B", age_days=400, reserves="900", evaluation=("500", "700")),
    ]
    snapshot = aggregate_records(records, snapshot_id="snap-1", created_at=as_of)

    under_60 = snapshot.get(AGE_BUCKET, AgeBucket.UNDER_60.value)
    assert (under_60.count, under_60.reserves, under_60.no_eval_count) == (1, Decimal("100"), 1)
    assert under_60.low_eval == Decimal("0")
    assert under_60.high_eval == Decimal("0")

    aged = snapshot.get(AGE_BUCKET, AgeBucket.OVER_365.value)
    assert (aged.count, aged.reserves, aged.low_eval, aged.high_eval) == (
        1, Decimal("900"), Decimal("500"), Decimal("700")
    )
    assert aged.no_eval_count == 0

    assert snapshot.total.count == 2
    assert snapshot.total.reserves == Decimal("1000")
    assert snapshot.no_eval_count == 1
    assert snapshot.total.no_eval_reserves == Decimal("100")
    assert snapshot.record_count == 2


def test_partitions_sum_to_total():
    records = [
        make_record("C1", age_days=5, coverage="BI", queue="Litigation"),
        make_record("C2", age_days=90, coverage="PD", queue="ATR", reserves="250.75"),
        make_record("C3", age_days=200, coverage="UM", queue="BI3", evaluation=("10", "20")),
        make_record("C4", age_days=700, coverage="BI", queue="Early BI", cp1=True),
        make_record("C5", age_days=700, coverage="COLL", queue="Subro", in_litigation=True),
    ]
    snapshot = aggregate_records(records)

    for dimension in DIMENSIONS:
        aggregates = snapshot.partition(dimension)
        assert sum(aggregate.count for aggregate in aggregates) == snapshot.total.count
        assert sum((aggregate.reserves for aggregate in aggregates), Decimal("0")) == snapshot.total.reserves
        for aggregate in aggregates:
            assert aggregate.no_eval_count + aggregate.evaluated_count == aggregate.count


def test_declared_keys_always_present():
    snapshot = aggregate_records([])

    assert [a.key for a in snapshot.partition(AGE_BUCKET)] == [b.value for b in AgeBucket.ordered()]
    assert [a.key for a in snapshot.partition(COVERAGE)] == ["BI", "PD", "UM"]
    assert [a.key for a in snapshot.partition(QUEUE)] == ["Litigation", "ATR", "BI3", "Early BI"]
    assert snapshot.partition(TYPE_GROUP) == ()
    for aggregate in snapshot.partition(COVERAGE):
        assert aggregate.count == 0
        assert aggregate.cp1_rate == "0.0"
    assert snapshot.cp1_rate == "0.0"


def test_observed_keys_follow_declared_keys():
    records = [
        make_record("C1", coverage="COLL"),
        make_record("C2", coverage="BI"),
        make_record("C3", coverage="MED"),
        make_record("C4", coverage=""),
    ]
    snapshot = aggregate_records(records, config=AggregationConfig(coverages=["BI", "PD"]))

    assert [a.key for a in snapshot.partition(COVERAGE)] == ["BI", "PD", "COLL", "MED", "(blank)"]


def test_cp1_by_coverage():
    records = [
        make_record("C1", coverage="BI", cp1=True),
        make_record("C2", coverage="BI", cp1=False),
        make_record("C3", coverage="BI", cp1=True),
        make_record("C4", coverage="PD", cp1=False),
    ]
    snapshot = aggregate_records(records)

    rows = {row["coverage"]: row for row in snapshot.cp1_by_coverage}
    assert (rows["BI"]["yes"], rows["BI"]["no"], rows["BI"]["total"]) == (2, 1, 3)
    assert rows["BI"]["cp1_rate"] == "66.7"
    assert rows["PD"]["cp1_rate"] == "0.0"
    assert rows["UM"]["total"] == 0
    assert snapshot.get(CP1_COVERAGE, "BI:yes").count == 2
    assert snapshot.cp1_rate == "50.0"


@pytest.mark.parametrize("numerator,denominator,expected", [
    (1, 3, "33.3"),
    (2, 3, "66.7"),
    (1, 8, "12.5"),
    (1, 16, "6.3"),
    (3, 3, "100.0"),
    (0, 0, "0.0"),
])
def test_format_rate_rounds_half_up(numerator, denominator, expected):
    assert format_rate(numerator, denominator) == expected


def test_reconcile_detects_mismatch(as_of):
    snapshot = Snapshot(
        snapshot_id="bad",
        created_at=as_of,
        total=Aggregate("total", "total", count=2),
        partitions={COVERAGE: (Aggregate(COVERAGE, "BI", count=1),)},
    )

    with pytest.raises(ReconciliationError) as exc_info:
        reconcile(snapshot)

    assert exc_info.value.context.details["dimension"] == COVERAGE
    assert exc_info.value.context.details["field"] == "count"


def test_snapshot_persisted_form_restores_equal_snapshot(as_of):
    records = [
        make_record("C1", age_days=400, evaluation=("1.10", "2.20"), cp1=True),
        make_record("C2", age_days=20, coverage="PD", reserves="99.99"),
    ]
    snapshot = aggregate_records(records, snapshot_id="snap-7", created_at=as_of)

    assert Snapshot.from_dict(snapshot.to_dict()) == snapshot
