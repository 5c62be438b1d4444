"""
Aggregation engine.

Builds every rollup of a snapshot in a single pass over the normalized
records, then reconciles each partition against the grand total.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional

from ..models.claim import AgeBucket, ClaimRecord
from ..models.snapshot import (
    AGE_BUCKET,
    COVERAGE,
    CP1_COVERAGE,
    QUEUE,
    TOTAL_KEY,
    TYPE_GROUP,
    Aggregate,
    Snapshot,
    cp1_key,
)
from ..utils.config import AggregationConfig
from ..utils.errors import ReconciliationError
from ..utils.logging import with_context

logger = logging.getLogger(__name__)

BLANK_KEY = "(blank)"

# Fields every partition must reconcile on
RECONCILED_FIELDS = (
    "count",
    "reserves",
    "low_eval",
    "high_eval",
    "no_eval_count",
    "no_eval_reserves",
    "cp1_count",
    "litigation_count",
)


class _Accumulator:
    """Running sums for one aggregate key."""

    __slots__ = RECONCILED_FIELDS

    def __init__(self):
        self.count = 0
        self.reserves = Decimal("0")
        self.low_eval = Decimal("0")
        self.high_eval = Decimal("0")
        self.no_eval_count = 0
        self.no_eval_reserves = Decimal("0")
        self.cp1_count = 0
        self.litigation_count = 0

    def add(self, record: ClaimRecord):
        self.count += 1
        self.reserves += record.reserves
        if record.evaluation is None:
            self.no_eval_count += 1
            self.no_eval_reserves += record.reserves
        else:
            self.low_eval += record.evaluation.low
            self.high_eval += record.evaluation.high
        if record.cp1:
            self.cp1_count += 1
        if record.in_litigation:
            self.litigation_count += 1

    def freeze(self, dimension: str, key: str) -> Aggregate:
        return Aggregate(
            dimension=dimension,
            key=key,
            count=self.count,
            reserves=self.reserves,
            low_eval=self.low_eval,
            high_eval=self.high_eval,
            no_eval_count=self.no_eval_count,
            no_eval_reserves=self.no_eval_reserves,
            cp1_count=self.cp1_count,
            litigation_count=self.litigation_count,
        )


class _Partition:
    """Accumulators for one dimension; declared keys first, then first-seen keys."""

    def __init__(self, dimension: str, declared: Iterable[str] = ()):
        self.dimension = dimension
        self.buckets: Dict[str, _Accumulator] = {}
        for key in declared:
            self.buckets.setdefault(key, _Accumulator())

    def add(self, key: str, record: ClaimRecord):
        key = key or BLANK_KEY
        accumulator = self.buckets.get(key)
        if accumulator is None:
            accumulator = self.buckets[key] = _Accumulator()
        accumulator.add(record)

    def freeze(self):
        return tuple(acc.freeze(self.dimension, key) for key, acc in self.buckets.items())


def _key_of(dimension: str, record: ClaimRecord) -> str:
    if dimension == AGE_BUCKET:
        return record.age_bucket.value
    if dimension == COVERAGE:
        return record.coverage
    if dimension == TYPE_GROUP:
        return record.type_group
    if dimension == QUEUE:
        return record.queue
    return cp1_key(record.coverage or BLANK_KEY, record.cp1)


@with_context(component="aggregation")
def aggregate_records(
    records: Iterable[ClaimRecord],
    snapshot_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    config: Optional[AggregationConfig] = None
) -> Snapshot:
    """
    Aggregate claim records into an immutable snapshot.

    One pass builds running sums by age bucket, coverage, type group,
    queue and CP1 x coverage, plus the grand total. Declared keys (all
    age buckets, configured coverages and queues) are always present.

    Args:
        records: Normalized claim records
        snapshot_id: Identifier for the snapshot (generated when omitted)
        created_at: Snapshot timestamp (now, UTC, when omitted)
        config: Declared coverages and queues

    Returns:
        Snapshot with totals and partitions

    Raises:
        ReconciliationError: If any partition does not add up to the total
    """
    config = config or AggregationConfig()
    snapshot_id = snapshot_id or f"snap-{uuid.uuid4().hex[:12]}"
    created_at = created_at or datetime.now(timezone.utc)

    total = _Accumulator()
    partitions = {
        AGE_BUCKET: _Partition(AGE_BUCKET, [bucket.value for bucket in AgeBucket.ordered()]),
        COVERAGE: _Partition(COVERAGE, config.coverages),
        TYPE_GROUP: _Partition(TYPE_GROUP),
        QUEUE: _Partition(QUEUE, config.queues),
        CP1_COVERAGE: _Partition(
            CP1_COVERAGE,
            [cp1_key(coverage, tendered) for coverage in config.coverages for tendered in (True, False)],
        ),
    }

    record_count = 0
    for record in records:
        record_count += 1
        total.add(record)
        for dimension, partition in partitions.items():
            partition.add(_key_of(dimension, record), record)

    snapshot = Snapshot(
        snapshot_id=snapshot_id,
        created_at=created_at,
        total=total.freeze(TOTAL_KEY, TOTAL_KEY),
        partitions={dimension: partition.freeze() for dimension, partition in partitions.items()},
        record_count=record_count,
    )
    reconcile(snapshot)

    logger.info(
        f"Aggregated {record_count} records into snapshot {snapshot_id}: "
        f"reserves={snapshot.total.reserves}, no_eval={snapshot.no_eval_count}, "
        f"cp1_rate={snapshot.cp1_rate}%"
    )
    return snapshot


def reconcile(snapshot: Snapshot) -> None:
    """
    Check that every partition's children sum to the grand total.

    Args:
        snapshot: Snapshot to check

    Raises:
        ReconciliationError: On the first field that does not reconcile
    """
    for dimension, aggregates in snapshot.partitions.items():
        for field_name in RECONCILED_FIELDS:
            expected = getattr(snapshot.total, field_name)
            actual = sum((getattr(aggregate, field_name) for aggregate in aggregates), type(expected)(0))
            if actual != expected:
                error = ReconciliationError.partition_mismatch(dimension, field_name, expected, actual)
                logger.error(str(error))
                raise error

