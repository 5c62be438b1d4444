"""
Delta engine: period-over-period comparison of snapshots.

Direction follows the sign of the change with a neutral band of
+/-0.5 percent. Whether a direction is good or bad is a per-metric
reading left to the report compiler.
"""

import logging
from decimal import Decimal
from typing import Optional, Union

from ..models.claim import AgeBucket
from ..models.snapshot import AGE_BUCKET, Delta, MetricChange, Snapshot

logger = logging.getLogger(__name__)

NEUTRAL_BAND = 0.5

POSITIVE = "positive"
NEGATIVE = "negative"
NEUTRAL = "neutral"

Number = Union[int, float, Decimal]


def direction_of(change: Decimal, change_percent: Optional[float]) -> str:
    """
    Classify a change as positive, negative or neutral.

    Args:
        change: Absolute change
        change_percent: Percent change, or None when not applicable

    Returns:
        "positive", "negative" or "neutral"
    """
    if change_percent is None:
        if change > 0:
            return POSITIVE
        if change < 0:
            return NEGATIVE
        return NEUTRAL
    if change_percent > NEUTRAL_BAND:
        return POSITIVE
    if change_percent < -NEUTRAL_BAND:
        return NEGATIVE
    return NEUTRAL


def metric_change(current: Number, previous: Number) -> MetricChange:
    """
    Build a MetricChange between two values.

    Args:
        current: Current value
        previous: Previous value

    Returns:
        MetricChange; change_percent is None when previous is zero
    """
    current_value = Decimal(str(current))
    previous_value = Decimal(str(previous))
    change = current_value - previous_value

    change_percent: Optional[float] = None
    if previous_value != 0:
        change_percent = round(float(change / previous_value * 100), 1)

    return MetricChange(
        current=current_value,
        previous=previous_value,
        change=change,
        change_percent=change_percent,
        direction=direction_of(change, change_percent),
    )


def compare_to_baseline(value: Number, baseline: Number, name: str = "metric") -> MetricChange:
    """
    Compare a value against a configured constant baseline.

    Baselines such as a prior-year budget are hand-maintained figures
    supplied through configuration, never derived from snapshots.

    Args:
        value: Current value
        baseline: Configured baseline value
        name: Metric name, for logging

    Returns:
        MetricChange of value against the baseline
    """
    result = metric_change(value, baseline)
    logger.debug(f"{name} vs baseline {baseline}: {result.percent_label}")
    return result


def compute_delta(current: Snapshot, previous: Optional[Snapshot]) -> Optional[Delta]:
    """
    Compare two snapshots.

    Pure and idempotent: the same inputs always give an equal Delta.

    Args:
        current: The newer snapshot
        previous: The older snapshot, or None when there is no history

    Returns:
        Delta, or None when there is no previous snapshot
    """
    if previous is None:
        logger.info(f"No previous snapshot for {current.snapshot_id}; delta not computed")
        return None

    age_buckets = {}
    for bucket in AgeBucket.ordered():
        now = current.get(AGE_BUCKET, bucket.value)
        before = previous.get(AGE_BUCKET, bucket.value)
        age_buckets[bucket.value] = metric_change(
            now.count if now else 0,
            before.count if before else 0,
        )

    cp1_points = round(float(Decimal(current.cp1_rate) - Decimal(previous.cp1_rate)), 1)

    delta = Delta(
        current_id=current.snapshot_id,
        previous_id=previous.snapshot_id,
        current_at=current.created_at,
        previous_at=previous.created_at,
        count=metric_change(current.total.count, previous.total.count),
        reserves=metric_change(current.total.reserves, previous.total.reserves),
        no_eval_count=metric_change(current.no_eval_count, previous.no_eval_count),
        cp1_rate_points=cp1_points,
        age_buckets=age_buckets,
    )

    logger.info(
        f"Delta {previous.snapshot_id} -> {current.snapshot_id}: "
        f"count {delta.count.percent_label}, reserves {delta.reserves.percent_label}"
    )
    return delta
