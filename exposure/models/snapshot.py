"""Aggregate, snapshot and delta data models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

# Partition dimensions carried by every snapshot
AGE_BUCKET = "age_bucket"
COVERAGE = "coverage"
TYPE_GROUP = "type_group"
QUEUE = "queue"
CP1_COVERAGE = "cp1_coverage"

DIMENSIONS = (AGE_BUCKET, COVERAGE, TYPE_GROUP, QUEUE, CP1_COVERAGE)

TOTAL_KEY = "total"


def format_rate(numerator: int, denominator: int) -> str:
    """
    Percentage with one decimal, computed from integers with half-up rounding.

    A zero denominator yields "0.0".
    """
    if denominator <= 0:
        return "0.0"
    tenths = (numerator * 2000 + denominator) // (2 * denominator)
    return f"{tenths // 10}.{tenths % 10}"


def cp1_key(coverage: str, tendered: bool) -> str:
    """Partition key for the CP1 x coverage cross-tab."""
    return f"{coverage}:{'yes' if tendered else 'no'}"


@dataclass(frozen=True)
class Aggregate:
    """
    A named rollup over a set of claims.

    Monetary sums are exact Decimals; rounding happens only at presentation.

    Attributes:
        dimension: Partition dimension, or "total"
        key: Partition key (bucket label, coverage, queue, ...)
        count: Number of claims
        reserves: Summed open reserves
        low_eval: Summed low evaluations (evaluated claims only)
        high_eval: Summed high evaluations (evaluated claims only)
        no_eval_count: Claims with no evaluation
        no_eval_reserves: Reserves held on claims with no evaluation
        cp1_count: Claims with a policy-limit tender
        litigation_count: Claims in litigation
    """
    dimension: str
    key: str
    count: int = 0
    reserves: Decimal = Decimal("0")
    low_eval: Decimal = Decimal("0")
    high_eval: Decimal = Decimal("0")
    no_eval_count: int = 0
    no_eval_reserves: Decimal = Decimal("0")
    cp1_count: int = 0
    litigation_count: int = 0

    @property
    def evaluated_count(self) -> int:
        return self.count - self.no_eval_count

    @property
    def cp1_rate(self) -> str:
        return format_rate(self.cp1_count, self.count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "key": self.key,
            "count": self.count,
            "reserves": str(self.reserves),
            "low_eval": str(self.low_eval),
            "high_eval": str(self.high_eval),
            "no_eval_count": self.no_eval_count,
            "no_eval_reserves": str(self.no_eval_reserves),
            "cp1_count": self.cp1_count,
            "litigation_count": self.litigation_count,
            "cp1_rate": self.cp1_rate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Aggregate":
        return cls(
            dimension=data["dimension"],
            key=data["key"],
            count=int(data.get("count", 0)),
            reserves=Decimal(str(data.get("reserves", "0"))),
            low_eval=Decimal(str(data.get("low_eval", "0"))),
            high_eval=Decimal(str(data.get("high_eval", "0"))),
            no_eval_count=int(data.get("no_eval_count", 0)),
            no_eval_reserves=Decimal(str(data.get("no_eval_reserves", "0"))),
            cp1_count=int(data.get("cp1_count", 0)),
            litigation_count=int(data.get("litigation_count", 0)),
        )


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable aggregation result for one ingestion run.

    Attributes:
        snapshot_id: Identifier of the ingestion run
        created_at: When the snapshot was taken
        total: Grand-total aggregate
        partitions: Dimension -> ordered aggregates; declared keys are always present
        record_count: Number of records aggregated
    """
    snapshot_id: str
    created_at: datetime
    total: Aggregate
    partitions: Dict[str, Tuple[Aggregate, ...]] = field(default_factory=dict)
    record_count: int = 0

    @property
    def no_eval_count(self) -> int:
        return self.total.no_eval_count

    @property
    def cp1_rate(self) -> str:
        return self.total.cp1_rate

    def partition(self, dimension: str) -> Tuple[Aggregate, ...]:
        """Aggregates for a dimension, in declared order."""
        return self.partitions.get(dimension, ())

    def get(self, dimension: str, key: str) -> Optional[Aggregate]:
        """Single aggregate by dimension and key, or None."""
        for aggregate in self.partition(dimension):
            if aggregate.key == key:
                return aggregate
        return None

    @property
    def cp1_by_coverage(self) -> List[Dict[str, Any]]:
        """
        Tendered vs. not-tendered rows per coverage.

        Returns:
            List of dicts with coverage, yes, no, total, reserves and cp1_rate
        """
        rows = []
        for coverage in self.partition(COVERAGE):
            yes = self.get(CP1_COVERAGE, cp1_key(coverage.key, True))
            no = self.get(CP1_COVERAGE, cp1_key(coverage.key, False))
            rows.append({
                "coverage": coverage.key,
                "yes": yes.count if yes else 0,
                "no": no.count if no else 0,
                "total": coverage.count,
                "reserves": coverage.reserves,
                "cp1_rate": coverage.cp1_rate,
            })
        return rows

    def to_dict(self) -> Dict[str, Any]:
        """Serialized aggregate set, one persisted row per snapshot."""
        return {
            "snapshot_id": self.snapshot_id,
            "created_at": self.created_at.isoformat(),
            "record_count": self.record_count,
            "total": self.total.to_dict(),
            "partitions": {
                dimension: [aggregate.to_dict() for aggregate in aggregates]
                for dimension, aggregates in self.partitions.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            snapshot_id=data["snapshot_id"],
            created_at=created_at,
            total=Aggregate.from_dict(data["total"]),
            partitions={
                dimension: tuple(Aggregate.from_dict(item) for item in items)
                for dimension, items in (data.get("partitions") or {}).items()
            },
            record_count=int(data.get("record_count", 0)),
        )


@dataclass(frozen=True)
class MetricChange:
    """
    Change of one metric between two snapshots (or against a baseline).

    Attributes:
        current: Current value
        previous: Previous (or baseline) value
        change: current - previous
        change_percent: Percent change vs. previous, None when previous is zero
        direction: "positive", "negative" or "neutral"
    """
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percent: Optional[float]
    direction: str

    @property
    def percent_label(self) -> str:
        if self.change_percent is None:
            return "n/a"
        sign = "+" if self.change_percent > 0 else ""
        return f"{sign}{self.change_percent:.1f}%"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": str(self.current),
            "previous": str(self.previous),
            "change": str(self.change),
            "change_percent": self.change_percent,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class Delta:
    """
    Period-over-period comparison between two snapshots.

    Attributes:
        current_id: Current snapshot identifier
        previous_id: Previous snapshot identifier
        current_at: Current snapshot timestamp
        previous_at: Previous snapshot timestamp
        count: Change in open claim count
        reserves: Change in total reserves
        no_eval_count: Change in claims without evaluation
        cp1_rate_points: Change in CP1 rate, in percentage points
        age_buckets: Count change per age bucket label
    """
    current_id: str
    previous_id: str
    current_at: datetime
    previous_at: datetime
    count: MetricChange
    reserves: MetricChange
    no_eval_count: MetricChange
    cp1_rate_points: float
    age_buckets: Dict[str, MetricChange] = field(default_factory=dict)

    @property
    def change_percent(self) -> Optional[float]:
        """Headline percent change (open claim count)."""
        return self.count.change_percent

    @property
    def direction(self) -> str:
        return self.count.direction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_id": self.current_id,
            "previous_id": self.previous_id,
            "current_at": self.current_at.isoformat(),
            "previous_at": self.previous_at.isoformat(),
            "count": self.count.to_dict(),
            "reserves": self.reserves.to_dict(),
            "no_eval_count": self.no_eval_count.to_dict(),
            "cp1_rate_points": self.cp1_rate_points,
            "age_buckets": {key: change.to_dict() for key, change in self.age_buckets.items()},
        }
