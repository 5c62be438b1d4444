"""Selection criteria for deploying review directives."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..models.claim import AgeBucket, ClaimRecord
from ..utils.errors import ConfigError

logger = logging.getLogger(__name__)

Predicate = Callable[[ClaimRecord], bool]

AGE_BUCKET = "age_bucket"
QUEUE = "queue"
COVERAGE = "coverage"
NAMED = "named"

# Filters available without configuration
BUILTIN_FILTERS: Dict[str, Dict[str, Any]] = {
    "all": {},
    "aged-365": {"age_bucket": AgeBucket.OVER_365.value},
    "aged-181-365": {"age_bucket": AgeBucket.DAYS_181_365.value},
    "under-60": {"age_bucket": AgeBucket.UNDER_60.value},
}


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def build_predicate(name: str, spec: Mapping[str, Any]) -> Predicate:
    """
    Compile a named filter definition into a predicate.

    Supported keys: age_bucket, queue, coverage, type_group, area, state
    (each a value or list of values), in_litigation, cp1 (booleans) and
    min_reserves.

    Args:
        name: Filter name (used in errors)
        spec: Filter definition from configuration

    Returns:
        Predicate over ClaimRecord

    Raises:
        ConfigError: If the definition uses an unknown key
    """
    checks: List[Predicate] = []
    for key, value in spec.items():
        if key == "age_bucket":
            try:
                buckets = {AgeBucket.from_label(label) for label in _as_list(value)}
            except ValueError as e:
                raise ConfigError.invalid(f"workflow.named_filters.{name}", value, str(e)) from e
            checks.append(lambda record, buckets=buckets: record.age_bucket in buckets)
        elif key in ("queue", "coverage", "type_group", "area", "state"):
            allowed = {str(item).strip().upper() for item in _as_list(value)}
            checks.append(
                lambda record, key=key, allowed=allowed: str(getattr(record, key)).upper() in allowed
            )
        elif key in ("in_litigation", "cp1"):
            checks.append(lambda record, key=key, value=bool(value): getattr(record, key) == value)
        elif key == "min_reserves":
            floor = Decimal(str(value))
            checks.append(lambda record, floor=floor: record.reserves >= floor)
        else:
            raise ConfigError.invalid(f"workflow.named_filters.{name}", key, "unknown filter key")

    return lambda record: all(check(record) for check in checks)


@dataclass(frozen=True)
class SelectionCriterion:
    """
    Which claims a directive targets.

    Attributes:
        kind: age_bucket, queue, coverage or named
        value: Bucket label, queue name, coverage code or filter name
    """
    kind: str
    value: str

    @classmethod
    def age_bucket(cls, bucket: Union[AgeBucket, str]) -> "SelectionCriterion":
        if not isinstance(bucket, AgeBucket):
            bucket = AgeBucket.from_label(bucket)
        return cls(AGE_BUCKET, bucket.value)

    @classmethod
    def queue(cls, name: str) -> "SelectionCriterion":
        return cls(QUEUE, name)

    @classmethod
    def coverage(cls, code: str) -> "SelectionCriterion":
        return cls(COVERAGE, code)

    @classmethod
    def named(cls, name: str) -> "SelectionCriterion":
        return cls(NAMED, name)

    def describe(self) -> str:
        return f"{self.kind}={self.value}"

    def predicate(self, named_filters: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Predicate:
        """
        Resolve the criterion to a predicate.

        Args:
            named_filters: Filters registered in configuration

        Returns:
            Predicate over ClaimRecord

        Raises:
            ConfigError: If the kind or the named filter is unknown
        """
        if self.kind == AGE_BUCKET:
            return build_predicate(self.describe(), {"age_bucket": self.value})
        if self.kind in (QUEUE, COVERAGE):
            return build_predicate(self.describe(), {self.kind: self.value})
        if self.kind == NAMED:
            filters = dict(BUILTIN_FILTERS)
            filters.update(named_filters or {})
            if self.value not in filters:
                raise ConfigError.invalid("workflow.named_filters", self.value, "no such named filter")
            return build_predicate(self.value, filters[self.value])
        raise ConfigError.invalid("selection.kind", self.kind, "unknown selection kind")


def select_records(
    records: Iterable[ClaimRecord],
    criterion: SelectionCriterion,
    named_filters: Optional[Mapping[str, Mapping[str, Any]]] = None
) -> List[ClaimRecord]:
    """
    Records matching a criterion, oldest first, then highest reserves.

    Args:
        records: Candidate claim records
        criterion: Selection criterion
        named_filters: Filters registered in configuration

    Returns:
        Matching records in priority order
    """
    predicate = criterion.predicate(named_filters)
    matched = [record for record in records if predicate(record)]
    matched.sort(key=lambda record: (-record.age_days, -record.reserves))
    logger.debug(f"Criterion {criterion.describe()} matched {len(matched)} records")
    return matched
