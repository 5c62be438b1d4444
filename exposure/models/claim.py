"""Claim record data models."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional


class AgeBucket(Enum):
    """Fixed, ordered claim-age ranges used for aging rollups."""

    UNDER_60 = "Under 60 Days"
    DAYS_61_180 = "61-180 Days"
    DAYS_181_365 = "181-365 Days"
    OVER_365 = "365+ Days"

    @classmethod
    def ordered(cls) -> List["AgeBucket"]:
        """Buckets from youngest to oldest."""
        return [cls.UNDER_60, cls.DAYS_61_180, cls.DAYS_181_365, cls.OVER_365]

    @classmethod
    def from_days(cls, age_days: int) -> "AgeBucket":
        """
        Derive the bucket for a claim age.

        Boundaries: [0, 60) -> Under 60, [60, 180] -> 61-180,
        [181, 365] -> 181-365, [366, inf) -> 365+. Negative ages fall
        into Under 60.

        Args:
            age_days: Claim age in whole days

        Returns:
            Matching AgeBucket
        """
        if age_days < 60:
            return cls.UNDER_60
        if age_days <= 180:
            return cls.DAYS_61_180
        if age_days <= 365:
            return cls.DAYS_181_365
        return cls.OVER_365

    @classmethod
    def from_label(cls, label: str) -> "AgeBucket":
        """Look up a bucket by its display label, case-insensitively."""
        wanted = (label or "").strip().lower()
        for bucket in cls:
            if bucket.value.lower() == wanted:
                return bucket
        raise ValueError(f"Unknown age bucket label: {label!r}")


@dataclass(frozen=True)
class Evaluation:
    """
    Low/high evaluation range for a claim.

    Attributes:
        low: Low end of the evaluation
        high: High end of the evaluation
    """
    low: Decimal
    high: Decimal


@dataclass(frozen=True)
class ClaimRecord:
    """
    One open claim from an inventory export.

    Records are created by the normalizer and never mutated afterwards.

    Attributes:
        claim_id: Claim number
        claimant: Claimant name
        age_days: Open days
        coverage: Coverage code (BI, PD, ...)
        type_group: Exposure type group (LIT, ATR, ...)
        queue: Work queue the claim sits in
        reserves: Open reserve amount
        evaluation: Low/high evaluation, or None when no evaluation is set
        in_litigation: Litigation indicator
        cp1: Policy-limit tender indicator
        severity: Impact severity
        state: Accident location state
        area: Handling area
        loss_description: Short loss description
        total_paid: Amount paid to date
        trigger_flags: Aggravating-factor names that are set on the claim
    """
    claim_id: str
    claimant: str = ""
    age_days: int = 0
    coverage: str = ""
    type_group: str = ""
    queue: str = ""
    reserves: Decimal = Decimal("0")
    evaluation: Optional[Evaluation] = None
    in_litigation: bool = False
    cp1: bool = False
    severity: str = ""
    state: str = ""
    area: str = ""
    loss_description: str = ""
    total_paid: Decimal = Decimal("0")
    trigger_flags: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def age_bucket(self) -> AgeBucket:
        return AgeBucket.from_days(self.age_days)

    @property
    def has_evaluation(self) -> bool:
        return self.evaluation is not None


@dataclass(frozen=True)
class NormalizationWarning:
    """
    A row-level issue found during normalization.

    Attributes:
        row_index: Position of the row in the input sequence
        claim_id: Claim identifier, if the row had one
        field: Field the issue concerns
        code: Machine-readable issue code (e.g. "coerced_to_zero")
        message: Human-readable description
        raw_value: Original cell content
    """
    row_index: int
    claim_id: Optional[str]
    field: str
    code: str
    message: str
    raw_value: Optional[str] = None
