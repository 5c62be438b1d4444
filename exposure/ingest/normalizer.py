"""
Record normalizer for open inventory exports.

Turns raw tabular rows (mappings of column name to string, number or None)
into immutable ClaimRecord objects, collecting row-level warnings instead of
failing the whole batch.
"""

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..models.claim import ClaimRecord, Evaluation, NormalizationWarning
from ..utils.logging import with_context

logger = logging.getLogger(__name__)


# Export header aliases per record field, first match wins
DEFAULT_COLUMN_MAP: Dict[str, List[str]] = {
    "claim_id": ["Claim#", "Claim Number", "claim_id", "claim_number"],
    "claimant": ["Claimant", "claimant"],
    "age_days": ["Open/Closed Days", "Days Open", "age_days", "days"],
    "coverage": ["Coverage", "coverage"],
    "type_group": ["Type Group", "type_group"],
    "queue": ["Queue", "queue"],
    "reserves": ["Open Reserves", "Reserves", "reserves", "open_reserves"],
    "low_eval": ["Low", "Low Eval", "low_eval"],
    "high_eval": ["High", "High Eval", "high_eval"],
    "cp1": ["Overall CP1 Flag", "CP1 Claim Flag", "cp1"],
    "in_litigation": ["In Litigation Indicator", "in_litigation"],
    "severity": ["Impact Severity", "Injury Severity", "severity"],
    "state": ["Accident Location State", "State", "state"],
    "area": ["Area#", "Area", "area"],
    "loss_description": ["Description of Accident", "Loss Description", "loss_description"],
    "total_paid": ["Total Paid", "total_paid"],
}

# Aggravating-factor columns carried as trigger flags
TRIGGER_COLUMNS = [
    "FATALITY",
    "SURGERY",
    "MEDS VS LIMITS",
    "HOSPITALIZATION",
    "LOSS OF CONSCIOUSNESS",
    "AGGRAVATING FACTORS",
    "OBJECTIVE INJURIES",
    "PEDESTRIAN/MOTORCYCLIST/BICYCLIST/PREGNANCY",
    "LIFE CARE PLANNER",
    "INJECTIONS",
    "EMS + HEAVY IMPACT",
]

# Work queue implied by the exposure type group when no queue column is present
QUEUE_BY_TYPE_GROUP = {
    "LIT": "Litigation",
    "LITIGATION": "Litigation",
    "ATR": "ATR",
    "BI3": "BI3",
    "EARLY BI": "Early BI",
    "EARLY": "Early BI",
}

BLANK_MARKERS = {"", "(blank)", "blank"}
YES_VALUES = {"yes", "y", "true", "1"}

ColumnMap = Mapping[str, Union[str, Sequence[str]]]


@dataclass(frozen=True)
class RejectedRow:
    """
    A row that could not become a ClaimRecord.

    Attributes:
        row_index: Position of the row in the input sequence
        reason: Why the row was rejected
        row: The raw row as received
    """
    row_index: int
    reason: str
    row: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizationResult:
    """
    Output of a normalization run.

    Attributes:
        records: Normalized claim records, in input order
        warnings: Row-level warnings for coerced or suspicious values
        rejected: Rows rejected for a missing identifier
    """
    records: List[ClaimRecord] = field(default_factory=list)
    warnings: List[NormalizationWarning] = field(default_factory=list)
    rejected: List[RejectedRow] = field(default_factory=list)


def is_blank(value: Any) -> bool:
    """True for None, NaN, empty strings and the export's "(blank)" marker."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, Decimal) and value.is_nan():
        return True
    return str(value).strip().lower() in BLANK_MARKERS


def yesish(value: Any) -> bool:
    """Parse yes/y/true/1 (case-insensitive) as True, anything else as False."""
    if value is None:
        return False
    return str(value).strip().lower() in YES_VALUES


def parse_currency(value: Any) -> Optional[Decimal]:
    """
    Parse a currency-like cell into a Decimal.

    Strips "$", thousands separators and whitespace; accounting
    parentheses mark a negative amount.

    Args:
        value: Raw cell content

    Returns:
        Parsed amount, Decimal 0 for blank cells, or None if unparsable
        or not finite (including NaN from numeric tables)
    """
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Decimal) and not value.is_finite():
        return None
    if is_blank(value):
        return Decimal("0")
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    cleaned = "".join(ch for ch in str(value) if ch not in "$," and not ch.isspace())
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    if not cleaned:
        return Decimal("0")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return -amount if negative else amount


def parse_litigation(value: Any) -> bool:
    """Litigation is set when the cell mentions litigation or is yes-ish."""
    if value is None:
        return False
    return "litigation" in str(value).lower() or yesish(value)


def queue_for_type_group(type_group: str) -> str:
    """Work queue implied by a type group; unknown groups map to themselves."""
    return QUEUE_BY_TYPE_GROUP.get(type_group.strip().upper(), type_group)


def _resolve_column_map(column_map: Optional[ColumnMap]) -> Dict[str, List[str]]:
    resolved = {name: list(aliases) for name, aliases in DEFAULT_COLUMN_MAP.items()}
    for name, columns in (column_map or {}).items():
        if isinstance(columns, str):
            columns = [columns]
        # Caller-supplied columns take precedence over the default aliases
        resolved[name] = list(columns) + resolved.get(name, [])
    return resolved


def _lookup(row: Mapping[str, Any], aliases: Sequence[str]) -> Tuple[Optional[str], Any]:
    for alias in aliases:
        if alias in row:
            return alias, row[alias]
    return None, None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class _RowNormalizer:
    """Normalizes one row, appending warnings to a shared list."""

    def __init__(self, row_index: int, row: Mapping[str, Any], columns: Dict[str, List[str]],
                 warnings: List[NormalizationWarning]):
        self.row_index = row_index
        self.row = row
        self.columns = columns
        self.warnings = warnings
        self.claim_id: Optional[str] = None

    def raw(self, name: str) -> Any:
        return _lookup(self.row, self.columns.get(name, []))[1]

    def text(self, name: str) -> str:
        value = self.raw(name)
        return "" if is_blank(value) else _text(value)

    def warn(self, field_name: str, code: str, message: str, raw_value: Any = None):
        warning = NormalizationWarning(
            row_index=self.row_index,
            claim_id=self.claim_id,
            field=field_name,
            code=code,
            message=message,
            raw_value=None if raw_value is None else str(raw_value),
        )
        self.warnings.append(warning)
        logger.warning(f"Row {self.row_index} ({self.claim_id}): {message}")

    def amount(self, name: str) -> Decimal:
        value = self.raw(name)
        parsed = parse_currency(value)
        if parsed is None:
            self.warn(name, "coerced_to_zero", f"Unparsable amount in '{name}', using 0", value)
            return Decimal("0")
        return parsed

    def age_days(self) -> int:
        value = self.raw("age_days")
        if is_blank(value):
            return 0
        parsed = parse_currency(value)
        if parsed is None:
            self.warn("age_days", "coerced_to_zero", "Unparsable age in days, using 0", value)
            return 0
        days = int(parsed)
        if days < 0:
            self.warn("age_days", "negative_age", f"Negative age {days} clamped to 0", value)
            return 0
        return days

    def evaluation(self) -> Optional[Evaluation]:
        low_raw = self.raw("low_eval")
        high_raw = self.raw("high_eval")
        low = None if is_blank(low_raw) else self.amount("low_eval")
        high = None if is_blank(high_raw) else self.amount("high_eval")

        if low is None and high is None:
            return None
        if low is None:
            low = high
        if high is None:
            high = low
        if low > high:
            self.warn("evaluation", "inverted_range", f"Low evaluation {low} exceeds high {high}")
        return Evaluation(low=low, high=high)

    def trigger_flags(self) -> frozenset:
        return frozenset(column for column in TRIGGER_COLUMNS if yesish(self.row.get(column)))

    def build(self) -> ClaimRecord:
        type_group = self.text("type_group")
        queue = self.text("queue") or queue_for_type_group(type_group)
        return ClaimRecord(
            claim_id=self.claim_id,
            claimant=self.text("claimant"),
            age_days=self.age_days(),
            coverage=self.text("coverage"),
            type_group=type_group,
            queue=queue,
            reserves=self.amount("reserves"),
            evaluation=self.evaluation(),
            in_litigation=parse_litigation(self.raw("in_litigation")),
            cp1=yesish(self.raw("cp1")),
            severity=self.text("severity"),
            state=self.text("state").upper(),
            area=self.text("area"),
            loss_description=self.text("loss_description"),
            total_paid=self.amount("total_paid"),
            trigger_flags=self.trigger_flags(),
        )


@with_context(component="normalizer")
def normalize_rows(
    rows: Iterable[Mapping[str, Any]],
    column_map: Optional[ColumnMap] = None
) -> NormalizationResult:
    """
    Normalize raw export rows into claim records.

    Rows without a claim identifier are rejected and reported with their
    index. Unparsable numbers become zero with a "coerced_to_zero" warning.
    Blank evaluation cells mean "no evaluation", never zero.

    Args:
        rows: Raw rows in input order
        column_map: Optional overrides of field -> column name(s)

    Returns:
        NormalizationResult with records, warnings and rejected rows
    """
    columns = _resolve_column_map(column_map)
    result = NormalizationResult()

    for index, row in enumerate(rows):
        normalizer = _RowNormalizer(index, row, columns, result.warnings)
        claim_value = normalizer.raw("claim_id")
        if is_blank(claim_value):
            logger.warning(f"Row {index} rejected: missing claim identifier")
            result.rejected.append(
                RejectedRow(row_index=index, reason="missing claim identifier", row=dict(row))
            )
            continue

        normalizer.claim_id = _text(claim_value)
        result.records.append(normalizer.build())

    logger.info(
        f"Normalized {len(result.records)} records "
        f"({len(result.rejected)} rejected, {len(result.warnings)} warnings)"
    )
    return result
