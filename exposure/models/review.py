"""Review workflow data models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ReviewStatus(str, Enum):
    """Lifecycle status of a review item."""

    ASSIGNED = "assigned"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    FLAGGED = "flagged"

    @property
    def is_terminal(self) -> bool:
        return self in (ReviewStatus.COMPLETED, ReviewStatus.FLAGGED)


class EventType(str, Enum):
    """Kind of change delivered by the change feed."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ReviewItem:
    """
    A claim assigned for review.

    Items are immutable; transitions produce a new item via the row store.

    Attributes:
        id: Row identifier assigned by the backend
        claim_id: Claim under review
        area: Handling area
        loss_description: Short loss description
        age_bucket: Age bucket label at assignment time
        reserves: Open reserves at assignment time
        low_eval: Low evaluation (None when the claim had none)
        high_eval: High evaluation (None when the claim had none)
        assigned_to: Reviewer
        status: Current ReviewStatus
        assigned_at: Assignment timestamp
        completed_at: Set when the review completes
        notes: Free-text notes
        revision: Server-assigned revision, increasing per row
    """
    id: str
    claim_id: str
    area: str = ""
    loss_description: str = ""
    age_bucket: str = ""
    reserves: Decimal = Decimal("0")
    low_eval: Optional[Decimal] = None
    high_eval: Optional[Decimal] = None
    assigned_to: str = ""
    status: ReviewStatus = ReviewStatus.ASSIGNED
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    revision: int = 0

    def to_row(self) -> Dict[str, Any]:
        """Persisted row layout of the claim_reviews table."""
        return {
            "id": self.id,
            "claim_id": self.claim_id,
            "area": self.area,
            "loss_description": self.loss_description,
            "age_bucket": self.age_bucket,
            "reserves": str(self.reserves),
            "low_eval": str(self.low_eval) if self.low_eval is not None else None,
            "high_eval": str(self.high_eval) if self.high_eval is not None else None,
            "assigned_to": self.assigned_to,
            "status": self.status.value,
            "assigned_at": _format_time(self.assigned_at),
            "completed_at": _format_time(self.completed_at),
            "notes": self.notes,
            "revision": self.revision,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ReviewItem":
        low = row.get("low_eval")
        high = row.get("high_eval")
        return cls(
            id=str(row["id"]),
            claim_id=str(row["claim_id"]),
            area=row.get("area") or "",
            loss_description=row.get("loss_description") or "",
            age_bucket=row.get("age_bucket") or "",
            reserves=Decimal(str(row.get("reserves") or "0")),
            low_eval=Decimal(str(low)) if low is not None else None,
            high_eval=Decimal(str(high)) if high is not None else None,
            assigned_to=row.get("assigned_to") or "",
            status=ReviewStatus(row.get("status", ReviewStatus.ASSIGNED.value)),
            assigned_at=_parse_time(row.get("assigned_at")),
            completed_at=_parse_time(row.get("completed_at")),
            notes=row.get("notes"),
            revision=int(row.get("revision") or 0),
        )


@dataclass(frozen=True)
class ReviewEvent:
    """
    A row change pushed by the change feed.

    Events may arrive out of order or be duplicated; ``revision`` orders them.

    Attributes:
        event_type: insert, update or delete
        row_id: Identifier of the affected row
        revision: Revision of the row after the change
        row: Full row after the change (None for deletes)
    """
    event_type: EventType
    row_id: str
    revision: int
    row: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ReviewEvent":
        """Build an event from a raw feed payload."""
        row = payload.get("row")
        row_id = payload.get("id") or (row or {}).get("id")
        revision = payload.get("revision")
        if revision is None:
            revision = (row or {}).get("revision", 0)
        return cls(
            event_type=EventType(payload["type"]),
            row_id=str(row_id),
            revision=int(revision),
            row=dict(row) if row is not None else None,
        )


@dataclass(frozen=True)
class ReviewSummary:
    """
    Counts by status plus summed reserves, derived from the current view.

    Attributes:
        total: Number of live review items
        by_status: Count per status value (all statuses present)
        reserves: Summed reserves across live items
    """
    total: int
    by_status: Dict[str, int] = field(default_factory=dict)
    reserves: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "by_status": dict(self.by_status),
            "reserves": str(self.reserves),
        }
