"""
Pure reducer for the review view.

The change feed may deliver events out of order or more than once. Each
row carries a server-assigned revision; the view keeps the highest
revision seen per id, and deletes leave a tombstone so a late update
cannot bring a deleted row back.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..models.review import EventType, ReviewEvent, ReviewItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewView:
    """
    Immutable snapshot of known review items.

    Attributes:
        items: Live items by id
        tombstones: Revision at which each deleted id was removed
    """
    items: Dict[str, ReviewItem] = field(default_factory=dict)
    tombstones: Dict[str, int] = field(default_factory=dict)

    def known_revision(self, row_id: str) -> Optional[int]:
        """Highest revision seen for an id, live or deleted."""
        revisions = []
        if row_id in self.items:
            revisions.append(self.items[row_id].revision)
        if row_id in self.tombstones:
            revisions.append(self.tombstones[row_id])
        return max(revisions) if revisions else None

    @property
    def max_revision(self) -> int:
        revisions = [item.revision for item in self.items.values()] + list(self.tombstones.values())
        return max(revisions, default=0)

    def ordered(self) -> List[ReviewItem]:
        """Items, most recently assigned first."""
        return sorted(
            self.items.values(),
            key=lambda item: (item.assigned_at is not None, item.assigned_at, item.revision),
            reverse=True,
        )


def apply_event(view: ReviewView, event: ReviewEvent) -> ReviewView:
    """
    Apply one change-feed event, last-write-wins by (id, revision).

    Args:
        view: Current view (not modified)
        event: Change to apply

    Returns:
        The new view; the same object when the event is stale
    """
    known = view.known_revision(event.row_id)
    if known is not None and event.revision <= known:
        logger.debug(
            f"Ignoring stale {event.event_type.value} for {event.row_id} "
            f"(revision {event.revision} <= {known})"
        )
        return view

    items = dict(view.items)
    tombstones = dict(view.tombstones)

    if event.event_type == EventType.DELETE:
        items.pop(event.row_id, None)
        tombstones[event.row_id] = event.revision
    else:
        if event.row is None:
            logger.warning(f"{event.event_type.value} event for {event.row_id} carried no row")
            return view
        row = dict(event.row)
        row.setdefault("id", event.row_id)
        row["revision"] = event.revision
        items[event.row_id] = ReviewItem.from_row(row)
        tombstones.pop(event.row_id, None)

    return ReviewView(items=items, tombstones=tombstones)


def rebuild(view: ReviewView, rows: Iterable[Dict]) -> ReviewView:
    """
    Merge a full re-fetch into the view.

    The fetch decides which ids exist: an item absent from it was deleted
    while no events arrived, and is dropped with a tombstone at its last
    known revision. For fetched ids, the view keeps its own copy only when
    that copy is newer. Events that arrive during the fetch are replayed
    by the caller afterwards with :func:`apply_event`.

    Args:
        view: Current view
        rows: Every row returned by the re-fetch

    Returns:
        The merged view
    """
    fetched = {str(row["id"]): ReviewItem.from_row(row) for row in rows}
    tombstones = dict(view.tombstones)

    items: Dict[str, ReviewItem] = {}
    for row_id, item in fetched.items():
        tombstone = tombstones.get(row_id)
        if tombstone is not None and tombstone >= item.revision:
            continue
        current = view.items.get(row_id)
        items[row_id] = current if current is not None and current.revision > item.revision else item
        tombstones.pop(row_id, None)

    dropped = [row_id for row_id in view.items if row_id not in fetched]
    for row_id in dropped:
        tombstones[row_id] = view.items[row_id].revision
    if dropped:
        logger.info(f"Re-fetch dropped {len(dropped)} review items no longer present")
    return ReviewView(items=items, tombstones=tombstones)
