"""Persistence of historical snapshots used for delta computation."""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from ..models.snapshot import Snapshot
from ..utils.retry import RetryPolicy, call_store
from .backend import TableStore

logger = logging.getLogger(__name__)


def _stamp(moment: datetime) -> str:
    # Stored as UTC ISO-8601 text so string order is chronological order
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


class SnapshotStore:
    """
    Stores one row per snapshot (timestamp + serialized aggregate set).

    Attributes:
        store: Row store
        table: Snapshot table name
        policy: Timeout/retry policy for row-store calls
    """

    def __init__(self, store: TableStore, table: str = "inventory_snapshots",
                 policy: Optional[RetryPolicy] = None):
        self.store = store
        self.table = table
        self.policy = policy or RetryPolicy()

    async def save(self, snapshot: Snapshot) -> None:
        """Persist a snapshot."""
        row = {
            "snapshot_id": snapshot.snapshot_id,
            "created_at": _stamp(snapshot.created_at),
            "record_count": snapshot.record_count,
            "payload": snapshot.to_dict(),
        }
        await call_store(
            self.table,
            "insert",
            lambda: self.store.insert(self.table, [row]),
            self.policy,
        )
        logger.info(f"Saved snapshot {snapshot.snapshot_id} ({snapshot.record_count} records)")

    async def recent(self, limit: int = 2) -> List[Snapshot]:
        """Most recent snapshots, newest first."""
        rows = await call_store(
            self.table,
            "select",
            lambda: self.store.select(self.table, order_by="-created_at", limit=limit),
            self.policy,
        )
        return [Snapshot.from_dict(row["payload"]) for row in rows]

    async def latest(self) -> Optional[Snapshot]:
        snapshots = await self.recent(limit=1)
        return snapshots[0] if snapshots else None

    async def previous_to(self, snapshot: Snapshot) -> Optional[Snapshot]:
        """
        Newest stored snapshot taken before the given one.

        The row store filters on ``created_at``, so a backfilled snapshot
        finds its predecessor however many newer snapshots exist.

        Args:
            snapshot: Reference snapshot

        Returns:
            The preceding snapshot, or None if there is no history
        """
        rows = await call_store(
            self.table,
            "select",
            lambda: self.store.select(
                self.table,
                filters={"created_at__lt": _stamp(snapshot.created_at)},
                order_by="-created_at",
                limit=2,
            ),
            self.policy,
        )
        for row in rows:
            if row.get("snapshot_id") != snapshot.snapshot_id:
                return Snapshot.from_dict(row["payload"])
        return None
