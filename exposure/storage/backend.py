"""
Backend interfaces for the row store, change feed and delivery channel,
plus an in-memory row store used for local runs and tests.
"""

import copy
import itertools
import logging
import operator
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..models.report import DeliveryResult

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
EventHandler = Callable[[Dict[str, Any]], None]


class Subscription(ABC):
    """Handle for an active change-feed subscription."""

    @property
    def active(self) -> bool:
        """False once the feed has dropped or released this subscription."""
        return True

    @abstractmethod
    async def unsubscribe(self) -> None:
        pass


class TableStore(ABC):
    """Row store with query, insert and update primitives."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Row]:
        """
        Query rows.

        Args:
            table: Table name
            filters: Column -> value; a list or tuple value matches any member.
                A "__lt", "__lte", "__gt" or "__gte" suffix on the column
                compares instead of matching
            order_by: Column to sort by, prefixed with "-" for descending
            limit: Maximum rows returned

        Returns:
            Matching rows
        """
        pass

    @abstractmethod
    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        """Insert rows; returns them as stored (with id and revision)."""
        pass

    @abstractmethod
    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> List[Row]:
        """Apply a patch to matching rows; returns the updated rows."""
        pass


class ChangeFeed(ABC):
    """Push feed of row changes."""

    @abstractmethod
    async def subscribe(self, table: str, on_event: EventHandler) -> Subscription:
        """
        Subscribe to changes on a table.

        Events are dicts with "type" (insert/update/delete), "id",
        "revision" and "row". Delivery order is not guaranteed.
        """
        pass


class DeliveryChannel(ABC):
    """Sends rendered documents to a destination (email, notification, ...)."""

    @abstractmethod
    async def send(self, destination: str, document: bytes, metadata: Dict[str, Any]) -> DeliveryResult:
        pass


COMPARISONS: Dict[str, Callable[[Any, Any], bool]] = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}


def _matches(row: Row, filters: Optional[Dict[str, Any]]) -> bool:
    for key, wanted in (filters or {}).items():
        column, _, suffix = key.partition("__")
        value = row.get(column)
        if suffix:
            if suffix not in COMPARISONS:
                raise ValueError(f"Unsupported filter operator '{suffix}' in '{key}'")
            if value is None or not COMPARISONS[suffix](value, wanted):
                return False
        elif isinstance(wanted, (list, tuple, set, frozenset)):
            if value not in wanted:
                return False
        elif value != wanted:
            return False
    return True


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class _InMemorySubscription(Subscription):

    def __init__(self, store: "InMemoryTableStore", table: str, handler: EventHandler):
        self.store = store
        self.table = table
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        self._active = False

    async def unsubscribe(self) -> None:
        self.close()
        self.store._remove_subscription(self)


class InMemoryTableStore(TableStore, ChangeFeed):
    """
    Dictionary-backed row store and change feed.

    Assigns ids and per-row revisions and fans out change events to
    subscribers synchronously after each write.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Row]] = {}
        self._subscriptions: List[_InMemorySubscription] = []
        self._revisions = itertools.count(1)
        logger.info("Initialized InMemoryTableStore")

    def _table(self, table: str) -> Dict[str, Row]:
        return self._tables.setdefault(table, {})

    def _remove_subscription(self, subscription: _InMemorySubscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _publish(self, table: str, event_type: str, row_id: str, revision: int, row: Optional[Row]):
        payload = {
            "type": event_type,
            "id": row_id,
            "revision": revision,
            "row": copy.deepcopy(row) if row is not None else None,
        }
        for subscription in list(self._subscriptions):
            if subscription.active and subscription.table == table:
                subscription.handler(copy.deepcopy(payload))

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Row]:
        rows = [copy.deepcopy(row) for row in self._table(table).values() if _matches(row, filters)]
        if order_by:
            descending = order_by.startswith("-")
            column = order_by.lstrip("-")
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: row[column], reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, rows: List[Row]) -> List[Row]:
        stored = []
        for row in rows:
            record = dict(row)
            record.setdefault("id", str(uuid.uuid4()))
            record["revision"] = next(self._revisions)
            record.setdefault("created_at", _now())
            record["updated_at"] = record["created_at"]
            self._table(table)[record["id"]] = record
            stored.append(copy.deepcopy(record))
        for record in stored:
            self._publish(table, "insert", record["id"], record["revision"], record)
        logger.debug(f"Inserted {len(stored)} rows into {table}")
        return stored

    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> List[Row]:
        updated = []
        for row in self._table(table).values():
            if _matches(row, filters):
                row.update(patch)
                row["revision"] = next(self._revisions)
                row["updated_at"] = _now()
                updated.append(copy.deepcopy(row))
        for record in updated:
            self._publish(table, "update", record["id"], record["revision"], record)
        logger.debug(f"Updated {len(updated)} rows in {table}")
        return updated

    async def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Administrative delete; emits delete events."""
        rows = self._table(table)
        doomed = [row_id for row_id, row in rows.items() if _matches(row, filters)]
        for row_id in doomed:
            del rows[row_id]
            self._publish(table, "delete", row_id, next(self._revisions), None)
        return len(doomed)

    async def subscribe(self, table: str, on_event: EventHandler) -> Subscription:
        subscription = _InMemorySubscription(self, table, on_event)
        self._subscriptions.append(subscription)
        logger.info(f"Subscribed to changes on {table}")
        return subscription

    def drop_connections(self) -> None:
        """Silently end every subscription, as a dropped socket would."""
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        logger.warning("All change-feed subscriptions dropped")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


class RecordingDeliveryChannel(DeliveryChannel):
    """Delivery channel that keeps sent documents in memory."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, destination: str, document: bytes, metadata: Dict[str, Any]) -> DeliveryResult:
        message_id = str(uuid.uuid4())
        self.sent.append({
            "destination": destination,
            "document": document,
            "metadata": dict(metadata),
            "message_id": message_id,
        })
        logger.info(f"Delivered {len(document)} bytes to {destination}")
        return DeliveryResult(success=True, destination=destination, message_id=message_id)
