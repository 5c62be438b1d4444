"""Row-store, change-feed and delivery interfaces plus snapshot persistence."""

from .backend import (
    ChangeFeed,
    DeliveryChannel,
    InMemoryTableStore,
    RecordingDeliveryChannel,
    Subscription,
    TableStore,
)
from .snapshot_store import SnapshotStore

__all__ = [
    'ChangeFeed',
    'DeliveryChannel',
    'InMemoryTableStore',
    'RecordingDeliveryChannel',
    'Subscription',
    'TableStore',
    'SnapshotStore',
]
