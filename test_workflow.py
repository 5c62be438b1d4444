"""Tests for the review workflow manager, reducer and selection."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from conftest import make_record
from exposure.models import AgeBucket, DeliveryResult, ReviewEvent, ReviewStatus
from exposure.storage import DeliveryChannel, InMemoryTableStore, RecordingDeliveryChannel
from exposure.utils.config import Config
from exposure.utils.errors import (
    ConfigError,
    DependencyError,
    ErrorType,
    InvalidTransitionError,
    ReviewNotFoundError,
)
from exposure.workflow import ReviewView, ReviewWorkflowManager, SelectionCriterion, apply_event, select_records

FIXED_NOW = datetime(2026, 1, 8, 9, 30, tzinfo=timezone.utc)


def _config(**workflow):
    return Config.from_dict({
        "workflow": workflow,
        "backend": {"timeout": 5, "max_retries": 3, "backoff_base": 0},
    })


def _aged_records(count, start=0):
    return [make_record(f"C-{start + i:03d}", age_days=400 + i) for i in range(count)]


async def _started_manager(store, channel=None, **workflow):
    manager = ReviewWorkflowManager(
        store, config=_config(**workflow), clock=lambda: FIXED_NOW, channel=channel
    )
    await manager.start()
    return manager


def _row(row_id, status, revision, claim_id="C-1"):
    return {"id": row_id, "claim_id": claim_id, "status": status, "reserves": "100", "revision": revision}


class FlakyStore(InMemoryTableStore):
    """Row store whose first inserts fail with a connection error."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.insert_calls = 0

    async def insert(self, table, rows):
        self.insert_calls += 1
        if self.failures:
            self.failures -= 1
            raise ConnectionError("connection reset by peer")
        return await super().insert(table, rows)



class StallingStore(InMemoryTableStore):
    """Applies an update, then answers only after the caller has timed out."""

    def __init__(self):
        super().__init__()
        self.stall_next_update = False
        self.update_calls = 0

    async def update(self, table, filters, patch):
        self.update_calls += 1
        rows = await super().update(table, filters, patch)
        if self.stall_next_update:
            self.stall_next_update = False
            await asyncio.sleep(1)
        return rows


class ConcurrentWriterStore(InMemoryTableStore):
    """Runs another writer's change after a select has read its rows."""

    def __init__(self):
        super().__init__()
        self.after_select = None

    async def select(self, table, filters=None, order_by=None, limit=None):
        rows = await super().select(table, filters, order_by, limit)
        if self.after_select is not None:
            writer, self.after_select = self.after_select, None
            await writer()
        return rows


class BusyChannel(DeliveryChannel):
    """Rejects the first send, then records."""

    def __init__(self):
        self.attempts = 0
        self.delivered = []

    async def send(self, destination, document, metadata):
        self.attempts += 1
        if self.attempts == 1:
            return DeliveryResult(success=False, destination=destination, error="gateway busy")
        self.delivered.append(destination)
        return DeliveryResult(success=True, destination=destination, message_id=f"m-{self.attempts}")


# Deploy

@pytest.mark.asyncio
async def test_deploy_fifteen_with_cap_fifteen():
    store = InMemoryTableStore()
    manager = await _started_manager(store, batch_cap=15)

    created = await manager.deploy_directive(_aged_records(15), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    assert len(created) == 15
    assert all(item.status == ReviewStatus.ASSIGNED for item in created)
    assert all(item.assigned_to == "Claims Review Desk" for item in created)
    assert len(manager.items()) == 15
    assert manager.summary().by_status["assigned"] == 15
    assert len(await store.select("claim_reviews")) == 15


@pytest.mark.asyncio
async def test_deploy_caps_batch_and_skips_claims_under_review():
    store = InMemoryTableStore()
    manager = await _started_manager(store, batch_cap=15)
    records = _aged_records(20)
    criterion = SelectionCriterion.age_bucket("365+ Days")

    first = await manager.deploy_directive(records, criterion)
    second = await manager.deploy_directive(records, criterion)
    third = await manager.deploy_directive(records, criterion)

    assert len(first) == 15
    assert len(second) == 5
    assert third == []
    assert {item.claim_id for item in first}.isdisjoint({item.claim_id for item in second})
    # Oldest claims are selected first
    assert first[0].claim_id == "C-019"


@pytest.mark.asyncio
async def test_deploy_copies_claim_fields_and_deadline():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    record = make_record(
        "C-777", age_days=90, reserves="12500", evaluation=("8000", "15000"),
        area="A07", loss_description="Intersection collision",
    )

    created = await manager.deploy_directive(
        [record],
        SelectionCriterion.coverage("BI"),
        assignee="R. Okafor",
        notes="Confirm reserve adequacy",
        deadline=date(2026, 1, 15),
    )

    item = created[0]
    assert item.assigned_to == "R. Okafor"
    assert item.age_bucket == AgeBucket.DAYS_61_180.value
    assert item.area == "A07"
    assert str(item.low_eval) == "8000"
    assert str(item.high_eval) == "15000"
    assert item.assigned_at == FIXED_NOW
    assert item.notes == "Confirm reserve adequacy\n\nDeadline: January 15, 2026"


@pytest.mark.asyncio
async def test_deploy_with_named_filter():
    store = InMemoryTableStore()
    manager = await _started_manager(
        store, named_filters={"tx-litigated": {"state": "TEXAS", "in_litigation": True}}
    )
    records = [
        make_record("C-1", state="TEXAS", in_litigation=True),
        make_record("C-2", state="TEXAS"),
        make_record("C-3", state="NEVADA", in_litigation=True),
    ]

    created = await manager.deploy_directive(records, SelectionCriterion.named("tx-litigated"))

    assert [item.claim_id for item in created] == ["C-1"]
    with pytest.raises(ConfigError):
        await manager.deploy_directive(records, SelectionCriterion.named("no-such-filter"))


@pytest.mark.asyncio
async def test_deploy_retries_failed_insert():
    store = FlakyStore(failures=1)
    manager = await _started_manager(store, batch_cap=5)

    created = await manager.deploy_directive(_aged_records(3), SelectionCriterion.named("aged-365"))

    assert len(created) == 3
    assert store.insert_calls == 2
    assert len(await store.select("claim_reviews")) == 3


@pytest.mark.asyncio
async def test_insert_failures_are_reported_as_query_failures():
    store = FlakyStore(failures=5)
    manager = await _started_manager(store, batch_cap=5)

    with pytest.raises(DependencyError) as exc_info:
        await manager.deploy_directive(_aged_records(2), SelectionCriterion.named("aged-365"))

    assert exc_info.value.context.error_type == ErrorType.BACKEND_RETRIES_EXHAUSTED
    cause = exc_info.value.context.original_exception
    assert cause.context.error_type == ErrorType.BACKEND_QUERY_FAILED
    assert cause.context.details == {"table": "claim_reviews", "operation": "insert"}
    assert isinstance(cause.context.original_exception, ConnectionError)
    assert store.insert_calls == 3


@pytest.mark.asyncio
async def test_deploy_notifies_destinations():
    channel = RecordingDeliveryChannel()
    manager = await _started_manager(InMemoryTableStore(), channel=channel)

    created = await manager.deploy_directive(
        _aged_records(3),
        SelectionCriterion.age_bucket(AgeBucket.OVER_365),
        assignee="R. Okafor",
        notes="Confirm reserve adequacy",
        deadline=date(2026, 1, 15),
        notify=["r.okafor@example.com", "+15555550100"],
    )

    assert [sent["destination"] for sent in channel.sent] == ["r.okafor@example.com", "+15555550100"]
    metadata = channel.sent[0]["metadata"]
    assert metadata["kind"] == "review_directive"
    assert metadata["count"] == 3
    assert metadata["assigned_to"] == "R. Okafor"
    assert metadata["deadline"] == "2026-01-15"
    body = channel.sent[0]["document"].decode("utf-8")
    assert "3 claims have been assigned for review (age_bucket=365+ Days)." in body
    assert "Deadline: January 15, 2026" in body
    assert "Confirm reserve adequacy" in body
    assert all(item.claim_id in body for item in created)
    assert "$1,000.00" in body


@pytest.mark.asyncio
async def test_deploy_notifies_configured_destinations_with_retry():
    channel = BusyChannel()
    manager = await _started_manager(InMemoryTableStore(), channel=channel, notify=["claims-desk@example.com"])

    created = await manager.deploy_directive(_aged_records(1), SelectionCriterion.named("aged-365"))

    assert len(created) == 1
    assert channel.attempts == 2
    assert channel.delivered == ["claims-desk@example.com"]


@pytest.mark.asyncio
async def test_deploy_without_matches_sends_nothing():
    channel = RecordingDeliveryChannel()
    manager = await _started_manager(InMemoryTableStore(), channel=channel)

    created = await manager.deploy_directive(
        _aged_records(2), SelectionCriterion.named("under-60"), notify=["claims-desk@example.com"]
    )

    assert created == []
    assert channel.sent == []


@pytest.mark.asyncio
async def test_notify_without_channel_assigns_nothing():
    store = InMemoryTableStore()
    manager = await _started_manager(store)

    with pytest.raises(ConfigError):
        await manager.deploy_directive(
            _aged_records(2), SelectionCriterion.named("aged-365"), notify=["claims-desk@example.com"]
        )

    assert await store.select("claim_reviews") == []


# Transitions

@pytest.mark.asyncio
async def test_legal_transitions():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    first, second = await manager.deploy_directive(_aged_records(2), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    started = await manager.start_review(first.id)
    assert started.status == ReviewStatus.IN_REVIEW
    completed = await manager.complete(first.id, notes="Reserves adequate")
    assert completed.status == ReviewStatus.COMPLETED
    assert completed.completed_at == FIXED_NOW
    assert completed.notes == "Reserves adequate"

    await manager.start_review(second.id)
    flagged = await manager.flag(second.id)
    assert flagged.status == ReviewStatus.FLAGGED
    assert flagged.completed_at is None

    summary = manager.summary()
    assert summary.by_status == {"assigned": 0, "in_review": 0, "completed": 1, "flagged": 1}


@pytest.mark.asyncio
@pytest.mark.parametrize("setup,action", [
    ([], "complete"),
    ([], "flag"),
    (["start_review"], "start_review"),
    (["start_review", "complete"], "flag"),
    (["start_review", "complete"], "start_review"),
    (["start_review", "flag"], "complete"),
])
async def test_illegal_transitions(setup, action):
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    (item,) = await manager.deploy_directive(_aged_records(1), SelectionCriterion.age_bucket(AgeBucket.OVER_365))
    for step in setup:
        await manager.apply_action(item.id, step)
    before = manager.get(item.id)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await manager.apply_action(item.id, action)

    details = exc_info.value.context.details
    assert details["review_id"] == item.id
    assert details["current_status"] == before.status.value
    assert details["action"] == action
    assert manager.get(item.id).status == before.status


@pytest.mark.asyncio
async def test_unknown_action_and_unknown_item():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    (item,) = await manager.deploy_directive(_aged_records(1), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    with pytest.raises(InvalidTransitionError):
        await manager.apply_action(item.id, "reopen")
    with pytest.raises(ReviewNotFoundError):
        await manager.start_review("does-not-exist")


@pytest.mark.asyncio
async def test_concurrent_transition_is_rejected():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    (item,) = await manager.deploy_directive(_aged_records(1), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    # A second, unsubscribed manager holds a stale view of the same row
    other = ReviewWorkflowManager(store, config=_config())
    await other.refresh()
    await manager.start_review(item.id)

    with pytest.raises(InvalidTransitionError):
        await other.start_review(item.id)
    assert other.get(item.id).status == ReviewStatus.IN_REVIEW


@pytest.mark.asyncio
async def test_transition_applied_before_its_timeout_succeeds():
    store = StallingStore()
    config = Config.from_dict({"backend": {"timeout": 0.2, "max_retries": 3, "backoff_base": 0}})
    manager = ReviewWorkflowManager(store, config=config, clock=lambda: FIXED_NOW)
    await manager.start()
    (item,) = await manager.deploy_directive(_aged_records(1), SelectionCriterion.age_bucket(AgeBucket.OVER_365))
    await manager.start_review(item.id)

    store.stall_next_update = True
    completed = await manager.complete(item.id, notes="Reserves adequate")

    assert completed.status == ReviewStatus.COMPLETED
    assert manager.get(item.id).status == ReviewStatus.COMPLETED
    assert store.update_calls == 3
    (row,) = await store.select("claim_reviews")
    assert row["notes"] == "Reserves adequate"


# Live view

@pytest.mark.asyncio
async def test_feed_updates_view_from_other_writers():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    (item,) = await manager.deploy_directive(_aged_records(1), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    await store.update("claim_reviews", {"id": item.id}, {"status": "in_review"})

    assert manager.get(item.id).status == ReviewStatus.IN_REVIEW


@pytest.mark.asyncio
async def test_resubscribe_refetches_missed_changes():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    (item,) = await manager.deploy_directive(_aged_records(1), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    store.drop_connections()
    await store.update("claim_reviews", {"id": item.id}, {"status": "in_review"})
    assert manager.get(item.id).status == ReviewStatus.ASSIGNED

    await manager.resubscribe()

    assert manager.get(item.id).status == ReviewStatus.IN_REVIEW
    assert store.subscriber_count == 1
    assert manager.running


@pytest.mark.asyncio
async def test_stop_releases_subscription():
    store = InMemoryTableStore()
    manager = await _started_manager(store)

    await manager.stop()

    assert store.subscriber_count == 0
    assert not manager.running


@pytest.mark.asyncio
async def test_dropped_feed_is_not_running():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    assert manager.running

    store.drop_connections()
    assert not manager.running

    await manager.start()
    assert manager.running
    assert store.subscriber_count == 1


@pytest.mark.asyncio
async def test_resubscribe_drops_rows_deleted_while_disconnected():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    created = await manager.deploy_directive(_aged_records(2), SelectionCriterion.age_bucket(AgeBucket.OVER_365))
    newest = max(created, key=lambda item: item.revision)

    store.drop_connections()
    await store.delete("claim_reviews", {"id": newest.id})
    await manager.resubscribe()

    backend_ids = {row["id"] for row in await store.select("claim_reviews")}
    assert {item.id for item in manager.items()} == backend_ids
    assert manager.summary().total == 1
    with pytest.raises(ReviewNotFoundError):
        await manager.start_review(newest.id)

    # A late copy of the deleted row's last change does not bring it back
    manager.handle_event({"type": "update", "id": newest.id, "revision": newest.revision, "row": newest.to_row()})
    assert newest.id not in {item.id for item in manager.items()}


@pytest.mark.asyncio
async def test_resubscribe_to_an_emptied_table():
    store = InMemoryTableStore()
    manager = await _started_manager(store)
    await manager.deploy_directive(_aged_records(3), SelectionCriterion.age_bucket(AgeBucket.OVER_365))

    store.drop_connections()
    await store.delete("claim_reviews", {})
    await manager.resubscribe()

    assert manager.items() == []
    assert manager.summary().total == 0


@pytest.mark.asyncio
async def test_insert_during_refetch_is_kept():
    store = ConcurrentWriterStore()
    manager = await _started_manager(store)

    async def other_writer():
        await store.insert("claim_reviews", [{"claim_id": "C-900", "status": "assigned", "reserves": "100"}])

    store.after_select = other_writer
    await manager.refresh()

    assert [item.claim_id for item in manager.items()] == ["C-900"]


@pytest.mark.asyncio
async def test_delete_during_refetch_is_applied():
    store = ConcurrentWriterStore()
    manager = await _started_manager(store)
    first, second = await manager.deploy_directive(
        _aged_records(2), SelectionCriterion.age_bucket(AgeBucket.OVER_365)
    )

    async def other_writer():
        await store.delete("claim_reviews", {"id": first.id})

    store.after_select = other_writer
    await manager.refresh()

    assert [item.id for item in manager.items()] == [second.id]


def test_out_of_order_events_last_write_wins():
    view = ReviewView()
    view = apply_event(view, ReviewEvent.from_payload({"type": "update", "row": _row("r1", "completed", 3)}))
    view = apply_event(view, ReviewEvent.from_payload({"type": "update", "row": _row("r1", "in_review", 2)}))
    view = apply_event(view, ReviewEvent.from_payload({"type": "insert", "row": _row("r1", "assigned", 1)}))

    assert view.items["r1"].status == ReviewStatus.COMPLETED
    assert view.items["r1"].revision == 3


def test_duplicate_event_returns_same_view():
    event = ReviewEvent.from_payload({"type": "insert", "row": _row("r1", "assigned", 1)})
    view = apply_event(ReviewView(), event)

    assert apply_event(view, event) is view


def test_delete_tombstone_blocks_stale_update():
    view = apply_event(ReviewView(), ReviewEvent.from_payload({"type": "insert", "row": _row("r1", "assigned", 1)}))
    view = apply_event(view, ReviewEvent.from_payload({"type": "delete", "id": "r1", "revision": 4, "row": None}))
    view = apply_event(view, ReviewEvent.from_payload({"type": "update", "row": _row("r1", "in_review", 3)}))

    assert "r1" not in view.items
    assert view.tombstones == {"r1": 4}


def test_handle_event_accepts_out_of_order_payloads():
    manager = ReviewWorkflowManager(InMemoryTableStore(), config=_config())

    manager.handle_event({"type": "update", "id": "r1", "revision": 5, "row": _row("r1", "flagged", 5)})
    manager.handle_event({"type": "insert", "id": "r1", "revision": 1, "row": _row("r1", "assigned", 1)})

    assert manager.get("r1").status == ReviewStatus.FLAGGED
    assert manager.summary().total == 1


def test_select_records_orders_oldest_then_largest():
    records = [
        make_record("young", age_days=10),
        make_record("old-small", age_days=500, reserves="100"),
        make_record("old-large", age_days=500, reserves="9000"),
        make_record("older", age_days=800),
    ]

    selected = select_records(records, SelectionCriterion.named("all"))

    assert [record.claim_id for record in selected] == ["older", "old-large", "old-small", "young"]
