"""Review workflow manager: directive deployment, status transitions and live view."""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from ..models.claim import ClaimRecord
from ..models.report import DeliveryResult
from ..models.review import ReviewEvent, ReviewItem, ReviewStatus, ReviewSummary
from ..utils.config import Config
from ..utils.errors import ConfigError, DependencyError, InvalidTransitionError, ReviewNotFoundError
from ..utils.retry import RetryPolicy, call_store, call_with_retry
from ..storage.backend import ChangeFeed, DeliveryChannel, Subscription, TableStore
from .reducer import ReviewView, apply_event, rebuild
from .selection import SelectionCriterion, select_records

logger = logging.getLogger(__name__)

# action -> (required current status, resulting status)
TRANSITIONS = {
    "start_review": (ReviewStatus.ASSIGNED, ReviewStatus.IN_REVIEW),
    "complete": (ReviewStatus.IN_REVIEW, ReviewStatus.COMPLETED),
    "flag": (ReviewStatus.IN_REVIEW, ReviewStatus.FLAGGED),
}

ACTIVE_STATUSES = (ReviewStatus.ASSIGNED, ReviewStatus.IN_REVIEW)


class ReviewWorkflowManager:
    """
    Owns the claim review lifecycle and a live view of the review table.

    Writes go to the row store; the view is kept current from the change
    feed through a pure reducer, and fully re-fetched on (re)subscription.
    Feed events that arrive while a re-fetch is in flight are replayed on
    top of the fetched rows.

    Attributes:
        store: Row store holding the review table
        feed: Change feed for the review table
        channel: Optional delivery channel for directive notifications
        config: Pipeline configuration
        table: Review table name
        policy: Timeout/retry policy for backend calls
    """

    def __init__(
        self,
        store: TableStore,
        feed: Optional[ChangeFeed] = None,
        config: Optional[Config] = None,
        clock: Optional[Callable[[], datetime]] = None,
        channel: Optional[DeliveryChannel] = None
    ):
        """
        Initialize the workflow manager.

        Args:
            store: Row store
            feed: Change feed (defaults to the store when it is also a feed)
            config: Configuration (defaults when omitted)
            clock: Time source for assignment and completion timestamps
            channel: Delivery channel for directive notifications
        """
        self.store = store
        self.channel = channel
        self.feed = feed if feed is not None else (store if isinstance(store, ChangeFeed) else None)
        self.config = config or Config.default()
        self.table = self.config.backend.reviews_table
        self.policy = RetryPolicy(
            timeout=self.config.backend.timeout,
            max_retries=self.config.backend.max_retries,
            backoff_base=self.config.backend.backoff_base,
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._view = ReviewView()
        self._subscription: Optional[Subscription] = None
        self._fetches = 0
        self._pending: List[ReviewEvent] = []

        logger.info(
            f"Initialized ReviewWorkflowManager on '{self.table}' "
            f"(batch cap {self.config.workflow.batch_cap})"
        )

    # Lifecycle

    @property
    def running(self) -> bool:
        """True while the change-feed subscription is live."""
        return self._subscription is not None and self._subscription.active

    async def start(self) -> None:
        """Subscribe to the change feed, then re-fetch the whole table."""
        if self.feed is not None and not self.running:
            self._subscription = await call_store(
                self.table,
                "subscribe",
                lambda: self.feed.subscribe(self.table, self.handle_event),
                self.policy,
            )
        await self.refresh()

    async def stop(self) -> None:
        """Release the change-feed subscription."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await call_store(self.table, "unsubscribe", subscription.unsubscribe, self.policy)
            logger.info(f"Unsubscribed from {self.table}")

    async def resubscribe(self) -> None:
        """
        Recover from a dropped feed connection.

        Events may have been missed while disconnected, so the view is
        rebuilt from a full re-fetch rather than assuming a gapless feed.
        """
        logger.warning(f"Resubscribing to {self.table} with full re-fetch")
        self._subscription = None
        await self.start()

    async def refresh(self) -> None:
        """Re-fetch every review row and merge it into the view."""
        base = self._view
        self._fetches += 1
        try:
            rows = await call_store(
                self.table,
                "select",
                lambda: self.store.select(self.table, order_by="-created_at"),
                self.policy,
            )
        finally:
            self._fetches -= 1
            pending = list(self._pending)
            if not self._fetches:
                self._pending.clear()

        view = rebuild(base, rows)
        for event in pending:
            view = apply_event(view, event)
        self._view = view
        if pending:
            logger.debug(f"Replayed {len(pending)} events received during the re-fetch")
        logger.info(f"Loaded {len(self._view.items)} review items from {self.table}")

    def handle_event(self, event: Union[ReviewEvent, Dict[str, Any]]) -> None:
        """Apply one change-feed event to the view."""
        if not isinstance(event, ReviewEvent):
            event = ReviewEvent.from_payload(event)
        self._apply(event)

    def _apply(self, event: ReviewEvent) -> None:
        if self._fetches:
            self._pending.append(event)
        self._view = apply_event(self._view, event)

    # Reads

    def items(self) -> List[ReviewItem]:
        """Live review items, most recently assigned first."""
        return self._view.ordered()

    def get(self, review_id: str) -> ReviewItem:
        """
        Look up a review item.

        Raises:
            ReviewNotFoundError: If the id is not in the view
        """
        item = self._view.items.get(review_id)
        if item is None:
            raise ReviewNotFoundError.for_id(review_id)
        return item

    def summary(self) -> ReviewSummary:
        """Counts by status and summed reserves over the current view."""
        items = list(self._view.items.values())
        by_status = {status.value: 0 for status in ReviewStatus}
        for item in items:
            by_status[item.status.value] += 1
        reserves = sum((item.reserves for item in items), Decimal("0"))
        return ReviewSummary(total=len(items), by_status=by_status, reserves=reserves)

    # Writes

    async def deploy_directive(
        self,
        records: Iterable[ClaimRecord],
        criterion: SelectionCriterion,
        assignee: Optional[str] = None,
        notes: Optional[str] = None,
        deadline: Optional[date] = None,
        notify: Optional[Sequence[str]] = None
    ) -> List[ReviewItem]:
        """
        Assign matching claims for review.

        Claims already assigned or in review are skipped, and at most
        ``batch_cap`` items are created. When destinations are given (or
        configured under ``workflow.notify``) each is sent a summary of the
        assignment once the items exist.

        Args:
            records: Candidate claim records
            criterion: Which claims to target
            assignee: Reviewer (configured default when omitted)
            notes: Directive text stored on each item
            deadline: Optional due date appended to the notes
            notify: Notification destinations (configured list when omitted)

        Returns:
            The created review items

        Raises:
            ConfigError: If notifications are requested without a delivery channel
            DependencyError: If the insert or a notification exhausts its retries;
                items are already created when a notification fails
        """
        workflow = self.config.workflow
        assignee = assignee or workflow.default_assignee
        destinations = list(workflow.notify if notify is None else notify)
        if destinations and self.channel is None:
            raise ConfigError.invalid("workflow.notify", destinations, "no delivery channel configured")
        original_notes = notes
        if deadline is not None:
            deadline_text = f"Deadline: {deadline:%B %d, %Y}"
            notes = f"{notes}\n\n{deadline_text}" if notes else deadline_text

        under_review = {
            item.claim_id for item in self._view.items.values() if item.status in ACTIVE_STATUSES
        }
        selected: List[ClaimRecord] = []
        seen = set()
        for record in select_records(records, criterion, workflow.named_filters):
            if record.claim_id in under_review or record.claim_id in seen:
                continue
            seen.add(record.claim_id)
            selected.append(record)
            if len(selected) >= workflow.batch_cap:
                break

        if not selected:
            logger.info(f"Directive {criterion.describe()} matched no claims to assign")
            return []

        assigned_at = self._clock()
        rows = [self._row_for(record, assignee, notes, assigned_at) for record in selected]
        stored = await call_store(
            self.table,
            "insert",
            lambda: self.store.insert(self.table, rows),
            self.policy,
        )

        created = []
        for row in stored:
            self._apply(ReviewEvent.from_payload({"type": "insert", "row": row}))
            created.append(ReviewItem.from_row(row))

        logger.info(
            f"Deployed directive {criterion.describe()}: {len(created)} claims assigned to {assignee}"
        )
        if destinations:
            await self.notify_directive(created, destinations, criterion, original_notes, deadline)
        return created

    async def notify_directive(
        self,
        items: Sequence[ReviewItem],
        destinations: Sequence[str],
        criterion: SelectionCriterion,
        notes: Optional[str] = None,
        deadline: Optional[date] = None
    ) -> List[DeliveryResult]:
        """
        Tell each destination about a deployed directive.

        Each send runs under the backend timeout and retry policy.

        Args:
            items: Review items the directive created
            destinations: Email addresses, phone numbers or channel names
            criterion: Criterion the directive targeted
            notes: Directive text
            deadline: Optional due date

        Returns:
            One DeliveryResult per destination

        Raises:
            DependencyError: If a destination cannot be reached after retries,
                or no delivery channel is configured
        """
        if self.channel is None:
            raise DependencyError.delivery_failed(", ".join(destinations), "no delivery channel configured")

        document = _directive_text(items, criterion, notes, deadline).encode("utf-8")
        assignees = sorted({item.assigned_to for item in items})
        metadata = {
            "kind": "review_directive",
            "subject": f"Review directive: {len(items)} claims assigned",
            "criterion": criterion.describe(),
            "assigned_to": ", ".join(assignees),
            "count": len(items),
            "deadline": deadline.isoformat() if deadline else None,
        }

        results = []
        for destination in destinations:
            async def attempt(destination=destination) -> DeliveryResult:
                delivery = await self.channel.send(destination, document, metadata)
                if not delivery.success:
                    raise DependencyError.delivery_failed(destination, delivery.error or "rejected")
                return delivery

            results.append(await call_with_retry(f"notify {destination}", attempt, self.policy))

        logger.info(f"Notified {len(results)} destinations of directive {criterion.describe()}")
        return results

    async def start_review(self, review_id: str, notes: Optional[str] = None) -> ReviewItem:
        return await self._transition(review_id, "start_review", notes)

    async def complete(self, review_id: str, notes: Optional[str] = None) -> ReviewItem:
        return await self._transition(review_id, "complete", notes)

    async def flag(self, review_id: str, notes: Optional[str] = None) -> ReviewItem:
        return await self._transition(review_id, "flag", notes)

    async def apply_action(self, review_id: str, action: str, notes: Optional[str] = None) -> ReviewItem:
        """Run a transition by action name (start_review, complete, flag)."""
        if action not in TRANSITIONS:
            item = self.get(review_id)
            raise InvalidTransitionError.for_item(review_id, item.status.value, action)
        return await self._transition(review_id, action, notes)

    async def _transition(self, review_id: str, action: str, notes: Optional[str]) -> ReviewItem:
        required, target = TRANSITIONS[action]
        item = self.get(review_id)
        if item.status != required:
            raise InvalidTransitionError.for_item(review_id, item.status.value, action)

        patch: Dict[str, Any] = {"status": target.value}
        if target == ReviewStatus.COMPLETED:
            patch["completed_at"] = self._clock().isoformat()
        if notes:
            patch["notes"] = f"{item.notes}\n\n{notes}" if item.notes else notes

        attempts = 0

        def update():
            nonlocal attempts
            attempts += 1
            # Filter on the expected status so a concurrent transition matches no rows
            return self.store.update(self.table, {"id": review_id, "status": required.value}, patch)

        updated = await call_store(self.table, "update", update, self.policy)
        if not updated:
            await self.refresh()
            current = self._view.items.get(review_id)
            if current is None:
                raise ReviewNotFoundError.for_id(review_id)
            # An earlier attempt may have landed before its response was lost
            if attempts > 1 and current.status == target:
                logger.info(f"Review {review_id} is already {target.value}; {action} was applied")
                return current
            raise InvalidTransitionError.for_item(review_id, current.status.value, action)

        row = updated[0]
        self._apply(ReviewEvent.from_payload({"type": "update", "row": row}))
        logger.info(f"Review {review_id}: {required.value} -> {target.value}")
        return ReviewItem.from_row(row)

    @staticmethod
    def _row_for(record: ClaimRecord, assignee: str, notes: Optional[str], assigned_at: datetime) -> Dict[str, Any]:
        evaluation = record.evaluation
        return {
            "id": str(uuid.uuid4()),
            "claim_id": record.claim_id,
            "area": record.area,
            "loss_description": record.loss_description,
            "age_bucket": record.age_bucket.value,
            "reserves": str(record.reserves),
            "low_eval": str(evaluation.low) if evaluation else None,
            "high_eval": str(evaluation.high) if evaluation else None,
            "assigned_to": assignee,
            "status": ReviewStatus.ASSIGNED.value,
            "assigned_at": assigned_at.isoformat(),
            "completed_at": None,
            "notes": notes,
        }


def _directive_text(
    items: Sequence[ReviewItem],
    criterion: SelectionCriterion,
    notes: Optional[str],
    deadline: Optional[date]
) -> str:
    """Plain-text notification body listing the assigned claims."""
    lines = [
        f"{len(items)} claims have been assigned for review ({criterion.describe()}).",
    ]
    if deadline is not None:
        lines.append(f"Deadline: {deadline:%B %d, %Y}")
    if notes:
        lines.extend(["", notes])
    lines.extend(["", f"{'Claim':<16}{'Age bucket':<16}{'Reserves':>14}  Assigned to"])
    for item in items:
        lines.append(
            f"{item.claim_id:<16}{item.age_bucket:<16}{f'${item.reserves:,.2f}':>14}  {item.assigned_to}"
        )
    return "\n".join(lines) + "\n"
