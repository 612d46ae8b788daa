"""
Task routing.

TaskRouter is the only writer of work item status. Other components
request transitions through its methods.
"""

import copy
import logging
import threading
from typing import Any, Callable, Iterable, Optional

from ..errors import DuplicateSubmission, InvalidTransition, PhaseMismatch, UnknownItem
from ..events import EventBus, EventTypes
from .schema import WorkItem, WorkItemDescriptor, WorkItemStatus

logger = logging.getLogger(__name__)


class TaskRouter:
    """
    Assigns work items to roles and tracks per-item status.

    At most one active proposal exists per item at a time.
    """

    def __init__(
        self,
        current_phase: Optional[Callable[[], Optional[int]]] = None,
        events: Optional[EventBus] = None,
    ):
        """
        Args:
            current_phase: Returns the currently open phase ordinal; when set,
                items can only be assigned while their phase is open
            events: Event bus for notifications
        """
        self._current_phase = current_phase
        self.events = events
        self._forwarder: Optional[Callable[[Any], Any]] = None
        self._items: dict[str, WorkItem] = {}
        self._lock = threading.RLock()

    def set_forwarder(self, forwarder: Callable[[Any], Any]) -> None:
        """Set the callable that hands completed proposals to review."""
        self._forwarder = forwarder

    def ingest(self, descriptors: Iterable[WorkItemDescriptor]) -> list[WorkItem]:
        """
        Accept work items from the external inventory.

        Re-ingesting an identical descriptor is a no-op; re-ingesting an id
        with a different phase is an error.
        """
        created = []
        with self._lock:
            for descriptor in descriptors:
                if isinstance(descriptor, dict):
                    descriptor = WorkItemDescriptor.model_validate(descriptor)
                existing = self._items.get(descriptor.item_id)
                if existing is not None:
                    if existing.phase != descriptor.phase:
                        raise ValueError(
                            f"Work item {descriptor.item_id} already ingested for phase {existing.phase}"
                        )
                    continue
                item = WorkItem(
                    item_id=descriptor.item_id,
                    phase=descriptor.phase,
                    description=descriptor.description,
                )
                self._items[item.item_id] = item
                created.append(copy.deepcopy(item))
        logger.info(f"Ingested {len(created)} work item(s)")
        return created

    def assign(self, item_id: str, role: str) -> WorkItem:
        """
        Assign an item to a capability role.

        Raises:
            DuplicateSubmission: If the item is under review
            InvalidTransition: If the item is blocked or done
            PhaseMismatch: If the item's phase is not open
        """
        role = getattr(role, "value", role)
        with self._lock:
            item = self._require(item_id)
            if item.status == WorkItemStatus.UNDER_REVIEW:
                raise DuplicateSubmission(item_id, item.active_proposal_id)
            if item.status in (WorkItemStatus.BLOCKED, WorkItemStatus.DONE):
                raise InvalidTransition(f"Cannot assign {item_id} while {item.status.value}")
            self._check_phase(item)

            item.role = role
            if item.status == WorkItemStatus.PENDING:
                self._transition(item, WorkItemStatus.IN_PROGRESS, f"assigned to {role}")
            else:
                logger.info(f"Work item {item_id} reassigned to {role}")
            return copy.deepcopy(item)

    def complete(self, item_id: str, proposal) -> Any:
        """
        Mark work on an item complete and forward its proposal to review.

        Returns:
            Whatever the forwarder returns (a Future when run on the pool)
        """
        if proposal.work_item_id != item_id:
            raise ValueError(
                f"Proposal {proposal.proposal_id} references {proposal.work_item_id}, not {item_id}"
            )
        with self._lock:
            item = self._require(item_id)
            if item.status == WorkItemStatus.UNDER_REVIEW:
                raise DuplicateSubmission(item_id, item.active_proposal_id)
            if item.status != WorkItemStatus.IN_PROGRESS:
                raise InvalidTransition(
                    f"Cannot complete {item_id} while {item.status.value}"
                )
            item.active_proposal_id = proposal.proposal_id
            self._transition(item, WorkItemStatus.UNDER_REVIEW, f"proposal {proposal.proposal_id}")

        if self._forwarder is None:
            return None
        try:
            return self._forwarder(proposal)
        except Exception:
            with self._lock:
                if item.active_proposal_id == proposal.proposal_id and \
                        item.status == WorkItemStatus.UNDER_REVIEW:
                    item.active_proposal_id = None
                    self._transition(item, WorkItemStatus.IN_PROGRESS, "forwarding failed")
            raise

    def status(self, item_id: str) -> WorkItemStatus:
        with self._lock:
            return self._require(item_id).status

    def item(self, item_id: str) -> WorkItem:
        """Snapshot of an item."""
        with self._lock:
            return copy.deepcopy(self._require(item_id))

    def items(self, phase: Optional[int] = None) -> list[WorkItem]:
        with self._lock:
            return [
                copy.deepcopy(i) for i in self._items.values()
                if phase is None or i.phase == phase
            ]

    def all_done(self, phase: int) -> tuple[bool, str]:
        """Gate criterion provider: every item in the phase is Done."""
        with self._lock:
            items = [i for i in self._items.values() if i.phase == phase]
            open_items = [i.item_id for i in items if i.status != WorkItemStatus.DONE]
        if open_items:
            return False, f"{len(open_items)} of {len(items)} item(s) not done: {', '.join(sorted(open_items))}"
        return True, f"{len(items)} item(s) done"

    # ------------------------------------------------------------------
    # Transitions requested by other components
    # ------------------------------------------------------------------

    def mark_done(self, item_id: str, proposal_id: Optional[str] = None) -> None:
        with self._lock:
            item = self._require(item_id)
            if item.status != WorkItemStatus.UNDER_REVIEW:
                raise InvalidTransition(f"Cannot finish {item_id} while {item.status.value}")
            self._check_proposal(item, proposal_id)
            item.active_proposal_id = None
            self._transition(item, WorkItemStatus.DONE, f"proposal {proposal_id} committed")

    def return_to_pending(self, item_id: str, reason: str = "") -> None:
        with self._lock:
            item = self._require(item_id)
            if item.status == WorkItemStatus.DONE:
                raise InvalidTransition(f"Cannot reopen finished item {item_id}")
            item.active_proposal_id = None
            item.blocked_by = None
            item.status_before_block = None
            if item.status != WorkItemStatus.PENDING:
                self._transition(item, WorkItemStatus.PENDING, reason)

    def block(self, item_id: str, escalation_id: str) -> None:
        with self._lock:
            item = self._require(item_id)
            if item.status == WorkItemStatus.BLOCKED:
                raise InvalidTransition(f"{item_id} is already blocked by {item.blocked_by}")
            item.status_before_block = item.status
            item.blocked_by = escalation_id
            self._transition(item, WorkItemStatus.BLOCKED, f"escalation {escalation_id}")

    def unblock(self, item_id: str, escalation_id: str) -> None:
        with self._lock:
            item = self._require(item_id)
            if item.status != WorkItemStatus.BLOCKED or item.blocked_by != escalation_id:
                # Already released (e.g. proposal withdrawn first)
                logger.debug(f"{item_id} not blocked by {escalation_id}, nothing to unblock")
                return
            restore = item.status_before_block or WorkItemStatus.PENDING
            item.blocked_by = None
            item.status_before_block = None
            self._transition(item, restore, f"escalation {escalation_id} resolved")

    # ------------------------------------------------------------------

    def _require(self, item_id: str) -> WorkItem:
        item = self._items.get(item_id)
        if item is None:
            raise UnknownItem(f"Work item not found: {item_id}")
        return item

    def _check_phase(self, item: WorkItem) -> None:
        if self._current_phase is None:
            return
        current = self._current_phase()
        if current != item.phase:
            raise PhaseMismatch(
                f"Work item {item.item_id} belongs to phase {item.phase}, open phase is {current}"
            )

    @staticmethod
    def _check_proposal(item: WorkItem, proposal_id: Optional[str]) -> None:
        if proposal_id and item.active_proposal_id and item.active_proposal_id != proposal_id:
            raise InvalidTransition(
                f"{item.item_id} is reviewing {item.active_proposal_id}, not {proposal_id}"
            )

    def _transition(self, item: WorkItem, new_status: WorkItemStatus, reason: str) -> None:
        old = item.status
        item.record(new_status, reason)
        logger.debug(f"Work item {item.item_id}: {old.value} -> {new_status.value} ({reason})")
        if self.events:
            self.events.publish(EventTypes.ITEM_TRANSITIONED, {
                "item_id": item.item_id,
                "from": old.value,
                "to": new_status.value,
                "reason": reason,
            })
