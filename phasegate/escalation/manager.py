"""
Escalation Manager

Routes undecidable cases to a human decision point:
- Creates escalations and blocks the dependent work item
- Dispatches to the human decision interface, when one is configured
- Resolves escalations and feeds the decision back to the waiting component
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

from ..errors import InvalidTransition, UnknownItem
from ..events import EventBus, EventTypes
from .schema import (
    Decision,
    Escalation,
    EscalationStatus,
    EscalationSubject,
    Position,
    Resolution,
)

logger = logging.getLogger(__name__)

ResolveHandler = Callable[[Escalation], None]


class DecisionProvider(Protocol):
    """Synchronous human decision interface."""

    def request_decision(self, escalation: Escalation) -> Resolution:
        ...


class EscalationManager:
    """
    Main orchestrator for the escalation lifecycle.

    Escalations never time out. While one is pending, only its work item is
    blocked; the rest of the engine keeps running.
    """

    def __init__(
        self,
        router=None,
        events: Optional[EventBus] = None,
        decision_provider: Optional[DecisionProvider] = None,
    ):
        """
        Args:
            router: TaskRouter used to block and unblock work items
            events: Event bus for notifications
            decision_provider: Human decision interface; when set, each new
                escalation is handed to it on a background thread
        """
        self.router = router
        self.events = events
        self.decision_provider = decision_provider

        self._escalations: dict[str, Escalation] = {}
        self._handlers: dict[str, ResolveHandler] = {}
        self._cond = threading.Condition()

    def raise_escalation(
        self,
        subject: EscalationSubject,
        subject_id: str,
        positions: Sequence[Position] = (),
        *,
        reason: str = "",
        work_item_id: Optional[str] = None,
        phase: Optional[int] = None,
        on_resolve: Optional[ResolveHandler] = None,
    ) -> Escalation:
        """
        Create an escalation and block the dependent work item.

        Args:
            subject: What is being escalated
            subject_id: Proposal, entry or phase identifier
            positions: Positions of the disputing roles
            reason: Why automatic resolution was impossible
            work_item_id: Item to block until resolution
            phase: Phase the escalation belongs to
            on_resolve: Called with the escalation once it is resolved

        Returns:
            Created Escalation
        """
        escalation = Escalation(
            escalation_id=f"esc-{uuid.uuid4().hex[:8]}",
            subject=subject,
            subject_id=subject_id,
            positions=list(positions),
            reason=reason,
            work_item_id=work_item_id,
            phase=phase,
        )

        with self._cond:
            self._escalations[escalation.escalation_id] = escalation
            if on_resolve:
                self._handlers[escalation.escalation_id] = on_resolve

        if work_item_id and self.router:
            self.router.block(work_item_id, escalation.escalation_id)

        logger.warning(
            f"Escalation {escalation.escalation_id} raised for {subject.value} "
            f"{subject_id}: {reason}"
        )
        if self.events:
            self.events.publish(EventTypes.ESCALATION_RAISED, escalation.to_dict())

        if self.decision_provider:
            thread = threading.Thread(
                target=self._request_decision,
                args=(escalation,),
                name=f"decision-{escalation.escalation_id}",
                daemon=True,
            )
            thread.start()

        return escalation

    def _request_decision(self, escalation: Escalation) -> None:
        try:
            resolution = self.decision_provider.request_decision(escalation)
        except Exception:
            # Leave it pending; a manual resolve still closes it
            logger.exception(f"Decision provider failed for {escalation.escalation_id}")
            return
        if escalation.is_pending:
            self.resolve(escalation.escalation_id, resolution.decision, resolution.text)

    def resolve(
        self,
        escalation_id: str,
        decision: Decision,
        text: str = "",
    ) -> Escalation:
        """
        Resolve an escalation with a human decision.

        Unblocks the work item, then resumes the waiting operation.

        Raises:
            UnknownItem: If the escalation does not exist
            InvalidTransition: If it is already resolved
        """
        decision = Decision(decision)
        with self._cond:
            escalation = self._escalations.get(escalation_id)
            if escalation is None:
                raise UnknownItem(f"Escalation not found: {escalation_id}")
            if not escalation.is_pending:
                raise InvalidTransition(f"Escalation {escalation_id} is already resolved")

            escalation.status = EscalationStatus.RESOLVED
            escalation.decision = decision
            escalation.decision_text = text
            escalation.resolved_at = datetime.now(timezone.utc)
            handler = self._handlers.pop(escalation_id, None)
            self._cond.notify_all()

        logger.info(f"Escalation {escalation_id} resolved: {decision.value} {text}".rstrip())

        if escalation.work_item_id and self.router:
            self.router.unblock(escalation.work_item_id, escalation_id)

        if self.events:
            self.events.publish(EventTypes.ESCALATION_RESOLVED, escalation.to_dict())

        if handler:
            handler(escalation)

        return escalation

    def wait(self, escalation_id: str, timeout: Optional[float] = None) -> Escalation:
        """Block until the escalation is resolved (or timeout elapses)."""
        with self._cond:
            escalation = self._escalations.get(escalation_id)
            if escalation is None:
                raise UnknownItem(f"Escalation not found: {escalation_id}")
            self._cond.wait_for(lambda: not escalation.is_pending, timeout=timeout)
            return escalation

    def get_escalation(self, escalation_id: str) -> Optional[Escalation]:
        with self._cond:
            return self._escalations.get(escalation_id)

    def get_pending_escalations(self, phase: Optional[int] = None) -> list[Escalation]:
        """Get pending escalations, optionally for one phase."""
        with self._cond:
            return [
                e for e in self._escalations.values()
                if e.is_pending and (phase is None or e.phase == phase)
            ]

    def all_escalations(self) -> list[Escalation]:
        with self._cond:
            return list(self._escalations.values())

    def cleared(self, phase: int) -> tuple[bool, str]:
        """Gate criterion provider: no pending escalation for the phase."""
        pending = self.get_pending_escalations(phase)
        if pending:
            return False, "pending: " + ", ".join(e.escalation_id for e in pending)
        return True, "no pending escalations"
