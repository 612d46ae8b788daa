"""
Phase Controller

Owns the phase sequence. A phase closes only when every gate criterion
holds; closing runs the gate-close hooks (the catalogue locks its approved
entries) and opens the next phase. A closed phase reopens only through an
approved escalation.
"""

import copy
import logging
import threading
from typing import Callable, Optional

from ..config import WorkflowConfig
from ..errors import ConfigurationError, GateNotSatisfied, PhaseSequenceError, UnknownItem
from ..escalation import Decision, Escalation, EscalationManager, EscalationSubject
from ..events import EventBus, EventTypes
from .schema import CriterionResult, GateCriterion, GateStatus, Phase, PhaseState

logger = logging.getLogger(__name__)

CriterionProvider = Callable[[int], tuple[bool, str]]
GateCloseHook = Callable[[int], object]


class PhaseController:
    """
    Sequences phases and evaluates their gates.

    Criterion kinds are bound to providers with ``register_criterion_provider``;
    ``manual`` criteria are satisfied by ``record_evidence``.
    """

    def __init__(
        self,
        config: Optional[WorkflowConfig] = None,
        escalations: Optional[EscalationManager] = None,
        events: Optional[EventBus] = None,
    ):
        self.config = config or WorkflowConfig()
        self.escalations = escalations
        self.events = events

        self._phases: dict[int, Phase] = {}
        for phase_config in sorted(self.config.phases, key=lambda p: p.ordinal):
            self._phases[phase_config.ordinal] = Phase(
                ordinal=phase_config.ordinal,
                name=phase_config.name,
                criteria=[
                    GateCriterion(c.id, c.description, c.kind) for c in phase_config.criteria
                ],
            )
        if not self._phases:
            raise ConfigurationError("At least one phase must be configured")
        self._order = sorted(self._phases)

        self._providers: dict[str, CriterionProvider] = {}
        self._close_hooks: list[GateCloseHook] = []
        self._pending_reopen: dict[int, str] = {}
        self._lock = threading.RLock()

        # Read without the lock by the router; only rebound under self._lock
        self._current: Optional[int] = None
        self._last_closed: Optional[int] = None
        self._open(self._order[0], "workflow started")

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def register_criterion_provider(self, kind: str, provider: CriterionProvider) -> None:
        if kind == "manual":
            raise ValueError("manual criteria are satisfied through record_evidence")
        self._providers[kind] = provider

    def add_gate_close_hook(self, hook: GateCloseHook) -> None:
        self._close_hooks.append(hook)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_phase(self) -> Optional[int]:
        """Ordinal of the open phase, or None once the workflow is complete."""
        return self._current

    @property
    def is_terminal(self) -> bool:
        return self._current is None

    def get_phase(self, ordinal: int) -> Phase:
        with self._lock:
            return copy.deepcopy(self._require(ordinal))

    def phases(self) -> list[Phase]:
        with self._lock:
            return [copy.deepcopy(self._phases[n]) for n in self._order]

    def evaluate_gate(self, ordinal: Optional[int] = None) -> GateStatus:
        """
        Evaluate every criterion of a phase (default: the open phase).

        Open escalations are listed regardless of which phase they belong to.
        """
        with self._lock:
            if ordinal is None:
                ordinal = self._current if self._current is not None else self._order[-1]
            phase = self._require(ordinal)
            criteria = list(phase.criteria)

        results = [self._evaluate(ordinal, criterion) for criterion in criteria]
        open_escalations = []
        if self.escalations:
            open_escalations = [e.escalation_id for e in self.escalations.get_pending_escalations()]

        return GateStatus(
            phase=ordinal,
            satisfied=all(r.satisfied for r in results),
            results=results,
            open_escalations=open_escalations,
        )

    def _evaluate(self, ordinal: int, criterion: GateCriterion) -> CriterionResult:
        if criterion.kind == "manual":
            if criterion.evidence_ref:
                return CriterionResult(criterion.criterion_id, True, f"evidence: {criterion.evidence_ref}")
            return CriterionResult(criterion.criterion_id, False, "no evidence recorded")

        provider = self._providers.get(criterion.kind)
        if provider is None:
            return CriterionResult(
                criterion.criterion_id, False, f"no provider registered for {criterion.kind}"
            )
        satisfied, reason = provider(ordinal)
        return CriterionResult(criterion.criterion_id, bool(satisfied), reason)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def open_phase(self, ordinal: int) -> Phase:
        """
        Open a phase. Only the current phase may be "opened" (a no-op).

        Raises:
            PhaseSequenceError: For a later phase, or a closed one
        """
        with self._lock:
            phase = self._require(ordinal)
            if ordinal == self._current:
                return copy.deepcopy(phase)
            if phase.state == PhaseState.CLOSED:
                raise PhaseSequenceError(
                    f"Phase {ordinal} is closed; reopening requires an approved escalation"
                )
            raise PhaseSequenceError(
                f"Phase {ordinal} cannot open while phase {self._current} is open"
                if self._current is not None
                else f"Workflow is complete; phase {ordinal} cannot open"
            )

    def record_evidence(self, ordinal: int, criterion_id: str, evidence_ref: str) -> GateCriterion:
        """Satisfy a manual criterion by recording evidence for it."""
        if not evidence_ref or not evidence_ref.strip():
            raise ValueError("Evidence reference must not be empty")
        with self._lock:
            phase = self._require(ordinal)
            if phase.state == PhaseState.CLOSED:
                raise PhaseSequenceError(f"Phase {ordinal} is closed")
            criterion = phase.criterion(criterion_id)
            if criterion is None:
                raise UnknownItem(f"Phase {ordinal} has no criterion {criterion_id}")
            if criterion.kind != "manual":
                raise ValueError(
                    f"Criterion {criterion_id} is evaluated by its {criterion.kind} provider"
                )
            criterion.evidence_ref = evidence_ref
            logger.info(f"Evidence recorded for phase {ordinal} criterion {criterion_id}: {evidence_ref}")
            return copy.deepcopy(criterion)

    def advance_phase(self) -> Optional[int]:
        """
        Close the open phase and open the next one.

        Returns:
            Ordinal of the newly opened phase, or None when the final phase closed

        Raises:
            GateNotSatisfied: Listing exactly the unmet criteria; nothing changes
            PhaseSequenceError: If the workflow is already complete
        """
        with self._lock:
            if self._current is None:
                raise PhaseSequenceError("Workflow is complete; no phase to advance")
            ordinal = self._current
            status = self.evaluate_gate(ordinal)
            if not status.satisfied:
                unmet = status.unmet_criteria
                logger.warning(
                    f"Phase {ordinal} gate blocked: "
                    + "; ".join(f"{r.criterion_id} ({r.reason})" for r in unmet)
                )
                if self.events:
                    self.events.publish(EventTypes.GATE_BLOCKED, status.to_dict())
                raise GateNotSatisfied(ordinal, unmet)

            for hook in self._close_hooks:
                hook(ordinal)

            phase = self._phases[ordinal]
            phase.record(PhaseState.CLOSED, "gate satisfied")
            self._last_closed = ordinal
            logger.info(f"Phase {ordinal} ({phase.name}) closed")
            if self.events:
                self.events.publish(EventTypes.PHASE_CLOSED, {"phase": ordinal, "name": phase.name})

            following = self._next(ordinal)
            if following is None:
                self._current = None
                logger.info("Final phase closed; workflow complete")
                return None
            self._open(following, f"phase {ordinal} closed")
            return following

    def request_reopen(self, ordinal: int, reason: str) -> Escalation:
        """
        Ask a human to reopen the most recently closed phase.

        The phase reopens only if the escalation is approved.
        """
        if self.escalations is None:
            raise ConfigurationError("Reopening a phase needs an escalation manager")
        with self._lock:
            self._require(ordinal)
            if ordinal != self._last_closed:
                raise PhaseSequenceError(
                    f"Only the most recently closed phase ({self._last_closed}) can be reopened"
                )
            if ordinal in self._pending_reopen:
                raise PhaseSequenceError(
                    f"Reopen of phase {ordinal} already requested ({self._pending_reopen[ordinal]})"
                )

            escalation = self.escalations.raise_escalation(
                EscalationSubject.PHASE_REOPEN,
                f"phase-{ordinal}",
                reason=reason,
                phase=ordinal,
                on_resolve=lambda e: self._on_reopen_resolved(ordinal, reason, e),
            )
            if escalation.is_pending:
                self._pending_reopen[ordinal] = escalation.escalation_id
            return escalation

    def _on_reopen_resolved(self, ordinal: int, reason: str, escalation: Escalation) -> None:
        with self._lock:
            self._pending_reopen.pop(ordinal, None)
            if escalation.decision != Decision.APPROVE:
                logger.info(f"Reopen of phase {ordinal} rejected: {escalation.decision_text}")
                return
            if ordinal != self._last_closed:
                logger.warning(f"Phase {ordinal} is no longer the most recently closed phase; not reopening")
                return

            if self._current is not None:
                self._phases[self._current].record(
                    PhaseState.PENDING,
                    f"phase {ordinal} reopened",
                    override=True,
                    escalation_id=escalation.escalation_id,
                )
            phase = self._phases[ordinal]
            phase.record(
                PhaseState.OPEN, f"reopened: {reason}",
                override=True, escalation_id=escalation.escalation_id,
            )
            self._current = ordinal
            previous = self._previous(ordinal)
            self._last_closed = previous if previous is not None and \
                self._phases[previous].state == PhaseState.CLOSED else None

        logger.warning(f"Phase {ordinal} reopened by override ({escalation.escalation_id}): {reason}")
        if self.events:
            self.events.publish(EventTypes.PHASE_REOPENED, {
                "phase": ordinal,
                "escalation_id": escalation.escalation_id,
                "reason": reason,
            })

    # ------------------------------------------------------------------

    def _open(self, ordinal: int, reason: str) -> None:
        phase = self._phases[ordinal]
        phase.record(PhaseState.OPEN, reason)
        self._current = ordinal
        logger.info(f"Phase {ordinal} ({phase.name}) opened")
        if self.events:
            self.events.publish(EventTypes.PHASE_OPENED, {"phase": ordinal, "name": phase.name})

    def _require(self, ordinal: int) -> Phase:
        phase = self._phases.get(ordinal)
        if phase is None:
            raise UnknownItem(f"Phase not found: {ordinal}")
        return phase

    def _next(self, ordinal: int) -> Optional[int]:
        index = self._order.index(ordinal)
        return self._order[index + 1] if index + 1 < len(self._order) else None

    def _previous(self, ordinal: int) -> Optional[int]:
        index = self._order.index(ordinal)
        return self._order[index - 1] if index > 0 else None
