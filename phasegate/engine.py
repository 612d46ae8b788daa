"""
Review Engine

Wires the components together and exposes the external interface:
- Work intake: ``ingest`` / ``assign`` / ``propose``
- Reviewer input: ``cast_vote``
- Human decisions: ``resolve_escalation`` (or a DecisionProvider)
- Ledger export: ``catalogue_chain`` / ``chronicle_export``
- Status: ``gate_status`` / ``item_status``

Review cycles run on a bounded thread pool, so a proposal waiting for votes
or a human decision never holds up other proposals.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .catalogue import CatalogueStore, ChangeKind
from .chronicle import ChronicleStore
from .config import ConfigManager, WorkflowConfig, validate_config
from .errors import ConfigurationError, UnknownItem
from .escalation import ConflictResolver, Decision, DecisionProvider, Escalation, EscalationManager
from .events import EventBus
from .phases import PhaseController
from .review import ChangeProposal, Proposer, ReviewCoordinator, ReviewerPanel, ReviewOutcome
from .roles import Concern
from .routing import TaskRouter, WorkItem, WorkItemStatus

logger = logging.getLogger(__name__)


class ReviewEngine:
    """
    Phase-gated review workflow engine.

    Example:
        with ReviewEngine(panel) as engine:
            engine.ingest([{"item_id": "inv-1", "phase": 1}])
            engine.assign("inv-1", Role.ANALYST)
            proposal = engine.propose("inv-1", "inventory listing", Role.ANALYST)
            outcome = engine.await_outcome(proposal.proposal_id)
    """

    def __init__(
        self,
        panel: ReviewerPanel,
        config: Optional[WorkflowConfig] = None,
        *,
        proposer: Optional[Proposer] = None,
        decision_provider: Optional[DecisionProvider] = None,
        events: Optional[EventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            panel: External reviewers
            config: Engine configuration (defaults apply when omitted)
            proposer: Authoring side, asked to revise and rebut
            decision_provider: Human decision interface for escalations
            events: Event bus (a private one is created when omitted)
            sleep: Sleep function used for vote retry backoff
        """
        self.config = config or WorkflowConfig()
        is_valid, errors = validate_config(self.config)
        if not is_valid:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

        self.events = events or EventBus()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.engine.max_workers,
            thread_name_prefix="review",
        )
        self._futures: dict[str, Future] = {}

        self.escalations = EscalationManager(events=self.events, decision_provider=decision_provider)
        self.phases = PhaseController(self.config, self.escalations, self.events)
        self.router = TaskRouter(current_phase=lambda: self.phases.current_phase, events=self.events)
        self.escalations.router = self.router
        self.catalogue = CatalogueStore(escalations=self.escalations, events=self.events)
        self.chronicle = ChronicleStore(self.config.chronicle.db_path, events=self.events)
        self.resolver = ConflictResolver(self.config.priority_for)
        self.coordinator = ReviewCoordinator(
            panel,
            self.router,
            self.chronicle,
            self.catalogue,
            self.escalations,
            self.resolver,
            reviewer_table=self.config.reviewer_table(),
            review_config=self.config.review,
            retry_config=self.config.retry,
            proposer=proposer,
            runner=self._resume,
            events=self.events,
            sleep=sleep,
        )
        self.router.set_forwarder(self._dispatch)

        self.phases.register_criterion_provider("items_done", self.router.all_done)
        self.phases.register_criterion_provider("reviews_settled", self.coordinator.settled)
        self.phases.register_criterion_provider("catalogue_settled", self.catalogue.settled)
        self.phases.register_criterion_provider("escalations_cleared", self.escalations.cleared)
        self.phases.add_gate_close_hook(self.catalogue.lock_approved)

        logger.info(
            f"Review engine ready: {len(self.config.phases)} phase(s), "
            f"{self.config.engine.max_workers} worker(s), chronicle at {self.chronicle.db_path}"
        )

    @classmethod
    def from_config_file(cls, panel: ReviewerPanel, config_file: Optional[Path] = None, **kwargs) -> "ReviewEngine":
        """Build an engine from a YAML config file plus PHASEGATE_* overrides."""
        return cls(panel, ConfigManager(config_file).get(), **kwargs)

    # ------------------------------------------------------------------
    # Work intake
    # ------------------------------------------------------------------

    def ingest(self, descriptors: Iterable[Any]) -> list[WorkItem]:
        return self.router.ingest(descriptors)

    def assign(self, item_id: str, role) -> WorkItem:
        return self.router.assign(item_id, role)

    def propose(
        self,
        item_id: str,
        content: str,
        proposer,
        *,
        target: Optional[str] = None,
        change_kind=ChangeKind.BEHAVIORAL,
        reason: str = "",
        base_ref: Optional[str] = None,
    ) -> ChangeProposal:
        """Complete work on an item and send its proposal to review."""
        item = self.router.item(item_id)
        proposal = ChangeProposal.create(
            work_item_id=item_id,
            content=content,
            proposer=proposer,
            phase=item.phase,
            target=target,
            change_kind=change_kind,
            reason=reason,
            base_ref=base_ref,
        )
        self.router.complete(item_id, proposal)
        return proposal

    def _dispatch(self, proposal: ChangeProposal) -> Future:
        return self._track(proposal.proposal_id, self._executor.submit(self.coordinator.submit, proposal))

    def _resume(self, proposal_id: str, fn: Callable[[], ReviewOutcome]) -> Future:
        """Runner for review cycles resumed after an escalation."""
        return self._track(proposal_id, self._executor.submit(fn))

    def _track(self, proposal_id: str, future: Future) -> Future:
        # await_outcome follows the latest cycle of a proposal
        self._futures[proposal_id] = future
        future.add_done_callback(lambda f: self._report_failure(proposal_id, f))
        return future

    @staticmethod
    def _report_failure(proposal_id: str, future: Future) -> None:
        if future.cancelled():
            logger.warning(f"Review of {proposal_id} was cancelled")
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Review of {proposal_id} failed: {error}")

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def cast_vote(
        self,
        proposal_id: str,
        role,
        round_no: int,
        verdict,
        rationale: str = "",
        concern=Concern.OTHER,
    ) -> bool:
        return self.coordinator.record_vote(proposal_id, role, round_no, verdict, rationale, concern)

    def withdraw(self, proposal_id: str, reason: str = "withdrawn by proposer") -> ReviewOutcome:
        return self.coordinator.withdraw(proposal_id, reason)

    def await_outcome(self, proposal_id: str, timeout: Optional[float] = None) -> ReviewOutcome:
        """
        Wait for the latest review cycle of a proposal to return. A cycle
        resumed after a missing-vote escalation replaces the first one.

        The returned outcome is terminal, or escalated and waiting for a human.
        Errors raised by the review cycle are re-raised here.
        """
        future = self._futures.get(proposal_id)
        if future is None:
            raise UnknownItem(f"Proposal not found: {proposal_id}")
        return future.result(timeout=timeout)

    def outcome(self, proposal_id: str) -> ReviewOutcome:
        return self.coordinator.outcome(proposal_id)

    # ------------------------------------------------------------------
    # Escalations
    # ------------------------------------------------------------------

    def resolve_escalation(self, escalation_id: str, decision, text: str = "") -> Escalation:
        return self.escalations.resolve(escalation_id, Decision(decision), text)

    def pending_escalations(self, phase: Optional[int] = None) -> list[Escalation]:
        return self.escalations.get_pending_escalations(phase)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    @property
    def current_phase(self) -> Optional[int]:
        return self.phases.current_phase

    def gate_status(self, phase: Optional[int] = None) -> dict:
        return self.phases.evaluate_gate(phase).to_dict()

    def record_evidence(self, phase: int, criterion_id: str, evidence_ref: str):
        return self.phases.record_evidence(phase, criterion_id, evidence_ref)

    def advance_phase(self) -> Optional[int]:
        return self.phases.advance_phase()

    def request_reopen(self, phase: int, reason: str) -> Escalation:
        return self.phases.request_reopen(phase, reason)

    # ------------------------------------------------------------------
    # Status and export
    # ------------------------------------------------------------------

    def item_status(self, item_id: str) -> WorkItemStatus:
        return self.router.status(item_id)

    def catalogue_chain(self, entry_id: str) -> list[dict]:
        return self.catalogue.export(entry_id)

    def chronicle_export(
        self,
        phase: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[dict]:
        return self.chronicle.export(phase, since, until)

    # ------------------------------------------------------------------

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self.chronicle.close()
        logger.info("Review engine stopped")

    def __enter__(self) -> "ReviewEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=exc_type is None)
