"""
Review Coordinator

Drives a single change proposal through the review protocol:

    propose -> round 1 votes -> (revision | debate <= 2 rounds -> re-vote)
            -> consensus | resolver decision | escalation
            -> chronicle (+ catalogue) -> committed

Votes arrive asynchronously through ``record_vote``. A round closes only
when every required role has voted; missing votes are re-requested with
backoff and then escalated, never skipped.
"""

import logging
import threading
import time
from typing import Callable, Optional

from ..catalogue import CatalogueStore, ChangeDecision, ChangeKind, ChangeOutcome, EntryStatus
from ..chronicle import ChronicleRecord, ChronicleStore, DebateEntry, DecisionSource, VoteEntry
from ..config import MAX_DEBATE_ROUNDS, RetryConfig, ReviewConfig
from ..errors import (
    CatalogueLockViolation,
    ConfigurationError,
    ConsensusDeadlock,
    DuplicateSubmission,
    InvalidTransition,
    UnknownItem,
    VoteTimeout,
)
from ..escalation import (
    ConflictResolver,
    Decision,
    Escalation,
    EscalationManager,
    EscalationSubject,
    Position,
    Stance,
)
from ..events import EventBus, EventTypes
from ..retry import RetryHandler, RetryPolicy
from ..roles import Concern, Role, required_reviewer_roles
from .schema import (
    ChangeProposal,
    DebateRound,
    ProposalStatus,
    Proposer,
    ReviewerPanel,
    ReviewOutcome,
    ReviewVote,
    Verdict,
    content_ref,
)

logger = logging.getLogger(__name__)

DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"

# Proposals in these states can still be withdrawn
WITHDRAWABLE = {
    ProposalStatus.PROPOSED,
    ProposalStatus.REVIEW_ROUND1,
    ProposalStatus.DEBATE,
}


class _ReviewCancelled(Exception):
    """The proposal was withdrawn while its review was in flight."""


def _human_reason(escalation: Escalation) -> str:
    text = escalation.decision_text or escalation.decision.value
    return f"human: {text}"


def _default_runner(proposal_id: str, fn: Callable[[], object]) -> None:
    threading.Thread(target=fn, name=f"review-resume-{proposal_id}", daemon=True).start()


class ReviewCoordinator:
    """
    Runs the propose -> vote -> debate -> consensus protocol.

    ``submit`` blocks its calling thread while votes are awaited; the engine
    runs it on a worker pool so each proposal waits independently.
    """

    def __init__(
        self,
        panel: ReviewerPanel,
        router,
        chronicle: ChronicleStore,
        catalogue: CatalogueStore,
        escalations: EscalationManager,
        resolver: ConflictResolver,
        *,
        reviewer_table: Optional[dict] = None,
        review_config: Optional[ReviewConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        proposer: Optional[Proposer] = None,
        runner: Optional[Callable[[str, Callable[[], object]], object]] = None,
        events: Optional[EventBus] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            panel: External reviewers
            router: TaskRouter owning work item status
            chronicle: Chronicle to record decisions in
            catalogue: Catalogue for proposals with a target entry
            escalations: Escalation manager for undecidable cases
            resolver: Tie-break for splits that survive debate
            reviewer_table: Phase ordinal -> required roles
            review_config: Protocol limits and vote timeout
            retry_config: Backoff between vote re-requests
            proposer: Authoring side, asked to revise and rebut
            runner: Called with (proposal_id, fn) to run a resumed review off
                the resolving thread
            events: Event bus for notifications
            sleep: Sleep function used for backoff
        """
        self.panel = panel
        self.router = router
        self.chronicle = chronicle
        self.catalogue = catalogue
        self.escalations = escalations
        self.resolver = resolver
        self.reviewer_table = reviewer_table
        self.config = review_config or ReviewConfig()
        self.proposer = proposer
        self.events = events
        self._runner = runner or _default_runner

        self._max_debate_rounds = min(self.config.max_debate_rounds, MAX_DEBATE_ROUNDS)
        self._retry_policy = RetryPolicy.from_config(
            retry_config or RetryConfig(),
            max_attempts=self.config.max_vote_retries + 1,
        )
        self._retry_policy.retryable_exceptions = (VoteTimeout,)
        self._sleep = sleep

        self._cond = threading.Condition(threading.RLock())
        self._proposals: dict[str, ChangeProposal] = {}
        self._active_by_item: dict[str, str] = {}
        self._outcomes: dict[str, ReviewOutcome] = {}
        self._collecting: set[str] = set()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def required_roles(self, phase: int) -> frozenset[Role]:
        try:
            return required_reviewer_roles(phase, self.reviewer_table)
        except KeyError as e:
            raise ConfigurationError(str(e)) from e

    def submit(self, proposal: ChangeProposal) -> ReviewOutcome:
        """
        Review a proposal until it is committed, rejected, withdrawn or
        escalated.

        Raises:
            DuplicateSubmission: If the work item already has an active proposal
            CatalogueLockViolation: If the proposal asks to delete an entry
        """
        if proposal.target and proposal.change_kind == ChangeKind.DELETION:
            self.router.return_to_pending(proposal.work_item_id, "deletion proposal rejected")
            raise CatalogueLockViolation(proposal.target, "deletion proposals are never accepted")
        self.required_roles(proposal.phase)

        with self._cond:
            active = self._active_by_item.get(proposal.work_item_id)
            if active is not None or proposal.proposal_id in self._proposals:
                raise DuplicateSubmission(proposal.work_item_id, active or proposal.proposal_id)
            self._proposals[proposal.proposal_id] = proposal
            self._active_by_item[proposal.work_item_id] = proposal.proposal_id
            self._outcomes[proposal.proposal_id] = ReviewOutcome(proposal.proposal_id, proposal.status)

        logger.info(
            f"Reviewing {proposal.proposal_id} for {proposal.work_item_id} "
            f"(phase {proposal.phase}, proposer {proposal.proposer.value})"
        )
        return self._run(proposal)

    def record_vote(
        self,
        proposal_id: str,
        role,
        round_no: int,
        verdict,
        rationale: str = "",
        concern=Concern.OTHER,
    ) -> bool:
        """
        Record a reviewer's vote.

        Votes are idempotent per (proposal, role, round): a repeat overwrites.

        Returns:
            False if the vote is for a round that is not collecting votes
        """
        role = Role(role)
        vote = ReviewVote(
            role=role,
            proposal_id=proposal_id,
            round=round_no,
            verdict=Verdict(verdict),
            rationale=rationale,
            concern=Concern(concern),
        )
        with self._cond:
            proposal = self._require(proposal_id)
            if role not in self.required_roles(proposal.phase):
                raise ValueError(f"{role.value} is not a required reviewer in phase {proposal.phase}")
            if proposal_id not in self._collecting or round_no != proposal.round:
                logger.debug(f"Ignoring vote from {role.value} for closed round {round_no} of {proposal_id}")
                return False
            if (role, round_no) in proposal.votes:
                logger.debug(f"Overwriting vote from {role.value} in round {round_no} of {proposal_id}")
            proposal.votes[(role, round_no)] = vote
            self._cond.notify_all()
        return True

    def withdraw(self, proposal_id: str, reason: str = "withdrawn by proposer") -> ReviewOutcome:
        """
        Withdraw a proposal before consensus.

        In-flight votes and debate are discarded; the work item returns to
        Pending.
        """
        with self._cond:
            proposal = self._require(proposal_id)
            if proposal.status not in WITHDRAWABLE:
                raise InvalidTransition(
                    f"Cannot withdraw {proposal_id} in status {proposal.status.value}"
                )
            self._set_status(proposal, ProposalStatus.WITHDRAWN, reason)
            proposal.discard_transcript()
            outcome = self._store_outcome(proposal, decision=reason)

        for escalation in self.escalations.get_pending_escalations():
            if escalation.subject_id == proposal_id:
                self.escalations.resolve(escalation.escalation_id, Decision.REJECT, "proposal withdrawn")
        self.router.return_to_pending(proposal.work_item_id, reason)
        logger.info(f"Proposal {proposal_id} withdrawn: {reason}")
        return outcome

    def get_proposal(self, proposal_id: str) -> ChangeProposal:
        with self._cond:
            return self._require(proposal_id)

    def outcome(self, proposal_id: str) -> ReviewOutcome:
        with self._cond:
            self._require(proposal_id)
            return self._outcomes[proposal_id]

    def await_outcome(self, proposal_id: str, timeout: Optional[float] = None) -> ReviewOutcome:
        """Block until the proposal reaches a terminal status (or timeout)."""
        with self._cond:
            proposal = self._require(proposal_id)
            self._cond.wait_for(lambda: proposal.is_terminal, timeout=timeout)
            return self._outcomes[proposal_id]

    def active_proposals(self, phase: Optional[int] = None) -> list[ChangeProposal]:
        with self._cond:
            return [
                p for p in self._proposals.values()
                if not p.is_terminal and (phase is None or p.phase == phase)
            ]

    def settled(self, phase: int) -> tuple[bool, str]:
        """Gate criterion provider: no proposal of the phase still in review."""
        active = self.active_proposals(phase)
        if active:
            return False, "in review: " + ", ".join(sorted(p.proposal_id for p in active))
        return True, "no active proposals"

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def _run(self, proposal: ChangeProposal, resume: bool = False) -> ReviewOutcome:
        try:
            while True:
                votes = self._collect(proposal, fresh=not resume)
                resume = False
                verdicts = {v.verdict for v in votes.values()}

                if verdicts == {Verdict.APPROVED}:
                    return self._finalize(
                        proposal, Decision.APPROVE, DecisionSource.VOTE,
                        f"unanimous approval in round {proposal.round}",
                    )

                if Verdict.OBJECTION in verdicts:
                    if len(proposal.debate_rounds) < self._max_debate_rounds:
                        self._debate(proposal)
                        continue
                    return self._resolve_split(proposal, votes)

                if proposal.revisions >= self.config.max_revisions:
                    return self._escalate(
                        proposal,
                        EscalationSubject.REVISION_LIMIT,
                        self._positions(proposal, votes),
                        f"changes still requested after {proposal.revisions} revision(s)",
                    )
                self._revise(proposal, votes)

        except _ReviewCancelled:
            return self.outcome(proposal.proposal_id)
        except VoteTimeout as e:
            return self._escalate(proposal, EscalationSubject.MISSING_VOTE, [], str(e))

    def _collect(self, proposal: ChangeProposal, fresh: bool) -> dict[Role, ReviewVote]:
        """Open (or resume) a voting round and wait until every role voted."""
        roles = self.required_roles(proposal.phase)
        with self._cond:
            self._check_cancelled(proposal)
            if fresh:
                proposal.round += 1
                if proposal.status == ProposalStatus.PROPOSED:
                    self._set_status(proposal, ProposalStatus.REVIEW_ROUND1, "round opened")
            round_no = proposal.round
            self._collecting.add(proposal.proposal_id)
            missing = self._missing(proposal, roles, round_no)

        logger.debug(f"{proposal.proposal_id}: round {round_no} awaiting {sorted(r.value for r in missing)}")

        def re_request(attempt: int, error: Exception) -> None:
            with self._cond:
                still_missing = self._missing(proposal, roles, round_no)
            logger.info(
                f"{proposal.proposal_id}: re-requesting votes (attempt {attempt + 1}) "
                f"from {sorted(r.value for r in still_missing)}"
            )
            self._request_votes(proposal, still_missing, round_no)

        handler = RetryHandler(self._retry_policy, sleep=self._sleep)
        try:
            self._request_votes(proposal, missing, round_no)
            return handler.execute(
                self._await_votes, proposal, roles, round_no, on_retry=re_request
            )
        finally:
            with self._cond:
                self._collecting.discard(proposal.proposal_id)

    def _await_votes(
        self, proposal: ChangeProposal, roles: frozenset, round_no: int
    ) -> dict[Role, ReviewVote]:
        with self._cond:
            complete = self._cond.wait_for(
                lambda: proposal.status == ProposalStatus.WITHDRAWN
                or not self._missing(proposal, roles, round_no),
                timeout=self.config.vote_timeout_seconds,
            )
            self._check_cancelled(proposal)
            if not complete:
                missing = self._missing(proposal, roles, round_no)
                raise VoteTimeout(proposal.proposal_id, sorted(r.value for r in missing))
            # Close the round while still holding the lock
            self._collecting.discard(proposal.proposal_id)
            return proposal.round_votes(round_no)

    def _request_votes(self, proposal: ChangeProposal, roles, round_no: int) -> None:
        for role in sorted(roles, key=lambda r: r.value):
            self.panel.request_vote(proposal, role, round_no)

    def _debate(self, proposal: ChangeProposal) -> None:
        number = len(proposal.debate_rounds) + 1
        with self._cond:
            self._check_cancelled(proposal)
            self._set_status(proposal, ProposalStatus.DEBATE, f"debate round {number}")

        debate = DebateRound(number=number)
        for role in sorted(self.required_roles(proposal.phase), key=lambda r: r.value):
            position = self.panel.request_position(proposal, role, number)
            if position.role != role:
                raise ValueError(f"Position for {role.value} was stated by {position.role.value}")
            debate.positions[role] = position

        revised = None
        if self.proposer:
            revised = self.proposer.rebut(proposal, list(debate.positions.values()))

        with self._cond:
            self._check_cancelled(proposal)
            if revised is not None and revised != proposal.content:
                proposal.content = revised
                debate.revised = True
            proposal.debate_rounds.append(debate)
        logger.info(
            f"{proposal.proposal_id}: debate round {number} closed"
            + (" with a revised proposal" if debate.revised else "")
        )

    def _revise(self, proposal: ChangeProposal, votes: dict[Role, ReviewVote]) -> None:
        feedback = [v for v in votes.values() if v.verdict == Verdict.REQUESTED_CHANGE]
        revised = self.proposer.revise(proposal, feedback) if self.proposer else None
        with self._cond:
            self._check_cancelled(proposal)
            proposal.revisions += 1
            if revised is not None:
                proposal.content = revised
            self._set_status(
                proposal, ProposalStatus.REVIEW_ROUND1, f"revision {proposal.revisions} resubmitted"
            )

    def _resolve_split(self, proposal: ChangeProposal, votes: dict[Role, ReviewVote]) -> ReviewOutcome:
        positions = self._positions(proposal, votes)
        ruling = self.resolver.decide(proposal.phase, positions)
        if not ruling.deferred:
            logger.info(f"{proposal.proposal_id}: resolver decided {ruling.decision.value} ({ruling.rule})")
            return self._finalize(
                proposal, ruling.decision, DecisionSource.RESOLVER, f"{ruling.rule}: {ruling.reason}"
            )
        outcome = self._escalate(
            proposal, EscalationSubject.PROPOSAL, positions, ruling.reason, error=ConsensusDeadlock
        )
        if outcome.error is not None:
            logger.warning(f"{outcome.error}: {ruling.reason}")
        return outcome

    def _positions(self, proposal: ChangeProposal, votes: dict[Role, ReviewVote]) -> list[Position]:
        last_debate = proposal.debate_rounds[-1] if proposal.debate_rounds else None
        positions = []
        for role in sorted(votes, key=lambda r: r.value):
            vote = votes[role]
            stated = last_debate.positions.get(role) if last_debate else None
            concern = vote.concern
            if concern == Concern.OTHER and stated is not None:
                concern = stated.concern
            positions.append(Position(
                role=role.value,
                stance=Stance.SUPPORT if vote.verdict == Verdict.APPROVED else Stance.OPPOSE,
                concern=concern,
                evidence=stated.evidence if stated else "",
                statement=stated.statement if stated else vote.rationale,
            ))
        return positions

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def _escalate(
        self,
        proposal: ChangeProposal,
        subject: EscalationSubject,
        positions: list[Position],
        reason: str,
        error: Optional[type] = None,
    ) -> ReviewOutcome:
        """
        Raise an escalation for the proposal and report it as pending.

        ``error`` is an error class built from (proposal_id, escalation_id)
        and attached to the outcome.
        """
        def on_resolve(escalation: Escalation) -> None:
            self._on_escalation_resolved(proposal, subject, escalation)

        escalation = self.escalations.raise_escalation(
            subject,
            proposal.proposal_id,
            positions,
            reason=reason,
            work_item_id=proposal.work_item_id,
            phase=proposal.phase,
            on_resolve=on_resolve,
        )
        with self._cond:
            if not proposal.is_terminal:
                self._store_outcome(
                    proposal,
                    decision=f"escalated: {reason}",
                    escalation_id=escalation.escalation_id,
                    error=error(proposal.proposal_id, escalation.escalation_id) if error else None,
                )
            return self._outcomes[proposal.proposal_id]

    def _on_escalation_resolved(
        self,
        proposal: ChangeProposal,
        subject: EscalationSubject,
        escalation: Escalation,
    ) -> None:
        with self._cond:
            if proposal.is_terminal:
                return

        if subject == EscalationSubject.MISSING_VOTE:
            if escalation.decision == Decision.APPROVE:
                logger.info(f"{proposal.proposal_id}: resuming vote collection")
                self._runner(proposal.proposal_id, lambda: self._run(proposal, resume=True))
            else:
                self._close_unrecorded(proposal, _human_reason(escalation))
            return

        self._finalize(
            proposal,
            escalation.decision,
            DecisionSource.HUMAN,
            _human_reason(escalation),
            escalation_id=escalation.escalation_id,
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _finalize(
        self,
        proposal: ChangeProposal,
        decision: Decision,
        source: DecisionSource,
        reason: str,
        escalation_id: Optional[str] = None,
    ) -> ReviewOutcome:
        with self._cond:
            if proposal.is_terminal:
                return self._outcomes[proposal.proposal_id]
            # Same lock hold as the check: withdraw cannot slip in between
            self._set_status(proposal, ProposalStatus.CONSENSUS, reason)

        if decision != Decision.APPROVE:
            return self._reject(proposal, source, reason, escalation_id)

        if not proposal.target:
            return self._commit(
                proposal, source, reason, proposal.base_ref, content_ref(proposal.content),
                (), escalation_id,
            )
        return self._apply_to_catalogue(proposal, source, reason, escalation_id)

    def _apply_to_catalogue(
        self,
        proposal: ChangeProposal,
        source: DecisionSource,
        reason: str,
        escalation_id: Optional[str],
    ) -> ReviewOutcome:
        target = proposal.target
        note = proposal.reason or f"proposal {proposal.proposal_id}"

        if not self.catalogue.exists(target):
            self.catalogue.propose(target, proposal.content, note=note)
            entry = self.catalogue.approve(target)
            return self._commit(proposal, source, reason, None, entry.version_id,
                                (entry.version_id,), escalation_id)

        latest = self.catalogue.get(target)
        if latest.status != EntryStatus.LOCKED:
            self.catalogue.edit(target, proposal.content, note=note)
            entry = self.catalogue.approve(target)
            return self._commit(proposal, source, reason, latest.version_id, entry.version_id,
                                (latest.version_id, entry.version_id), escalation_id)

        def on_resolved(escalation: Escalation, applied: Optional[ChangeDecision]) -> None:
            human = f"{reason}; {_human_reason(escalation)}"
            if applied is None or applied.outcome != ChangeOutcome.APPLIED:
                if applied is not None:
                    human += f"; {applied.note}"
                self._reject(proposal, DecisionSource.HUMAN, human, escalation.escalation_id)
                return
            self._commit(
                proposal, source, human, applied.previous.version_id, applied.entry.version_id,
                (applied.previous.version_id, applied.entry.version_id), escalation.escalation_id,
            )

        change = self.catalogue.request_change(
            target,
            note,
            proposal.change_kind,
            proposal.content,
            work_item_id=proposal.work_item_id,
            phase=proposal.phase,
            on_resolved=on_resolved,
        )
        if change.outcome == ChangeOutcome.ESCALATED:
            with self._cond:
                if not proposal.is_terminal:
                    self._store_outcome(
                        proposal,
                        decision=f"awaiting approval of behavioral change to {latest.version_id}",
                        escalation_id=change.escalation_id,
                    )
                return self._outcomes[proposal.proposal_id]

        return self._commit(
            proposal, source, reason, change.previous.version_id, change.entry.version_id,
            (change.previous.version_id, change.entry.version_id), escalation_id,
        )

    def _commit(
        self,
        proposal: ChangeProposal,
        source: DecisionSource,
        reason: str,
        before: Optional[str],
        after: Optional[str],
        catalogue_refs: tuple,
        escalation_id: Optional[str],
    ) -> ReviewOutcome:
        record = self._build_record(
            proposal, DECISION_APPROVED, source, reason, before, after, catalogue_refs, escalation_id
        )
        seq = self.chronicle.append(record)
        self.router.mark_done(proposal.work_item_id, proposal.proposal_id)

        with self._cond:
            self._set_status(proposal, ProposalStatus.COMMITTED, f"chronicle #{seq}")
            outcome = self._store_outcome(
                proposal,
                decision=DECISION_APPROVED,
                decided_by=source.value,
                chronicle_seq=seq,
                escalation_id=escalation_id,
                catalogue_ref=after if catalogue_refs else None,
            )
        logger.info(f"Proposal {proposal.proposal_id} committed as chronicle #{seq} ({source.value})")
        return outcome

    def _reject(
        self,
        proposal: ChangeProposal,
        source: DecisionSource,
        reason: str,
        escalation_id: Optional[str],
    ) -> ReviewOutcome:
        before = proposal.base_ref
        refs: tuple = ()
        if proposal.target and self.catalogue.exists(proposal.target):
            before = self.catalogue.get(proposal.target).version_id
            refs = (before,)

        record = self._build_record(
            proposal, DECISION_REJECTED, source, reason, before, before, refs, escalation_id
        )
        seq = self.chronicle.append(record)
        self.router.return_to_pending(proposal.work_item_id, f"proposal {proposal.proposal_id} rejected")

        with self._cond:
            self._set_status(proposal, ProposalStatus.REJECTED, reason)
            outcome = self._store_outcome(
                proposal,
                decision=DECISION_REJECTED,
                decided_by=source.value,
                chronicle_seq=seq,
                escalation_id=escalation_id,
            )
        logger.info(f"Proposal {proposal.proposal_id} rejected as chronicle #{seq} ({source.value})")
        return outcome

    def _close_unrecorded(self, proposal: ChangeProposal, reason: str) -> None:
        """Reject without a chronicle record; used when the vote set is incomplete."""
        with self._cond:
            if proposal.is_terminal:
                return
            self._set_status(proposal, ProposalStatus.REJECTED, reason)
            self._store_outcome(proposal, decision=DECISION_REJECTED, decided_by=DecisionSource.HUMAN.value)
        self.router.return_to_pending(proposal.work_item_id, reason)
        logger.warning(f"Proposal {proposal.proposal_id} rejected with incomplete votes: {reason}")

    def _build_record(
        self,
        proposal: ChangeProposal,
        decision: str,
        source: DecisionSource,
        reason: str,
        before: Optional[str],
        after: Optional[str],
        catalogue_refs: tuple,
        escalation_id: Optional[str],
    ) -> ChronicleRecord:
        with self._cond:
            votes = tuple(
                VoteEntry(
                    role=v.role.value,
                    round=v.round,
                    verdict=v.verdict.value,
                    rationale=v.rationale,
                    concern=v.concern.value,
                )
                for v in proposal.all_votes()
            )
            debate = tuple(
                DebateEntry(
                    round=d.number,
                    role=role.value,
                    statement=p.statement,
                    evidence=p.evidence,
                    concern=p.concern.value,
                )
                for d in proposal.debate_rounds
                for role, p in sorted(d.positions.items(), key=lambda kv: kv[0].value)
            )
        return ChronicleRecord(
            proposal_id=proposal.proposal_id,
            work_item_id=proposal.work_item_id,
            phase=proposal.phase,
            before=before,
            after=after,
            votes=votes,
            debate=debate,
            decision=decision,
            decided_by=source,
            decision_reason=reason,
            required_roles=tuple(sorted(r.value for r in self.required_roles(proposal.phase))),
            catalogue_refs=tuple(catalogue_refs),
            escalation_id=escalation_id,
        )

    # ------------------------------------------------------------------
    # Helpers (call with self._cond held)
    # ------------------------------------------------------------------

    def _require(self, proposal_id: str) -> ChangeProposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise UnknownItem(f"Proposal not found: {proposal_id}")
        return proposal

    @staticmethod
    def _missing(proposal: ChangeProposal, roles: frozenset, round_no: int) -> set:
        return set(roles) - set(proposal.round_votes(round_no))

    @staticmethod
    def _check_cancelled(proposal: ChangeProposal) -> None:
        if proposal.status == ProposalStatus.WITHDRAWN:
            raise _ReviewCancelled(proposal.proposal_id)

    def _set_status(self, proposal: ChangeProposal, status: ProposalStatus, reason: str) -> None:
        old = proposal.status
        proposal.set_status(status, reason)
        logger.debug(f"{proposal.proposal_id}: {old.value} -> {status.value} ({reason})")
        if proposal.is_terminal:
            if self._active_by_item.get(proposal.work_item_id) == proposal.proposal_id:
                del self._active_by_item[proposal.work_item_id]
        self._cond.notify_all()
        if self.events:
            self.events.publish(EventTypes.PROPOSAL_TRANSITIONED, {
                "proposal_id": proposal.proposal_id,
                "from": old.value,
                "to": status.value,
                "reason": reason,
            })

    def _store_outcome(self, proposal: ChangeProposal, **fields) -> ReviewOutcome:
        outcome = ReviewOutcome(
            proposal_id=proposal.proposal_id,
            status=proposal.status,
            debate_rounds=len(proposal.debate_rounds),
            **fields,
        )
        self._outcomes[proposal.proposal_id] = outcome
        self._cond.notify_all()
        return outcome
