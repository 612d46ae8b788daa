"""
Review Schema Definitions

Data models for the review protocol:
- ChangeProposal: a candidate modification with its review transcript
- ReviewVote: one role's verdict in one round
- DebatePosition / DebateRound: evidence-backed statements between re-votes
- ReviewOutcome: what ``ReviewCoordinator.submit`` reports
"""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from ..catalogue import ChangeKind
from ..errors import InvalidTransition, PhaseGateError
from ..roles import Concern, Role


class Verdict(str, Enum):
    APPROVED = "approved"
    REQUESTED_CHANGE = "requested_change"
    OBJECTION = "objection"


class ProposalStatus(str, Enum):
    PROPOSED = "proposed"
    REVIEW_ROUND1 = "review_round1"
    DEBATE = "debate"
    CONSENSUS = "consensus"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    COMMITTED = "committed"


TERMINAL_STATUSES = {
    ProposalStatus.REJECTED,
    ProposalStatus.WITHDRAWN,
    ProposalStatus.COMMITTED,
}


class EvidenceKind(str, Enum):
    """What a debate position cites."""
    CATALOGUE_REF = "catalogue_ref"
    PRIOR_DECISION = "prior_decision"
    CRITERION = "criterion"


@dataclass(frozen=True)
class ReviewVote:
    role: Role
    proposal_id: str
    round: int
    verdict: Verdict
    rationale: str = ""
    concern: Concern = Concern.OTHER


@dataclass(frozen=True)
class DebatePosition:
    role: Role
    statement: str
    evidence_kind: EvidenceKind
    evidence_ref: str
    concern: Concern = Concern.OTHER

    def __post_init__(self):
        if not self.evidence_ref.strip():
            raise ValueError(f"Debate position from {self.role.value} cites no evidence")

    @property
    def evidence(self) -> str:
        return f"{self.evidence_kind.value}:{self.evidence_ref}"


@dataclass
class DebateRound:
    number: int
    positions: dict[Role, DebatePosition] = field(default_factory=dict)
    revised: bool = False


def content_ref(content: str) -> str:
    """Snapshot reference for opaque content."""
    return "sha256:" + hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


@dataclass
class ChangeProposal:
    """A candidate modification of one work item."""
    proposal_id: str
    work_item_id: str
    content: str
    proposer: Role
    phase: int
    target: Optional[str] = None          # Catalogue entry id; None for chronicle-only changes
    change_kind: ChangeKind = ChangeKind.BEHAVIORAL
    reason: str = ""
    base_ref: Optional[str] = None        # Snapshot the change applies to

    status: ProposalStatus = ProposalStatus.PROPOSED
    round: int = 0
    votes: dict[tuple[Role, int], ReviewVote] = field(default_factory=dict)
    debate_rounds: list[DebateRound] = field(default_factory=list)
    revisions: int = 0
    history: list[dict] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        work_item_id: str,
        content: str,
        proposer: Role,
        phase: int,
        target: Optional[str] = None,
        change_kind: ChangeKind = ChangeKind.BEHAVIORAL,
        reason: str = "",
        base_ref: Optional[str] = None,
    ) -> "ChangeProposal":
        """Create a new proposal with generated ID."""
        return cls(
            proposal_id=f"prop-{uuid.uuid4().hex[:8]}",
            work_item_id=work_item_id,
            content=content,
            proposer=Role(proposer),
            phase=phase,
            target=target,
            change_kind=ChangeKind(change_kind),
            reason=reason,
            base_ref=base_ref,
        )

    def round_votes(self, round_no: Optional[int] = None) -> dict[Role, ReviewVote]:
        """Votes cast in one round (default: the current one), keyed by role."""
        number = self.round if round_no is None else round_no
        return {role: vote for (role, r), vote in self.votes.items() if r == number}

    def all_votes(self) -> list[ReviewVote]:
        return sorted(self.votes.values(), key=lambda v: (v.round, v.role.value))

    def set_status(self, status: ProposalStatus, reason: str = "") -> None:
        if self.is_terminal:
            raise InvalidTransition(
                f"{self.proposal_id} is already {self.status.value}, cannot move to {status.value}"
            )
        self.history.append({
            "from": self.status.value,
            "to": status.value,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        self.status = status

    def discard_transcript(self) -> None:
        self.votes.clear()
        self.debate_rounds.clear()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class ReviewOutcome:
    proposal_id: str
    status: ProposalStatus
    decision: str = ""
    decided_by: Optional[str] = None
    chronicle_seq: Optional[int] = None
    escalation_id: Optional[str] = None
    catalogue_ref: Optional[str] = None
    debate_rounds: int = 0
    error: Optional[PhaseGateError] = None

    @property
    def escalated(self) -> bool:
        return self.escalation_id is not None and self.status not in TERMINAL_STATUSES


class ReviewerPanel(Protocol):
    """
    External reviewers.

    ``request_vote`` asks a role to vote; the vote arrives later through
    ``ReviewCoordinator.record_vote``. ``request_position`` is answered
    synchronously during debate.
    """

    def request_vote(self, proposal: ChangeProposal, role: Role, round_no: int) -> None:
        ...

    def request_position(
        self, proposal: ChangeProposal, role: Role, debate_round: int
    ) -> DebatePosition:
        ...


class Proposer(Protocol):
    """The authoring side of a proposal."""

    def revise(self, proposal: ChangeProposal, feedback: list[ReviewVote]) -> Optional[str]:
        """Return revised content, or None to resubmit unchanged."""
        ...

    def rebut(self, proposal: ChangeProposal, positions: list[DebatePosition]) -> Optional[str]:
        """Return revised content after debate, or None to hold position."""
        ...
