"""
Escalation Schema Definitions

Data models for the human escalation system:
- EscalationSubject: What was escalated
- Position: A disputing party's stance
- Escalation: Full escalation request
- Resolution: The human decision that closes it
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from ..roles import Concern


class EscalationSubject(str, Enum):
    """Why automatic resolution was not permitted."""
    PROPOSAL = "proposal"                    # Debate exhausted, resolver deferred
    CATALOGUE_CHANGE = "catalogue_change"    # Behavioral change to a locked entry
    PHASE_REOPEN = "phase_reopen"            # Override to reopen a closed phase
    MISSING_VOTE = "missing_vote"            # Vote retries exhausted
    REVISION_LIMIT = "revision_limit"        # Too many change requests


class EscalationStatus(str, Enum):
    """Current status of an escalation."""
    PENDING = "pending"
    RESOLVED = "resolved"


class Decision(str, Enum):
    """Outcome of a binding decision, human or resolver."""
    APPROVE = "approve"   # Apply the proposed change
    REJECT = "reject"     # Retain the existing state


class Stance(str, Enum):
    """Where a party stands on the proposed change."""
    SUPPORT = "support"
    OPPOSE = "oppose"


@dataclass(frozen=True)
class Position:
    """A disputing party's stance, with the concern it protects."""
    role: str
    stance: Stance
    concern: Concern = Concern.OTHER
    evidence: str = ""
    statement: str = ""

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "stance": self.stance.value,
            "concern": self.concern.value,
            "evidence": self.evidence,
            "statement": self.statement,
        }


@dataclass(frozen=True)
class Resolution:
    """A decision returned by the human decision interface."""
    decision: Decision
    text: str = ""


@dataclass
class Escalation:
    """
    A complete escalation request.

    Created when automatic resolution is impossible. Never times out;
    only an explicit resolution closes it.
    """
    escalation_id: str
    subject: EscalationSubject
    subject_id: str

    positions: list[Position] = field(default_factory=list)
    reason: str = ""

    work_item_id: Optional[str] = None
    phase: Optional[int] = None

    status: EscalationStatus = EscalationStatus.PENDING
    decision: Optional[Decision] = None
    decision_text: str = ""

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == EscalationStatus.PENDING

    @property
    def age_in_hours(self) -> float:
        end = self.resolved_at or datetime.now(timezone.utc)
        return (end - self.created_at).total_seconds() / 3600

    def to_dict(self) -> dict:
        return {
            "escalation_id": self.escalation_id,
            "subject": self.subject.value,
            "subject_id": self.subject_id,
            "positions": [p.to_dict() for p in self.positions],
            "reason": self.reason,
            "work_item_id": self.work_item_id,
            "phase": self.phase,
            "status": self.status.value,
            "decision": self.decision.value if self.decision else None,
            "decision_text": self.decision_text,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }
