"""
Chronicle Schema Definitions

A chronicle record is the permanent, immutable account of one reviewed
change: the full vote and debate transcript and the final decision.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionSource(str, Enum):
    """Who made the final decision."""
    VOTE = "vote"
    RESOLVER = "resolver"
    HUMAN = "human"


class VoteEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    round: int
    verdict: str
    rationale: str = ""
    concern: str = "other"


class DebateEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    round: int
    role: str
    statement: str = ""
    evidence: str = ""
    concern: str = "other"


class ChronicleRecord(BaseModel):
    """One appended chronicle record. ``seq`` is assigned on append."""
    model_config = ConfigDict(frozen=True)

    seq: Optional[int] = None
    proposal_id: str = Field(..., min_length=1)
    work_item_id: str = ""
    phase: int = 0
    before: Optional[str] = None
    after: Optional[str] = None
    votes: tuple[VoteEntry, ...] = ()
    debate: tuple[DebateEntry, ...] = ()
    decision: str = ""
    decided_by: DecisionSource = DecisionSource.VOTE
    decision_reason: str = ""
    required_roles: tuple[str, ...] = ()
    catalogue_refs: tuple[str, ...] = ()
    escalation_id: Optional[str] = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def missing_roles(self) -> list[str]:
        """Required roles without a vote in the deciding (last) round."""
        final = max((v.round for v in self.votes), default=None)
        voted = {v.role for v in self.votes if v.round == final}
        return sorted(set(self.required_roles) - voted)

    def to_export(self) -> dict:
        """Stable ledger export schema."""
        return {
            "seq": self.seq,
            "proposalId": self.proposal_id,
            "before": self.before,
            "after": self.after,
            "votes": [v.model_dump() for v in self.votes],
            "decision": self.decision,
        }
