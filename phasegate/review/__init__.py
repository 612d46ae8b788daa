"""
Review Package

Multi-role review of change proposals.

Components:
- ChangeProposal / ReviewVote / DebatePosition: protocol data
- ReviewCoordinator: propose -> vote -> debate -> consensus -> commit
"""

from .schema import (
    ChangeProposal,
    DebatePosition,
    DebateRound,
    EvidenceKind,
    ProposalStatus,
    Proposer,
    ReviewerPanel,
    ReviewOutcome,
    ReviewVote,
    TERMINAL_STATUSES,
    Verdict,
    content_ref,
)
from .coordinator import ReviewCoordinator

__all__ = [
    # Schema
    "ChangeProposal",
    "DebatePosition",
    "DebateRound",
    "EvidenceKind",
    "ProposalStatus",
    "Proposer",
    "ReviewerPanel",
    "ReviewOutcome",
    "ReviewVote",
    "TERMINAL_STATUSES",
    "Verdict",
    "content_ref",
    # Components
    "ReviewCoordinator",
]
