"""
Conflict resolution for reviews that stay split after debate.

``decide`` is a pure function. Rules, in order:

1. Phase safety priority: if only one side cites the phase's priority
   concern, that side wins.
2. If both sides cite it, the dispute is about safety itself and cannot be
   settled by preference: defer.
3. Otherwise the more conservative option wins. Retaining the existing state
   is always more conservative than applying the change.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from ..roles import Concern
from .schema import Decision, Position, Stance

RULE_PHASE_PRIORITY = "phase_priority"
RULE_CONSERVATIVE = "conservative"
RULE_DEFERRED = "deferred"

# Lower rank = more conservative
CONSERVATIVE_RANK = {
    Decision.REJECT: 0,
    Decision.APPROVE: 1,
}


@dataclass(frozen=True)
class ResolverDecision:
    """A binding decision, or a deferral when ``decision`` is None."""
    decision: Optional[Decision]
    rule: str
    reason: str

    @property
    def deferred(self) -> bool:
        return self.decision is None


def _stance_decision(stance: Stance) -> Decision:
    return Decision.APPROVE if stance == Stance.SUPPORT else Decision.REJECT


def decide(priority: Concern, positions: Sequence[Position]) -> ResolverDecision:
    """
    Render a binding decision over disputing positions.

    Args:
        priority: The phase's safety priority concern
        positions: Final positions of every reviewer

    Returns:
        ResolverDecision; ``decision`` is None when the case must be escalated
    """
    if not positions:
        return ResolverDecision(None, RULE_DEFERRED, "No positions to decide between")

    stances = {p.stance for p in positions}
    if len(stances) == 1:
        # Not actually split
        only = stances.pop()
        return ResolverDecision(
            _stance_decision(only), RULE_CONSERVATIVE, f"All positions {only.value}"
        )

    citing = {p.stance for p in positions if p.concern == priority}
    if len(citing) == 1:
        winner = citing.pop()
        return ResolverDecision(
            _stance_decision(winner),
            RULE_PHASE_PRIORITY,
            f"Only the {winner.value} side cites phase priority '{priority.value}'",
        )
    if len(citing) > 1:
        return ResolverDecision(
            None,
            RULE_DEFERRED,
            f"Both sides cite phase priority '{priority.value}'",
        )

    options = sorted({_stance_decision(s) for s in stances}, key=CONSERVATIVE_RANK.__getitem__)
    return ResolverDecision(
        options[0],
        RULE_CONSERVATIVE,
        f"No side cites '{priority.value}'; the more conservative option wins",
    )


class ConflictResolver:
    """Binds ``decide`` to a phase -> priority lookup."""

    def __init__(self, priority_for):
        """
        Args:
            priority_for: Callable mapping a phase ordinal to its Concern
        """
        self._priority_for = priority_for

    def decide(self, phase: int, positions: Sequence[Position]) -> ResolverDecision:
        return decide(self._priority_for(phase), positions)
