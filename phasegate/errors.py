"""
Error taxonomy for the review workflow engine.

Every error the engine raises derives from PhaseGateError so callers can
catch the whole family at one seam. Protocol errors (IncompleteReviewRecord,
CatalogueLockViolation) are never retried; VoteTimeout is the only error the
engine recovers from locally.
"""

from typing import Any, Optional, Sequence


class PhaseGateError(Exception):
    """Base exception for engine errors"""
    pass


class RetryableError(PhaseGateError):
    """Error that should be retried"""
    pass


class NonRetryableError(PhaseGateError):
    """Error that should not be retried"""
    pass


class ConfigurationError(NonRetryableError):
    """Configuration is invalid"""
    pass


class UnknownItem(NonRetryableError):
    """Referenced work item, proposal, entry or escalation does not exist"""
    pass


class InvalidTransition(NonRetryableError):
    """Requested state transition is not allowed from the current state"""
    pass


class PhaseSequenceError(InvalidTransition):
    """Phase opened, advanced or reopened out of order"""
    pass


class PhaseMismatch(InvalidTransition):
    """Work item does not belong to the currently open phase"""
    pass


class GateNotSatisfied(PhaseGateError):
    """
    Phase advance blocked by unmet gate criteria.

    Recoverable by completing more work; carries the exact criteria that
    were unmet at evaluation time.
    """

    def __init__(self, phase: int, unmet_criteria: Sequence[Any]):
        self.phase = phase
        self.unmet_criteria = list(unmet_criteria)
        ids = ", ".join(getattr(c, "criterion_id", str(c)) for c in self.unmet_criteria)
        super().__init__(f"Phase {phase} gate not satisfied: {ids}")


class DuplicateSubmission(NonRetryableError):
    """A second active proposal was submitted for one work item"""

    def __init__(self, item_id: str, active_proposal_id: Optional[str] = None):
        self.item_id = item_id
        self.active_proposal_id = active_proposal_id
        message = f"Work item {item_id} already has an active proposal"
        if active_proposal_id:
            message += f" ({active_proposal_id})"
        super().__init__(message)


class IncompleteReviewRecord(NonRetryableError):
    """Chronicle append attempted without a full vote set or a decision"""

    def __init__(self, proposal_id: str, missing_roles: Sequence[str] = (), reason: str = ""):
        self.proposal_id = proposal_id
        self.missing_roles = list(missing_roles)
        detail = reason or f"missing votes from {', '.join(self.missing_roles)}"
        super().__init__(f"Incomplete review record for {proposal_id}: {detail}")


class CatalogueLockViolation(NonRetryableError):
    """Direct mutation or deletion of a locked catalogue entry"""

    def __init__(self, entry_id: str, reason: str):
        self.entry_id = entry_id
        super().__init__(f"Catalogue entry {entry_id} is locked: {reason}")


class ConcurrentModification(RetryableError):
    """Catalogue compare-and-swap lost a race against another writer"""

    def __init__(self, entry_id: str, expected_version: int, actual_version: int):
        self.entry_id = entry_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Entry {entry_id}: expected version {expected_version}, "
            f"but latest is {actual_version}"
        )


class ConsensusDeadlock(PhaseGateError):
    """Debate rounds exhausted and the resolver could not decide"""

    def __init__(self, proposal_id: str, escalation_id: Optional[str] = None):
        self.proposal_id = proposal_id
        self.escalation_id = escalation_id
        super().__init__(
            f"Consensus deadlock on {proposal_id}"
            + (f", escalated as {escalation_id}" if escalation_id else "")
        )


class VoteTimeout(RetryableError):
    """A required reviewer did not vote within the wait window"""

    def __init__(self, proposal_id: str, missing_roles: Sequence[str]):
        self.proposal_id = proposal_id
        self.missing_roles = list(missing_roles)
        super().__init__(
            f"Timed out waiting for votes on {proposal_id} from {', '.join(self.missing_roles)}"
        )
