"""Phase sequencing and gate evaluation."""

from .schema import (
    CriterionResult,
    GateCriterion,
    GateStatus,
    Phase,
    PhaseState,
    PhaseTransition,
)
from .controller import PhaseController

__all__ = [
    "CriterionResult",
    "GateCriterion",
    "GateStatus",
    "Phase",
    "PhaseState",
    "PhaseTransition",
    "PhaseController",
]
