"""
Escalation Package

Human escalation and conflict resolution.

Components:
- ConflictResolver: Pure tie-break over disputing positions
- EscalationManager: Blocks work until a human decision arrives
"""

from .schema import (
    Decision,
    Escalation,
    EscalationStatus,
    EscalationSubject,
    Position,
    Resolution,
    Stance,
)
from .resolver import ConflictResolver, ResolverDecision, decide
from .manager import DecisionProvider, EscalationManager

__all__ = [
    # Schema
    "Decision",
    "Escalation",
    "EscalationStatus",
    "EscalationSubject",
    "Position",
    "Resolution",
    "Stance",
    # Components
    "ConflictResolver",
    "ResolverDecision",
    "decide",
    "DecisionProvider",
    "EscalationManager",
]
