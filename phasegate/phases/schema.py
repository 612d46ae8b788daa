"""
Phase and gate data model.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class PhaseState(str, Enum):
    PENDING = "pending"
    OPEN = "open"
    CLOSED = "closed"


# ============================================================
# Gate Criteria
# ============================================================

@dataclass
class GateCriterion:
    """One condition that must hold before a phase can close"""
    criterion_id: str
    description: str = ""
    kind: str = "manual"
    evidence_ref: Optional[str] = None  # Set by record_evidence for manual criteria

    def to_dict(self) -> dict:
        return {
            "id": self.criterion_id,
            "description": self.description,
            "kind": self.kind,
            "evidence_ref": self.evidence_ref,
        }


@dataclass
class CriterionResult:
    """Result of evaluating a single criterion"""
    criterion_id: str
    satisfied: bool
    reason: str = ""

    def to_dict(self) -> dict:
        return {"id": self.criterion_id, "satisfied": self.satisfied, "reason": self.reason}


@dataclass
class GateStatus:
    """Result of evaluating a phase gate"""
    phase: int
    satisfied: bool
    results: List[CriterionResult] = field(default_factory=list)
    open_escalations: List[str] = field(default_factory=list)

    @property
    def unmet_criteria(self) -> List[CriterionResult]:
        return [r for r in self.results if not r.satisfied]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "satisfied": self.satisfied,
            "unmetCriteria": [r.criterion_id for r in self.unmet_criteria],
            "openEscalations": list(self.open_escalations),
        }


# ============================================================
# Phases
# ============================================================

@dataclass
class PhaseTransition:
    """Record of a phase state change"""
    from_state: PhaseState
    to_state: PhaseState
    reason: str = ""
    override: bool = False
    escalation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "reason": self.reason,
            "override": self.override,
            "escalation_id": self.escalation_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Phase:
    """Runtime state of one phase"""
    ordinal: int
    name: str
    criteria: List[GateCriterion] = field(default_factory=list)
    state: PhaseState = PhaseState.PENDING
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    transitions: List[PhaseTransition] = field(default_factory=list)

    def record(
        self,
        to_state: PhaseState,
        reason: str = "",
        override: bool = False,
        escalation_id: Optional[str] = None,
    ) -> None:
        self.transitions.append(PhaseTransition(
            from_state=self.state,
            to_state=to_state,
            reason=reason,
            override=override,
            escalation_id=escalation_id,
        ))
        now = datetime.now(timezone.utc)
        if to_state == PhaseState.OPEN:
            self.opened_at = now
            self.closed_at = None
        elif to_state == PhaseState.CLOSED:
            self.closed_at = now
        self.state = to_state

    def criterion(self, criterion_id: str) -> Optional[GateCriterion]:
        for criterion in self.criteria:
            if criterion.criterion_id == criterion_id:
                return criterion
        return None

    def to_dict(self) -> dict:
        return {
            "ordinal": self.ordinal,
            "name": self.name,
            "state": self.state.value,
            "criteria": [c.to_dict() for c in self.criteria],
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "transitions": [t.to_dict() for t in self.transitions],
        }
