"""
Reviewer capability roles and safety concerns.

Role dispatch is a fixed enum resolved through a per-phase lookup table;
see ``required_reviewer_roles``.
"""

from enum import Enum
from typing import Iterable, Mapping, Optional


class Role(str, Enum):
    """Capability roles that author or review work."""
    ANALYST = "analyst"
    ARCHITECT = "architect"
    TEST_ENGINEER = "test_engineer"
    IMPLEMENTER = "implementer"
    CATALOGUE_CURATOR = "catalogue_curator"
    QUALITY_REVIEWER = "quality_reviewer"


class Concern(str, Enum):
    """What a reviewer position is protecting."""
    TESTABILITY = "testability"
    FIDELITY = "fidelity"
    QUALITY = "quality"
    OTHER = "other"


# Default phase ordinal -> required reviewer roles
DEFAULT_REVIEWER_TABLE: dict[int, frozenset[Role]] = {
    1: frozenset({Role.ANALYST, Role.TEST_ENGINEER}),
    2: frozenset({Role.ANALYST, Role.ARCHITECT, Role.CATALOGUE_CURATOR}),
    3: frozenset({Role.IMPLEMENTER, Role.TEST_ENGINEER, Role.ARCHITECT}),
    4: frozenset({Role.QUALITY_REVIEWER, Role.ARCHITECT, Role.TEST_ENGINEER}),
}


def parse_roles(values: Iterable[str]) -> frozenset[Role]:
    """Parse role names, raising ValueError on unknown ones."""
    return frozenset(Role(v) for v in values)


def required_reviewer_roles(
    phase: int,
    table: Optional[Mapping[int, frozenset[Role]]] = None,
) -> frozenset[Role]:
    """
    Look up the reviewer roles that must vote on proposals in a phase.

    Args:
        phase: Phase ordinal
        table: Lookup table (defaults to DEFAULT_REVIEWER_TABLE)

    Raises:
        KeyError: If the phase has no configured reviewers
    """
    lookup = DEFAULT_REVIEWER_TABLE if table is None else table
    roles = lookup.get(phase)
    if not roles:
        raise KeyError(f"No reviewer roles configured for phase {phase}")
    return roles


def default_priority(phase: int, total_phases: int) -> Concern:
    """
    Safety priority by position in the phase sequence.

    First third favours testability, middle third fidelity, last third quality.
    """
    if total_phases <= 0:
        return Concern.FIDELITY
    position = (phase - 1) / total_phases
    if position < 1 / 3:
        return Concern.TESTABILITY
    if position < 2 / 3:
        return Concern.FIDELITY
    return Concern.QUALITY
