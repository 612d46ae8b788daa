"""
Phase-gated review workflow engine.

Moves a body of work through ordered phases. Every change is reviewed by
the roles the phase requires, debated when contested, recorded in an
append-only chronicle and, for catalogue entries, versioned and locked at
the phase gate.
"""

__version__ = "0.3.0"

from .config import ConfigManager, WorkflowConfig
from .engine import ReviewEngine
from .errors import PhaseGateError
from .roles import Concern, Role

__all__ = [
    "__version__",
    "ConfigManager",
    "WorkflowConfig",
    "ReviewEngine",
    "PhaseGateError",
    "Concern",
    "Role",
]
