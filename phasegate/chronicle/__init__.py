"""Append-only change chronicle."""

from .schema import ChronicleRecord, DebateEntry, DecisionSource, VoteEntry
from .store import ChronicleStore

__all__ = [
    "ChronicleRecord",
    "DebateEntry",
    "DecisionSource",
    "VoteEntry",
    "ChronicleStore",
]
