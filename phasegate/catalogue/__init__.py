"""Versioned, lock-once rule catalogue."""

from .schema import (
    CatalogueEntry,
    ChangeDecision,
    ChangeKind,
    ChangeOutcome,
    EntryStatus,
    version_id,
)
from .store import CatalogueStore, diff_note

__all__ = [
    "CatalogueEntry",
    "ChangeDecision",
    "ChangeKind",
    "ChangeOutcome",
    "EntryStatus",
    "version_id",
    "CatalogueStore",
    "diff_note",
]
