"""
Catalogue Schema Definitions

A catalogue entry is one immutable version of a canonical rule. Status
transitions replace the stored version object; they never edit it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EntryStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    LOCKED = "locked"
    SUPERSEDED = "superseded"
    INVALID = "invalid"


class ChangeKind(str, Enum):
    """Classification of a change request against an entry."""
    CLERICAL = "clerical"        # Non-semantic correction
    BEHAVIORAL = "behavioral"    # Meaning changes
    DELETION = "deletion"        # Never allowed


class ChangeOutcome(str, Enum):
    APPLIED = "applied"
    ESCALATED = "escalated"
    STALE = "stale"


UNSETTLED_STATUSES = {EntryStatus.DRAFT, EntryStatus.UNDER_REVIEW}


def version_id(entry_id: str, version: int) -> str:
    return f"{entry_id}@v{version}"


class CatalogueEntry(BaseModel):
    """One version of a catalogue entry."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    version: int = Field(..., ge=1)
    status: EntryStatus = EntryStatus.DRAFT
    content: str
    supersedes: Optional[str] = Field(None, description="Version id of the prior version")
    note: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def version_id(self) -> str:
        return version_id(self.id, self.version)

    def to_export(self) -> dict:
        """Stable ledger export schema."""
        return {
            "id": self.id,
            "version": self.version,
            "status": self.status.value,
            "content": self.content,
            "supersedes": self.supersedes,
        }


@dataclass(frozen=True)
class ChangeDecision:
    """Result of a change request."""
    entry_id: str
    kind: ChangeKind
    outcome: ChangeOutcome
    entry: Optional[CatalogueEntry] = None
    previous: Optional[CatalogueEntry] = None
    escalation_id: Optional[str] = None
    note: str = ""
