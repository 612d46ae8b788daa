"""
Work item schema.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class WorkItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    DONE = "done"
    BLOCKED = "blocked"


class WorkItemDescriptor(BaseModel):
    """A unit of work accepted from the external inventory."""
    item_id: str = Field(..., min_length=1, description="Opaque identifier")
    phase: int = Field(..., ge=1, description="Phase the item belongs to")
    description: str = ""


@dataclass
class WorkItem:
    """Runtime state of one work item. Owned by TaskRouter."""
    item_id: str
    phase: int
    description: str = ""
    status: WorkItemStatus = WorkItemStatus.PENDING
    role: Optional[str] = None
    active_proposal_id: Optional[str] = None
    blocked_by: Optional[str] = None
    status_before_block: Optional[WorkItemStatus] = None
    history: list[dict] = field(default_factory=list)

    def record(self, new_status: WorkItemStatus, reason: str = "") -> None:
        self.history.append({
            "from": self.status.value,
            "to": new_status.value,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        self.status = new_status
