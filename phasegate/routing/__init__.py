"""Work item routing."""

from .schema import WorkItem, WorkItemDescriptor, WorkItemStatus
from .router import TaskRouter

__all__ = ["WorkItem", "WorkItemDescriptor", "WorkItemStatus", "TaskRouter"]
