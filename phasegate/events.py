"""
Event Bus

Notifications about phase, item, proposal, ledger and escalation changes.
Nothing in the engine depends on a subscriber being present; the bus is an
observation point for hosts and tests.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

Event = Dict[str, Any]
Handler = Callable[[Event], None]

WILDCARD = "*"


class EventBus:
    """
    Thread-safe publish/subscribe with a bounded history.

    Handlers run on the publishing thread after the bus lock is released,
    so a handler may publish in turn.
    """

    def __init__(self, max_history: int = 1000):
        self._handlers: Dict[str, List[Handler]] = {}
        self._history: Deque[Event] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Handler) -> None:
        """Register a handler for one event type, or for all with ``"*"``."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event_type: str, data: Dict[str, Any]) -> Event:
        event = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._history.append(event)
            targets = self._handlers.get(event_type, []) + self._handlers.get(WILDCARD, [])

        for handler in targets:
            try:
                handler(event)
            except Exception:
                # A broken observer must not fail the transition that published
                logger.exception(f"Handler for {event_type} raised")
        return event

    def get_history(self, event_type: Optional[str] = None, limit: int = 100) -> List[Event]:
        """Recorded events, newest first, optionally of one type."""
        with self._lock:
            events = [e for e in self._history if event_type is None or e["type"] == event_type]
        return events[::-1][:limit]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


class EventTypes:
    PHASE_OPENED = "phase.opened"
    PHASE_CLOSED = "phase.closed"
    PHASE_REOPENED = "phase.reopened"
    GATE_BLOCKED = "gate.blocked"
    ITEM_TRANSITIONED = "item.transitioned"
    PROPOSAL_TRANSITIONED = "proposal.transitioned"
    CATALOGUE_VERSIONED = "catalogue.versioned"
    CATALOGUE_CLERICAL = "catalogue.clerical_correction"
    CHRONICLE_APPENDED = "chronicle.appended"
    ESCALATION_RAISED = "escalation.raised"
    ESCALATION_RESOLVED = "escalation.resolved"
