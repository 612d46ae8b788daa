"""
Catalogue Storage

Versioned, lock-once store for canonical rule entries.

Each entry id maps to its version chain. Versions are never removed:
a change appends version v+1 whose ``supersedes`` points to v, and v is
replaced by a copy with status Superseded. Every write is a compare-and-swap
on the latest version number.
"""

import difflib
import logging
import threading
from typing import Callable, Optional

from ..errors import (
    CatalogueLockViolation,
    ConcurrentModification,
    ConfigurationError,
    InvalidTransition,
    UnknownItem,
)
from ..escalation import Decision, Escalation, EscalationManager, EscalationSubject
from ..events import EventBus, EventTypes
from .schema import (
    UNSETTLED_STATUSES,
    CatalogueEntry,
    ChangeDecision,
    ChangeKind,
    ChangeOutcome,
    EntryStatus,
)

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Escalation, Optional[ChangeDecision]], None]


def diff_note(old: str, new: str, old_ref: str, new_ref: str) -> str:
    """Unified diff between two contents, used to annotate archived versions."""
    lines = difflib.unified_diff(
        old.splitlines(),
        new.splitlines(),
        fromfile=old_ref,
        tofile=new_ref,
        lineterm="",
    )
    return "\n".join(lines)


class CatalogueStore:
    """
    Store and version catalogue entries.

    Approved entries are locked by the phase controller at gate boundaries.
    Locked content can only change through ``request_change``.
    """

    def __init__(
        self,
        escalations: Optional[EscalationManager] = None,
        events: Optional[EventBus] = None,
    ):
        self.escalations = escalations
        self.events = events
        self._chains: dict[str, list[CatalogueEntry]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entry_id: str) -> CatalogueEntry:
        """Latest version of an entry."""
        with self._lock:
            return self._chain(entry_id)[-1]

    def get_version(self, entry_id: str, version: int) -> CatalogueEntry:
        with self._lock:
            chain = self._chain(entry_id)
            if not 1 <= version <= len(chain):
                raise UnknownItem(f"Entry {entry_id} has no version {version}")
            return chain[version - 1]

    def history(self, entry_id: str) -> list[CatalogueEntry]:
        """Full version chain, oldest first."""
        with self._lock:
            return list(self._chain(entry_id))

    def exists(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._chains

    def entries(self) -> list[CatalogueEntry]:
        """Latest version of every entry."""
        with self._lock:
            return [chain[-1] for chain in self._chains.values()]

    def export(self, entry_id: str) -> list[dict]:
        return [e.to_export() for e in self.history(entry_id)]

    def settled(self, phase: Optional[int] = None) -> tuple[bool, str]:
        """Gate criterion provider: no entry left in Draft or UnderReview."""
        unsettled = [e.version_id for e in self.entries() if e.status in UNSETTLED_STATUSES]
        if unsettled:
            return False, "unsettled: " + ", ".join(sorted(unsettled))
        return True, "all entries approved, locked or retired"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def propose(self, entry_id: str, content: str, note: str = "") -> CatalogueEntry:
        """Create version 1 of a new entry as a Draft."""
        entry = CatalogueEntry(id=entry_id, version=1, content=content, note=note)
        with self._lock:
            if entry_id in self._chains:
                raise InvalidTransition(
                    f"Entry {entry_id} already exists; use request_change for a new version"
                )
            self._chains[entry_id] = [entry]
        logger.info(f"Proposed catalogue entry {entry.version_id}")
        self._publish(EventTypes.CATALOGUE_VERSIONED, entry)
        return entry

    def submit_for_review(self, entry_id: str) -> CatalogueEntry:
        return self._set_status(entry_id, {EntryStatus.DRAFT}, EntryStatus.UNDER_REVIEW)

    def approve(self, entry_id: str) -> CatalogueEntry:
        return self._set_status(
            entry_id, {EntryStatus.DRAFT, EntryStatus.UNDER_REVIEW}, EntryStatus.APPROVED
        )

    def lock(self, entry_id: str) -> CatalogueEntry:
        """
        Lock an Approved entry. Locking a Locked entry is a no-op.

        Raises:
            InvalidTransition: For any other status
        """
        with self._lock:
            latest = self.get(entry_id)
            if latest.status == EntryStatus.LOCKED:
                return latest
            return self._set_status(entry_id, {EntryStatus.APPROVED}, EntryStatus.LOCKED)

    def lock_approved(self, phase: Optional[int] = None) -> list[str]:
        """Lock every Approved entry. Called at gate boundaries."""
        locked = []
        with self._lock:
            for entry in self.entries():
                if entry.status == EntryStatus.APPROVED:
                    locked.append(self.lock(entry.id).version_id)
        if locked:
            logger.info(f"Locked {len(locked)} catalogue entr(y/ies) at phase {phase} gate")
        return locked

    def invalidate(self, entry_id: str, reason: str) -> CatalogueEntry:
        """Retire an entry without removing it."""
        allowed = set(EntryStatus) - {EntryStatus.SUPERSEDED, EntryStatus.INVALID}
        return self._set_status(entry_id, allowed, EntryStatus.INVALID, note=reason)

    def edit(self, entry_id: str, content: str, note: str = "") -> CatalogueEntry:
        """
        Direct edit: a new Draft version of an unlocked entry.

        Raises:
            CatalogueLockViolation: If the entry is Locked
        """
        with self._lock:
            latest = self.get(entry_id)
            if latest.status == EntryStatus.LOCKED:
                raise CatalogueLockViolation(entry_id, "direct edits are not allowed; request a change")
            if latest.status == EntryStatus.INVALID:
                raise InvalidTransition(f"Entry {entry_id} is invalid")
            return self._append_version(
                entry_id, latest.version, content, EntryStatus.DRAFT, note=note
            )[0]

    def delete(self, entry_id: str) -> None:
        """Entries are never removed."""
        self.get(entry_id)
        raise CatalogueLockViolation(entry_id, "entries are never deleted; invalidate instead")

    def request_change(
        self,
        entry_id: str,
        reason: str,
        kind: ChangeKind,
        content: Optional[str] = None,
        *,
        work_item_id: Optional[str] = None,
        phase: Optional[int] = None,
        on_resolved: Optional[ChangeCallback] = None,
    ) -> ChangeDecision:
        """
        Request a change to an entry.

        Against a Locked entry:
        - Clerical: version v+1 is created immediately, v is archived with a
          diff note and a notification is published.
        - Behavioral: an escalation is raised; the new version is created only
          on an approving resolution. ``on_resolved`` is then called with the
          escalation and the applied decision: None if rejected, a
          ``STALE`` decision if the entry moved on while the approval was
          pending.
        - Deletion: always rejected.

        Against an unlocked entry, clerical and behavioral changes produce a
        new Draft version.

        Raises:
            CatalogueLockViolation: For deletions
        """
        kind = ChangeKind(kind)
        if kind == ChangeKind.DELETION:
            self.get(entry_id)
            raise CatalogueLockViolation(entry_id, f"deletion rejected ({reason})")
        if content is None:
            raise ValueError(f"A {kind.value} change needs new content")

        with self._lock:
            latest = self.get(entry_id)

            if latest.status != EntryStatus.LOCKED:
                entry = self.edit(entry_id, content, note=reason)
                return ChangeDecision(
                    entry_id, kind, ChangeOutcome.APPLIED, entry=entry, previous=latest, note=reason
                )

            if kind == ChangeKind.CLERICAL:
                entry, previous = self._append_version(
                    entry_id, latest.version, content, EntryStatus.LOCKED, note=reason
                )
                decision = ChangeDecision(
                    entry_id, kind, ChangeOutcome.APPLIED,
                    entry=entry, previous=previous, note=previous.note,
                )
            else:
                decision = None
                expected_version = latest.version

        if decision is not None:
            logger.info(f"Clerical correction {decision.previous.version_id} -> {decision.entry.version_id}")
            if self.events:
                self.events.publish(EventTypes.CATALOGUE_CLERICAL, {
                    "entry_id": entry_id,
                    "from": decision.previous.version_id,
                    "to": decision.entry.version_id,
                    "reason": reason,
                    "diff": decision.note,
                })
            return decision

        return self._escalate_behavioral(
            latest, expected_version, content, reason, work_item_id, phase, on_resolved
        )

    def _escalate_behavioral(
        self,
        latest: CatalogueEntry,
        expected_version: int,
        content: str,
        reason: str,
        work_item_id: Optional[str],
        phase: Optional[int],
        on_resolved: Optional[ChangeCallback],
    ) -> ChangeDecision:
        if self.escalations is None:
            raise ConfigurationError("Behavioral changes to locked entries need an escalation manager")

        def resume(escalation: Escalation) -> None:
            applied = None
            if escalation.decision == Decision.APPROVE:
                note = reason
                if escalation.decision_text:
                    note += f" [approved: {escalation.decision_text}]"
                try:
                    entry, previous = self._append_version(
                        latest.id, expected_version, content, EntryStatus.LOCKED, note=note
                    )
                except ConcurrentModification as e:
                    # Another change landed while this one waited; the approval was for the old base
                    current = self.get(latest.id)
                    applied = ChangeDecision(
                        latest.id, ChangeKind.BEHAVIORAL, ChangeOutcome.STALE,
                        previous=current, escalation_id=escalation.escalation_id,
                        note=f"stale base: approved against {latest.version_id}, now {current.version_id}",
                    )
                    logger.warning(f"Behavioral change to {latest.version_id} not applied: {e}")
                else:
                    applied = ChangeDecision(
                        latest.id, ChangeKind.BEHAVIORAL, ChangeOutcome.APPLIED,
                        entry=entry, previous=previous,
                        escalation_id=escalation.escalation_id, note=note,
                    )
                    logger.info(f"Behavioral change applied: {previous.version_id} -> {entry.version_id}")
            else:
                logger.info(f"Behavioral change to {latest.version_id} rejected")
            if on_resolved:
                on_resolved(escalation, applied)

        escalation = self.escalations.raise_escalation(
            EscalationSubject.CATALOGUE_CHANGE,
            latest.version_id,
            reason=f"Behavioral change to locked entry: {reason}",
            work_item_id=work_item_id,
            phase=phase,
            on_resolve=resume,
        )
        return ChangeDecision(
            latest.id, ChangeKind.BEHAVIORAL, ChangeOutcome.ESCALATED,
            previous=latest, escalation_id=escalation.escalation_id, note=reason,
        )

    # ------------------------------------------------------------------
    # Compare-and-swap primitives
    # ------------------------------------------------------------------

    def _chain(self, entry_id: str) -> list[CatalogueEntry]:
        chain = self._chains.get(entry_id)
        if chain is None:
            raise UnknownItem(f"Catalogue entry not found: {entry_id}")
        return chain

    def _check_version(self, entry_id: str, expected_version: int) -> list[CatalogueEntry]:
        chain = self._chain(entry_id)
        actual = chain[-1].version
        if actual != expected_version:
            raise ConcurrentModification(entry_id, expected_version, actual)
        return chain

    def _set_status(
        self,
        entry_id: str,
        allowed: set,
        new_status: EntryStatus,
        note: Optional[str] = None,
    ) -> CatalogueEntry:
        with self._lock:
            latest = self.get(entry_id)
            if latest.status not in allowed:
                raise InvalidTransition(
                    f"Entry {latest.version_id} cannot move from {latest.status.value} to {new_status.value}"
                )
            chain = self._check_version(entry_id, latest.version)
            update = {"status": new_status}
            if note is not None:
                update["note"] = note
            replaced = latest.model_copy(update=update)
            chain[-1] = replaced
        logger.debug(f"{replaced.version_id}: {latest.status.value} -> {new_status.value}")
        self._publish(EventTypes.CATALOGUE_VERSIONED, replaced)
        return replaced

    def _append_version(
        self,
        entry_id: str,
        expected_version: int,
        content: str,
        status: EntryStatus,
        note: str = "",
    ) -> tuple[CatalogueEntry, CatalogueEntry]:
        """Append v+1 and archive v as Superseded. Returns (new, archived)."""
        with self._lock:
            chain = self._check_version(entry_id, expected_version)
            prior = chain[-1]
            entry = CatalogueEntry(
                id=entry_id,
                version=prior.version + 1,
                status=status,
                content=content,
                supersedes=prior.version_id,
                note=note,
            )
            archive_note = diff_note(prior.content, content, prior.version_id, entry.version_id)
            archived = prior.model_copy(update={
                "status": EntryStatus.SUPERSEDED,
                "note": archive_note,
            })
            chain[-1] = archived
            chain.append(entry)
        self._publish(EventTypes.CATALOGUE_VERSIONED, entry)
        return entry, archived

    def _publish(self, event_type: str, entry: CatalogueEntry) -> None:
        if self.events:
            self.events.publish(event_type, entry.to_export())
