"""
Chronicle storage on SQLite.

The chronicle is append-only and gapless:
- A single global counter assigns sequence numbers under one writer lock
- BEGIN IMMEDIATE acquires the database write lock before the counter is read
- Validation runs before the transaction, so a rejected record writes nothing
"""

import logging
import sqlite3
import threading
from datetime import datetime
from typing import Iterator, Optional

from ..errors import IncompleteReviewRecord, UnknownItem
from ..events import EventBus, EventTypes
from .schema import ChronicleRecord

logger = logging.getLogger(__name__)


class ChronicleStore:
    """
    SQLite-backed append-only chronicle.

    Works with a file path or ":memory:". One connection is shared by all
    threads; every statement runs under the writer lock.
    """

    BUSY_TIMEOUT_MS = 5000

    def __init__(self, db_path: str = ":memory:", events: Optional[EventBus] = None):
        """
        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory
            events: Event bus for notifications
        """
        self.db_path = str(db_path)
        self.events = events
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        self._conn = sqlite3.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode (we manage transactions)
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(f"PRAGMA busy_timeout = {self.BUSY_TIMEOUT_MS}")
        if self.db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chronicle (
                seq INTEGER PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                phase INTEGER NOT NULL,
                recorded_at TEXT NOT NULL,
                record TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chronicle_proposal
            ON chronicle(proposal_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chronicle_phase
            ON chronicle(phase, recorded_at)
        """)

    def append(self, record: ChronicleRecord) -> int:
        """
        Append a record, assigning the next sequence number.

        Raises:
            IncompleteReviewRecord: If a required role has no vote or the
                decision is empty. Nothing is written.

        Returns:
            The assigned sequence number
        """
        self.validate(record)

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute("SELECT MAX(seq) FROM chronicle").fetchone()
                seq = (row[0] or 0) + 1
                stored = record.model_copy(update={"seq": seq})
                self._conn.execute(
                    """
                    INSERT INTO chronicle (seq, proposal_id, phase, recorded_at, record)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        seq,
                        stored.proposal_id,
                        stored.phase,
                        stored.recorded_at.isoformat(),
                        stored.model_dump_json(),
                    ),
                )
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

        logger.info(f"Chronicle #{seq}: {stored.proposal_id} {stored.decision} ({stored.decided_by.value})")
        if self.events:
            self.events.publish(EventTypes.CHRONICLE_APPENDED, stored.to_export())
        return seq

    @staticmethod
    def validate(record: ChronicleRecord) -> None:
        if record.seq is not None:
            raise IncompleteReviewRecord(
                record.proposal_id, reason="sequence numbers are assigned by the chronicle"
            )
        if not record.decision.strip():
            raise IncompleteReviewRecord(record.proposal_id, reason="final decision is empty")
        if not record.required_roles:
            raise IncompleteReviewRecord(record.proposal_id, reason="no required roles recorded")
        missing = record.missing_roles()
        if missing:
            raise IncompleteReviewRecord(record.proposal_id, missing_roles=missing)

    def get(self, seq: int) -> ChronicleRecord:
        with self._lock:
            row = self._conn.execute(
                "SELECT record FROM chronicle WHERE seq = ?", (seq,)
            ).fetchone()
        if row is None:
            raise UnknownItem(f"No chronicle record #{seq}")
        return ChronicleRecord.model_validate_json(row["record"])

    def records(
        self,
        phase: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[ChronicleRecord]:
        """Records in sequence order, filtered by phase and recorded_at range."""
        query = "SELECT record FROM chronicle WHERE 1 = 1"
        params: list = []
        if phase is not None:
            query += " AND phase = ?"
            params.append(phase)
        query += " ORDER BY seq"

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()

        records = [ChronicleRecord.model_validate_json(r["record"]) for r in rows]
        # Compare as datetimes; stored ISO strings may carry different offsets
        if since is not None:
            records = [r for r in records if r.recorded_at >= since]
        if until is not None:
            records = [r for r in records if r.recorded_at <= until]
        return records

    def for_proposal(self, proposal_id: str) -> list[ChronicleRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT record FROM chronicle WHERE proposal_id = ? ORDER BY seq",
                (proposal_id,),
            ).fetchall()
        return [ChronicleRecord.model_validate_json(r["record"]) for r in rows]

    def __iter__(self) -> Iterator[ChronicleRecord]:
        return iter(self.records())

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM chronicle").fetchone()[0]

    def last_seq(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT MAX(seq) FROM chronicle").fetchone()
        return row[0] or 0

    def export(
        self,
        phase: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[dict]:
        return [r.to_export() for r in self.records(phase, since, until)]

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
