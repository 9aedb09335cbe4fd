"""
Repository pattern for durable event storage.

Handles SQLite persistence of ingested events and range queries.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from .db import StoreUnavailableError, get_connection
from .models import (
    EVT_DB_ERROR,
    EVT_DUPLICATE,
    Environment,
    Event,
    EventMetadata,
    EventType,
    IngestResult,
    StoredEvent,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "event_id, org_id, session_id, user_id, agent_id, event_type, "
    "timestamp, environment, metadata, ingested_at"
)


def _to_db_time(value: datetime) -> str:
    """Fixed-width UTC text so that SQL string comparison orders by time."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_event(row: sqlite3.Row) -> StoredEvent:
    return StoredEvent(
        event_id=row["event_id"],
        event_type=EventType(row["event_type"]),
        timestamp=parse_timestamp(row["timestamp"]),
        session_id=row["session_id"],
        user_id=row["user_id"],
        agent_id=row["agent_id"],
        environment=Environment(row["environment"]),
        metadata=EventMetadata(json.loads(row["metadata"]) if row["metadata"] else None),
        org_id=row["org_id"],
        ingested_at=parse_timestamp(row["ingested_at"]) if row["ingested_at"] else None,
    )


def initialize_schema(db_path: str = "agent_analytics.db") -> None:
    """Create the events_raw table if it doesn't exist.

    The table is an append-only ledger; (org_id, event_id) is unique so the
    same event_id can exist independently under different tenants.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS events_raw (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_id TEXT NOT NULL,
                org_id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                agent_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                environment TEXT NOT NULL DEFAULT 'production',
                metadata TEXT,
                ingested_at TEXT NOT NULL,
                CONSTRAINT unique_event_per_org UNIQUE (org_id, event_id)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_org_time ON events_raw (org_id, timestamp)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_events_session ON events_raw (org_id, session_id)"
        )
        conn.commit()
    finally:
        conn.close()


class SqliteEventRepository:
    """Durable event storage backed by a SQLite file.

    The schema must exist (see initialize_schema); a missing database or
    table is reported as StoreUnavailableError rather than as per-item errors.
    """

    def __init__(
        self,
        db_path: str = "agent_analytics.db",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            clock: Source of the current instant for ingested_at stamps
        """
        self.db_path = db_path
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _connect(self) -> sqlite3.Connection:
        conn = get_connection(self.db_path, create=False)
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='events_raw'"
        ).fetchone()
        if row is None:
            conn.close()
            raise StoreUnavailableError(
                f"Event table missing in {self.db_path}; run initialize_schema first"
            )
        return conn

    def insert_events(self, org_id: str, events: Iterable[Event]) -> IngestResult:
        """Insert events one by one so failures are reported per item.

        Unique violations become EVT_DUPLICATE; any other database error on a
        row becomes EVT_DB_ERROR. Neither stops the batch.

        Args:
            org_id: Tenant the batch belongs to
            events: Events to store

        Returns:
            IngestResult with accepted/rejected counts and per-item errors

        Raises:
            StoreUnavailableError: If the database itself is unavailable
        """
        result = IngestResult()
        conn = self._connect()
        try:
            for index, event in enumerate(events):
                try:
                    conn.execute(
                        f"INSERT INTO events_raw ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            event.event_id,
                            org_id,
                            event.session_id,
                            event.user_id,
                            event.agent_id,
                            event.event_type.value,
                            _to_db_time(event.timestamp),
                            event.environment.value,
                            json.dumps(event.metadata.to_dict(), default=str),
                            _to_db_time(self._clock()),
                        ),
                    )
                    result.accepted += 1
                except sqlite3.IntegrityError as e:
                    if "UNIQUE constraint failed" in str(e):
                        result.reject(
                            index,
                            event.event_id,
                            EVT_DUPLICATE,
                            f"Event with id {event.event_id} already exists",
                        )
                    else:
                        logger.warning("Rejected event %s for org %s: %s", event.event_id, org_id, e)
                        result.reject(index, event.event_id, EVT_DB_ERROR, str(e))
                except sqlite3.Error as e:
                    logger.warning("Failed to store event %s for org %s: %s", event.event_id, org_id, e)
                    result.reject(index, event.event_id, EVT_DB_ERROR, str(e))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreUnavailableError(f"Event batch could not be committed: {e}") from e
        finally:
            conn.close()
        return result

    def query_events_by_org_range(
        self,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[StoredEvent]:
        """Fetch an organization's events within [start, end], oldest first.

        Args:
            org_id: Tenant to query
            start: Inclusive lower bound (unbounded if None)
            end: Inclusive upper bound (unbounded if None)

        Returns:
            List of stored events ordered by timestamp ascending
        """
        query = f"SELECT {_COLUMNS} FROM events_raw WHERE org_id = ?"
        params: List[str] = [org_id]
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(_to_db_time(start))
        if end is not None:
            query += " AND timestamp <= ?"
            params.append(_to_db_time(end))
        query += " ORDER BY timestamp ASC, id ASC"

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Event query failed: {e}") from e
        finally:
            conn.close()
        return [_row_to_event(row) for row in rows]

    def count_by_org(self, org_id: str) -> int:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COUNT(*) FROM events_raw WHERE org_id = ?", (org_id,)
            ).fetchone()
        finally:
            conn.close()
        return int(row[0])
