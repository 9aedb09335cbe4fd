"""
Unit tests for storage layer.

Tests event models, the in-memory store, the SQLite repository and the
event source strategies.
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from agent_analytics.config.loader import Settings, StorageConfig
from agent_analytics.storage.db import StoreUnavailableError, get_connection
from agent_analytics.storage.memory import InMemoryEventStore
from agent_analytics.storage.models import (
    EVT_DB_ERROR,
    EVT_DUPLICATE,
    Environment,
    Event,
    EventMetadata,
    EventType,
    StoredEvent,
    parse_timestamp,
)
from agent_analytics.storage.repository import SqliteEventRepository, initialize_schema
from agent_analytics.storage.source import (
    FallbackEventSource,
    InMemoryEventSource,
    SqliteEventSource,
    create_event_source,
)

BASE = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _event(event_id, event_type=EventType.TASK_COMPLETE, offset_minutes=0,
           session_id="sess_1", user_id="user_1", metadata=None):
    return Event(
        event_id=event_id,
        event_type=event_type,
        timestamp=BASE + timedelta(minutes=offset_minutes),
        session_id=session_id,
        user_id=user_id,
        agent_id="agent_1",
        metadata=metadata,
    )


class TestEventModel:
    """Test event parsing and metadata coercion."""

    def test_from_dict_parses_wire_format(self):
        """Test building an event from its JSON fields."""
        event = Event.from_dict({
            "event_id": "evt_1",
            "event_type": "session_start",
            "timestamp": "2024-03-01T12:00:00Z",
            "session_id": "sess_1",
            "user_id": "user_1",
            "agent_id": "agent_1",
        })

        assert event.event_type is EventType.SESSION_START
        assert event.timestamp == BASE
        assert event.environment is Environment.PRODUCTION
        assert len(event.metadata) == 0

    def test_from_dict_rejects_unknown_event_type(self):
        """Test invalid enum values raise ValueError."""
        with pytest.raises(ValueError):
            Event.from_dict({
                "event_id": "evt_1",
                "event_type": "session_explode",
                "timestamp": "2024-03-01T12:00:00Z",
                "session_id": "sess_1",
                "user_id": "user_1",
                "agent_id": "agent_1",
            })

    def test_from_dict_missing_field(self):
        """Test missing required fields raise KeyError."""
        with pytest.raises(KeyError):
            Event.from_dict({"event_id": "evt_1", "event_type": "session_start"})

    def test_timestamp_normalized_to_utc(self):
        """Test offsets are converted and naive values assumed UTC."""
        assert parse_timestamp("2024-03-01T14:00:00+02:00") == BASE
        assert parse_timestamp(datetime(2024, 3, 1, 12, 0, 0)) == BASE

    def test_metadata_numeric_coercion(self):
        """Test malformed numbers become 0 instead of raising."""
        metadata = EventMetadata({
            "tokens_input": "150",
            "tokens_output": "lots",
            "duration_ms": None,
            "custom": "kept",
        })

        assert metadata.tokens_input == 150
        assert metadata.tokens_output == 0
        assert metadata.duration_ms == 0
        assert metadata["custom"] == "kept"

    def test_metadata_non_finite_numbers(self):
        """Test NaN and infinity are treated as malformed."""
        metadata = EventMetadata({
            "tokens_input": "NaN",
            "tokens_output": float("inf"),
            "duration_ms": "-Infinity",
        })

        assert metadata.tokens_input == 0
        assert metadata.tokens_output == 0
        assert metadata.duration_ms == 0

    def test_identity_fields_required(self):
        """Test session, user and agent IDs must be non-empty strings."""
        with pytest.raises(ValueError, match="session_id is required"):
            _event("evt_1", session_id=None)
        with pytest.raises(ValueError, match="user_id is required"):
            _event("evt_1", user_id="")
        with pytest.raises(ValueError, match="agent_id is required"):
            Event(
                event_id="evt_1",
                event_type=EventType.SESSION_START,
                timestamp=BASE,
                session_id="sess_1",
                user_id="user_1",
                agent_id=42,
            )

    def test_metadata_defaults(self):
        """Test absent well-known keys."""
        metadata = EventMetadata()

        assert metadata.tokens_input == 0
        assert metadata.tokens_output == 0
        assert metadata.duration_ms is None
        assert metadata.error_code is None
        assert metadata.client_info is None


class TestInMemoryEventStore:
    """Test the tenant-partitioned in-memory store."""

    def test_ingest_accepts_new_events(self):
        """Test a clean batch is fully accepted."""
        store = InMemoryEventStore()

        result = store.ingest("org_a", [_event("evt_1"), _event("evt_2", offset_minutes=1)])

        assert result.accepted == 2
        assert result.rejected == 0
        assert result.errors == []
        assert store.count_by_org("org_a") == 2

    def test_empty_batch(self):
        """Test an empty batch yields zero counts without raising."""
        store = InMemoryEventStore()

        result = store.ingest("org_a", [])

        assert result.to_dict() == {"accepted": 0, "rejected": 0, "errors": []}
        assert "org_a" not in store._partitions
        assert store.size == 0

    def test_reingest_is_idempotent(self):
        """Test ingesting the same batch twice stores nothing new."""
        store = InMemoryEventStore()
        batch = [_event("evt_1"), _event("evt_2", offset_minutes=1)]
        store.ingest("org_a", batch)

        result = store.ingest("org_a", batch)

        assert result.accepted == 0
        assert result.rejected == 2
        assert [e.code for e in result.errors] == [EVT_DUPLICATE, EVT_DUPLICATE]
        assert [e.index for e in result.errors] == [0, 1]
        assert store.count_by_org("org_a") == 2

    def test_duplicate_within_batch(self):
        """Test a repeated event_id in one batch keeps the first occurrence."""
        store = InMemoryEventStore()
        first = _event("evt_1", metadata={"tokens_input": 10})
        repeat = _event("evt_1", metadata={"tokens_input": 99})

        result = store.ingest("org_a", [first, repeat])

        assert result.accepted == 1
        assert result.rejected == 1
        assert result.errors[0].index == 1
        assert "evt_1" in result.errors[0].message
        assert store.get("org_a", "evt_1").metadata.tokens_input == 10

    def test_same_event_id_across_tenants(self):
        """Test tenants are isolated partitions."""
        store = InMemoryEventStore()

        store.ingest("org_a", [_event("evt_1")])
        result = store.ingest("org_b", [_event("evt_1")])

        assert result.accepted == 1
        assert store.count_by_org("org_a") == 1
        assert store.count_by_org("org_b") == 1
        assert all(e.org_id == "org_b" for e in store.get_by_org("org_b"))

    def test_get_by_org_sorted_and_copied(self):
        """Test retrieval is ascending and mutating the result does not leak."""
        store = InMemoryEventStore()
        store.ingest("org_a", [_event("evt_late", offset_minutes=5), _event("evt_early")])

        events = store.get_by_org("org_a")
        assert [e.event_id for e in events] == ["evt_early", "evt_late"]

        events.clear()
        assert store.count_by_org("org_a") == 2

    def test_ingested_at_from_clock(self):
        """Test ingested_at is stamped from the injected clock."""
        stamp = datetime(2024, 3, 2, tzinfo=timezone.utc)
        store = InMemoryEventStore(clock=lambda: stamp)

        store.ingest("org_a", [_event("evt_1")])

        stored = store.get("org_a", "evt_1")
        assert isinstance(stored, StoredEvent)
        assert stored.ingested_at == stamp

    def test_events_in_range_inclusive(self):
        """Test range bounds are inclusive."""
        store = InMemoryEventStore()
        store.ingest("org_a", [
            _event("evt_1", offset_minutes=0),
            _event("evt_2", offset_minutes=10),
            _event("evt_3", offset_minutes=20),
        ])

        events = store.events_in_range("org_a", BASE, BASE + timedelta(minutes=10))

        assert [e.event_id for e in events] == ["evt_1", "evt_2"]

    def test_exists_and_clear(self):
        """Test existence checks and clearing."""
        store = InMemoryEventStore()
        store.ingest("org_a", [_event("evt_1")])

        assert store.exists("org_a", "evt_1")
        assert not store.exists("org_b", "evt_1")
        assert store.size == 1

        store.clear()
        assert store.size == 0
        assert store.get_by_org("org_a") == []


class TestSqliteRepository:
    """Test durable event storage."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_schema_creation(self):
        """Verify table is created correctly."""
        initialize_schema(self.db_path)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("PRAGMA table_info(events_raw)")
            column_names = [col[1] for col in cursor.fetchall()]
        finally:
            conn.close()

        assert "event_id" in column_names
        assert "org_id" in column_names
        assert "metadata" in column_names

    def test_insert_and_query_round_trip(self):
        """Test stored rows come back as equivalent StoredEvents."""
        initialize_schema(self.db_path)
        repository = SqliteEventRepository(self.db_path)
        event = _event("evt_1", metadata={"tokens_input": 100, "client_info": {"ide": "vscode"}})

        result = repository.insert_events("org_a", [event])
        rows = repository.query_events_by_org_range("org_a")

        assert result.accepted == 1
        assert len(rows) == 1
        assert rows[0].event_id == "evt_1"
        assert rows[0].org_id == "org_a"
        assert rows[0].timestamp == event.timestamp
        assert rows[0].metadata.tokens_input == 100
        assert rows[0].metadata.client_info == {"ide": "vscode"}

    def test_duplicate_reported_per_item(self):
        """Test unique violations become EVT_DUPLICATE and the batch continues."""
        initialize_schema(self.db_path)
        repository = SqliteEventRepository(self.db_path)
        repository.insert_events("org_a", [_event("evt_1")])

        result = repository.insert_events("org_a", [_event("evt_1"), _event("evt_2")])

        assert result.accepted == 1
        assert result.rejected == 1
        assert result.errors[0].code == EVT_DUPLICATE
        assert repository.count_by_org("org_a") == 2

    def test_other_constraint_failures_are_db_errors(self):
        """Test only unique violations are reported as duplicates."""
        initialize_schema(self.db_path)
        repository = SqliteEventRepository(self.db_path)

        result = repository.insert_events(None, [_event("evt_1")])

        assert result.accepted == 0
        assert result.errors[0].code == EVT_DB_ERROR
        assert "NOT NULL" in result.errors[0].message

    def test_tenant_scoped_uniqueness(self):
        """Test the same event_id is independent under another tenant."""
        initialize_schema(self.db_path)
        repository = SqliteEventRepository(self.db_path)

        repository.insert_events("org_a", [_event("evt_1")])
        result = repository.insert_events("org_b", [_event("evt_1")])

        assert result.accepted == 1
        assert repository.count_by_org("org_b") == 1

    def test_range_query_ordered_and_bounded(self):
        """Test range queries are inclusive and ascending."""
        initialize_schema(self.db_path)
        repository = SqliteEventRepository(self.db_path)
        repository.insert_events("org_a", [
            _event("evt_3", offset_minutes=20),
            _event("evt_1", offset_minutes=0),
            _event("evt_2", offset_minutes=10),
        ])

        rows = repository.query_events_by_org_range("org_a", BASE, BASE + timedelta(minutes=10))

        assert [r.event_id for r in rows] == ["evt_1", "evt_2"]

    def test_missing_database_is_unavailable(self):
        """Test a missing database file is surfaced, not created."""
        repository = SqliteEventRepository(self.db_path)

        with pytest.raises(StoreUnavailableError):
            repository.query_events_by_org_range("org_a")
        assert not os.path.exists(self.db_path)

    def test_missing_table_is_unavailable(self):
        """Test a database without the schema is surfaced."""
        sqlite3.connect(self.db_path).close()
        repository = SqliteEventRepository(self.db_path)

        with pytest.raises(StoreUnavailableError):
            repository.insert_events("org_a", [_event("evt_1")])


class TestEventSources:
    """Test backend strategies and the factory."""

    def test_fallback_reads_primary_when_populated(self):
        """Test the primary wins whenever it has rows."""
        primary = InMemoryEventSource()
        fallback = InMemoryEventSource()
        primary.ingest("org_a", [_event("evt_primary")])
        fallback.ingest("org_a", [_event("evt_fallback")])

        source = FallbackEventSource(primary, fallback)

        assert [e.event_id for e in source.events_for_org("org_a")] == ["evt_primary"]

    def test_fallback_used_when_primary_empty(self):
        """Test reads fall back when the primary has nothing."""
        primary = InMemoryEventSource()
        fallback = InMemoryEventSource()
        fallback.ingest("org_a", [_event("evt_fallback")])

        source = FallbackEventSource(primary, fallback)
        events = source.events_in_range("org_a", BASE - timedelta(hours=1), BASE + timedelta(hours=1))

        assert [e.event_id for e in events] == ["evt_fallback"]

    def test_fallback_writes_primary_when_available(self):
        """Test ingestion reaches only a reachable primary."""
        primary = InMemoryEventSource()
        fallback = InMemoryEventSource()

        FallbackEventSource(primary, fallback).ingest("org_a", [_event("evt_1")])

        assert primary.store.count_by_org("org_a") == 1
        assert fallback.store.count_by_org("org_a") == 0

    def test_fallback_serves_when_database_missing(self):
        """Test writes and reads go to memory when the database file is absent."""
        temp_dir = tempfile.mkdtemp()
        try:
            db_path = os.path.join(temp_dir, "missing.db")
            settings = Settings(storage=StorageConfig(backend="sqlite+memory", db_path=db_path))
            source = create_event_source(settings)

            result = source.ingest("org_a", [_event("evt_1"), _event("evt_2", offset_minutes=5)])
            in_range = source.events_in_range("org_a", BASE, BASE + timedelta(minutes=1))

            assert result.accepted == 2
            assert source.fallback.store.count_by_org("org_a") == 2
            assert [e.event_id for e in source.events_for_org("org_a")] == ["evt_1", "evt_2"]
            assert [e.event_id for e in in_range] == ["evt_1"]
            assert not os.path.exists(db_path)
        finally:
            import shutil
            shutil.rmtree(temp_dir, ignore_errors=True)

    def test_factory_defaults_to_memory(self):
        """Test the default backend."""
        assert isinstance(create_event_source(), InMemoryEventSource)

    def test_factory_builds_sqlite_backends(self):
        """Test sqlite and sqlite+memory selection."""
        sqlite_settings = Settings(storage=StorageConfig(backend="sqlite", db_path="x.db"))
        dual_settings = Settings(storage=StorageConfig(backend="sqlite+memory", db_path="x.db"))

        assert isinstance(create_event_source(sqlite_settings), SqliteEventSource)
        dual = create_event_source(dual_settings)
        assert isinstance(dual, FallbackEventSource)
        assert isinstance(dual.primary, SqliteEventSource)
        assert isinstance(dual.fallback, InMemoryEventSource)
