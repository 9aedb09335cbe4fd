"""
Event source strategies.

Interchangeable data sources the aggregation engines read events from.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional

from .db import StoreUnavailableError
from .memory import InMemoryEventStore
from .models import Event, IngestResult, StoredEvent
from .repository import SqliteEventRepository

if TYPE_CHECKING:
    from agent_analytics.config.loader import Settings

logger = logging.getLogger(__name__)


class EventSource(ABC):
    """Backend-neutral view over a tenant-partitioned event collection.

    Every implementation returns the same StoredEvent shape, ordered by
    timestamp ascending, so engines never know which backend served them.
    """

    @abstractmethod
    def ingest(self, org_id: str, events: Iterable[Event]) -> IngestResult:
        """Store a batch of events for a tenant."""

    @abstractmethod
    def events_in_range(self, org_id: str, start: datetime, end: datetime) -> List[StoredEvent]:
        """Events with start <= timestamp <= end, oldest first."""

    @abstractmethod
    def events_for_org(self, org_id: str) -> List[StoredEvent]:
        """Every event of a tenant, oldest first."""


class InMemoryEventSource(EventSource):
    """Serves events from an InMemoryEventStore."""

    def __init__(self, store: Optional[InMemoryEventStore] = None):
        self.store = store if store is not None else InMemoryEventStore()

    def ingest(self, org_id: str, events: Iterable[Event]) -> IngestResult:
        return self.store.ingest(org_id, events)

    def events_in_range(self, org_id: str, start: datetime, end: datetime) -> List[StoredEvent]:
        return self.store.events_in_range(org_id, start, end)

    def events_for_org(self, org_id: str) -> List[StoredEvent]:
        return self.store.get_by_org(org_id)


class SqliteEventSource(EventSource):
    """Serves events from a SqliteEventRepository."""

    def __init__(self, repository: SqliteEventRepository):
        self.repository = repository

    def ingest(self, org_id: str, events: Iterable[Event]) -> IngestResult:
        return self.repository.insert_events(org_id, events)

    def events_in_range(self, org_id: str, start: datetime, end: datetime) -> List[StoredEvent]:
        return self.repository.query_events_by_org_range(org_id, start, end)

    def events_for_org(self, org_id: str) -> List[StoredEvent]:
        return self.repository.query_events_by_org_range(org_id)


class FallbackEventSource(EventSource):
    """Serves from a primary source, falling back when it cannot.

    Writes go to the primary while it is reachable and to the fallback when
    it raises StoreUnavailableError. Reads use the fallback when the primary
    is unavailable or has no rows for the tenant. The two sources are never
    merged: when both hold data for a tenant, the primary wins outright.
    """

    def __init__(self, primary: EventSource, fallback: EventSource):
        self.primary = primary
        self.fallback = fallback

    def ingest(self, org_id: str, events: Iterable[Event]) -> IngestResult:
        batch = list(events)
        try:
            return self.primary.ingest(org_id, batch)
        except StoreUnavailableError as e:
            logger.warning("Primary source unavailable, storing batch for org %s in fallback: %s", org_id, e)
            return self.fallback.ingest(org_id, batch)

    def events_in_range(self, org_id: str, start: datetime, end: datetime) -> List[StoredEvent]:
        try:
            events = self.primary.events_in_range(org_id, start, end)
        except StoreUnavailableError as e:
            logger.warning("Primary source unavailable, reading org %s from fallback: %s", org_id, e)
            return self.fallback.events_in_range(org_id, start, end)
        if events:
            return events
        logger.debug("Primary source empty for org %s, using fallback", org_id)
        return self.fallback.events_in_range(org_id, start, end)

    def events_for_org(self, org_id: str) -> List[StoredEvent]:
        try:
            events = self.primary.events_for_org(org_id)
        except StoreUnavailableError as e:
            logger.warning("Primary source unavailable, reading org %s from fallback: %s", org_id, e)
            return self.fallback.events_for_org(org_id)
        if events:
            return events
        logger.debug("Primary source empty for org %s, using fallback", org_id)
        return self.fallback.events_for_org(org_id)


BACKENDS = ("memory", "sqlite", "sqlite+memory")


def create_event_source(
    settings: Optional["Settings"] = None,
    store: Optional[InMemoryEventStore] = None,
) -> EventSource:
    """Instantiate the configured event backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.
        store: In-memory store to reuse for memory-backed strategies

    Returns:
        Configured EventSource implementation

    Raises:
        ValueError: If the configured backend is unknown
    """
    backend = "memory" if settings is None else settings.storage.backend

    if backend == "memory":
        return InMemoryEventSource(store)

    if backend == "sqlite":
        return SqliteEventSource(SqliteEventRepository(settings.storage.db_path))

    if backend == "sqlite+memory":
        return FallbackEventSource(
            primary=SqliteEventSource(SqliteEventRepository(settings.storage.db_path)),
            fallback=InMemoryEventSource(store),
        )

    raise ValueError(f"Unsupported storage backend: {backend!r}")
