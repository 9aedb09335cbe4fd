"""
In-memory event store.

Tenant-partitioned, append-only collection of ingested events.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .models import EVT_DUPLICATE, Event, IngestResult, StoredEvent, with_org

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryEventStore:
    """Volatile event store keyed by (org_id, event_id).

    Data is lost on restart and is never shared between processes.
    Each tenant has its own partition, so an event_id reused by another
    tenant is an independent event.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """Initialize an empty store.

        Args:
            clock: Source of the current instant for ingested_at stamps
        """
        self._clock = clock or _utcnow
        self._partitions: Dict[str, Dict[str, StoredEvent]] = {}
        self._lock = threading.RLock()

    def ingest(self, org_id: str, events: Iterable[Event]) -> IngestResult:
        """Ingest a batch of events for an organization.

        Events are processed in input order. A duplicate, whether of a
        previously stored event or of an earlier item in this same batch,
        is rejected with EVT_DUPLICATE and the batch continues.

        Args:
            org_id: Tenant the batch belongs to
            events: Events to store

        Returns:
            IngestResult with accepted/rejected counts and per-item errors
        """
        result = IngestResult()
        with self._lock:
            partition = self._partitions.get(org_id)
            for index, event in enumerate(events):
                if partition is not None and event.event_id in partition:
                    logger.debug("Duplicate event %s for org %s", event.event_id, org_id)
                    result.reject(
                        index,
                        event.event_id,
                        EVT_DUPLICATE,
                        f"Event with id {event.event_id} already exists",
                    )
                    continue
                if partition is None:
                    # Partitions appear with their first accepted event
                    partition = self._partitions[org_id] = {}
                partition[event.event_id] = with_org(event, org_id, self._clock())
                result.accepted += 1

        if result.accepted or result.rejected:
            logger.info(
                "Ingested batch for org %s: %d accepted, %d rejected",
                org_id, result.accepted, result.rejected,
            )
        return result

    def get_by_org(self, org_id: str) -> List[StoredEvent]:
        """Get a snapshot of an organization's events, oldest first.

        The returned list is a fresh copy; mutating it never affects the store.
        """
        with self._lock:
            events = list(self._partitions.get(org_id, {}).values())
        return sorted(events, key=lambda e: e.timestamp)

    def events_in_range(self, org_id: str, start: datetime, end: datetime) -> List[StoredEvent]:
        """Get an organization's events with start <= timestamp <= end, oldest first."""
        return [e for e in self.get_by_org(org_id) if start <= e.timestamp <= end]

    def count_by_org(self, org_id: str) -> int:
        with self._lock:
            return len(self._partitions.get(org_id, {}))

    def exists(self, org_id: str, event_id: str) -> bool:
        with self._lock:
            return event_id in self._partitions.get(org_id, {})

    def get(self, org_id: str, event_id: str) -> Optional[StoredEvent]:
        with self._lock:
            return self._partitions.get(org_id, {}).get(event_id)

    def clear(self) -> None:
        """Remove every event from every tenant (test/reset use only)."""
        with self._lock:
            self._partitions.clear()

    @property
    def size(self) -> int:
        """Total number of events across all tenants."""
        with self._lock:
            return sum(len(partition) for partition in self._partitions.values())
