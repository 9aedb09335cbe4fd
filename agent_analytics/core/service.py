"""
Analytics service facade.

Wires an event source, the result cache and settings together and exposes
the ingestion and query operations used by the CLI and the SDK.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from agent_analytics.config.loader import Settings
from agent_analytics.storage.models import Event, IngestResult, StoredEvent
from agent_analytics.storage.source import EventSource, create_event_source

from .cache import ResultCache
from .overview import MetricsOverview, compute_overview
from .sessions import SessionDetail, SessionPage, SessionQuery, build_session_detail, list_sessions
from .timeseries import Timeseries, TimeseriesMetric, compute_timeseries
from .windows import Granularity, Period, default_granularity, parse_granularity, parse_period, resolve_timezone

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedResponse:
    """Query result plus cache metadata."""
    data: Union[MetricsOverview, Timeseries]
    cache_hit: bool
    cache_ttl: int  # Seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data.to_dict(),
            "meta": {"cache_hit": self.cache_hit, "cache_ttl": self.cache_ttl},
        }


class AnalyticsService:
    """Entry point for ingesting events and querying tenant analytics.

    Every collaborator is passed in explicitly; two services built on two
    sources never share state.
    """

    def __init__(
        self,
        source: Optional[EventSource] = None,
        cache: Optional[ResultCache] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the service.

        Args:
            source: Event source; built from settings when None
            cache: Result cache for overview and time series queries
            settings: Application settings; defaults when None
            clock: Source of "now" for query windows
        """
        self.settings = settings if settings is not None else Settings()
        self.source = source if source is not None else create_event_source(self.settings)
        self.cache = cache if cache is not None else ResultCache()
        self._clock = clock or _utcnow
        self._tz = resolve_timezone(self.settings.timeseries.timezone)

    @property
    def cache_ttl_seconds(self) -> int:
        return int(self.settings.cache.ttl_seconds)

    def ingest(self, org_id: str, events: Iterable[Union[Event, Mapping[str, Any]]]) -> IngestResult:
        """Ingest a batch of events for an organization.

        Args:
            org_id: Tenant the batch belongs to
            events: Events or their wire representation as dicts

        Returns:
            IngestResult with accepted/rejected counts and per-item errors

        Raises:
            ValueError: If the batch is too large or an event is malformed
        """
        batch = list(events)
        limit = self.settings.ingestion.max_batch_size
        if len(batch) > limit:
            raise ValueError(f"Batch of {len(batch)} events exceeds max_batch_size of {limit}")

        parsed: List[Event] = []
        for index, item in enumerate(batch):
            if isinstance(item, Event):
                parsed.append(item)
                continue
            try:
                parsed.append(Event.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"Invalid event at index {index}: {e}") from e

        result = self.source.ingest(org_id, parsed)
        logger.info(
            "Ingested batch for org %s: %d accepted, %d rejected",
            org_id, result.accepted, result.rejected,
        )
        return result

    def get_overview(
        self,
        org_id: str,
        period: Union[str, Period] = Period.WEEK,
        compare: bool = False,
    ) -> CachedResponse:
        """Overview metrics for the period ending now, served through the cache."""
        period = parse_period(period)
        key = f"metrics:{org_id}:period={period.value}:compare={str(compare).lower()}"
        result = self.cache.get_or_compute(
            key,
            self.settings.cache.ttl_ms,
            lambda: compute_overview(
                self.source, org_id, period, compare, self._clock(), self.settings.pricing,
            ),
        )
        return CachedResponse(data=result.value, cache_hit=result.cache_hit, cache_ttl=self.cache_ttl_seconds)

    def get_timeseries(
        self,
        org_id: str,
        metric: Union[str, TimeseriesMetric],
        period: Union[str, Period] = Period.WEEK,
        granularity: Union[str, Granularity, None] = None,
    ) -> CachedResponse:
        """A metric bucketed over the period ending now, served through the cache."""
        period = parse_period(period)
        granularity = parse_granularity(granularity) or default_granularity(period)
        metric_name = metric.value if isinstance(metric, TimeseriesMetric) else str(metric)
        key = f"timeseries:{org_id}:{metric_name}:period={period.value}:granularity={granularity.value}"
        result = self.cache.get_or_compute(
            key,
            self.settings.cache.ttl_ms,
            lambda: compute_timeseries(
                self.source, org_id, metric_name, period, self._clock(),
                granularity=granularity, tz=self._tz, pricing=self.settings.pricing,
            ),
        )
        return CachedResponse(data=result.value, cache_hit=result.cache_hit, cache_ttl=self.cache_ttl_seconds)

    def list_sessions(self, org_id: str, query: Optional[SessionQuery] = None) -> SessionPage:
        """One page of session summaries. Never cached."""
        if query is None:
            query = SessionQuery(limit=self.settings.sessions.default_page_size)
        return list_sessions(
            self.source.events_for_org(org_id),
            query,
            self._clock(),
            pricing=self.settings.pricing,
            default_lookback_days=self.settings.sessions.default_lookback_days,
        )

    def get_session_detail(self, org_id: str, session_id: str) -> Optional[SessionDetail]:
        """Detail view of one session, or None if the tenant has no such session."""
        return build_session_detail(session_id, self.source.events_for_org(org_id), self.settings.pricing)

    def get_events(self, org_id: str) -> List[StoredEvent]:
        return self.source.events_for_org(org_id)
