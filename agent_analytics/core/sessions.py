"""
Session reconstruction from event streams.

Sessions are never stored. Every summary and detail view is derived from
the session's events on each query, so it cannot drift from them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from agent_analytics.storage.models import Environment, Event, EventType

from .pricing import DEFAULT_PRICING, TokenPricing, calculate_token_cost


class SessionStatus(Enum):
    """Derived lifecycle state of a session."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


SORT_FIELDS = ("started_at", "duration")
DEFAULT_SORT = "-started_at"
DEFAULT_LOOKBACK_DAYS = 90
DEFAULT_PAGE_SIZE = 25


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class SessionMetrics:
    """Per-session totals aggregated over all of its events."""
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_cancelled: int = 0
    tokens_input: float = 0
    tokens_output: float = 0
    estimated_cost: float = 0.0
    avg_task_duration_ms: Optional[float] = None  # Detail views only

    @property
    def tokens_used(self) -> float:
        return self.tokens_input + self.tokens_output

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "tasks_cancelled": self.tasks_cancelled,
            "tokens_input": self.tokens_input,
            "tokens_output": self.tokens_output,
            "tokens_used": self.tokens_used,
            "estimated_cost": self.estimated_cost,
        }
        if self.avg_task_duration_ms is not None:
            data["avg_task_duration_ms"] = self.avg_task_duration_ms
        return data


@dataclass(frozen=True)
class SessionSummary:
    """List-view representation of a session."""
    session_id: str
    user_id: str
    agent_id: str
    environment: Environment
    status: SessionStatus
    started_at: datetime
    ended_at: Optional[datetime]
    duration_seconds: Optional[int]
    metrics: SessionMetrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "agent_id": self.agent_id,
            "environment": self.environment.value,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "duration_seconds": self.duration_seconds,
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class SessionTimeline:
    event_count: int
    first_event: Optional[datetime]
    last_event: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_count": self.event_count,
            "first_event": _iso(self.first_event),
            "last_event": _iso(self.last_event),
        }


@dataclass(frozen=True)
class ClientInfo:
    """Client environment reported by the agent SDK."""
    ide: Optional[str] = None
    ide_version: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ide": self.ide,
            "ide_version": self.ide_version,
            "os": self.os,
            "os_version": self.os_version,
        }


@dataclass(frozen=True)
class SessionDetail(SessionSummary):
    """Detail-view representation: summary plus timeline and client info."""
    timeline: SessionTimeline = field(default_factory=lambda: SessionTimeline(0, None, None))
    client_info: Optional[ClientInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["timeline"] = self.timeline.to_dict()
        if self.client_info is not None:
            data["client_info"] = self.client_info.to_dict()
        return data


@dataclass
class SessionQuery:
    """Filters, ordering and pagination for session lists."""
    status: Optional[SessionStatus] = None
    agent_id: Optional[str] = None
    user_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    sort: str = DEFAULT_SORT
    limit: int = DEFAULT_PAGE_SIZE
    cursor: Optional[str] = None

    def __post_init__(self):
        """Validate sort key and page size."""
        if self.status is not None and not isinstance(self.status, SessionStatus):
            self.status = SessionStatus(self.status)
        if self.sort.lstrip("-") not in SORT_FIELDS:
            raise ValueError(f"sort must be one of: {list(SORT_FIELDS)} (prefix '-' for descending)")
        if self.limit <= 0:
            raise ValueError("limit must be > 0")


@dataclass(frozen=True)
class SessionPage:
    """One page of session summaries."""
    data: List[SessionSummary]
    cursor: Optional[str]
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [session.to_dict() for session in self.data],
            "pagination": {"cursor": self.cursor, "has_more": self.has_more},
        }


def group_by_session(events: Iterable[Event]) -> Dict[str, List[Event]]:
    """Group events by session_id, each group sorted by timestamp."""
    groups: Dict[str, List[Event]] = {}
    for event in events:
        groups.setdefault(event.session_id, []).append(event)
    for session_events in groups.values():
        session_events.sort(key=lambda e: e.timestamp)
    return groups


def derive_status(events: Iterable[Event]) -> SessionStatus:
    """Active until a session_end is seen; then error if any error-class event exists."""
    events = list(events)
    if not any(e.event_type is EventType.SESSION_END for e in events):
        return SessionStatus.ACTIVE
    if any(e.event_type.is_error for e in events):
        return SessionStatus.ERROR
    return SessionStatus.COMPLETED


def calculate_session_metrics(
    events: Iterable[Event],
    include_task_duration: bool = False,
    pricing: TokenPricing = DEFAULT_PRICING,
) -> SessionMetrics:
    """Aggregate task counts, tokens and cost over a session's events.

    Args:
        events: Every event of one session
        include_task_duration: Compute avg_task_duration_ms (detail views)
        pricing: Token prices for estimated_cost

    Returns:
        SessionMetrics for the session
    """
    completed = failed = cancelled = 0
    tokens_input = tokens_output = 0
    durations: List[float] = []

    for event in events:
        if event.event_type is EventType.TASK_COMPLETE:
            completed += 1
        elif event.event_type is EventType.TASK_ERROR:
            failed += 1
        elif event.event_type is EventType.TASK_CANCEL:
            cancelled += 1

        tokens_input += event.metadata.tokens_input
        tokens_output += event.metadata.tokens_output
        if event.metadata.duration_ms is not None:
            durations.append(event.metadata.duration_ms)

    avg_duration = None
    if include_task_duration and durations:
        avg_duration = round(sum(durations) / len(durations), 2)

    return SessionMetrics(
        tasks_completed=completed,
        tasks_failed=failed,
        tasks_cancelled=cancelled,
        tokens_input=tokens_input,
        tokens_output=tokens_output,
        estimated_cost=round(calculate_token_cost(tokens_input, tokens_output, pricing), 6),
        avg_task_duration_ms=avg_duration,
    )


def _summary_fields(session_id: str, events: List[Event], include_task_duration: bool,
                    pricing: TokenPricing) -> Dict[str, Any]:
    first = events[0]
    started_at = first.timestamp
    end_event = next((e for e in events if e.event_type is EventType.SESSION_END), None)
    ended_at = end_event.timestamp if end_event is not None else None
    duration = None
    if ended_at is not None:
        duration = int((ended_at - started_at).total_seconds())

    return {
        "session_id": session_id,
        "user_id": first.user_id,
        "agent_id": first.agent_id,
        "environment": first.environment,
        "status": derive_status(events),
        "started_at": started_at,
        "ended_at": ended_at,
        "duration_seconds": duration,
        "metrics": calculate_session_metrics(events, include_task_duration, pricing),
    }


def summarize_session(
    session_id: str,
    events: Iterable[Event],
    pricing: TokenPricing = DEFAULT_PRICING,
) -> SessionSummary:
    """Derive a session summary from its events.

    Raises:
        ValueError: If the session has no events
    """
    ordered = sorted(events, key=lambda e: e.timestamp)
    if not ordered:
        raise ValueError(f"Session {session_id} has no events")
    return SessionSummary(**_summary_fields(session_id, ordered, False, pricing))


def build_session_detail(
    session_id: str,
    events: Iterable[Event],
    pricing: TokenPricing = DEFAULT_PRICING,
) -> Optional[SessionDetail]:
    """Derive the full detail view of a session, or None if it has no events."""
    ordered = sorted((e for e in events if e.session_id == session_id), key=lambda e: e.timestamp)
    if not ordered:
        return None

    client_info = None
    for event in ordered:
        info = event.metadata.client_info
        if info is not None:
            client_info = ClientInfo(
                ide=info.get("ide"),
                ide_version=info.get("ide_version"),
                os=info.get("os"),
                os_version=info.get("os_version"),
            )
            break

    return SessionDetail(
        **_summary_fields(session_id, ordered, True, pricing),
        timeline=SessionTimeline(
            event_count=len(ordered),
            first_event=ordered[0].timestamp,
            last_event=ordered[-1].timestamp,
        ),
        client_info=client_info,
    )


def _sort_key(sort_field: str):
    if sort_field == "duration":
        return lambda s: s.duration_seconds or 0
    return lambda s: s.started_at


def list_sessions(
    events: Iterable[Event],
    query: SessionQuery,
    now: datetime,
    pricing: TokenPricing = DEFAULT_PRICING,
    default_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> SessionPage:
    """Filter, sort and paginate the sessions derived from a tenant's events.

    Sessions are kept when started_at falls inside [start_time, end_time]
    (default: the last default_lookback_days up to now). The cursor is the
    session_id of the previous page's last item and is resolved with a linear
    scan of the sorted list, which is fine for in-memory volumes but would
    need an indexed keyset cursor at larger scale. An unknown cursor starts
    over from the first page.

    Args:
        events: Every event of the tenant
        query: Filters, ordering and pagination
        now: Current instant for the default window
        pricing: Token prices for estimated_cost
        default_lookback_days: Window length when start_time is not given

    Returns:
        SessionPage with summaries, next cursor and has_more flag
    """
    window_end = query.end_time or now
    window_start = query.start_time or (now - timedelta(days=default_lookback_days))

    sessions = []
    for session_id, session_events in group_by_session(events).items():
        summary = summarize_session(session_id, session_events, pricing)
        if not window_start <= summary.started_at <= window_end:
            continue
        if query.status is not None and summary.status is not query.status:
            continue
        if query.agent_id is not None and summary.agent_id != query.agent_id:
            continue
        if query.user_id is not None and summary.user_id != query.user_id:
            continue
        sessions.append(summary)

    descending = query.sort.startswith("-")
    sessions.sort(key=_sort_key(query.sort.lstrip("-")), reverse=descending)

    start_index = 0
    if query.cursor:
        for index, session in enumerate(sessions):
            if session.session_id == query.cursor:
                start_index = index + 1
                break

    page = sessions[start_index:start_index + query.limit]
    has_more = start_index + query.limit < len(sessions)
    return SessionPage(
        data=page,
        cursor=page[-1].session_id if has_more and page else None,
        has_more=has_more,
    )
