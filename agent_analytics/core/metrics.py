"""
Window metric calculations.

Aggregate statistics over a set of events already restricted to one window.
Shared by the overview and time series engines so both agree on definitions.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from agent_analytics.storage.models import Event, EventType

from .pricing import DEFAULT_PRICING, TokenPricing, calculate_events_cost


@dataclass
class _SessionFlags:
    has_end: bool = False
    has_error: bool = False
    start_ms: Optional[float] = None
    end_ms: Optional[float] = None
    task_duration_ms: float = 0
    has_task_duration: bool = False


def _session_flags(events: Iterable[Event]) -> Dict[str, _SessionFlags]:
    sessions: Dict[str, _SessionFlags] = {}
    for event in events:
        flags = sessions.setdefault(event.session_id, _SessionFlags())
        timestamp_ms = event.timestamp.timestamp() * 1000
        if event.event_type is EventType.SESSION_START:
            if flags.start_ms is None or timestamp_ms < flags.start_ms:
                flags.start_ms = timestamp_ms
        elif event.event_type is EventType.SESSION_END:
            flags.has_end = True
            if flags.end_ms is None or timestamp_ms < flags.end_ms:
                flags.end_ms = timestamp_ms
        if event.event_type.is_error:
            flags.has_error = True
        duration = event.metadata.duration_ms
        if duration is not None and event.event_type.is_task_lifecycle:
            flags.task_duration_ms += duration
            flags.has_task_duration = True
    return sessions


def count_active_users(events: Iterable[Event]) -> int:
    """Distinct users seen in the window."""
    return len({event.user_id for event in events})


def count_sessions(events: Iterable[Event]) -> int:
    """Distinct sessions seen in the window."""
    return len({event.session_id for event in events})


def calculate_success_rate(events: Iterable[Event]) -> float:
    """Percentage of ended sessions without any error-class event.

    Only sessions whose session_end falls in the window are judged. With
    nothing to judge the rate is 100: no sessions means no failures.
    """
    ended = [flags for flags in _session_flags(events).values() if flags.has_end]
    if not ended:
        return 100.0
    successful = sum(1 for flags in ended if not flags.has_error)
    return round(successful / len(ended) * 100, 2)


def calculate_error_rate(events: Iterable[Event]) -> float:
    """Percentage of the window's sessions that contain an error-class event."""
    sessions = _session_flags(events)
    if not sessions:
        return 0.0
    failed = sum(1 for flags in sessions.values() if flags.has_error)
    return round(failed / len(sessions) * 100, 2)


def calculate_total_cost(events: Iterable[Event], pricing: TokenPricing = DEFAULT_PRICING) -> float:
    """Estimated spend from token metadata, rounded to 6 decimals."""
    return round(calculate_events_cost(events, pricing), 6)


def calculate_tokens_used(events: Iterable[Event]) -> float:
    """Total input plus output tokens."""
    return sum(event.metadata.tokens_input + event.metadata.tokens_output for event in events)


def calculate_avg_session_duration(events: Iterable[Event]) -> float:
    """Mean session duration in seconds.

    A session's duration is session_end minus session_start when both are in
    the window, otherwise the sum of duration_ms on its task events. Sessions
    with neither are left out; with none left the result is 0.
    """
    durations: List[float] = []
    for flags in _session_flags(events).values():
        if flags.start_ms is not None and flags.end_ms is not None:
            durations.append((flags.end_ms - flags.start_ms) / 1000)
        elif flags.has_task_duration:
            durations.append(flags.task_duration_ms / 1000)
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


def count_errors(events: Iterable[Event]) -> int:
    """Number of error-class events."""
    return sum(1 for event in events if event.event_type.is_error)


def percentile(sorted_values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile: sorted_values[floor(n * fraction)].

    Raises:
        ValueError: If sorted_values is empty
    """
    if not sorted_values:
        raise ValueError("Values list cannot be empty")
    index = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]
