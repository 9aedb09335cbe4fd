"""
Time series computation.

Buckets a period into calendar-aligned intervals and computes one metric
per bucket, plus summary aggregations over the resulting series.

Each bucket only sees events whose timestamp falls inside it. A session
whose events straddle a boundary is therefore counted in every bucket it
touches, so per-bucket unique counts do not add up to the whole-window
unique count. This is bucketed-activity semantics, not double counting.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from agent_analytics.storage.models import Event
from agent_analytics.storage.source import EventSource

from .metrics import (
    calculate_avg_session_duration,
    calculate_error_rate,
    calculate_success_rate,
    calculate_tokens_used,
    calculate_total_cost,
    count_active_users,
    count_sessions,
    percentile,
)
from .pricing import DEFAULT_PRICING, TokenPricing
from .windows import (
    Granularity,
    Period,
    TimeWindow,
    default_granularity,
    generate_buckets,
    parse_granularity,
    parse_period,
    period_windows,
)

logger = logging.getLogger(__name__)


class TimeseriesMetric(Enum):
    """Metrics available as time series."""
    ACTIVE_USERS = "active_users"
    TOTAL_SESSIONS = "total_sessions"
    SESSION_DURATION = "session_duration"
    SUCCESS_RATE = "success_rate"
    ERROR_RATE = "error_rate"
    TOKENS_USED = "tokens_used"
    COST = "cost"


@dataclass(frozen=True)
class TimeseriesPoint:
    timestamp: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}


@dataclass(frozen=True)
class Aggregations:
    """Summary statistics over a series' values."""
    min: float
    max: float
    avg: float
    sum: float
    p50: float
    p95: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "min": self.min,
            "max": self.max,
            "avg": self.avg,
            "sum": self.sum,
            "p50": self.p50,
            "p95": self.p95,
        }


@dataclass(frozen=True)
class Timeseries:
    """A bucketed metric series for one window."""
    metric: str
    window: TimeWindow
    granularity: Granularity
    data: List[TimeseriesPoint]
    aggregations: Optional[Aggregations] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "metric": self.metric,
            "period": {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
                "granularity": self.granularity.value,
            },
            "granularity": self.granularity.value,
            "data": [point.to_dict() for point in self.data],
        }
        if self.aggregations is not None:
            result["aggregations"] = self.aggregations.to_dict()
        return result


def calculate_metric(
    metric: Union[str, TimeseriesMetric],
    events: List[Event],
    pricing: TokenPricing = DEFAULT_PRICING,
) -> float:
    """Calculate one metric over a bucket's events.

    Unknown metric names yield 0 so that a series is always complete.
    """
    try:
        metric = TimeseriesMetric(metric)
    except ValueError:
        logger.debug("Unknown time series metric %r, reporting 0", metric)
        return 0.0

    if metric is TimeseriesMetric.ACTIVE_USERS:
        return count_active_users(events)
    if metric is TimeseriesMetric.TOTAL_SESSIONS:
        return count_sessions(events)
    if metric is TimeseriesMetric.SESSION_DURATION:
        return calculate_avg_session_duration(events)
    if metric is TimeseriesMetric.SUCCESS_RATE:
        return calculate_success_rate(events)
    if metric is TimeseriesMetric.ERROR_RATE:
        return calculate_error_rate(events)
    if metric is TimeseriesMetric.TOKENS_USED:
        return calculate_tokens_used(events)
    return calculate_total_cost(events, pricing)


def calculate_aggregations(points: List[TimeseriesPoint]) -> Optional[Aggregations]:
    """Min, max, avg, sum and nearest-rank p50/p95; None for an empty series."""
    if not points:
        return None
    values = sorted(point.value for point in points)
    total = sum(values)
    return Aggregations(
        min=values[0],
        max=values[-1],
        avg=round(total / len(values), 2),
        sum=round(total, 2),
        p50=percentile(values, 0.5),
        p95=percentile(values, 0.95),
    )


def compute_timeseries(
    source: EventSource,
    org_id: str,
    metric: Union[str, TimeseriesMetric],
    period: Union[str, Period],
    now: datetime,
    granularity: Union[str, Granularity, None] = None,
    tz: tzinfo = timezone.utc,
    pricing: TokenPricing = DEFAULT_PRICING,
) -> Timeseries:
    """Compute a metric as a time series for an organization.

    Args:
        source: Event source to read the tenant's events from
        org_id: Organization ID for tenant isolation
        metric: Metric to compute per bucket
        period: Reporting period (1d, 7d, 30d, 90d)
        now: End of the window
        granularity: Bucket size; defaults by period when None
        tz: Timezone used to align day and week boundaries
        pricing: Token prices for the cost metric

    Returns:
        Timeseries with one point per bucket, oldest first
    """
    period = parse_period(period)
    granularity = parse_granularity(granularity) or default_granularity(period)
    window, _ = period_windows(period, now)
    metric_name = metric.value if isinstance(metric, TimeseriesMetric) else str(metric)

    events = [e for e in source.events_in_range(org_id, window.start, window.end) if window.contains(e.timestamp)]

    data = []
    for bucket in generate_buckets(window, granularity, tz):
        bucket_events = [e for e in events if bucket.start <= e.timestamp < bucket.end]
        value = calculate_metric(metric_name, bucket_events, pricing)
        data.append(TimeseriesPoint(timestamp=bucket.start, value=round(value, 2)))

    return Timeseries(
        metric=metric_name,
        window=window,
        granularity=granularity,
        data=data,
        aggregations=calculate_aggregations(data),
    )
