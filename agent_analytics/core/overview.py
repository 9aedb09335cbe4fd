"""
Metrics overview computation.

Computes dashboard headline metrics for a period, optionally compared with
the equal-length period immediately before it.

Metrics:
- active_users: Unique users running agent sessions in the period
- total_sessions: Unique sessions in the period
- success_rate: Ended sessions without errors / ended sessions x 100
- total_cost: Spend estimated from token metadata
- avg_session_duration: Average session length in seconds
- error_count: Number of error-class events
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from agent_analytics.storage.models import Event
from agent_analytics.storage.source import EventSource

from .metrics import (
    calculate_avg_session_duration,
    calculate_success_rate,
    calculate_total_cost,
    count_active_users,
    count_errors,
    count_sessions,
)
from .pricing import DEFAULT_PRICING, TokenPricing
from .windows import Period, TimeWindow, parse_period, period_windows


class Trend(Enum):
    """Direction of a period-over-period change."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


# Changes within +/-1% are noise
TREND_THRESHOLD_PERCENT = 1.0


@dataclass(frozen=True)
class MetricValue:
    """A metric's current value with optional comparison data."""
    value: float
    unit: Optional[str] = None
    previous: Optional[float] = None
    change_percent: Optional[float] = None
    trend: Optional[Trend] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"value": self.value}
        if self.unit is not None:
            data["unit"] = self.unit
        if self.previous is not None:
            data["previous"] = self.previous
            data["change_percent"] = self.change_percent
            data["trend"] = self.trend.value
        return data


@dataclass(frozen=True)
class MetricsOverview:
    """Overview metrics for one window."""
    window: TimeWindow
    metrics: Dict[str, MetricValue]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": {
                "start": self.window.start.isoformat(),
                "end": self.window.end.isoformat(),
            },
            "metrics": {name: value.to_dict() for name, value in self.metrics.items()},
        }


def calculate_change_percent(current: float, previous: float) -> float:
    """Percentage change rounded to 2 decimals.

    A rise from zero counts as +100%; zero to zero is 0%.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def classify_trend(change_percent: float) -> Trend:
    """Up above +1%, down below -1%, stable in between (inclusive)."""
    if change_percent > TREND_THRESHOLD_PERCENT:
        return Trend.UP
    if change_percent < -TREND_THRESHOLD_PERCENT:
        return Trend.DOWN
    return Trend.STABLE


def build_metric_value(
    current: float,
    previous: Optional[float],
    unit: Optional[str] = None,
) -> MetricValue:
    """Build a MetricValue, adding comparison fields when previous is given."""
    if previous is None:
        return MetricValue(value=current, unit=unit)
    change = calculate_change_percent(current, previous)
    return MetricValue(
        value=current,
        unit=unit,
        previous=previous,
        change_percent=change,
        trend=classify_trend(change),
    )


# name -> (calculation, unit)
_OVERVIEW_METRICS: Dict[str, tuple] = {
    "active_users": (lambda events, pricing: count_active_users(events), None),
    "total_sessions": (lambda events, pricing: count_sessions(events), None),
    "success_rate": (lambda events, pricing: calculate_success_rate(events), "percent"),
    "total_cost": (calculate_total_cost, "usd"),
    "avg_session_duration": (lambda events, pricing: calculate_avg_session_duration(events), "seconds"),
    "error_count": (lambda events, pricing: count_errors(events), None),
}


def _calculate_all(events: List[Event], pricing: TokenPricing) -> Dict[str, float]:
    return {name: calculate(events, pricing) for name, (calculate, _) in _OVERVIEW_METRICS.items()}


def compute_overview(
    source: EventSource,
    org_id: str,
    period: Union[str, Period],
    compare: bool,
    now: datetime,
    pricing: TokenPricing = DEFAULT_PRICING,
) -> MetricsOverview:
    """Compute overview metrics for an organization.

    Args:
        source: Event source to read the tenant's events from
        org_id: Organization ID for tenant isolation
        period: Reporting period (1d, 7d, 30d, 90d)
        compare: Include comparison with the previous period
        now: End of the current window
        pricing: Token prices for total_cost

    Returns:
        MetricsOverview for the current window
    """
    period = parse_period(period)
    current_window, previous_window = period_windows(period, now)

    current_events = _restrict(source.events_in_range(org_id, current_window.start, current_window.end),
                               current_window)
    current_values = _calculate_all(current_events, pricing)

    previous_values: Dict[str, Optional[float]] = {name: None for name in _OVERVIEW_METRICS}
    if compare:
        previous_events = _restrict(
            source.events_in_range(org_id, previous_window.start, previous_window.end),
            previous_window,
        )
        previous_values = _calculate_all(previous_events, pricing)

    metrics = {
        name: build_metric_value(current_values[name], previous_values[name], unit)
        for name, (_, unit) in _OVERVIEW_METRICS.items()
    }
    return MetricsOverview(window=current_window, metrics=metrics)


def _restrict(events: List[Event], window: TimeWindow) -> List[Event]:
    # Sources may return a superset of the window
    return [event for event in events if window.contains(event.timestamp)]
