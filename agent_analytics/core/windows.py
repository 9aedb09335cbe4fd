"""
Time windows and bucket boundaries.

Maps query periods to windows and splits windows into calendar-aligned buckets.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo


class Period(Enum):
    """Supported reporting periods."""
    DAY = "1d"
    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"

    @property
    def days(self) -> int:
        return _PERIOD_DAYS[self]


_PERIOD_DAYS = {
    Period.DAY: 1,
    Period.WEEK: 7,
    Period.MONTH: 30,
    Period.QUARTER: 90,
}


class Granularity(Enum):
    """Bucket sizes for time series."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


@dataclass(frozen=True)
class TimeWindow:
    """Closed time range [start, end]."""
    start: datetime
    end: datetime

    def __post_init__(self):
        """Validate time window is logical."""
        if self.start > self.end:
            raise ValueError("window start must be before window end")

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


def parse_period(value: Union[str, Period]) -> Period:
    return value if isinstance(value, Period) else Period(value)


def parse_granularity(value: Union[str, Granularity, None]) -> Optional[Granularity]:
    if value is None or isinstance(value, Granularity):
        return value
    return Granularity(value)


def resolve_timezone(name: Union[str, tzinfo, None]) -> tzinfo:
    """Resolve an IANA name (or tzinfo) into a tzinfo; None and "UTC" give UTC."""
    if name is None:
        return timezone.utc
    if isinstance(name, tzinfo):
        return name
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def period_windows(period: Period, now: datetime) -> Tuple[TimeWindow, TimeWindow]:
    """Current window [now - period, now] and the equal-length window before it."""
    length = timedelta(days=period.days)
    current = TimeWindow(start=now - length, end=now)
    previous = TimeWindow(start=current.start - length, end=current.start)
    return current, previous


def default_granularity(period: Period) -> Granularity:
    """Hourly buckets for a day, daily up to a month, weekly beyond."""
    if period is Period.DAY:
        return Granularity.HOUR
    if period in (Period.WEEK, Period.MONTH):
        return Granularity.DAY
    return Granularity.WEEK


def align_bucket_start(instant: datetime, granularity: Granularity, tz: tzinfo = timezone.utc) -> datetime:
    """Floor an instant to its bucket boundary in the given timezone.

    Hours floor to the top of the hour, days to local midnight and weeks
    to the preceding Monday at midnight.
    """
    local = instant.astimezone(tz)
    if granularity is Granularity.HOUR:
        return local.replace(minute=0, second=0, microsecond=0)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity is Granularity.DAY:
        return midnight
    return midnight - timedelta(days=midnight.weekday())


def _advance(boundary: datetime, granularity: Granularity) -> datetime:
    # Hours step in UTC so DST transitions never repeat or merge an hour;
    # days and weeks step on the wall clock so local midnights stay midnights
    if granularity is Granularity.HOUR:
        return (boundary.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(boundary.tzinfo)
    if granularity is Granularity.DAY:
        return boundary + timedelta(days=1)
    return boundary + timedelta(weeks=1)


def generate_buckets(
    window: TimeWindow,
    granularity: Granularity,
    tz: tzinfo = timezone.utc,
) -> List[TimeWindow]:
    """Split a window into contiguous, calendar-aligned buckets.

    The first bucket starts at the aligned boundary at or before the window
    start (so it may begin earlier than the window). Buckets are half-open
    [start, next_start); the final one ends exactly at the window end.

    Returns:
        Buckets with UTC boundaries, oldest first
    """
    starts: List[datetime] = []
    current = align_bucket_start(window.start, granularity, tz)
    while current <= window.end:
        starts.append(current.astimezone(timezone.utc))
        current = _advance(current, granularity)

    buckets = []
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else window.end.astimezone(timezone.utc)
        buckets.append(TimeWindow(start=start, end=end))
    return buckets
