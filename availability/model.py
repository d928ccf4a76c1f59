"""
Availability Model (Domain Layer)

Derives a provider's bookable intervals for a calendar date from the weekly
template and the date's exception. Pure functions of provider state.
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Tuple

from shared.domain.entities import Interval, Provider, TimeRange, day_code

MinuteRange = Tuple[int, int]

# Longest local day (DST fall-back). An admitted booking fits inside one
# day's effective interval, so it never lasts longer than this.
MAX_BOOKING_SPAN = timedelta(hours=25)


def merge_ranges(ranges: List[MinuteRange]) -> List[MinuteRange]:
    """Sort and coalesce overlapping or touching minute ranges"""
    merged: List[MinuteRange] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def subtract_ranges(ranges: List[MinuteRange], removals: List[MinuteRange]) -> List[MinuteRange]:
    """Remove every removal range from the (merged) ranges"""
    result: List[MinuteRange] = []
    removals = merge_ranges(removals)
    for start, end in merge_ranges(ranges):
        cursor = start
        for cut_start, cut_end in removals:
            if cut_end <= cursor or cut_start >= end:
                continue
            if cut_start > cursor:
                result.append((cursor, cut_start))
            cursor = max(cursor, cut_end)
            if cursor >= end:
                break
        if cursor < end:
            result.append((cursor, end))
    return result


def _to_minutes(time_ranges: List[TimeRange]) -> List[MinuteRange]:
    return [(tr.start_minutes, tr.end_minutes) for tr in time_ranges]


def local_day_of(provider: Provider, instant: datetime) -> date:
    """Calendar date of an instant in the provider's timezone"""
    return instant.astimezone(provider.tzinfo).date()


def open_ranges_for(provider: Provider, day: date) -> List[MinuteRange]:
    """
    Wall-clock open ranges for a date, in minutes since local midnight

    An exception for the date wins over the template: a full-day block
    yields nothing, a partial override replaces the template (breaks
    included) for that date.
    """
    exception = provider.exception_for(day)
    if exception is not None:
        if exception.is_full_day_block:
            return []
        return merge_ranges(_to_minutes(exception.time_ranges))

    day_availability = provider.template.for_day(day_code(day))
    if day_availability is None:
        return []

    return subtract_ranges(
        _to_minutes(day_availability.time_ranges),
        _to_minutes(day_availability.breaks)
    )


def effective_intervals(provider: Provider, day: date) -> List[Interval]:
    """
    Bookable intervals for `day`, sorted by start and pairwise non-overlapping

    Wall-clock times are read in the provider's timezone; the returned
    intervals are UTC-aware.
    """
    tz = provider.tzinfo
    local_midnight = datetime(day.year, day.month, day.day)

    intervals: List[Interval] = []
    for start, end in open_ranges_for(provider, day):
        start_at = tz.localize(local_midnight + timedelta(minutes=start)).astimezone(timezone.utc)
        end_at = tz.localize(local_midnight + timedelta(minutes=end)).astimezone(timezone.utc)
        # Wall times swallowed by a DST jump can collapse a range
        if end_at <= start_at:
            continue
        intervals.append(Interval(start_at, end_at))

    intervals.sort(key=lambda interval: interval.start)
    return intervals
