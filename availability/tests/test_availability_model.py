"""
Unit tests for the availability model
"""

import random
from datetime import date, datetime, timezone

import pytest

from availability.model import (
    effective_intervals,
    local_day_of,
    merge_ranges,
    open_ranges_for,
    subtract_ranges,
)
from shared.domain.entities import (
    AvailabilityException,
    AvailabilityTemplate,
    DayAvailability,
    Provider,
    TimeRange,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def provider_with(days=None, exceptions=None, tz="UTC"):
    template = AvailabilityTemplate()
    for day in days or []:
        template.set_day(day)
    return Provider(
        provider_id="pro_1",
        owner_id="owner_1",
        name="Studio",
        template=template,
        exceptions={e.day: e for e in exceptions or []},
        timezone=tz
    )


MONDAY = date(2030, 1, 7)


class TestRangeArithmetic:

    def test_merge_coalesces_overlapping_and_touching(self):
        assert merge_ranges([(600, 660), (540, 600), (700, 720), (650, 690)]) == [(540, 690), (700, 720)]

    def test_subtract_splits_around_break(self):
        assert subtract_ranges([(540, 1020)], [(720, 780)]) == [(540, 720), (780, 1020)]

    def test_subtract_break_covering_edges(self):
        assert subtract_ranges([(540, 600)], [(500, 560), (590, 700)]) == [(560, 590)]

    def test_subtract_everything(self):
        assert subtract_ranges([(540, 600)], [(0, 1440)]) == []


class TestOpenRanges:

    def test_template_with_break(self):
        provider = provider_with(days=[DayAvailability(
            "MON", [TimeRange("09:00", "17:00")], breaks=[TimeRange("12:00", "13:00")]
        )])
        assert open_ranges_for(provider, MONDAY) == [(540, 720), (780, 1020)]

    def test_day_without_template_is_closed(self):
        assert effective_intervals(provider_with(), MONDAY) == []

    def test_full_day_exception_blocks(self):
        provider = provider_with(
            days=[DayAvailability("MON", [TimeRange("09:00", "17:00")])],
            exceptions=[AvailabilityException(day=MONDAY, reason="Holiday")]
        )
        assert effective_intervals(provider, MONDAY) == []

    def test_partial_exception_replaces_template_and_breaks(self):
        provider = provider_with(
            days=[DayAvailability(
                "MON", [TimeRange("09:00", "17:00")], breaks=[TimeRange("12:00", "13:00")]
            )],
            exceptions=[AvailabilityException(day=MONDAY, time_ranges=[TimeRange("11:00", "14:00")])]
        )
        assert [(i.start, i.end) for i in effective_intervals(provider, MONDAY)] == [
            (utc(2030, 1, 7, 11), utc(2030, 1, 7, 14))
        ]

    def test_exception_only_affects_its_date(self):
        provider = provider_with(
            days=[DayAvailability("MON", [TimeRange("09:00", "10:00")])],
            exceptions=[AvailabilityException(day=MONDAY)]
        )
        next_monday = date(2030, 1, 14)
        assert len(effective_intervals(provider, next_monday)) == 1


class TestTimezones:

    def test_wall_clock_read_in_provider_timezone(self):
        provider = provider_with(
            days=[DayAvailability("MON", [TimeRange("09:00", "17:00")])],
            tz="America/Bogota"
        )
        (interval,) = effective_intervals(provider, MONDAY)
        assert (interval.start, interval.end) == (utc(2030, 1, 7, 14), utc(2030, 1, 7, 22))

    def test_local_day_of_instant(self):
        provider = provider_with(tz="Asia/Tokyo")
        assert local_day_of(provider, utc(2030, 1, 6, 20)) == MONDAY

    def test_spring_forward_shortens_range(self):
        dst_day = date(2030, 3, 10)
        provider = provider_with(
            exceptions=[AvailabilityException(day=dst_day, time_ranges=[TimeRange("01:00", "04:00")])],
            tz="America/New_York"
        )
        (interval,) = effective_intervals(provider, dst_day)
        assert (interval.start, interval.end) == (utc(2030, 3, 10, 6), utc(2030, 3, 10, 8))

    def test_range_inside_skipped_hour_disappears(self):
        dst_day = date(2030, 3, 10)
        provider = provider_with(
            exceptions=[AvailabilityException(day=dst_day, time_ranges=[TimeRange("02:00", "03:00")])],
            tz="America/New_York"
        )
        assert effective_intervals(provider, dst_day) == []

    def test_fall_back_lengthens_range(self):
        dst_day = date(2030, 11, 3)
        provider = provider_with(
            exceptions=[AvailabilityException(day=dst_day, time_ranges=[TimeRange("00:00", "04:00")])],
            tz="America/New_York"
        )
        (interval,) = effective_intervals(provider, dst_day)
        assert interval.duration_minutes == 5 * 60


def _random_ranges(rng, count):
    ranges = []
    for _ in range(count):
        start = rng.randrange(0, 1410, 15)
        end = rng.randrange(start + 15, 1441, 15)
        ranges.append(TimeRange.from_minutes(start, end))
    return ranges


@pytest.mark.parametrize("seed", range(25))
def test_effective_intervals_sorted_and_disjoint(seed):
    rng = random.Random(seed)
    tz = rng.choice(["UTC", "America/New_York", "Europe/Madrid", "Asia/Kolkata"])
    provider = provider_with(
        days=[DayAvailability(
            "MON",
            _random_ranges(rng, rng.randint(1, 6)),
            breaks=_random_ranges(rng, rng.randint(0, 3))
        )],
        tz=tz
    )

    intervals = effective_intervals(provider, MONDAY)

    for interval in intervals:
        assert interval.start < interval.end
    for earlier, later in zip(intervals, intervals[1:]):
        assert earlier.end <= later.start
