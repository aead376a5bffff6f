from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Hashable, Iterator

from errors import InvalidRange


class Granularity(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidRange("Start date must be before end date")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class Bucket:
    """One calendar unit of a series, clipped to the requested range.

    ``key`` is the date itself for daily buckets, ``(iso_year, iso_week)`` for
    weekly buckets and ``(year, month)`` for monthly buckets.
    """

    key: Hashable
    start: date
    end: date


def month_bounds(year: int, month: int) -> Period:
    start = date(year, month, 1)
    if month == 12:
        end = date(year + 1, 1, 1) - date.resolution
    else:
        end = date(year, month + 1, 1) - date.resolution
    return Period(f"{year:04d}-{month:02d}", start, end)


def bucket_key(granularity: Granularity, day: date) -> Hashable:
    if granularity == Granularity.daily:
        return day
    if granularity == Granularity.weekly:
        iso = day.isocalendar()
        return (iso[0], iso[1])
    return (day.year, day.month)


def _unit_bounds(granularity: Granularity, day: date) -> tuple[date, date]:
    if granularity == Granularity.daily:
        return day, day
    if granularity == Granularity.weekly:
        monday = day - timedelta(days=day.weekday())
        return monday, monday + timedelta(days=6)
    month = month_bounds(day.year, day.month)
    return month.start, month.end


class CalendarRange:
    """Finite, restartable sequence of buckets covering ``[start, end]``.

    Every calendar unit touching the range yields exactly one bucket, whether
    or not anything happened in it.
    """

    def __init__(self, granularity: Granularity, start: date, end: date) -> None:
        if start > end:
            raise InvalidRange("Start date must be before end date")
        self.granularity = Granularity(granularity)
        self.start = start
        self.end = end

    def __iter__(self) -> Iterator[Bucket]:
        cursor = self.start
        while cursor <= self.end:
            unit_start, unit_end = _unit_bounds(self.granularity, cursor)
            yield Bucket(
                key=bucket_key(self.granularity, cursor),
                start=max(unit_start, self.start),
                end=min(unit_end, self.end),
            )
            cursor = unit_end + timedelta(days=1)

    def __len__(self) -> int:
        if self.granularity == Granularity.daily:
            return (self.end - self.start).days + 1
        if self.granularity == Granularity.weekly:
            first_monday = self.start - timedelta(days=self.start.weekday())
            last_monday = self.end - timedelta(days=self.end.weekday())
            return (last_monday - first_monday).days // 7 + 1
        return (
            (self.end.year - self.start.year) * 12
            + (self.end.month - self.start.month)
            + 1
        )
