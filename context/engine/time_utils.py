"""Date helpers and day classification for the roster engine.

Weeks run Sunday to Saturday. A day is classified into the fairness
dimensions it counts toward:

    TOTAL             every working day
    NIGHT             the day's doctor roster includes a night shift
    WEEKEND           weekday is one of the configured weekend weekdays
    HOLIDAY           a registered clinic holiday
    HOLIDAY_ADJACENT  not a holiday, but the day before or after is one

For a run of consecutive holidays every day inside the run is HOLIDAY and
only the two bordering non-holiday days are HOLIDAY_ADJACENT.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, Iterator, List, Set, Tuple, FrozenSet


class FairnessDimension(Enum):
    TOTAL = "total"
    NIGHT = "night"
    WEEKEND = "weekend"
    HOLIDAY = "holiday"
    HOLIDAY_ADJACENT = "holidayAdjacent"


ALL_DIMENSIONS = tuple(FairnessDimension)

WEEKDAY_NAMES = {
    'MONDAY': 0, 'TUESDAY': 1, 'WEDNESDAY': 2, 'THURSDAY': 3,
    'FRIDAY': 4, 'SATURDAY': 5, 'SUNDAY': 6,
}


def parse_weekday(value) -> int:
    """Convert 'Saturday' / 'SAT' / 5 into a Python weekday number (Mon=0)."""
    if isinstance(value, int):
        if not 0 <= value <= 6:
            raise ValueError(f"Weekday out of range: {value}")
        return value
    key = str(value).strip().upper()
    for name, number in WEEKDAY_NAMES.items():
        if name == key or name[:3] == key:
            return number
    raise ValueError(f"Unknown weekday: {value!r}")


def month_range(year: int, month: int) -> Tuple[date, date]:
    """First and last calendar day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def week_start(d: date) -> date:
    """Sunday on or before the given date."""
    return d - timedelta(days=(d.weekday() + 1) % 7)


def weeks_in_range(start: date, end: date) -> List[List[date]]:
    """Sunday-Saturday weeks intersecting [start, end], clipped to the range.

    Example:
        2025-03-01 (Sat) .. 2025-03-10 (Mon) gives
        [[03-01], [03-02 .. 03-08], [03-09, 03-10]]
    """
    weeks: List[List[date]] = []
    current_key = None
    for d in iter_dates(start, end):
        key = week_start(d)
        if key != current_key:
            weeks.append([])
            current_key = key
        weeks[-1].append(d)
    return weeks


def previous_month(year: int, month: int) -> Tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


class DayClassifier:
    """Classifies dates into fairness dimensions for one clinic calendar.

    Args:
        holidays: Registered holiday dates
        weekend_weekdays: Weekday numbers counted as WEEKEND (default Saturday)
        holiday_adjacent_enabled: When False no day is ever HOLIDAY_ADJACENT
    """

    def __init__(
        self,
        holidays: Iterable[date],
        weekend_weekdays: Iterable[int] = (5,),
        holiday_adjacent_enabled: bool = True,
    ):
        self.holidays: FrozenSet[date] = frozenset(holidays)
        self.weekend_weekdays: FrozenSet[int] = frozenset(weekend_weekdays)
        self.holiday_adjacent_enabled = holiday_adjacent_enabled

    def is_holiday(self, d: date) -> bool:
        return d in self.holidays

    def is_weekend(self, d: date) -> bool:
        return d.weekday() in self.weekend_weekdays

    def is_holiday_adjacent(self, d: date) -> bool:
        if not self.holiday_adjacent_enabled or d in self.holidays:
            return False
        one_day = timedelta(days=1)
        return (d - one_day) in self.holidays or (d + one_day) in self.holidays

    def dimensions_for(self, d: date, has_night: bool = False) -> Set[FairnessDimension]:
        """All dimensions a day of work (or leave) on this date counts toward."""
        dims = {FairnessDimension.TOTAL}
        if has_night:
            dims.add(FairnessDimension.NIGHT)
        if self.is_weekend(d):
            dims.add(FairnessDimension.WEEKEND)
        if self.is_holiday(d):
            dims.add(FairnessDimension.HOLIDAY)
        elif self.is_holiday_adjacent(d):
            dims.add(FairnessDimension.HOLIDAY_ADJACENT)
        return dims
