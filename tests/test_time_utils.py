"""Tests for week splitting and fairness day classification."""

import sys
import pathlib
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parent.parent))

from datetime import date

from context.engine.time_utils import (
    DayClassifier, FairnessDimension, month_range, previous_month, week_start, weeks_in_range,
)


class TestWeeks:

    def test_week_starts_on_sunday(self):
        """Saturday and Sunday belong to different weeks"""
        assert week_start(date(2025, 3, 8)) == date(2025, 3, 2)
        assert week_start(date(2025, 3, 9)) == date(2025, 3, 9)

    def test_weeks_are_clipped_to_range(self):
        """Partial weeks at either end are kept"""
        weeks = weeks_in_range(date(2025, 3, 1), date(2025, 3, 10))
        assert weeks[0] == [date(2025, 3, 1)]
        assert len(weeks[1]) == 7
        assert weeks[2] == [date(2025, 3, 9), date(2025, 3, 10)]

    def test_month_helpers(self):
        """month_range and previous_month handle year boundaries"""
        assert month_range(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
        assert previous_month(2025, 1) == (2024, 12)


class TestDayClassifier:

    def test_plain_weekday_counts_only_total(self):
        """A Monday with no night shift is TOTAL only"""
        classifier = DayClassifier([])
        assert classifier.dimensions_for(date(2025, 3, 3)) == {FairnessDimension.TOTAL}

    def test_saturday_with_night(self):
        """Saturday night counts toward TOTAL, NIGHT and WEEKEND"""
        classifier = DayClassifier([])
        dims = classifier.dimensions_for(date(2025, 3, 8), has_night=True)
        assert dims == {FairnessDimension.TOTAL, FairnessDimension.NIGHT, FairnessDimension.WEEKEND}

    def test_consecutive_holidays_only_border_days_adjacent(self):
        """Inside a holiday run every day is HOLIDAY; only the bordering days are adjacent"""
        wed, thu = date(2025, 3, 5), date(2025, 3, 6)
        classifier = DayClassifier([wed, thu])

        assert FairnessDimension.HOLIDAY in classifier.dimensions_for(wed)
        assert FairnessDimension.HOLIDAY_ADJACENT not in classifier.dimensions_for(wed)
        assert FairnessDimension.HOLIDAY_ADJACENT not in classifier.dimensions_for(thu)

        assert classifier.is_holiday_adjacent(date(2025, 3, 4))
        assert classifier.is_holiday_adjacent(date(2025, 3, 7))
        assert not classifier.is_holiday_adjacent(date(2025, 3, 3))

    def test_holiday_adjacent_can_be_disabled(self):
        """With the rule off, the day before a holiday is TOTAL only"""
        classifier = DayClassifier([date(2025, 3, 5)], holiday_adjacent_enabled=False)
        assert classifier.dimensions_for(date(2025, 3, 4)) == {FairnessDimension.TOTAL}
