"""Tests for royalties.services.payout_calendar."""

from datetime import date, timedelta

import pytest

from royalties.services.payout_calendar import (
    is_payout_day,
    next_payout_date,
    payout_day_for_month,
)


def _reference_rule(day: date) -> bool:
    """Independent statement of the rule, written against calendar weekdays."""
    first = day.replace(day=1)
    first_weekday = first.isoweekday()  # Mon=1 .. Sun=7
    if day.day == 1:
        return first_weekday <= 5
    # weekend 1st rolls to the Monday: the 2nd after a Sunday, the 3rd after a Saturday
    if day.day == 2:
        return first_weekday == 7
    if day.day == 3:
        return first_weekday == 6
    return False


class TestPayoutDay:
    @pytest.mark.parametrize(
        ("day", "expected"),
        [
            (date(2024, 3, 1), True),   # Friday
            (date(2025, 3, 1), False),  # Saturday
            (date(2025, 3, 2), False),  # Sunday
            (date(2025, 3, 3), True),   # Monday after a Saturday 1st
            (date(2026, 3, 1), False),  # Sunday
            (date(2026, 3, 2), True),   # Monday after a Sunday 1st
            (date(2026, 3, 3), False),
            (date(2024, 3, 4), False),
        ],
    )
    def test_known_dates(self, day: date, expected: bool) -> None:
        assert is_payout_day(day) is expected

    def test_exhaustive_2020_to_2035(self) -> None:
        day = date(2020, 1, 1)
        end = date(2035, 12, 31)
        while day <= end:
            assert is_payout_day(day) is _reference_rule(day), day.isoformat()
            day += timedelta(days=1)

    def test_exactly_one_payout_day_per_month(self) -> None:
        for year in range(2020, 2036):
            for month in range(1, 13):
                days = [
                    date(year, month, d) for d in range(1, 8) if is_payout_day(date(year, month, d))
                ]
                assert days == [payout_day_for_month(year, month)]
                assert days[0].weekday() < 5


class TestNextPayoutDate:
    def test_today_when_today_is_payout_day(self) -> None:
        assert next_payout_date(date(2024, 3, 1)) == date(2024, 3, 1)

    def test_weekend_first_rolls_forward(self) -> None:
        assert next_payout_date(date(2025, 3, 1)) == date(2025, 3, 3)

    def test_after_payout_day_moves_to_next_month(self) -> None:
        assert next_payout_date(date(2026, 10, 18)) == date(2026, 11, 2)

    def test_december_rolls_into_next_year(self) -> None:
        assert next_payout_date(date(2025, 12, 15)) == date(2026, 1, 1)
