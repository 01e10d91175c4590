"""Payout-day policy: the first business day of each month."""

from datetime import date, timedelta

SATURDAY = 5
SUNDAY = 6


def payout_day_for_month(year: int, month: int) -> date:
    """The 1st, pushed to Monday when it falls on a weekend."""
    first = date(year, month, 1)
    weekday = first.weekday()
    if weekday == SATURDAY:
        return first + timedelta(days=2)
    if weekday == SUNDAY:
        return first + timedelta(days=1)
    return first


def is_payout_day(day: date) -> bool:
    return day == payout_day_for_month(day.year, day.month)


def next_payout_date(today: date) -> date:
    """Payout day of this month if not yet passed, else next month's."""
    candidate = payout_day_for_month(today.year, today.month)
    if candidate >= today:
        return candidate
    if today.month == 12:
        return payout_day_for_month(today.year + 1, 1)
    return payout_day_for_month(today.year, today.month + 1)
