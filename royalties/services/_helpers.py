"""Shared utilities for the service layer."""

import calendar
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

CENT = Decimal("0.01")


def new_id() -> str:
    return str(uuid4())


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Quantize to the settlement currency's minor unit, rounding half-up."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; treat naive timestamps as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def start_of_day(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=UTC)


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def months_before(day: date, months: int) -> date:
    """Same day-of-month ``months`` earlier, clamped to the end of shorter months."""
    index = day.year * 12 + (day.month - 1) - months
    year, month = index // 12, index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))
