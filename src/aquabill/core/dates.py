"""Date and billing period helper functions."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta

from aquabill.core.exceptions import InvalidPeriod

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_period(period: str) -> date:
    """Parses a ``YYYY-MM`` billing period into the first day of that month."""
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise InvalidPeriod(f"Billing period must be YYYY-MM, got {period!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidPeriod(f"Invalid month in billing period {period!r}")
    return date(year, month, 1)


def format_period(period_date: date) -> str:
    """Formats a date as its ``YYYY-MM`` billing period."""
    return f"{period_date.year:04d}-{period_date.month:02d}"


def month_start(day: date) -> date:
    return day.replace(day=1)


def period_bounds(period: str) -> tuple[date, date]:
    """Returns the first and last day of a billing period."""
    start = parse_period(period)
    end = start + relativedelta(months=1) - relativedelta(days=1)
    return start, end


def previous_period(period: str) -> str:
    return format_period(parse_period(period) - relativedelta(months=1))


def next_period(period: str) -> str:
    return format_period(parse_period(period) + relativedelta(months=1))


def ensure_aware(value: datetime) -> datetime:
    """Treats naive datetimes coming back from the database as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
