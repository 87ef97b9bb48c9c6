"""Identifier and date helpers shared by the core."""

from __future__ import annotations

import secrets
import string
from datetime import date, datetime, timedelta, tzinfo

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(length: int = 9) -> str:
    """Return a short random base-36 identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def to_local(value: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert an aware datetime into `tz`; naive values and tz=None pass through."""
    if tz is None or value.tzinfo is None:
        return value
    return value.astimezone(tz)


def days_in_month(year: int, month: int) -> list[date]:
    """Every calendar day of the given month, in order."""
    day = date(year, month, 1)
    days: list[date] = []
    while day.month == month:
        days.append(day)
        day += timedelta(days=1)
    return days


def is_same_day(d1: date | datetime, d2: date | datetime) -> bool:
    """True when both values fall on the same calendar day (no tz conversion)."""
    return (d1.year, d1.month, d1.day) == (d2.year, d2.month, d2.day)


def day_name(value: date | datetime) -> str:
    """Short weekday name, e.g. 'Mon'."""
    return value.strftime("%a")


def format_date(value: date | datetime) -> str:
    """Long date, e.g. 'March 1, 2024'."""
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def format_time(value: datetime) -> str:
    """Two-digit 12-hour clock, e.g. '03:00 PM'."""
    return value.strftime("%I:%M %p")
