"""Tests for famly.core.utils."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

from famly.core.utils import (
    day_name,
    days_in_month,
    format_date,
    format_time,
    generate_id,
    is_same_day,
    to_local,
)

from conftest import utc


def test_generate_id():
    ids = {generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(len(i) == 9 and i.isalnum() and i == i.lower() for i in ids)


def test_days_in_month_leap_year():
    days = days_in_month(2024, 2)
    assert len(days) == 29
    assert days[0] == date(2024, 2, 1)
    assert days[-1] == date(2024, 2, 29)


def test_is_same_day():
    assert is_same_day(datetime(2024, 3, 1, 23, 59), date(2024, 3, 1))
    assert not is_same_day(datetime(2024, 3, 2, 0, 0), date(2024, 3, 1))


def test_formatting():
    value = datetime(2024, 3, 1, 15, 0)
    assert day_name(value) == "Fri"
    assert format_date(value) == "March 1, 2024"
    assert format_time(value) == "03:00 PM"


def test_to_local():
    local = to_local(utc(2024, 3, 1, 2), ZoneInfo("America/New_York"))
    assert local.date() == date(2024, 2, 29)
    naive = datetime(2024, 3, 1, 2)
    assert to_local(naive, ZoneInfo("America/New_York")) is naive
