"""Tests for famly.core.ics_codec — iCalendar export / best-effort import."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from famly.core.errors import MalformedInterchangeError
from famly.core.ics_codec import export_calendar, import_calendar, parse_block, parse_timestamp
from famly.data.models import CalendarEvent, EventCategory

from conftest import utc


def _event(**overrides):
    fields = dict(
        id="ev1",
        title="Piano",
        start=utc(2024, 3, 1, 15),
        end=utc(2024, 3, 1, 16),
        description="Bring sheet music",
        location="Music school",
        category=EventCategory.SCHOOL,
        member_ids=["3"],
    )
    fields.update(overrides)
    return CalendarEvent(**fields)


def _wrap(*blocks):
    body = "".join(f"BEGIN:VEVENT\r\n{b}END:VEVENT\r\n" for b in blocks)
    return f"BEGIN:VCALENDAR\r\nVERSION:2.0\r\n{body}END:VCALENDAR\r\n"


class TestExport:
    def test_envelope_and_fields(self):
        text = export_calendar([_event()], now=utc(2024, 2, 1, 8, 30))
        assert text.startswith("BEGIN:VCALENDAR")
        assert text.rstrip().endswith("END:VCALENDAR")
        assert "PRODID:-//fam.ly//Calendar//EN" in text
        assert "UID:ev1" in text
        assert "DTSTAMP:20240201T083000Z" in text
        assert "DTSTART:20240301T150000Z" in text
        assert "DTEND:20240301T160000Z" in text
        assert "SUMMARY:Piano" in text

    def test_non_utc_start_is_normalized(self):
        start = datetime(2024, 3, 1, 10, 0, 30, 999, tzinfo=ZoneInfo("America/New_York"))
        text = export_calendar([_event(start=start, end=start + timedelta(hours=1))])
        assert "DTSTART:20240301T150030Z" in text

    def test_optional_fields_omitted_when_empty(self):
        text = export_calendar([_event(description="", location="")])
        assert "DESCRIPTION" not in text
        assert "LOCATION" not in text

    def test_reserved_characters_escaped(self):
        text = export_calendar([_event(title="Dinner, drinks; fun")])
        assert r"SUMMARY:Dinner\, drinks\; fun" in text

    def test_empty_calendar(self):
        text = export_calendar([])
        assert "BEGIN:VEVENT" not in text


class TestRoundTrip:
    def test_fields_survive(self):
        original = _event()
        [imported] = import_calendar(export_calendar([original]))
        assert imported.title == original.title
        assert imported.start == original.start
        assert imported.end == original.end
        assert imported.description == original.description
        assert imported.location == original.location

    def test_reserved_characters_survive(self):
        original = _event(title="Dinner, drinks; fun", description="Line one\nLine two \\ done")
        [imported] = import_calendar(export_calendar([original]))
        assert imported.title == original.title
        assert imported.description == original.description

    def test_many_events_in_order(self):
        events = [_event(id=f"ev{i}", title=f"Event {i}") for i in range(5)]
        imported = import_calendar(export_calendar(events))
        assert [e.title for e in imported] == [f"Event {i}" for i in range(5)]

    def test_imported_category_defaults_to_other(self):
        [imported] = import_calendar(export_calendar([_event()]))
        assert imported.category == EventCategory.OTHER


class TestImport:
    def test_block_without_dtstart_is_skipped(self):
        text = _wrap(
            "SUMMARY:Swim\r\nDTSTART:20240301T090000Z\r\n",
            "SUMMARY:No start\r\nDTEND:20240301T100000Z\r\n",
        )
        events = import_calendar(text)
        assert [e.title for e in events] == ["Swim"]

    def test_block_without_summary_is_skipped(self):
        text = _wrap("DTSTART:20240301T090000Z\r\n", "SUMMARY:Kept\r\nDTSTART:20240302T090000Z\r\n")
        assert [e.title for e in import_calendar(text)] == ["Kept"]

    def test_unparseable_timestamp_is_skipped(self):
        text = _wrap("SUMMARY:Bad\r\nDTSTART:tomorrow\r\n", "SUMMARY:Good\r\nDTSTART:20240302T090000Z\r\n")
        assert [e.title for e in import_calendar(text)] == ["Good"]

    def test_missing_dtend_defaults_to_one_hour(self):
        [event] = import_calendar(_wrap("SUMMARY:Swim\r\nDTSTART:20240301T090000Z\r\n"))
        assert event.end - event.start == timedelta(hours=1)

    def test_all_day_value(self):
        [event] = import_calendar(_wrap("SUMMARY:Holiday\r\nDTSTART;VALUE=DATE:20240301\r\n"))
        assert event.start == utc(2024, 3, 1, 0, 0)

    def test_floating_value_uses_given_zone(self):
        text = _wrap("SUMMARY:Call\r\nDTSTART:20240301T150000\r\n")
        [event] = import_calendar(text, tz=ZoneInfo("America/New_York"))
        assert event.start == utc(2024, 3, 1, 20, 0)

    def test_floating_value_defaults_to_utc(self):
        [event] = import_calendar(_wrap("SUMMARY:Call\r\nDTSTART:20240301T150000\r\n"))
        assert event.start == utc(2024, 3, 1, 15, 0)

    def test_tzid_parameter(self):
        text = _wrap("SUMMARY:Call\r\nDTSTART;TZID=Europe/Berlin:20240301T150000\r\n")
        [event] = import_calendar(text)
        assert event.start == utc(2024, 3, 1, 14, 0)

    def test_folded_lines_are_unfolded(self):
        text = _wrap("SUMMARY:A very long\r\n  title\r\nDTSTART:20240301T090000Z\r\n")
        [event] = import_calendar(text)
        assert event.title == "A very long title"

    def test_no_blocks(self):
        assert import_calendar("not a calendar") == []

    def test_nested_alarm_properties_ignored(self):
        text = _wrap(
            "SUMMARY:Piano\r\nDTSTART:20240301T150000Z\r\n"
            "BEGIN:VALARM\r\nACTION:DISPLAY\r\nDESCRIPTION:Reminder\r\nTRIGGER:-PT15M\r\nEND:VALARM\r\n"
        )
        [event] = import_calendar(text)
        assert event.title == "Piano"
        assert event.description == ""

    def test_alarm_does_not_hide_event_description(self):
        text = _wrap(
            "SUMMARY:Piano\r\nDESCRIPTION:Bring music\r\nDTSTART:20240301T150000Z\r\n"
            "BEGIN:VALARM\r\nACTION:DISPLAY\r\nDESCRIPTION:Reminder\r\nTRIGGER:-PT15M\r\nEND:VALARM\r\n"
        )
        [event] = import_calendar(text)
        assert event.description == "Bring music"

    def test_start_at_end_of_time_is_skipped(self):
        text = _wrap(
            "SUMMARY:Y10K\r\nDTSTART:99991231T233000Z\r\n",
            "SUMMARY:Good\r\nDTSTART:20240302T090000Z\r\n",
        )
        assert [e.title for e in import_calendar(text)] == ["Good"]


class TestParseHelpers:
    def test_parse_timestamp_utc(self):
        assert parse_timestamp("20240301T150000Z") == utc(2024, 3, 1, 15)

    def test_parse_timestamp_rejects_garbage(self):
        with pytest.raises(MalformedInterchangeError):
            parse_timestamp("garbage")

    def test_parse_block_requires_summary(self):
        with pytest.raises(MalformedInterchangeError):
            parse_block("DTSTART:20240301T150000Z\r\n")

    def test_parse_timestamp_result_is_utc(self):
        result = parse_timestamp("20240301T150000", tz=ZoneInfo("Asia/Tokyo"))
        assert result.utcoffset() == timedelta(0)
        assert result == datetime(2024, 3, 1, 6, tzinfo=timezone.utc)
