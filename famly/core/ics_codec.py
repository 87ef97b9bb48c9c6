"""
fam.ly — Calendar Interchange Codec.

Exports events as an iCalendar (RFC 5545) document and imports them back
best-effort. Text values are escaped on export and unescaped on import, so
commas, semicolons and newlines inside titles or descriptions survive a
round trip.

Import is block-oriented: every VEVENT is parsed on its own and a block that
lacks SUMMARY or DTSTART, or whose timestamps cannot be read, is skipped
without aborting the rest of the file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent
from icalendar import vDDDTypes

from famly.core.errors import MalformedInterchangeError
from famly.data.models import CalendarEvent, EventCategory

logger = logging.getLogger(__name__)

_PRODID = "-//fam.ly//Calendar//EN"
_DEFAULT_DURATION = timedelta(hours=1)


@dataclass
class ImportedEvent:
    """A partial event read from an interchange file.

    Id, attendees and voice notes are filled in by the caller.
    """

    title: str
    start: datetime
    end: datetime
    description: str = ""
    location: str = ""
    category: EventCategory = EventCategory.OTHER


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    """Normalize to UTC at second precision; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def _build_vevent(event: CalendarEvent, stamp: datetime) -> iEvent:
    vevent = iEvent()
    vevent.add("uid", event.id)
    vevent.add("dtstamp", stamp)
    vevent.add("dtstart", _as_utc(event.start))
    vevent.add("dtend", _as_utc(event.end))
    vevent.add("summary", event.title)
    if event.description:
        vevent.add("description", event.description)
    if event.location:
        vevent.add("location", event.location)
    return vevent


def export_calendar(events: Iterable[CalendarEvent], now: datetime | None = None) -> str:
    """Serialize events into an iCalendar document (CRLF line endings)."""
    stamp = _as_utc(now or datetime.now(timezone.utc))

    cal = iCalendar()
    cal.add("prodid", _PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")

    count = 0
    for event in events:
        cal.add_component(_build_vevent(event, stamp))
        count += 1

    result = cal.to_ical().decode("utf-8")
    logger.info("Exported %d events (%d bytes)", count, len(result))
    return result


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def _split_blocks(text: str) -> list[str]:
    """Return the body of every VEVENT block, in file order."""
    blocks = []
    for chunk in text.split("BEGIN:VEVENT")[1:]:
        body, _, _ = chunk.partition("END:VEVENT")
        blocks.append(body)
    return blocks


def _zone_for(params: dict | None, fallback: tzinfo) -> tzinfo:
    tzid = (params or {}).get("TZID")
    if not tzid:
        return fallback
    try:
        return ZoneInfo(str(tzid))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown TZID '%s', using %s", tzid, fallback)
        return fallback


def _to_utc(value: date | datetime, params: dict | None, tz: tzinfo) -> datetime:
    """Aware UTC datetime for a decoded DTSTART/DTEND value."""
    try:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=_zone_for(params, tz))
            return value.astimezone(timezone.utc)
        if isinstance(value, date):
            return datetime.combine(value, time(), tzinfo=_zone_for(params, tz)).astimezone(timezone.utc)
    except (OverflowError, ValueError) as exc:
        raise MalformedInterchangeError(f"Timestamp {value!r} is out of range") from exc
    raise MalformedInterchangeError(f"Not a date or date-time: {value!r}")


def parse_timestamp(raw: str, params: dict | None = None, tz: tzinfo = timezone.utc) -> datetime:
    """Parse a raw DTSTART/DTEND value into an aware UTC datetime.

    Handles UTC (`...Z`), floating (interpreted in `tz`, or in the TZID
    parameter when present) and date-only all-day values (midnight in `tz`).

    Raises:
        MalformedInterchangeError: if the value is not a date or date-time.
    """
    try:
        parsed = vDDDTypes.from_ical(raw.strip())
    except (ValueError, TypeError) as exc:
        raise MalformedInterchangeError(f"Unparseable timestamp {raw!r}") from exc
    return _to_utc(parsed, params, tz)


def _timestamp(vevent: iEvent, name: str, tz: tzinfo) -> datetime | None:
    prop = vevent.get(name)
    if prop is None:
        return None
    return _to_utc(getattr(prop, "dt", prop), getattr(prop, "params", None), tz)


def _text(vevent: iEvent, name: str) -> str:
    value = vevent.get(name)
    return str(value).strip() if value is not None else ""


def parse_block(block: str, tz: tzinfo = timezone.utc) -> ImportedEvent:
    """Parse one VEVENT body.

    Only the event's own properties are read; nested components such as
    VALARM are ignored.

    Raises:
        MalformedInterchangeError: if SUMMARY or DTSTART is missing, or a
            timestamp cannot be parsed.
    """
    try:
        vevent = iEvent.from_ical(f"BEGIN:VEVENT\r\n{block.strip()}\r\nEND:VEVENT\r\n")
    except Exception as exc:
        raise MalformedInterchangeError(f"Unreadable event block: {exc}") from exc

    title = _text(vevent, "SUMMARY")
    if not title:
        raise MalformedInterchangeError("Block has no SUMMARY")
    start = _timestamp(vevent, "DTSTART", tz)
    if start is None:
        raise MalformedInterchangeError(f"Block '{title}' has no readable DTSTART")

    end = _timestamp(vevent, "DTEND", tz)
    if end is None:
        try:
            end = start + _DEFAULT_DURATION
        except OverflowError as exc:
            raise MalformedInterchangeError(f"Block '{title}' starts out of range") from exc

    return ImportedEvent(
        title=title,
        start=start,
        end=end,
        description=_text(vevent, "DESCRIPTION"),
        location=_text(vevent, "LOCATION"),
    )


def import_calendar(text: str, tz: tzinfo = timezone.utc) -> list[ImportedEvent]:
    """Parse every readable VEVENT in `text`; unreadable blocks are skipped."""
    events: list[ImportedEvent] = []
    blocks = _split_blocks(text)
    for index, block in enumerate(blocks, start=1):
        try:
            events.append(parse_block(block, tz))
        except MalformedInterchangeError as exc:
            logger.warning("Skipping interchange block %d: %s", index, exc)

    logger.info("Imported %d of %d event blocks", len(events), len(blocks))
    return events
