"""
fam.ly — Event Aggregator / Filter Engine.

Pure functions over the in-memory collections: multi-field event filtering,
per-day completion progress for the home dashboard, and the presentation
order of the shopping and wish lists. Nothing here is cached; callers
recompute on every change.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, tzinfo
from typing import Iterable

from famly.core.utils import format_time, to_local
from famly.data.models import DEFAULT_OCCASION, CalendarEvent, ShoppingItem, WishListItem


@dataclass
class EventFilter:
    """Transient query. Empty/None fields do not constrain the result."""

    keyword: str = ""
    day: date | None = None
    time: str = ""
    member_id: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.keyword.strip() or self.day or self.time.strip() or self.member_id)


def _matches_keyword(event: CalendarEvent, keyword: str) -> bool:
    needle = keyword.lower()
    haystacks = (event.title, event.category.value, event.description, event.location)
    return any(needle in (h or "").lower() for h in haystacks)


def matches(event: CalendarEvent, query: EventFilter, tz: tzinfo | None = None) -> bool:
    """True when every non-empty query field matches `event`."""
    keyword = query.keyword.strip()
    if keyword and not _matches_keyword(event, keyword):
        return False

    local_start = to_local(event.start, tz)
    if query.day is not None and local_start.date() != query.day:
        return False

    time_query = query.time.strip().lower()
    if time_query and time_query not in format_time(local_start).lower():
        return False

    if query.member_id and query.member_id not in event.member_ids:
        return False

    return True


def filter_events(
    events: Iterable[CalendarEvent], query: EventFilter, tz: tzinfo | None = None,
) -> list[CalendarEvent]:
    """Return the events matching `query`, in input order."""
    return [e for e in events if matches(e, query, tz)]


def sort_by_start(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    return sorted(events, key=lambda e: e.start)


def events_for_day(
    events: Iterable[CalendarEvent], day: date, tz: tzinfo | None = None,
) -> list[CalendarEvent]:
    """Events starting on `day` (local calendar day), chronologically."""
    return sort_by_start(e for e in events if to_local(e.start, tz).date() == day)


def is_involved(event: CalendarEvent, member_id: str | None) -> bool:
    """A member is involved when they created the event or attend it."""
    if not member_id:
        return False
    return event.created_by == member_id or member_id in event.member_ids


# ---------------------------------------------------------------------------
# Day progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DayProgress:
    involved_count: int = 0
    completed_count: int = 0
    percentage: int = 0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def day_progress(
    events: Iterable[CalendarEvent],
    member_id: str | None,
    day: date | None = None,
    tz: tzinfo | None = None,
) -> DayProgress:
    """Completion progress of `member_id` over the events of one day.

    When `day` is None, `events` is taken to be that day's events already.
    """
    if day is not None:
        events = events_for_day(events, day, tz)
    involved = [e for e in events if is_involved(e, member_id)]
    if not involved:
        return DayProgress()
    completed = sum(1 for e in involved if e.is_completed)
    return DayProgress(
        involved_count=len(involved),
        completed_count=completed,
        percentage=_round_half_up(100 * completed / len(involved)),
    )


# ---------------------------------------------------------------------------
# List presentation
# ---------------------------------------------------------------------------


def sort_shopping_items(items: Iterable[ShoppingItem]) -> list[ShoppingItem]:
    """Open items first, then by urgency (critical, urgent, normal). Stable."""
    return sorted(items, key=lambda i: (i.is_completed, i.urgency.rank))


def group_wishes_by_occasion(
    items: Iterable[WishListItem], owner_id: str,
) -> dict[str, list[WishListItem]]:
    """One owner's wishes grouped by occasion, each group ordered by priority.

    Groups appear in the order their occasion is first seen.
    """
    groups: dict[str, list[WishListItem]] = {}
    for item in items:
        if item.owner_id != owner_id:
            continue
        groups.setdefault(item.occasion or DEFAULT_OCCASION, []).append(item)
    return {
        occasion: sorted(group, key=lambda i: i.priority.rank)
        for occasion, group in groups.items()
    }
