"""
fam.ly — Data Models.

Plain records shared by the core, the SQLite store and the bot. Events carry
a resolved attendee-id list rather than a join table; the store denormalizes
on read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class EventCategory(str, Enum):
    FAMILY = "Family"
    WORK = "Work"
    SCHOOL = "School"
    FUN = "Fun"
    CHORE = "Chore"
    HEALTH = "Health"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: str | None) -> EventCategory | None:
        """Case-insensitive lookup by value; None when unknown."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        needle = str(value).strip().lower()
        for category in cls:
            if category.value.lower() == needle:
                return category
        return None


class ThemeColor(str, Enum):
    INDIGO = "indigo"
    ROSE = "rose"
    EMERALD = "emerald"
    AMBER = "amber"
    SKY = "sky"
    VIOLET = "violet"
    BLUE = "blue"
    PURPLE = "purple"
    CYAN = "cyan"
    TEAL = "teal"
    PINK = "pink"


class Urgency(str, Enum):
    """Shopping urgency. `rank` is the sort key: most pressing first."""

    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


class Priority(str, Enum):
    """Wish priority. `rank` is the sort key: most important first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_URGENCY_RANK = {Urgency.CRITICAL: 0, Urgency.URGENT: 1, Urgency.NORMAL: 2}
_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}

DEFAULT_AVATAR = "👤"
DEFAULT_OCCASION = "General"


@dataclass
class Family:
    """The tenant scope grouping members, events and lists."""

    id: str
    name: str
    join_code: str


@dataclass
class Member:
    """A named participant within a family."""

    id: str
    name: str
    avatar: str = DEFAULT_AVATAR
    color: ThemeColor = ThemeColor.INDIGO
    is_admin: bool = False
    points: int = 0


@dataclass(frozen=True)
class AudioMessage:
    """A voice note attached to an event."""

    data: bytes
    duration: float          # seconds (approx)
    author_id: str
    timestamp: datetime


@dataclass
class CalendarEvent:
    """A calendar entry. `member_ids` are the attendees, in display order."""

    id: str
    title: str
    start: datetime
    end: datetime
    category: EventCategory = EventCategory.OTHER
    description: str = ""
    location: str = ""
    member_ids: list[str] = field(default_factory=list)
    created_by: str | None = None
    audio_messages: list[AudioMessage] = field(default_factory=list)
    is_completed: bool = False


@dataclass
class ShoppingItem:
    id: str
    name: str
    added_by: str                         # member id
    urgency: Urgency = Urgency.NORMAL
    needed_by: datetime | None = None
    is_completed: bool = False
    link: str = ""
    image: str = ""
    comments: str = ""


@dataclass
class WishListItem:
    id: str
    name: str
    owner_id: str                         # member id
    occasion: str = DEFAULT_OCCASION
    priority: Priority = Priority.MEDIUM
    link: str = ""
    image: str = ""
    comments: str = ""
