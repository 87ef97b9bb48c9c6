"""Shared test fixtures and configuration.

Sets up fake environment variables so famly.config doesn't sys.exit(),
and provides common fixtures: a four-person roster, a small calendar and a
temp database.
"""

import os

# Patch env vars BEFORE any famly imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("COMPLETION_POINTS", "5")

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from famly.core.state import FamilyState
from famly.data.models import CalendarEvent, EventCategory, Family, Member


def utc(*args):
    """datetime(..., tzinfo=UTC) shorthand."""
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def roster():
    """Mom, Dad, Mia, Leo, in that order (ids "1".."4")."""
    return [
        Member(id="1", name="Mom", avatar="👩", is_admin=True),
        Member(id="2", name="Dad", avatar="👨"),
        Member(id="3", name="Mia", avatar="👧"),
        Member(id="4", name="Leo", avatar="👦"),
    ]


@pytest.fixture
def sample_events():
    """Ten events over 1–3 March 2024, four of them soccer-related."""
    return [
        CalendarEvent(id="e1", title="Soccer practice", start=utc(2024, 3, 1, 16), end=utc(2024, 3, 1, 17),
                      category=EventCategory.FUN, member_ids=["4"], created_by="2"),
        CalendarEvent(id="e2", title="Piano", start=utc(2024, 3, 1, 15), end=utc(2024, 3, 1, 16),
                      category=EventCategory.SCHOOL, member_ids=["3"], created_by="1"),
        CalendarEvent(id="e3", title="Dentist", start=utc(2024, 3, 1, 9), end=utc(2024, 3, 1, 10),
                      category=EventCategory.HEALTH, member_ids=["1", "3"], location="Smile Clinic"),
        CalendarEvent(id="e4", title="Team match", start=utc(2024, 3, 2, 10), end=utc(2024, 3, 2, 12),
                      category=EventCategory.FUN, member_ids=["3"], description="Bring soccer boots"),
        CalendarEvent(id="e5", title="Groceries", start=utc(2024, 3, 2, 18), end=utc(2024, 3, 2, 19),
                      category=EventCategory.CHORE, member_ids=["2"]),
        CalendarEvent(id="e6", title="Board meeting", start=utc(2024, 3, 1, 11), end=utc(2024, 3, 1, 12),
                      category=EventCategory.WORK, member_ids=["1"]),
        CalendarEvent(id="e7", title="Movie night", start=utc(2024, 3, 3, 19), end=utc(2024, 3, 3, 21),
                      category=EventCategory.FAMILY, member_ids=["1", "2", "3", "4"]),
        CalendarEvent(id="e8", title="Training", start=utc(2024, 3, 3, 10), end=utc(2024, 3, 3, 11),
                      category=EventCategory.FUN, member_ids=["4"], location="Soccer field"),
        CalendarEvent(id="e9", title="Homework club", start=utc(2024, 3, 2, 14), end=utc(2024, 3, 2, 15),
                      category=EventCategory.SCHOOL, member_ids=["4"]),
        CalendarEvent(id="e10", title="SOCCER tournament", start=utc(2024, 3, 3, 9), end=utc(2024, 3, 3, 13),
                      category=EventCategory.FUN, member_ids=["2", "3"]),
    ]


@pytest.fixture
def family():
    return Family(id="fam1", name="Smith", join_code="ABC123")


@pytest.fixture
def family_state(family, roster, sample_events):
    return FamilyState(family=family, members=list(roster), events=list(sample_events))


@pytest.fixture
def mock_store():
    """FamilyStore stand-in: every method is an AsyncMock."""
    store = AsyncMock()
    store.save_completion.return_value = 0
    return store


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_famly.db")


@pytest.fixture
def family_db(tmp_db_path):
    """Return a FamilyDB instance backed by a temp file."""
    from famly.data.db import FamilyDB
    return FamilyDB(db_path=tmp_db_path)
