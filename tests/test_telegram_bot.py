"""Tests for famly.bot.telegram_bot — argument parsing, formatting and handlers.

Handlers run against a real SQLiteFamilyStore on a temp database; Telegram
objects and the completion service are mocked.
"""

from datetime import date, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from famly.adapters.sqlite_store import SQLiteFamilyStore
from famly.bot.telegram_bot import (
    _NO_FAMILY,
    _format_dashboard,
    _format_members,
    _parse_buy_args,
    _parse_find_args,
    _parse_newfamily_args,
    _parse_profile_args,
    _parse_wish_args,
    _progress_bar,
    cmd_buy,
    cmd_done,
    cmd_join,
    cmd_newfamily,
    cmd_shopping,
    cmd_today,
    handle_text,
)
from famly.core.family_service import DayView
from famly.core.filters import DayProgress
from famly.core.llm import CompletionResult, ToolCall
from famly.data.models import Priority, Urgency


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseNewfamilyArgs:
    def test_valid(self):
        assert _parse_newfamily_args("Smith Family | Mom") == ("Smith Family", "Mom")

    def test_missing_part(self):
        assert _parse_newfamily_args("Smith Family") is None
        assert _parse_newfamily_args("Smith | ") is None


class TestParseFindArgs:
    def test_key_values(self):
        query, member = _parse_find_args(["keyword=soccer", "date=2024-03-01", "time=pm", "member=Leo"])
        assert query.keyword == "soccer"
        assert query.day == date(2024, 3, 1)
        assert query.time == "pm"
        assert member == "Leo"

    def test_bare_words_become_keyword(self):
        query, member = _parse_find_args(["swim", "lesson"])
        assert query.keyword == "swim lesson"
        assert member == ""

    def test_bad_date(self):
        assert _parse_find_args(["date=friday"]) is None

    def test_unknown_key(self):
        assert _parse_find_args(["colour=red"]) is None


class TestParseListArgs:
    def test_buy(self):
        assert _parse_buy_args("Oat milk !URGENT") == ("Oat milk", Urgency.URGENT)
        assert _parse_buy_args("Bread") == ("Bread", Urgency.NORMAL)

    def test_wish(self):
        assert _parse_wish_args("Lego set #Birthday !high") == ("Lego set", "Birthday", Priority.HIGH)
        assert _parse_wish_args("Book") == ("Book", None, Priority.MEDIUM)

    def test_profile(self):
        assert _parse_profile_args(["name=Mia", "color=rose", "size=xl", "avatar="]) == {
            "name": "Mia", "color": "rose",
        }


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_progress_bar(self):
        assert _progress_bar(0) == "░" * 10
        assert _progress_bar(75) == "▓" * 8 + "░" * 2
        assert _progress_bar(100) == "▓" * 10

    def test_members(self, roster):
        text = _format_members(roster)
        assert "👩 Mom (admin)" in text
        assert "Dad (admin)" not in text

    def test_dashboard(self, sample_events, roster):
        views = [
            DayView(day=date(2024, 3, 1), events=[sample_events[1]], progress=DayProgress(1, 0, 0)),
            DayView(day=date(2024, 3, 2)),
            DayView(day=date(2024, 3, 3)),
        ]
        text = _format_dashboard(views, roster, timezone.utc)
        assert text.startswith("Today, March 1, 2024")
        assert "Tomorrow, March 2, 2024\nNothing planned." in text
        assert "Sun, March 3, 2024" in text
        assert "03:00 PM Piano 👧  [e2]" in text
        assert "0% (0/1 done)" in text


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _make_update(text="", user_id=12345, chat_id=1):
    update = MagicMock()
    update.message.text = text
    update.message.reply_text = AsyncMock()
    update.effective_user.id = user_id
    update.effective_chat.id = chat_id
    return update


def _make_context(store, args=None):
    context = MagicMock()
    context.args = args or []
    context.user_data = {}
    context.bot_data = {"store": store, "services": {}, "sessions": {}}
    return context


def _last_reply(update):
    return update.message.reply_text.await_args.args[0]


@pytest.fixture
def store(family_db):
    return SQLiteFamilyStore(family_db)


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_unauthorized_user_ignored(self, store):
        update = _make_update(user_id=999)
        await cmd_today(update, _make_context(store))
        update.message.reply_text.assert_not_awaited()


class TestOnboarding:
    @pytest.mark.asyncio
    async def test_newfamily(self, store):
        update = _make_update()
        await cmd_newfamily(update, _make_context(store, ["Smith", "|", "Mom"]))
        reply = _last_reply(update)
        membership = await store.find_membership("12345")
        assert membership is not None
        family, member = membership
        assert member.is_admin
        assert family.join_code in reply

    @pytest.mark.asyncio
    async def test_newfamily_usage(self, store):
        update = _make_update()
        await cmd_newfamily(update, _make_context(store, ["Smith"]))
        assert _last_reply(update).startswith("Usage")

    @pytest.mark.asyncio
    async def test_join_unknown_code(self, store):
        update = _make_update()
        await cmd_join(update, _make_context(store, ["ZZZZZZ", "Dad"]))
        assert "doesn't match" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_no_family_yet(self, store):
        update = _make_update()
        await cmd_today(update, _make_context(store))
        assert _last_reply(update) == _NO_FAMILY


class TestFamilyCommands:
    @pytest.fixture
    def founded(self, store, family_db):
        family_db.create_family("Smith", "Mom", user_ref="12345")
        return store

    @pytest.mark.asyncio
    async def test_buy_then_list(self, founded):
        context = _make_context(founded, ["Milk", "!critical"])
        update = _make_update()
        await cmd_buy(update, context)
        assert "Milk" in _last_reply(update)

        context.args = []
        update = _make_update()
        await cmd_shopping(update, context)
        assert "🔴 Milk" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_done_unknown_event(self, founded):
        update = _make_update()
        await cmd_done(update, _make_context(founded, ["nope"]))
        assert "couldn't find" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_text_message_adds_event(self, founded):
        call = ToolCall(
            name="addEvent",
            arguments={"title": "Swim", "start": "2024-03-04T10:00:00", "end": "2024-03-04T11:00:00"},
        )
        mock = AsyncMock(return_value=CompletionResult(text="Added swim!", tool_calls=[call]))
        context = _make_context(founded)
        update = _make_update("Swim on Monday at 10")
        with patch("famly.core.assistant.complete_with_tools", mock):
            await handle_text(update, context)

        assert _last_reply(update) == "Added swim!"
        family, _ = await founded.find_membership("12345")
        events = await founded.list_events(family.id)
        assert [e.title for e in events] == ["Swim"]
