"""
fam.ly — Telegram Bot.

Telegram is the chat surface of fam.ly. Every interaction (chatting with the
assistant, voice notes, uploaded schedules, the shared shopping list and
wish lists) flows through this bot into the core.

Per-process caches live in `bot_data`:
    "store"     FamilyStore implementation
    "services"  family id → FamilyService (one per family)
    "sessions"  chat id   → ChatSession   (one per chat)

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import tempfile
from datetime import date, datetime, timezone
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from famly.config import settings
from famly.core.chat_session import ChatSession, TurnResult
from famly.core.documents import is_calendar_file
from famly.core.errors import (
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    SessionBusyError,
    TranscriptionError,
    ValidationError,
)
from famly.core.family_service import DayView, FamilyService
from famly.core.filters import EventFilter
from famly.core.name_resolver import find_member
from famly.core.utils import day_name, format_date, format_time
from famly.data.models import CalendarEvent, Member, Priority, Urgency

if TYPE_CHECKING:
    from famly.ports.family_store import FamilyStore

logger = logging.getLogger(__name__)

_STORAGE_ERROR = "Sorry, I couldn't reach the family database. Please try again later."
_NO_FAMILY = (
    "You're not part of a family yet.\n"
    "Create one with /newfamily <family name> | <your name>\n"
    "or join one with /join <code> <your name>."
)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    An empty ALLOWED_USER_IDS opens the bot to everyone; families are then
    the only boundary.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        allowed = settings.ALLOWED_USER_IDS
        if user is None or (allowed and user.id not in allowed):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Argument parsing helpers
# ---------------------------------------------------------------------------


def _timezone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def _parse_newfamily_args(text: str) -> tuple[str, str] | None:
    """'Smith Family | Mom' → ('Smith Family', 'Mom')."""
    family, sep, name = text.partition("|")
    if not sep or not family.strip() or not name.strip():
        return None
    return family.strip(), name.strip()


def _parse_find_args(args: list[str]) -> tuple[EventFilter, str] | None:
    """Parse `/find` tokens into a filter plus a member-name fragment.

    Tokens are key=value (keyword, date, time, member); bare words are
    joined into the keyword. Returns None on an unreadable date or key.
    """
    query = EventFilter()
    member_name = ""
    words: list[str] = []
    for token in args:
        key, sep, value = token.partition("=")
        if not sep:
            words.append(token)
            continue
        key = key.strip().lower()
        if key == "keyword":
            words.append(value)
        elif key == "date":
            try:
                query.day = date.fromisoformat(value.strip())
            except ValueError:
                return None
        elif key == "time":
            query.time = value
        elif key == "member":
            member_name = value
        else:
            return None
    query.keyword = " ".join(w for w in words if w).strip()
    return query, member_name


def _parse_buy_args(text: str) -> tuple[str, Urgency]:
    """'Milk !urgent' → ('Milk', Urgency.URGENT)."""
    urgency = Urgency.NORMAL
    words = []
    for word in text.split():
        flag = word.lower()
        if flag == "!urgent":
            urgency = Urgency.URGENT
        elif flag == "!critical":
            urgency = Urgency.CRITICAL
        else:
            words.append(word)
    return " ".join(words), urgency


def _parse_wish_args(text: str) -> tuple[str, str | None, Priority]:
    """'Lego set #Birthday !high' → ('Lego set', 'Birthday', Priority.HIGH)."""
    priority = Priority.MEDIUM
    occasion = None
    words = []
    for word in text.split():
        flag = word.lower()
        if flag == "!high":
            priority = Priority.HIGH
        elif flag == "!low":
            priority = Priority.LOW
        elif word.startswith("#") and len(word) > 1:
            occasion = word[1:]
        else:
            words.append(word)
    return " ".join(words), occasion, priority


def _parse_profile_args(args: list[str]) -> dict[str, str]:
    changes = {}
    for token in args:
        key, sep, value = token.partition("=")
        if sep and key.lower() in ("name", "avatar", "color") and value:
            changes[key.lower()] = value
    return changes


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _progress_bar(percentage: int, width: int = 10) -> str:
    filled = round(width * percentage / 100)
    return "▓" * filled + "░" * (width - filled)


def _format_event_line(event: CalendarEvent, members: list[Member], tz) -> str:
    by_id = {m.id: m for m in members}
    avatars = "".join(by_id[mid].avatar for mid in event.member_ids if mid in by_id)
    check = "✅" if event.is_completed else "▫️"
    line = f"{check} {format_time(event.start.astimezone(tz))} {event.title} {avatars}".rstrip()
    if event.location:
        line += f" @ {event.location}"
    return f"{line}  [{event.id}]"


def _format_dashboard(views: list[DayView], members: list[Member], tz) -> str:
    labels = ["Today", "Tomorrow"]
    blocks = []
    for index, view in enumerate(views):
        label = labels[index] if index < len(labels) else day_name(view.day)
        header = f"{label}, {format_date(view.day)}"
        lines = [header]
        if view.progress.involved_count:
            p = view.progress
            lines.append(
                f"{_progress_bar(p.percentage)} {p.percentage}% "
                f"({p.completed_count}/{p.involved_count} done)"
            )
        if view.events:
            lines.extend(_format_event_line(e, members, tz) for e in view.events)
        else:
            lines.append("Nothing planned.")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _format_members(members: list[Member]) -> str:
    lines = ["Family members:"]
    for m in members:
        admin = " (admin)" if m.is_admin else ""
        lines.append(f"{m.avatar} {m.name}{admin} — {m.points} pts")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Context helpers
# ---------------------------------------------------------------------------


def _store(context: ContextTypes.DEFAULT_TYPE) -> FamilyStore:
    return context.bot_data["store"]


async def _get_service(context: ContextTypes.DEFAULT_TYPE, family_id: str) -> FamilyService:
    services: dict[str, FamilyService] = context.bot_data.setdefault("services", {})
    service = services.get(family_id)
    if service is None:
        service = await FamilyService.load(_store(context), family_id, tz=_timezone())
        services[family_id] = service
    return service


async def _resolve_member(
    update: Update, context: ContextTypes.DEFAULT_TYPE,
) -> tuple[FamilyService, Member] | None:
    """Find the caller's family and member record, replying when there is none."""
    try:
        membership = await _store(context).find_membership(str(update.effective_user.id))
        if membership is None:
            await update.message.reply_text(_NO_FAMILY)
            return None
        family, member = membership
        service = await _get_service(context, family.id)
        if service.state.find_member(member.id) is None:
            await service.refresh_members()
    except ExternalServiceError as exc:
        logger.error("Membership lookup failed: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return None
    return service, service.state.get_member(member.id)


def _get_session(
    context: ContextTypes.DEFAULT_TYPE, chat_id: int, service: FamilyService, member: Member,
) -> ChatSession:
    sessions: dict[int, ChatSession] = context.bot_data.setdefault("sessions", {})
    session = sessions.get(chat_id)
    if session is None or session.service is not service or session.member_id != member.id:
        if session is not None:
            session.close()
        session = ChatSession(service, member_id=member.id)
        sessions[chat_id] = session
    return session


async def _send_turns(update: Update, results: list[TurnResult]) -> None:
    for result in results:
        if result.reply is not None:
            await update.message.reply_text(result.reply.text)


async def _run_session_turn(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    session: ChatSession,
    turn: Callable[[], Coroutine[Any, Any, TurnResult]],
) -> None:
    try:
        result = await turn()
    except SessionBusyError:
        await update.message.reply_text("⏳ Still working on your last message, one moment…")
        return
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return
    await _send_turns(update, [result])
    await _send_turns(update, await session.drain_utterances())


# ---------------------------------------------------------------------------
# Command handlers: onboarding
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    await update.message.reply_text(
        "Welcome to *fam.ly*!\n\n"
        "I keep your family's calendar, shopping list and wish lists:\n"
        "• Just tell me (text or voice) what to add, move or cancel\n"
        "• Send a school letter or schedule and I'll add its events\n"
        "• Send an .ics file to import a calendar\n"
        "• Use /today to see the next three days\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "Available commands:\n"
        "/newfamily <family> | <your name> — Create a family\n"
        "/join <code> <your name> — Join a family\n"
        "/members — Show the family and points\n"
        "/profile name=.. avatar=.. color=.. — Edit your profile\n"
        "/today — Today, tomorrow and the day after\n"
        "/find keyword=.. date=YYYY-MM-DD time=.. member=.. — Search events\n"
        "/done <id> — Toggle an event's completion\n"
        "/delete <id> — Delete an event\n"
        "/note <id> — Attach your next voice message to an event\n"
        "/export — Download the calendar (.ics)\n"
        "/shopping — Shopping list\n"
        "/buy <item> [!urgent|!critical] — Add to the shopping list\n"
        "/bought <id> — Tick an item off (or back on)\n"
        "/drop <id> — Remove a shopping item\n"
        "/wishes [member] — Wish list\n"
        "/wish <item> [#occasion] [!high|!low] — Add to your wish list\n"
        "/unwish <id> — Remove a wish\n"
        "/help — Show this message",
    )


@authorized_only
async def cmd_newfamily(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /newfamily <family> | <your name>."""
    parsed = _parse_newfamily_args(" ".join(context.args or []))
    if parsed is None:
        await update.message.reply_text("Usage: /newfamily <family name> | <your name>")
        return

    family_name, member_name = parsed
    try:
        family, member = await _store(context).create_family(
            family_name, member_name, user_ref=str(update.effective_user.id),
        )
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return
    except ExternalServiceError as exc:
        logger.error("/newfamily error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return

    await update.message.reply_text(
        f"🏡 Family '{family.name}' created! You're its admin, {member.name}.\n"
        f"Share this join code with your family: {family.join_code}"
    )


@authorized_only
async def cmd_join(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /join <code> <your name>."""
    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text("Usage: /join <code> <your name>")
        return

    try:
        family, member = await _store(context).join_family(
            args[0], " ".join(args[1:]), user_ref=str(update.effective_user.id),
        )
    except NotFoundError:
        await update.message.reply_text("That join code doesn't match any family.")
        return
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return
    except ExternalServiceError as exc:
        logger.error("/join error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return

    service = context.bot_data.setdefault("services", {}).get(family.id)
    if service is not None:
        service.state.add_member(member)
    await update.message.reply_text(f"👋 Welcome to {family.name}, {member.name}!")


@authorized_only
async def cmd_members(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /members — roster with points."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved
    await update.message.reply_text(
        f"{service.state.family.name} (join code {service.state.family.join_code})\n"
        + _format_members(service.members)
    )


@authorized_only
async def cmd_profile(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /profile name=.. avatar=.. color=.."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved

    changes = _parse_profile_args(context.args or [])
    if not changes:
        await update.message.reply_text("Usage: /profile name=<name> avatar=<emoji> color=<color>")
        return
    try:
        updated = await service.update_member_profile(member.id, **changes)
    except ValidationError as exc:
        await update.message.reply_text(str(exc))
        return
    except ExternalServiceError as exc:
        logger.error("/profile error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return
    await update.message.reply_text(f"{updated.avatar} Profile updated: {updated.name} ({updated.color.value})")


# ---------------------------------------------------------------------------
# Command handlers: calendar
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — three-day dashboard with the caller's progress."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved
    views = service.dashboard(member.id)
    await update.message.reply_text(_format_dashboard(views, service.members, service.tz))


@authorized_only
async def cmd_find(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /find key=value ... — filter events."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved

    parsed = _parse_find_args(context.args or [])
    if parsed is None:
        await update.message.reply_text(
            "Usage: /find keyword=soccer date=2024-03-01 time=pm member=Leo"
        )
        return
    query, member_name = parsed
    if member_name:
        match = find_member(member_name, service.members)
        if match is None:
            await update.message.reply_text(f"No family member matches '{member_name}'.")
            return
        query.member_id = match.id

    events = service.search(query)
    if not events:
        await update.message.reply_text("No matching events.")
        return
    lines = [f"Found {len(events)} event(s):"]
    for e in events:
        local = e.start.astimezone(service.tz)
        lines.append(f"{day_name(local)} {format_date(local)}  " + _format_event_line(e, service.members, service.tz))
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <id> — toggle event completion."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved

    if not context.args:
        await update.message.reply_text("Usage: /done <event id>\nUse /today to see IDs.")
        return

    try:
        outcome = await service.toggle_event_completion(context.args[0], member.id)
    except NotFoundError:
        await update.message.reply_text("I couldn't find that event. Use /today to see IDs.")
        return
    except PermissionDeniedError:
        await update.message.reply_text("Only people taking part in that event can mark it done.")
        return
    except ExternalServiceError as exc:
        logger.error("/done error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return

    if outcome.completed:
        msg = f"✅ '{outcome.event.title}' done!"
        if outcome.points_awarded:
            msg += f" +{outcome.points_awarded} points ({outcome.member.points} total)"
    else:
        msg = f"↩️ '{outcome.event.title}' marked as not done."
    await update.message.reply_text(msg)


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <id> — remove an event."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved

    if not context.args:
        await update.message.reply_text("Usage: /delete <event id>")
        return
    try:
        event = await service.delete_event(context.args[0])
    except NotFoundError:
        await update.message.reply_text("I couldn't find that event.")
        return
    except ExternalServiceError as exc:
        logger.error("/delete error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return
    await update.message.reply_text(f"🗑 Deleted '{event.title}'.")


@authorized_only
async def cmd_note(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /note <id> — the next voice message becomes a note on that event."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved

    if not context.args or service.state.find_event(context.args[0]) is None:
        await update.message.reply_text("Usage: /note <event id>\nUse /today to see IDs.")
        return
    context.user_data["note_event_id"] = context.args[0]
    await update.message.reply_text("🎙 Send a voice message and I'll attach it to the event.")


@authorized_only
async def cmd_export(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /export — send the calendar as an .ics file."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved
    ics = service.export_calendar()
    await update.message.reply_document(
        document=ics.encode("utf-8"),
        filename="famly.ics",
        caption=f"📅 {len(service.events)} event(s) exported.",
    )


# ---------------------------------------------------------------------------
# Command handlers: shopping & wishes
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_shopping(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /shopping — list items, open and most urgent first."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved

    items = service.shopping_list()
    if not items:
        await update.message.reply_text("🛒 The shopping list is empty. Add with /buy <item>.")
        return
    marks = {Urgency.CRITICAL: "🔴", Urgency.URGENT: "🟠", Urgency.NORMAL: "⚪"}
    lines = ["🛒 Shopping list:"]
    for item in items:
        mark = "☑️" if item.is_completed else marks[item.urgency]
        lines.append(f"{mark} {item.name}  [{item.id}]")
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_buy(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /buy <item> [!urgent|!critical]."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved

    name, urgency = _parse_buy_args(" ".join(context.args or []))
    try:
        item = await service.add_shopping_item(name, member.id, urgency=urgency)
    except ValidationError:
        await update.message.reply_text("Usage: /buy <item> [!urgent|!critical]")
        return
    except ExternalServiceError as exc:
        logger.error("/buy error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return
    await update.message.reply_text(f"🛒 Added '{item.name}' ({item.urgency.value}).")


async def _shopping_item_command(
    update: Update, context: ContextTypes.DEFAULT_TYPE, remove: bool,
) -> None:
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved

    if not context.args:
        await update.message.reply_text("Please give the item id from /shopping.")
        return
    try:
        if remove:
            await service.delete_shopping_item(context.args[0])
            await update.message.reply_text("🗑 Item removed.")
        else:
            item = await service.toggle_shopping_item(context.args[0])
            state = "bought ☑️" if item.is_completed else "back on the list"
            await update.message.reply_text(f"'{item.name}' is {state}.")
    except NotFoundError:
        await update.message.reply_text("I couldn't find that item. Use /shopping to see IDs.")
    except ExternalServiceError as exc:
        logger.error("Shopping item error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)


@authorized_only
async def cmd_bought(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /bought <id> — toggle a shopping item."""
    await _shopping_item_command(update, context, remove=False)


@authorized_only
async def cmd_drop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /drop <id> — remove a shopping item."""
    await _shopping_item_command(update, context, remove=True)


@authorized_only
async def cmd_wishes(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /wishes [member] — show a wish list grouped by occasion."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, owner = resolved

    if context.args:
        match = find_member(" ".join(context.args), service.members)
        if match is None:
            await update.message.reply_text("No family member matches that name.")
            return
        owner = match

    groups = service.wish_list(owner.id)
    if not groups:
        await update.message.reply_text(f"🎁 {owner.name}'s wish list is empty.")
        return
    stars = {Priority.HIGH: "★★★", Priority.MEDIUM: "★★", Priority.LOW: "★"}
    lines = [f"🎁 {owner.name}'s wish list:"]
    for occasion, items in groups.items():
        lines.append(f"\n{occasion}")
        lines.extend(f"  {stars[i.priority]} {i.name}  [{i.id}]" for i in items)
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_wish(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /wish <item> [#occasion] [!high|!low]."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved

    name, occasion, priority = _parse_wish_args(" ".join(context.args or []))
    try:
        item = await service.add_wish_item(name, member.id, occasion=occasion, priority=priority)
    except ValidationError:
        await update.message.reply_text("Usage: /wish <item> [#occasion] [!high|!low]")
        return
    except ExternalServiceError as exc:
        logger.error("/wish error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return
    await update.message.reply_text(f"🎁 Added '{item.name}' to your {item.occasion} wishes.")


@authorized_only
async def cmd_unwish(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /unwish <id> — remove a wish."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, _ = resolved

    if not context.args:
        await update.message.reply_text("Usage: /unwish <id>")
        return
    try:
        await service.delete_wish_item(context.args[0])
    except NotFoundError:
        await update.message.reply_text("I couldn't find that wish.")
        return
    except ExternalServiceError as exc:
        logger.error("/unwish error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return
    await update.message.reply_text("🗑 Wish removed.")


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — one assistant turn."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved
    session = _get_session(context, update.effective_chat.id, service, member)
    await _run_session_turn(update, context, session, lambda: session.submit_text(update.message.text))


async def _attach_voice_note(
    update: Update, service: FamilyService, member: Member, event_id: str, tmp_path: str,
) -> None:
    data = Path(tmp_path).read_bytes()
    duration = update.message.voice.duration or 0
    seconds = duration.total_seconds() if hasattr(duration, "total_seconds") else float(duration)
    try:
        event = await service.add_voice_note(
            event_id, data, seconds, member.id,
            now=datetime.now(timezone.utc),
        )
    except NotFoundError:
        await update.message.reply_text("That event no longer exists.")
        return
    except ExternalServiceError as exc:
        logger.error("Voice note error: %s", exc)
        await update.message.reply_text(_STORAGE_ERROR)
        return
    await update.message.reply_text(
        f"🎙 Voice note attached to '{event.title}' ({len(event.audio_messages)} total)."
    )


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — attach as a note, or transcribe and chat."""
    from famly.core.transcriber import transcribe_audio

    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved

    voice = update.message.voice
    tmp_path: str | None = None
    try:
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)

        note_event_id = context.user_data.pop("note_event_id", None)
        if note_event_id:
            await _attach_voice_note(update, service, member, note_event_id, tmp_path)
            return

        try:
            text = await transcribe_audio(tmp_path)
        except TranscriptionError:
            await update.message.reply_text(
                "Sorry, I couldn't understand your voice message. Please try again."
            )
            return
        logger.info("Voice transcribed: %s", text[:80])
        await update.message.reply_text(f"🎤 I heard: {text}")

        session = _get_session(context, update.effective_chat.id, service, member)
        if not session.listening:
            session.start_listening()
        try:
            results = await session.on_speech(text, is_final=True)
        except ValidationError as exc:
            await update.message.reply_text(str(exc))
            return
        if not results and session.busy:
            await update.message.reply_text("⏳ Got it, I'll handle that right after the current message.")
        await _send_turns(update, results)
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)


@authorized_only
async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle uploaded files — .ics is imported, anything else goes to the assistant."""
    resolved = await _resolve_member(update, context)
    if resolved is None:
        return
    service, member = resolved

    document = update.message.document
    tg_file = await context.bot.get_file(document.file_id)
    data = bytes(await tg_file.download_as_bytearray())
    filename = document.file_name or "document"

    if is_calendar_file(filename, document.mime_type):
        try:
            created = await service.import_calendar(data.decode("utf-8-sig", errors="replace"), member.id)
        except ExternalServiceError as exc:
            logger.error("Calendar import failed: %s", exc)
            await update.message.reply_text(_STORAGE_ERROR)
            return
        if not created:
            await update.message.reply_text("I couldn't find any readable events in that file.")
            return
        await update.message.reply_text(f"📥 Imported {len(created)} event(s) from {filename}.")
        return

    session = _get_session(context, update.effective_chat.id, service, member)
    await _run_session_turn(
        update, context, session,
        lambda: session.submit_document(filename, data, prompt=update.message.caption or ""),
    )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(store: FamilyStore | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        store: FamilyStore implementation. Defaults to SQLiteFamilyStore.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if store is None:
        from famly.adapters.sqlite_store import SQLiteFamilyStore
        store = SQLiteFamilyStore()

    app.bot_data["store"] = store
    app.bot_data["services"] = {}
    app.bot_data["sessions"] = {}

    commands = {
        "start": cmd_start,
        "help": cmd_help,
        "newfamily": cmd_newfamily,
        "join": cmd_join,
        "members": cmd_members,
        "profile": cmd_profile,
        "today": cmd_today,
        "find": cmd_find,
        "done": cmd_done,
        "delete": cmd_delete,
        "note": cmd_note,
        "export": cmd_export,
        "shopping": cmd_shopping,
        "buy": cmd_buy,
        "bought": cmd_bought,
        "drop": cmd_drop,
        "wishes": cmd_wishes,
        "wish": cmd_wish,
        "unwish": cmd_unwish,
    }
    for name, handler in commands.items():
        app.add_handler(CommandHandler(name, handler))

    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.Document.ALL, handle_document))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting fam.ly bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
