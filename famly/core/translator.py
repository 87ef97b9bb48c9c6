"""
fam.ly — Action Translator.

Bridges the completion service's structured output into typed calendar
mutation commands. Tool-call arguments arrive as loosely-typed dicts; they are
validated into per-kind pydantic models here and never trusted past this
boundary.

Each invocation yields exactly one command:
    addEvent    → AddEventCommand     (a complete CalendarEvent, fresh id)
    updateEvent → UpdateEventCommand  (event id + partial patch)
    deleteEvent → DeleteEventCommand  (event id)

Timestamps are coerced leniently. An invocation that is missing a required
field (title, id) is rejected on its own and reported back; the remaining
invocations of the same response are still translated.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from famly.core.errors import ValidationError
from famly.core.llm import CompletionResult, ToolCall
from famly.core.name_resolver import resolve_names
from famly.core.utils import generate_id
from famly.data.models import CalendarEvent, EventCategory, Member

logger = logging.getLogger(__name__)

_DEFAULT_DURATION = timedelta(hours=1)


# ---------------------------------------------------------------------------
# Tool-call argument contracts
# ---------------------------------------------------------------------------


def _optional_text(v: Any) -> str | None:
    if v is None:
        return None
    return str(v)


def _name_list(v: Any) -> list[str] | None:
    if v is None:
        return None
    if isinstance(v, str):
        return [part for part in (p.strip() for p in v.split(",")) if part]
    if isinstance(v, (list, tuple)):
        return [str(item) for item in v]
    raise ValueError("attendeeNames must be a list of names or a comma-separated string")


class AddEventArgs(BaseModel):
    """Arguments of an `addEvent` invocation.

    JSON example:
    {
        "title": "Piano",
        "start": "2024-03-01T15:00",
        "end": "2024-03-01T16:00",
        "category": "School",
        "attendeeNames": ["Mia"]
    }
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str
    start: str | None = None
    end: str | None = None
    description: str | None = None
    location: str | None = None
    category: str | None = None
    attendee_names: list[str] | None = Field(default=None, alias="attendeeNames")

    @field_validator("title", mode="before")
    @classmethod
    def require_title(cls, v: Any) -> str:
        title = str(v).strip() if v is not None else ""
        if not title:
            raise ValueError("title must not be empty")
        return title

    @field_validator("start", "end", "description", "location", "category", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str | None:
        return _optional_text(v)

    @field_validator("attendee_names", mode="before")
    @classmethod
    def split_names(cls, v: Any) -> list[str] | None:
        return _name_list(v)


class UpdateEventArgs(BaseModel):
    """Arguments of an `updateEvent` invocation: an id plus any subset of the add fields."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str | None = None
    start: str | None = None
    end: str | None = None
    description: str | None = None
    location: str | None = None
    category: str | None = None
    attendee_names: list[str] | None = Field(default=None, alias="attendeeNames")

    @field_validator("id", mode="before")
    @classmethod
    def require_id(cls, v: Any) -> str:
        event_id = str(v).strip() if v is not None else ""
        if not event_id:
            raise ValueError("id must not be empty")
        return event_id

    @field_validator("title", mode="before")
    @classmethod
    def blank_title_is_absent(cls, v: Any) -> str | None:
        if v is None:
            return None
        title = str(v).strip()
        return title or None

    @field_validator("start", "end", "description", "location", "category", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> str | None:
        return _optional_text(v)

    @field_validator("attendee_names", mode="before")
    @classmethod
    def split_names(cls, v: Any) -> list[str] | None:
        return _name_list(v)


class DeleteEventArgs(BaseModel):
    """Arguments of a `deleteEvent` invocation."""

    model_config = ConfigDict(extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def require_id(cls, v: Any) -> str:
        event_id = str(v).strip() if v is not None else ""
        if not event_id:
            raise ValueError("id must not be empty")
        return event_id


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class CommandKind(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class EventPatch:
    """Fields to overwrite on an existing event. None means 'leave unchanged'."""

    title: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    description: str | None = None
    location: str | None = None
    category: EventCategory | None = None
    member_ids: list[str] | None = None

    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) is not None
        }

    def apply_to(self, event: CalendarEvent) -> CalendarEvent:
        """Return a copy of `event` with the patched fields replaced."""
        changes = self.changes()
        if "member_ids" in changes:
            changes["member_ids"] = list(changes["member_ids"])
        return dataclasses.replace(event, **changes)


@dataclass
class AddEventCommand:
    event: CalendarEvent
    kind: CommandKind = field(default=CommandKind.ADD, init=False)


@dataclass
class UpdateEventCommand:
    event_id: str
    patch: EventPatch
    kind: CommandKind = field(default=CommandKind.UPDATE, init=False)


@dataclass
class DeleteEventCommand:
    event_id: str
    kind: CommandKind = field(default=CommandKind.DELETE, init=False)


Command = AddEventCommand | UpdateEventCommand | DeleteEventCommand


@dataclass
class RejectedInvocation:
    name: str
    reason: str


@dataclass
class TranslationResult:
    """Reply text and the ordered commands produced from one completion."""

    text: str
    commands: list[Command] = field(default_factory=list)
    rejected: list[RejectedInvocation] = field(default_factory=list)

    @property
    def command(self) -> Command | None:
        """The first command, for callers that only handle one action."""
        return self.commands[0] if self.commands else None


# ---------------------------------------------------------------------------
# Timestamp coercion
# ---------------------------------------------------------------------------


def coerce_timestamp(value: str | None, tz: tzinfo | None = None) -> datetime | None:
    """Parse an ISO-8601-like string into an aware datetime.

    Date-only values become midnight. Naive values are taken to be in `tz`
    (UTC when not given). Returns None for anything unparseable.
    """
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Per-kind translation
# ---------------------------------------------------------------------------


def _translate_add(
    arguments: dict, members: list[Member], now: datetime, tz: tzinfo | None, created_by: str | None,
) -> AddEventCommand:
    args = AddEventArgs.model_validate(arguments)

    start = coerce_timestamp(args.start, tz)
    if start is None:
        logger.warning("addEvent '%s': unparseable start %r, using now", args.title, args.start)
        start = now
    end = coerce_timestamp(args.end, tz)
    if end is None:
        if args.end is not None:
            logger.warning("addEvent '%s': unparseable end %r, using start + 1h", args.title, args.end)
        try:
            end = start + _DEFAULT_DURATION
        except OverflowError as exc:
            raise ValidationError(f"addEvent '{args.title}': start {args.start!r} is out of range") from exc

    category = EventCategory.parse(args.category)
    if category is None:
        if args.category is not None:
            logger.warning("addEvent '%s': unknown category %r, using Family", args.title, args.category)
        category = EventCategory.FAMILY

    event = CalendarEvent(
        id=generate_id(),
        title=args.title,
        start=start,
        end=end,
        category=category,
        description=args.description or "",
        location=args.location or "",
        member_ids=resolve_names(args.attendee_names, members),
        created_by=created_by,
        audio_messages=[],
    )
    return AddEventCommand(event=event)


def _translate_update(arguments: dict, members: list[Member], tz: tzinfo | None) -> UpdateEventCommand:
    args = UpdateEventArgs.model_validate(arguments)
    patch = EventPatch(title=args.title, description=args.description, location=args.location)

    for name in ("start", "end"):
        raw = getattr(args, name)
        if raw is None:
            continue
        value = coerce_timestamp(raw, tz)
        if value is None:
            logger.warning("updateEvent %s: dropping unparseable %s %r", args.id, name, raw)
            continue
        setattr(patch, name, value)

    if args.category is not None:
        patch.category = EventCategory.parse(args.category)
        if patch.category is None:
            logger.warning("updateEvent %s: dropping unknown category %r", args.id, args.category)

    if args.attendee_names is not None:
        patch.member_ids = resolve_names(args.attendee_names, members)

    return UpdateEventCommand(event_id=args.id, patch=patch)


def _translate_delete(arguments: dict) -> DeleteEventCommand:
    args = DeleteEventArgs.model_validate(arguments)
    return DeleteEventCommand(event_id=args.id)


def _default_reply(command: Command | None) -> str:
    if isinstance(command, AddEventCommand):
        return f'I\'ve added "{command.event.title}" to the calendar.'
    if isinstance(command, UpdateEventCommand):
        return "I've updated the event."
    if isinstance(command, DeleteEventCommand):
        return "Event deleted."
    return "I didn't catch that."


def _schema_reason(exc: SchemaError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def translate_invocation(
    call: ToolCall,
    members: list[Member],
    now: datetime | None = None,
    tz: tzinfo | None = None,
    created_by: str | None = None,
) -> Command:
    """Translate one tool invocation.

    Raises:
        ValidationError: on an unknown tool, a missing required field or an
            empty roster for an attendee-resolving invocation.
    """
    arguments = call.arguments if isinstance(call.arguments, dict) else {}
    try:
        if call.name == "addEvent":
            if not members:
                raise ValidationError("Cannot add an event for a family with no members")
            return _translate_add(arguments, members, now or datetime.now(timezone.utc), tz, created_by)
        if call.name == "updateEvent":
            return _translate_update(arguments, members, tz)
        if call.name == "deleteEvent":
            return _translate_delete(arguments)
    except SchemaError as exc:
        raise ValidationError(f"{call.name}: {_schema_reason(exc)}") from exc
    raise ValidationError(f"Unknown tool '{call.name}'")


def translate(
    response: CompletionResult,
    members: list[Member],
    now: datetime | None = None,
    tz: tzinfo | None = None,
    created_by: str | None = None,
) -> TranslationResult:
    """Turn a completion response into ordered commands plus reply text.

    Rejected invocations are collected, not raised. When the model sent no
    text, a short confirmation is derived from the first command.
    """
    now = now or datetime.now(timezone.utc)
    result = TranslationResult(text=(response.text or "").strip())

    for call in response.tool_calls:
        try:
            command = translate_invocation(call, members, now=now, tz=tz, created_by=created_by)
        except ValidationError as exc:
            logger.warning("Rejected %s invocation: %s", call.name, exc)
            result.rejected.append(RejectedInvocation(name=call.name, reason=str(exc)))
            continue
        except Exception as exc:
            logger.exception("Could not translate %s invocation", call.name)
            result.rejected.append(RejectedInvocation(name=call.name, reason=f"unreadable arguments ({exc})"))
            continue
        result.commands.append(command)

    if not result.text:
        result.text = _default_reply(result.command)

    logger.info(
        "Translated %d invocations into %d commands (%d rejected)",
        len(response.tool_calls), len(result.commands), len(result.rejected),
    )
    return result
