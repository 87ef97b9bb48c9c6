"""
fam.ly — Calendar Assistant Prompt.

Builds the system prompt (roster + current schedule) and the tool schema for
the three calendar actions, then calls the completion service. The raw
CompletionResult is returned; turning it into commands is the translator's
job.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone, tzinfo

from famly.core.llm import CompletionResult, complete_with_tools
from famly.data.models import CalendarEvent, EventCategory, Member

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tool schema (provider-neutral JSON schema)
# ---------------------------------------------------------------------------

_CATEGORY_VALUES = [c.value for c in EventCategory]

ADD_EVENT_TOOL = {
    "name": "addEvent",
    "description": "Add a new event to the calendar.",
    "parameters": {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "The title of the event"},
            "start": {"type": "string", "description": "Start time in ISO format (e.g., 2024-03-01T15:00:00)"},
            "end": {"type": "string", "description": "End time in ISO format"},
            "description": {"type": "string", "description": "Optional description"},
            "location": {"type": "string", "description": "Optional location"},
            "category": {
                "type": "string",
                "description": f"One of: {', '.join(_CATEGORY_VALUES)}",
                "enum": _CATEGORY_VALUES,
            },
            "attendeeNames": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of family member names attending",
            },
        },
        "required": ["title", "start", "end", "category"],
    },
}

UPDATE_EVENT_TOOL = {
    "name": "updateEvent",
    "description": "Update an existing event. Only provide fields that need changing.",
    "parameters": {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "The ID of the event to update"},
            "title": {"type": "string"},
            "start": {"type": "string"},
            "end": {"type": "string"},
            "description": {"type": "string"},
            "location": {"type": "string"},
            "category": {"type": "string", "enum": _CATEGORY_VALUES},
            "attendeeNames": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["id"],
    },
}

DELETE_EVENT_TOOL = {
    "name": "deleteEvent",
    "description": "Delete an event from the calendar.",
    "parameters": {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "The ID of the event to delete"},
        },
        "required": ["id"],
    },
}

CALENDAR_TOOLS = [ADD_EVENT_TOOL, UPDATE_EVENT_TOOL, DELETE_EVENT_TOOL]


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are fam.ly, a family calendar assistant.
Current Date/Time: {now}

Family Members: {members}

Current Schedule:
{schedule}

Capabilities:
1. Answer questions about the schedule.
2. Handle specific search queries like "When is Mia's practice?" or "What's happening on Monday?".
3. Identify events by attendee names, times (e.g., "at 10am"), or dates.
4. ADD, EDIT, or DELETE events using the provided tools.
5. When the user uploads a document (school letter, schedule, invitation), add every event it lists.

Rules:
- If adding an event, infer the end time (1 hour duration) if not specified.
- Give times in ISO format without an offset; they are read in the family's time zone.
- If modifying/deleting, find the event ID from the Current Schedule JSON.
- If the user asks for a specific person's schedule, list their events clearly.
- Be friendly, concise, and helpful.
"""

_DOCUMENT_SECTION = """

--- Uploaded document: {name} ---
{text}
--- End of document ---"""


def serialize_schedule(events: list[CalendarEvent], members: list[Member], tz: tzinfo) -> str:
    """JSON view of the schedule with attendee ids replaced by names."""
    names = {m.id: m.name for m in members}
    context = [
        {
            "id": e.id,
            "title": e.title,
            "start": e.start.astimezone(tz).isoformat(timespec="minutes"),
            "end": e.end.astimezone(tz).isoformat(timespec="minutes"),
            "category": e.category.value,
            "location": e.location,
            "attendees": ", ".join(names.get(mid, mid) for mid in e.member_ids),
            "completed": e.is_completed,
        }
        for e in sorted(events, key=lambda e: e.start)
    ]
    return json.dumps(context, indent=2, ensure_ascii=False)


def build_system_prompt(
    events: list[CalendarEvent],
    members: list[Member],
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> str:
    tz = tz or timezone.utc
    now = (now or datetime.now(timezone.utc)).astimezone(tz)
    return _SYSTEM_PROMPT.format(
        now=now.strftime("%A, %Y-%m-%d %H:%M") + f" ({now.tzname()})",
        members=", ".join(m.name for m in members) or "(none yet)",
        schedule=serialize_schedule(events, members, tz),
    )


def build_user_message(
    user_message: str, document_text: str | None = None, document_name: str = "document",
) -> str:
    """Attach uploaded document text to the user turn in a delimited section."""
    if not document_text:
        return user_message
    return user_message + _DOCUMENT_SECTION.format(name=document_name, text=document_text)


async def request_completion(
    user_message: str,
    events: list[CalendarEvent],
    members: list[Member],
    document_text: str | None = None,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    document_name: str = "document",
) -> CompletionResult:
    """Ask the completion service about `user_message` with the calendar tools enabled.

    Raises:
        CompletionError: if the provider call fails.
    """
    system = build_system_prompt(events, members, now=now, tz=tz)
    message = build_user_message(user_message, document_text, document_name)
    logger.info(
        "Requesting completion (%d chars, %d events, document=%s)",
        len(message), len(events), bool(document_text),
    )
    return await complete_with_tools(system, message, CALENDAR_TOOLS)
