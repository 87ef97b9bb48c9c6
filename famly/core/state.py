"""
fam.ly — Application State.

The single in-memory copy of one family's data. Mutations are split into a
validating `resolve`/`plan_*` step that computes the resulting records
without touching the collections, and a `commit` step that swaps them in.
A command that fails validation therefore never leaves a partial change,
and the service layer can persist between the two steps.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field

from famly.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from famly.core.filters import is_involved
from famly.core.translator import (
    AddEventCommand,
    Command,
    DeleteEventCommand,
    UpdateEventCommand,
)
from famly.data.models import CalendarEvent, Family, Member, ShoppingItem, WishListItem

logger = logging.getLogger(__name__)


@dataclass
class ToggleOutcome:
    """Result of a planned completion toggle."""

    event: CalendarEvent
    member: Member
    completed: bool
    points_awarded: int = 0


@dataclass
class FamilyState:
    family: Family
    members: list[Member] = field(default_factory=list)
    events: list[CalendarEvent] = field(default_factory=list)
    shopping_items: list[ShoppingItem] = field(default_factory=list)
    wish_items: list[WishListItem] = field(default_factory=list)

    # -- lookups -----------------------------------------------------------

    def find_event(self, event_id: str) -> CalendarEvent | None:
        return next((e for e in self.events if e.id == event_id), None)

    def get_event(self, event_id: str) -> CalendarEvent:
        event = self.find_event(event_id)
        if event is None:
            raise NotFoundError(f"No event with id '{event_id}'")
        return event

    def find_member(self, member_id: str) -> Member | None:
        return next((m for m in self.members if m.id == member_id), None)

    def get_member(self, member_id: str) -> Member:
        member = self.find_member(member_id)
        if member is None:
            raise NotFoundError(f"No member with id '{member_id}'")
        return member

    # -- event commands ----------------------------------------------------

    def resolve(self, command: Command) -> CalendarEvent:
        """Validate `command` and return the event it would produce (or remove).

        Raises:
            ValidationError: if the resulting event has an empty title.
            NotFoundError: if an update/delete targets an unknown event.
        """
        if isinstance(command, AddEventCommand):
            event = command.event
        elif isinstance(command, UpdateEventCommand):
            event = command.patch.apply_to(self.get_event(command.event_id))
        elif isinstance(command, DeleteEventCommand):
            return self.get_event(command.event_id)
        else:
            raise ValidationError(f"Unsupported command {command!r}")

        if not event.title.strip():
            raise ValidationError("Event title must not be empty")
        return event

    def commit(self, command: Command, event: CalendarEvent) -> None:
        """Apply a previously resolved command to the collections."""
        if isinstance(command, AddEventCommand):
            self.events.append(event)
        elif isinstance(command, UpdateEventCommand):
            self.replace_event(event)
        elif isinstance(command, DeleteEventCommand):
            self.events = [e for e in self.events if e.id != event.id]

    def replace_event(self, event: CalendarEvent) -> None:
        self.events = [event if e.id == event.id else e for e in self.events]

    def upsert_event(self, event: CalendarEvent) -> None:
        if self.find_event(event.id) is None:
            self.events.append(event)
        else:
            self.replace_event(event)

    # -- completion --------------------------------------------------------

    def plan_toggle(self, event_id: str, member_id: str, points: int) -> ToggleOutcome:
        """Compute the result of `member_id` toggling an event's completion.

        Points are only awarded on the incomplete → complete transition and
        are never taken back.

        Raises:
            NotFoundError: unknown event or member.
            PermissionDeniedError: the member is neither creator nor attendee.
        """
        event = self.get_event(event_id)
        member = self.get_member(member_id)
        if not is_involved(event, member_id):
            raise PermissionDeniedError(
                f"{member.name} is not involved in '{event.title}' and cannot change its completion"
            )

        completed = not event.is_completed
        awarded = points if completed else 0
        return ToggleOutcome(
            event=dataclasses.replace(event, is_completed=completed),
            member=dataclasses.replace(member, points=member.points + awarded),
            completed=completed,
            points_awarded=awarded,
        )

    def commit_toggle(self, outcome: ToggleOutcome) -> None:
        self.replace_event(outcome.event)
        if outcome.points_awarded:
            self.replace_member(outcome.member)

    # -- members -----------------------------------------------------------

    def replace_member(self, member: Member) -> None:
        self.members = [member if m.id == member.id else m for m in self.members]

    def add_member(self, member: Member) -> None:
        if self.find_member(member.id) is None:
            self.members.append(member)
        else:
            self.replace_member(member)
