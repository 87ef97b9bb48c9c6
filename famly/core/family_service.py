"""
fam.ly — Family Service.

The single state-owning controller for one family. Every mutation, whether
it comes from a chat command, a form-style bot command or a file import,
goes through here so that ordering and atomicity are enforced in one place:

    validate against FamilyState → persist via FamilyStore → commit to memory

If the store rejects a write, the in-memory collections are left untouched.

Each UI adapter (Telegram today) calls this service and renders the
returned records in its own way.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING

from famly.core import ics_codec
from famly.core.errors import NotFoundError, ValidationError
from famly.core.filters import (
    DayProgress,
    EventFilter,
    day_progress,
    events_for_day,
    filter_events,
    group_wishes_by_occasion,
    sort_by_start,
    sort_shopping_items,
)
from famly.core.state import FamilyState, ToggleOutcome
from famly.core.translator import AddEventCommand, Command, DeleteEventCommand, UpdateEventCommand
from famly.core.utils import generate_id
from famly.data.models import (
    DEFAULT_OCCASION,
    AudioMessage,
    CalendarEvent,
    Member,
    Priority,
    ShoppingItem,
    ThemeColor,
    Urgency,
    WishListItem,
)

if TYPE_CHECKING:
    from famly.ports.family_store import FamilyStore

logger = logging.getLogger(__name__)

DASHBOARD_DAYS = 3


@dataclass
class CommandOutcome:
    """What happened to one command of a batch."""

    command: Command
    event: CalendarEvent | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class DayView:
    day: date
    events: list[CalendarEvent] = field(default_factory=list)
    progress: DayProgress = field(default_factory=DayProgress)


class FamilyService:
    """Owns one family's FamilyState and keeps it in step with the store."""

    def __init__(
        self,
        store: FamilyStore,
        state: FamilyState,
        tz: tzinfo | None = None,
        completion_points: int | None = None,
    ) -> None:
        self._store = store
        self.state = state
        self.tz = tz or timezone.utc
        if completion_points is None:
            from famly.config import settings
            completion_points = settings.COMPLETION_POINTS
        self.completion_points = completion_points

    @classmethod
    async def load(
        cls,
        store: FamilyStore,
        family_id: str,
        tz: tzinfo | None = None,
        completion_points: int | None = None,
    ) -> FamilyService:
        """Read a family and all of its collections from the store."""
        family = await store.get_family(family_id)
        if family is None:
            raise NotFoundError(f"No family with id '{family_id}'")
        state = FamilyState(
            family=family,
            members=await store.list_members(family_id),
            events=await store.list_events(family_id),
            shopping_items=await store.list_shopping_items(family_id),
            wish_items=await store.list_wish_items(family_id),
        )
        logger.info(
            "Loaded family %s: %d members, %d events",
            family.id, len(state.members), len(state.events),
        )
        return cls(store, state, tz=tz, completion_points=completion_points)

    @property
    def family_id(self) -> str:
        return self.state.family.id

    @property
    def members(self) -> list[Member]:
        return self.state.members

    @property
    def events(self) -> list[CalendarEvent]:
        return self.state.events

    async def refresh_members(self) -> None:
        self.state.members = await self._store.list_members(self.family_id)

    # ------------------------------------------------------------------
    # Event commands
    # ------------------------------------------------------------------

    async def apply_command(self, command: Command) -> CalendarEvent:
        """Validate, persist and commit one command.

        Returns the created/updated event, or the removed one for a delete.

        Raises:
            ValidationError, NotFoundError: the command was rejected; nothing changed.
            PersistenceError: the store failed; nothing changed in memory.
        """
        event = self.state.resolve(command)

        if isinstance(command, AddEventCommand):
            await self._store.create_event(self.family_id, event)
        elif isinstance(command, UpdateEventCommand):
            await self._store.update_event(event)
        elif isinstance(command, DeleteEventCommand):
            await self._store.delete_event(event.id)

        self.state.commit(command, event)
        logger.info("Applied %s command to event %s '%s'", command.kind.value, event.id, event.title)
        return event

    async def apply_commands(self, commands: list[Command]) -> list[CommandOutcome]:
        """Apply commands in order. A rejected command does not stop the rest."""
        outcomes: list[CommandOutcome] = []
        for command in commands:
            try:
                event = await self.apply_command(command)
            except (ValidationError, NotFoundError) as exc:
                logger.warning("Command %s rejected: %s", command.kind.value, exc)
                outcomes.append(CommandOutcome(command=command, error=str(exc)))
                continue
            outcomes.append(CommandOutcome(command=command, event=event))
        return outcomes

    async def save_event(self, event: CalendarEvent) -> CalendarEvent:
        """Create-or-update from a complete record (form-style editing)."""
        if not event.title.strip():
            raise ValidationError("Event title must not be empty")
        if not event.id:
            event = dataclasses.replace(event, id=generate_id())

        existing = self.state.find_event(event.id)
        if existing is None:
            await self._store.create_event(self.family_id, event)
        else:
            await self._store.update_event(event)
        self.state.upsert_event(event)
        logger.info("Saved event %s '%s'", event.id, event.title)
        return event

    async def delete_event(self, event_id: str) -> CalendarEvent:
        return await self.apply_command(DeleteEventCommand(event_id=event_id))

    async def toggle_event_completion(self, event_id: str, member_id: str) -> ToggleOutcome:
        """Flip an event's completion on behalf of an involved member.

        Raises:
            PermissionDeniedError: the member is not involved in the event.
            PersistenceError: the store failed; neither the event nor the member changed.
        """
        outcome = self.state.plan_toggle(event_id, member_id, self.completion_points)
        total = await self._store.save_completion(
            event_id, outcome.completed, member_id, outcome.points_awarded,
        )
        outcome.member = dataclasses.replace(outcome.member, points=total)
        self.state.commit_toggle(outcome)

        if outcome.points_awarded:
            logger.info(
                "%s completed '%s' (+%d points)",
                outcome.member.name, outcome.event.title, outcome.points_awarded,
            )
        return outcome

    async def add_voice_note(
        self,
        event_id: str,
        data: bytes,
        duration: float,
        author_id: str,
        now: datetime | None = None,
    ) -> CalendarEvent:
        event = self.state.get_event(event_id)
        note = AudioMessage(
            data=data,
            duration=duration,
            author_id=author_id,
            timestamp=now or datetime.now(timezone.utc),
        )
        updated = dataclasses.replace(event, audio_messages=[*event.audio_messages, note])
        await self._store.update_event(updated)
        self.state.replace_event(updated)
        logger.info("Voice note (%.1fs) attached to event %s", duration, event_id)
        return updated

    # ------------------------------------------------------------------
    # Interchange
    # ------------------------------------------------------------------

    async def import_calendar(self, text: str, member_id: str) -> list[CalendarEvent]:
        """Import every readable block of an interchange file for `member_id`."""
        self.state.get_member(member_id)

        created: list[CalendarEvent] = []
        for imported in ics_codec.import_calendar(text, tz=self.tz):
            event = CalendarEvent(
                id=generate_id(),
                title=imported.title,
                start=imported.start,
                end=imported.end,
                category=imported.category,
                description=imported.description,
                location=imported.location,
                member_ids=[member_id],
                created_by=member_id,
                audio_messages=[],
            )
            created.append(await self.apply_command(AddEventCommand(event=event)))
        return created

    def export_calendar(self, now: datetime | None = None) -> str:
        return ics_codec.export_calendar(sort_by_start(self.state.events), now=now)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def update_member_profile(
        self,
        member_id: str,
        name: str | None = None,
        avatar: str | None = None,
        color: ThemeColor | str | None = None,
    ) -> Member:
        member = self.state.get_member(member_id)
        changes: dict = {}
        if name is not None:
            if not name.strip():
                raise ValidationError("Member name must not be empty")
            changes["name"] = name.strip()
        if avatar:
            changes["avatar"] = avatar
        if color is not None:
            try:
                changes["color"] = ThemeColor(color)
            except ValueError as exc:
                raise ValidationError(f"Unknown color '{color}'") from exc

        updated = dataclasses.replace(member, **changes)
        await self._store.update_member(updated)
        self.state.replace_member(updated)
        return updated

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def search(self, query: EventFilter) -> list[CalendarEvent]:
        """Filtered events in chronological order."""
        return sort_by_start(filter_events(self.state.events, query, self.tz))

    def dashboard(self, member_id: str | None, today: date | None = None) -> list[DayView]:
        """Today, tomorrow and the day after, each with sorted events and progress."""
        today = today or datetime.now(self.tz).date()
        views = []
        for offset in range(DASHBOARD_DAYS):
            day = today + timedelta(days=offset)
            day_events = events_for_day(self.state.events, day, self.tz)
            views.append(DayView(day=day, events=day_events, progress=day_progress(day_events, member_id)))
        return views

    # ------------------------------------------------------------------
    # Shopping list
    # ------------------------------------------------------------------

    def _get_shopping_item(self, item_id: str) -> ShoppingItem:
        for item in self.state.shopping_items:
            if item.id == item_id:
                return item
        raise NotFoundError(f"No shopping item with id '{item_id}'")

    async def add_shopping_item(
        self,
        name: str,
        added_by: str,
        urgency: Urgency = Urgency.NORMAL,
        needed_by: datetime | None = None,
        link: str = "",
        image: str = "",
        comments: str = "",
    ) -> ShoppingItem:
        if not name.strip():
            raise ValidationError("Item name must not be empty")
        item = ShoppingItem(
            id=generate_id(),
            name=name.strip(),
            added_by=added_by,
            urgency=Urgency(urgency),
            needed_by=needed_by,
            link=link,
            image=image,
            comments=comments,
        )
        await self._store.create_shopping_item(self.family_id, item)
        self.state.shopping_items.insert(0, item)
        return item

    async def toggle_shopping_item(self, item_id: str) -> ShoppingItem:
        item = self._get_shopping_item(item_id)
        updated = dataclasses.replace(item, is_completed=not item.is_completed)
        await self._store.update_shopping_item(updated)
        self.state.shopping_items = [
            updated if i.id == item_id else i for i in self.state.shopping_items
        ]
        return updated

    async def delete_shopping_item(self, item_id: str) -> None:
        self._get_shopping_item(item_id)
        await self._store.delete_shopping_item(item_id)
        self.state.shopping_items = [i for i in self.state.shopping_items if i.id != item_id]

    def shopping_list(self) -> list[ShoppingItem]:
        return sort_shopping_items(self.state.shopping_items)

    # ------------------------------------------------------------------
    # Wish lists
    # ------------------------------------------------------------------

    async def add_wish_item(
        self,
        name: str,
        owner_id: str,
        occasion: str | None = None,
        priority: Priority = Priority.MEDIUM,
        link: str = "",
        image: str = "",
        comments: str = "",
    ) -> WishListItem:
        if not name.strip():
            raise ValidationError("Wish name must not be empty")
        self.state.get_member(owner_id)
        item = WishListItem(
            id=generate_id(),
            name=name.strip(),
            owner_id=owner_id,
            occasion=(occasion or "").strip() or DEFAULT_OCCASION,
            priority=Priority(priority),
            link=link,
            image=image,
            comments=comments,
        )
        await self._store.create_wish_item(self.family_id, item)
        self.state.wish_items.insert(0, item)
        return item

    async def delete_wish_item(self, item_id: str) -> None:
        if not any(i.id == item_id for i in self.state.wish_items):
            raise NotFoundError(f"No wish item with id '{item_id}'")
        await self._store.delete_wish_item(item_id)
        self.state.wish_items = [i for i in self.state.wish_items if i.id != item_id]

    def wish_list(self, owner_id: str) -> dict[str, list[WishListItem]]:
        return group_wishes_by_occasion(self.state.wish_items, owner_id)
