"""Family store port — abstract interface for persistence.

Core modules depend on this protocol, never on a specific database. Reads
return denormalized records: events carry their attendee ids and voice notes.
"""

from __future__ import annotations

from typing import Protocol

from famly.data.models import CalendarEvent, Family, Member, ShoppingItem, WishListItem


class FamilyStore(Protocol):
    """Abstract persistence interface used by the family service and the bot.

    Implementations raise PersistenceError for storage failures and
    NotFoundError for unknown join codes.
    """

    # Families & members
    async def create_family(
        self, family_name: str, founder_name: str, user_ref: str | None = None,
    ) -> tuple[Family, Member]: ...

    async def join_family(
        self, join_code: str, member_name: str, user_ref: str | None = None,
    ) -> tuple[Family, Member]: ...

    async def get_family(self, family_id: str) -> Family | None: ...

    async def find_membership(self, user_ref: str) -> tuple[Family, Member] | None: ...

    async def list_members(self, family_id: str) -> list[Member]: ...

    async def update_member(self, member: Member) -> None: ...

    async def save_completion(
        self, event_id: str, is_completed: bool, member_id: str, points: int,
    ) -> int:
        """Write an event's completion flag and the member's point award atomically.

        Returns the member's new points total.
        """
        ...

    # Events
    async def list_events(self, family_id: str) -> list[CalendarEvent]: ...

    async def create_event(self, family_id: str, event: CalendarEvent) -> None: ...

    async def update_event(self, event: CalendarEvent) -> None: ...

    async def delete_event(self, event_id: str) -> None: ...

    # Shopping list
    async def list_shopping_items(self, family_id: str) -> list[ShoppingItem]: ...

    async def create_shopping_item(self, family_id: str, item: ShoppingItem) -> None: ...

    async def update_shopping_item(self, item: ShoppingItem) -> None: ...

    async def delete_shopping_item(self, item_id: str) -> None: ...

    # Wish lists
    async def list_wish_items(self, family_id: str) -> list[WishListItem]: ...

    async def create_wish_item(self, family_id: str, item: WishListItem) -> None: ...

    async def delete_wish_item(self, item_id: str) -> None: ...
