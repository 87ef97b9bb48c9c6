"""SQLite adapter — implements FamilyStore on top of FamilyDB.

FamilyDB is synchronous; every call is pushed to a worker thread so the bot's
event loop never blocks on disk I/O. sqlite3 failures surface as
PersistenceError, domain errors (NotFoundError, ValidationError) pass through.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any, Callable, TypeVar

from famly.core.errors import PersistenceError
from famly.data.db import FamilyDB
from famly.data.models import CalendarEvent, Family, Member, ShoppingItem, WishListItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLiteFamilyStore:
    """SQLite implementation of FamilyStore."""

    def __init__(self, db: FamilyDB | None = None) -> None:
        self._db = db or FamilyDB()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.error("SQLite error in %s: %s", fn.__name__, exc)
            raise PersistenceError(f"Storage operation '{fn.__name__}' failed: {exc}") from exc

    # Families & members

    async def create_family(
        self, family_name: str, founder_name: str, user_ref: str | None = None,
    ) -> tuple[Family, Member]:
        return await self._run(self._db.create_family, family_name, founder_name, user_ref)

    async def join_family(
        self, join_code: str, member_name: str, user_ref: str | None = None,
    ) -> tuple[Family, Member]:
        return await self._run(self._db.join_family, join_code, member_name, user_ref)

    async def get_family(self, family_id: str) -> Family | None:
        return await self._run(self._db.get_family, family_id)

    async def find_membership(self, user_ref: str) -> tuple[Family, Member] | None:
        return await self._run(self._db.find_membership, user_ref)

    async def list_members(self, family_id: str) -> list[Member]:
        return await self._run(self._db.list_members, family_id)

    async def update_member(self, member: Member) -> None:
        await self._run(self._db.update_member, member)

    async def save_completion(
        self, event_id: str, is_completed: bool, member_id: str, points: int,
    ) -> int:
        return await self._run(self._db.save_completion, event_id, is_completed, member_id, points)

    # Events

    async def list_events(self, family_id: str) -> list[CalendarEvent]:
        return await self._run(self._db.list_events, family_id)

    async def create_event(self, family_id: str, event: CalendarEvent) -> None:
        await self._run(self._db.create_event, family_id, event)

    async def update_event(self, event: CalendarEvent) -> None:
        await self._run(self._db.update_event, event)

    async def delete_event(self, event_id: str) -> None:
        await self._run(self._db.delete_event, event_id)

    # Shopping list

    async def list_shopping_items(self, family_id: str) -> list[ShoppingItem]:
        return await self._run(self._db.list_shopping_items, family_id)

    async def create_shopping_item(self, family_id: str, item: ShoppingItem) -> None:
        await self._run(self._db.create_shopping_item, family_id, item)

    async def update_shopping_item(self, item: ShoppingItem) -> None:
        await self._run(self._db.update_shopping_item, item)

    async def delete_shopping_item(self, item_id: str) -> None:
        await self._run(self._db.delete_shopping_item, item_id)

    # Wish lists

    async def list_wish_items(self, family_id: str) -> list[WishListItem]:
        return await self._run(self._db.list_wish_items, family_id)

    async def create_wish_item(self, family_id: str, item: WishListItem) -> None:
        await self._run(self._db.create_wish_item, family_id, item)

    async def delete_wish_item(self, item_id: str) -> None:
        await self._run(self._db.delete_wish_item, item_id)
