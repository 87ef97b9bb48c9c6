"""
fam.ly — Family Database.

SQLite storage for everything a family shares: the roster, the calendar
(with attendees and voice notes), the shopping list and the wish lists.
Timestamps are stored as ISO-8601 strings, voice notes as BLOBs.

Every public write runs inside a single `with self._connect()` block, so an
event and its attendee and voice-note rows are committed (or rolled back)
together.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import string
from datetime import datetime
from pathlib import Path

from famly.core.errors import NotFoundError, ValidationError
from famly.core.utils import generate_id
from famly.data.models import (
    AudioMessage,
    CalendarEvent,
    EventCategory,
    Family,
    Member,
    Priority,
    ShoppingItem,
    ThemeColor,
    Urgency,
    WishListItem,
)

logger = logging.getLogger(__name__)

_JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
_JOIN_CODE_LENGTH = 6

_SCHEMA = """
CREATE TABLE IF NOT EXISTS families (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    join_code   TEXT NOT NULL UNIQUE,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS members (
    id          TEXT PRIMARY KEY,
    family_id   TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    avatar      TEXT NOT NULL,
    color       TEXT NOT NULL,
    is_admin    INTEGER NOT NULL DEFAULT 0,
    points      INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0),
    user_ref    TEXT
);

CREATE TABLE IF NOT EXISTS events (
    id           TEXT PRIMARY KEY,
    family_id    TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
    title        TEXT NOT NULL,
    description  TEXT NOT NULL DEFAULT '',
    location     TEXT NOT NULL DEFAULT '',
    start_time   TEXT NOT NULL,
    end_time     TEXT NOT NULL,
    category     TEXT NOT NULL,
    created_by   TEXT,
    is_completed INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS event_attendees (
    event_id   TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    member_id  TEXT NOT NULL,
    position   INTEGER NOT NULL,
    PRIMARY KEY (event_id, member_id)
);

CREATE TABLE IF NOT EXISTS audio_messages (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id   TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    data       BLOB NOT NULL,
    duration   REAL NOT NULL,
    author_id  TEXT NOT NULL,
    timestamp  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS shopping_items (
    id           TEXT PRIMARY KEY,
    family_id    TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    added_by     TEXT NOT NULL,
    urgency      TEXT NOT NULL,
    needed_by    TEXT,
    is_completed INTEGER NOT NULL DEFAULT 0,
    link         TEXT NOT NULL DEFAULT '',
    image        TEXT NOT NULL DEFAULT '',
    comments     TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS wish_items (
    id         TEXT PRIMARY KEY,
    family_id  TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
    name       TEXT NOT NULL,
    owner_id   TEXT NOT NULL,
    occasion   TEXT NOT NULL,
    priority   TEXT NOT NULL,
    link       TEXT NOT NULL DEFAULT '',
    image      TEXT NOT NULL DEFAULT '',
    comments   TEXT NOT NULL DEFAULT ''
);
"""


def _generate_join_code() -> str:
    return "".join(secrets.choice(_JOIN_CODE_ALPHABET) for _ in range(_JOIN_CODE_LENGTH))


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class FamilyDB:
    """SQLite-backed storage for families and everything they share."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from famly.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Family tables initialized at %s", self._db_path)

    # ------------------------------------------------------------------
    # Row mappers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_family(row: sqlite3.Row) -> Family:
        return Family(id=row["id"], name=row["name"], join_code=row["join_code"])

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            name=row["name"],
            avatar=row["avatar"],
            color=ThemeColor(row["color"]),
            is_admin=bool(row["is_admin"]),
            points=row["points"],
        )

    @staticmethod
    def _row_to_shopping_item(row: sqlite3.Row) -> ShoppingItem:
        return ShoppingItem(
            id=row["id"],
            name=row["name"],
            added_by=row["added_by"],
            urgency=Urgency(row["urgency"]),
            needed_by=_parse_ts(row["needed_by"]),
            is_completed=bool(row["is_completed"]),
            link=row["link"],
            image=row["image"],
            comments=row["comments"],
        )

    @staticmethod
    def _row_to_wish_item(row: sqlite3.Row) -> WishListItem:
        return WishListItem(
            id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            occasion=row["occasion"],
            priority=Priority(row["priority"]),
            link=row["link"],
            image=row["image"],
            comments=row["comments"],
        )

    # ------------------------------------------------------------------
    # Families & members
    # ------------------------------------------------------------------

    def _insert_member(
        self, conn: sqlite3.Connection, family_id: str, name: str, user_ref: str | None, is_admin: bool,
    ) -> Member:
        if user_ref is not None:
            taken = conn.execute("SELECT 1 FROM members WHERE user_ref = ?", (user_ref,)).fetchone()
            if taken:
                raise ValidationError("You already belong to a family")

        count = conn.execute(
            "SELECT COUNT(*) FROM members WHERE family_id = ?", (family_id,)
        ).fetchone()[0]
        colors = list(ThemeColor)
        member = Member(
            id=generate_id(),
            name=name.strip(),
            color=colors[count % len(colors)],
            is_admin=is_admin,
        )
        conn.execute(
            """
            INSERT INTO members (id, family_id, name, avatar, color, is_admin, points, user_ref)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (member.id, family_id, member.name, member.avatar, member.color.value, int(is_admin), user_ref),
        )
        return member

    def create_family(
        self, family_name: str, founder_name: str, user_ref: str | None = None,
    ) -> tuple[Family, Member]:
        """Create a family with a fresh join code. The founder becomes admin."""
        if not family_name.strip() or not founder_name.strip():
            raise ValidationError("Family name and member name are required")

        with self._connect() as conn:
            join_code = _generate_join_code()
            while conn.execute("SELECT 1 FROM families WHERE join_code = ?", (join_code,)).fetchone():
                join_code = _generate_join_code()

            family = Family(id=generate_id(), name=family_name.strip(), join_code=join_code)
            conn.execute(
                "INSERT INTO families (id, name, join_code, created_at) VALUES (?, ?, ?, ?)",
                (family.id, family.name, family.join_code, datetime.now().isoformat()),
            )
            founder = self._insert_member(conn, family.id, founder_name, user_ref, is_admin=True)

        logger.info("Family created: %s '%s' (code %s)", family.id, family.name, family.join_code)
        return family, founder

    def join_family(
        self, join_code: str, member_name: str, user_ref: str | None = None,
    ) -> tuple[Family, Member]:
        """Attach a new member to the family owning `join_code`."""
        if not member_name.strip():
            raise ValidationError("Member name is required")

        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM families WHERE join_code = ?", (join_code.strip().upper(),)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"No family with join code '{join_code}'")
            family = self._row_to_family(row)
            member = self._insert_member(conn, family.id, member_name, user_ref, is_admin=False)

        logger.info("Member %s '%s' joined family %s", member.id, member.name, family.id)
        return family, member

    def get_family(self, family_id: str) -> Family | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM families WHERE id = ?", (family_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_family(row)

    def find_membership(self, user_ref: str) -> tuple[Family, Member] | None:
        """Return the family and member record linked to an external user."""
        with self._connect() as conn:
            member_row = conn.execute(
                "SELECT * FROM members WHERE user_ref = ?", (user_ref,)
            ).fetchone()
            if member_row is None:
                return None
            family_row = conn.execute(
                "SELECT * FROM families WHERE id = ?", (member_row["family_id"],)
            ).fetchone()
        return self._row_to_family(family_row), self._row_to_member(member_row)

    def list_members(self, family_id: str) -> list[Member]:
        """Roster in join order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE family_id = ? ORDER BY rowid", (family_id,)
            ).fetchall()
        return [self._row_to_member(r) for r in rows]

    def update_member(self, member: Member) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE members SET name = ?, avatar = ?, color = ?, is_admin = ? WHERE id = ?",
                (member.name, member.avatar, member.color.value, int(member.is_admin), member.id),
            )
        logger.info("Member %s updated", member.id)

    def save_completion(self, event_id: str, is_completed: bool, member_id: str, points: int) -> int:
        """Set an event's completion flag and credit `points` to the member, in one transaction.

        Returns the member's new points total.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE events SET is_completed = ? WHERE id = ?", (int(is_completed), event_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"No event with id '{event_id}'")
            cursor = conn.execute(
                "UPDATE members SET points = points + ? WHERE id = ?", (points, member_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"No member with id '{member_id}'")
            total = conn.execute(
                "SELECT points FROM members WHERE id = ?", (member_id,)
            ).fetchone()[0]
        logger.info(
            "Event %s completed=%s by member %s (+%d points, total %d)",
            event_id, is_completed, member_id, points, total,
        )
        return total

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_events(self, family_id: str) -> list[CalendarEvent]:
        """All events of a family with attendees and voice notes, in creation order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE family_id = ? ORDER BY rowid", (family_id,)
            ).fetchall()
            attendees: dict[str, list[str]] = {}
            for r in conn.execute(
                """
                SELECT a.event_id, a.member_id FROM event_attendees a
                JOIN events e ON e.id = a.event_id
                WHERE e.family_id = ? ORDER BY a.event_id, a.position
                """,
                (family_id,),
            ):
                attendees.setdefault(r["event_id"], []).append(r["member_id"])
            audio: dict[str, list[AudioMessage]] = {}
            for r in conn.execute(
                """
                SELECT m.* FROM audio_messages m
                JOIN events e ON e.id = m.event_id
                WHERE e.family_id = ? ORDER BY m.id
                """,
                (family_id,),
            ):
                audio.setdefault(r["event_id"], []).append(
                    AudioMessage(
                        data=bytes(r["data"]),
                        duration=r["duration"],
                        author_id=r["author_id"],
                        timestamp=datetime.fromisoformat(r["timestamp"]),
                    )
                )

        return [
            CalendarEvent(
                id=row["id"],
                title=row["title"],
                start=datetime.fromisoformat(row["start_time"]),
                end=datetime.fromisoformat(row["end_time"]),
                category=EventCategory(row["category"]),
                description=row["description"],
                location=row["location"],
                member_ids=attendees.get(row["id"], []),
                created_by=row["created_by"],
                audio_messages=audio.get(row["id"], []),
                is_completed=bool(row["is_completed"]),
            )
            for row in rows
        ]

    @staticmethod
    def _write_event_children(conn: sqlite3.Connection, event: CalendarEvent) -> None:
        conn.execute("DELETE FROM event_attendees WHERE event_id = ?", (event.id,))
        conn.executemany(
            "INSERT INTO event_attendees (event_id, member_id, position) VALUES (?, ?, ?)",
            [(event.id, member_id, pos) for pos, member_id in enumerate(dict.fromkeys(event.member_ids))],
        )
        conn.execute("DELETE FROM audio_messages WHERE event_id = ?", (event.id,))
        conn.executemany(
            """
            INSERT INTO audio_messages (event_id, data, duration, author_id, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (event.id, m.data, m.duration, m.author_id, m.timestamp.isoformat())
                for m in event.audio_messages
            ],
        )

    def create_event(self, family_id: str, event: CalendarEvent) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO events
                    (id, family_id, title, description, location, start_time, end_time,
                     category, created_by, is_completed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id, family_id, event.title, event.description, event.location,
                    _ts(event.start), _ts(event.end), event.category.value,
                    event.created_by, int(event.is_completed),
                ),
            )
            self._write_event_children(conn, event)
        logger.info("Event created: %s '%s'", event.id, event.title)

    def update_event(self, event: CalendarEvent) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE events SET title = ?, description = ?, location = ?, start_time = ?,
                    end_time = ?, category = ?, created_by = ?, is_completed = ?
                WHERE id = ?
                """,
                (
                    event.title, event.description, event.location, _ts(event.start),
                    _ts(event.end), event.category.value, event.created_by,
                    int(event.is_completed), event.id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"No event with id '{event.id}'")
            self._write_event_children(conn, event)
        logger.info("Event updated: %s '%s'", event.id, event.title)

    def delete_event(self, event_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
        logger.info("Event deleted: %s", event_id)

    # ------------------------------------------------------------------
    # Shopping list
    # ------------------------------------------------------------------

    def list_shopping_items(self, family_id: str) -> list[ShoppingItem]:
        """Most recently added first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM shopping_items WHERE family_id = ? ORDER BY rowid DESC", (family_id,)
            ).fetchall()
        return [self._row_to_shopping_item(r) for r in rows]

    def create_shopping_item(self, family_id: str, item: ShoppingItem) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO shopping_items
                    (id, family_id, name, added_by, urgency, needed_by, is_completed, link, image, comments)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id, family_id, item.name, item.added_by, item.urgency.value,
                    _ts(item.needed_by), int(item.is_completed), item.link, item.image, item.comments,
                ),
            )
        logger.info("Shopping item added: %s '%s'", item.id, item.name)

    def update_shopping_item(self, item: ShoppingItem) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE shopping_items SET name = ?, urgency = ?, needed_by = ?, is_completed = ?,
                    link = ?, image = ?, comments = ?
                WHERE id = ?
                """,
                (
                    item.name, item.urgency.value, _ts(item.needed_by), int(item.is_completed),
                    item.link, item.image, item.comments, item.id,
                ),
            )

    def delete_shopping_item(self, item_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM shopping_items WHERE id = ?", (item_id,))
        logger.info("Shopping item deleted: %s", item_id)

    # ------------------------------------------------------------------
    # Wish lists
    # ------------------------------------------------------------------

    def list_wish_items(self, family_id: str) -> list[WishListItem]:
        """Most recently added first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM wish_items WHERE family_id = ? ORDER BY rowid DESC", (family_id,)
            ).fetchall()
        return [self._row_to_wish_item(r) for r in rows]

    def create_wish_item(self, family_id: str, item: WishListItem) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO wish_items
                    (id, family_id, name, owner_id, occasion, priority, link, image, comments)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id, family_id, item.name, item.owner_id, item.occasion,
                    item.priority.value, item.link, item.image, item.comments,
                ),
            )
        logger.info("Wish item added: %s '%s'", item.id, item.name)

    def delete_wish_item(self, item_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM wish_items WHERE id = ?", (item_id,))
        logger.info("Wish item deleted: %s", item_id)
