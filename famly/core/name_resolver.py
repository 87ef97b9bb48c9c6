"""
fam.ly — Attendee Name Resolver.

Chat, voice and file input name people loosely ("mia", "Dad", "leo's").
This module maps those fragments onto member ids. It is deliberately
fail-soft: when nothing matches, the first member of the roster is used so
that an event is never created without an attendee.
"""

from __future__ import annotations

import logging
from typing import Iterable

from famly.core.errors import ValidationError
from famly.data.models import Member

logger = logging.getLogger(__name__)


def find_member(fragment: str, members: list[Member]) -> Member | None:
    """Return the first member (roster order) whose name contains `fragment`, case-insensitively."""
    needle = str(fragment).strip().lower()
    if not needle:
        return None
    for member in members:
        if needle in member.name.lower():
            return member
    return None


def resolve_names(names: Iterable[str] | None, members: list[Member]) -> list[str]:
    """Map free-text name fragments to member ids.

    Unmatched fragments are dropped. When no fragment matches (or none were
    given) the roster's first member is returned as the single attendee.
    Ids are unique and keep the order of the fragments that produced them.

    Raises:
        ValidationError: if the roster is empty.
    """
    if not members:
        raise ValidationError("Cannot resolve attendee names against an empty roster")

    ids: list[str] = []
    for fragment in names or []:
        member = find_member(fragment, members)
        if member is None:
            logger.warning("No family member matches '%s' — dropped", fragment)
            continue
        if member.id not in ids:
            ids.append(member.id)

    if not ids:
        logger.info("No attendee resolved, falling back to %s", members[0].name)
        return [members[0].id]
    return ids
