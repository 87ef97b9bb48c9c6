"""Uploaded-document intake: text extraction with a size cap, and .ics detection."""

from __future__ import annotations

import logging
from pathlib import PurePath

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n[... document truncated ...]"

_CALENDAR_SUFFIXES = {".ics", ".ical", ".ifb", ".icalendar"}
_CALENDAR_MIME_TYPES = {"text/calendar", "application/ics"}


def extract_document_text(data: bytes, limit: int) -> tuple[str, bool]:
    """Decode uploaded bytes as UTF-8 text capped at `limit` characters.

    Oversized documents are truncated, not rejected. Returns (text, truncated).
    """
    text = data.decode("utf-8-sig", errors="replace")
    text = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if len(text) <= limit:
        return text, False
    logger.info("Document truncated from %d to %d chars", len(text), limit)
    return text[:limit] + TRUNCATION_MARKER, True


def is_calendar_file(filename: str | None, mime_type: str | None = None) -> bool:
    if mime_type and mime_type.split(";")[0].strip().lower() in _CALENDAR_MIME_TYPES:
        return True
    if filename:
        return PurePath(filename).suffix.lower() in _CALENDAR_SUFFIXES
    return False
