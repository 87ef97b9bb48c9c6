"""
fam.ly — Centralized configuration.

Loads all settings from .env and validates required keys.
Core logic never reads these at import time; it pulls them lazily so the
pure modules stay importable without an environment.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from famly/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "gemini"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str

    # Audio: OpenAI Whisper (transcription only)
    OPENAI_API_KEY: str = ""
    WHISPER_LANGUAGE: str = ""   # empty → let Whisper detect

    # SQLite
    DATABASE_PATH: str = "data/famly.db"

    # Security (empty → everyone may talk to the bot)
    ALLOWED_USER_IDS: list[int] = []

    # Day boundaries, floating timestamps and time-of-day formatting
    TIMEZONE: str = "UTC"

    # Gamification
    COMPLETION_POINTS: int = 5

    # Uploaded documents are truncated to this many characters
    MAX_DOCUMENT_CHARS: int = 20000

    @field_validator("ALLOWED_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("COMPLETION_POINTS", "MAX_DOCUMENT_CHARS", mode="before")
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value < 0:
            raise ValueError("must be a non-negative integer")
        return value


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    if not llm_api_key or llm_api_key.startswith("your-"):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "gemini"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        OPENAI_API_KEY=os.getenv("OPENAI_API_KEY", ""),
        WHISPER_LANGUAGE=os.getenv("WHISPER_LANGUAGE", ""),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/famly.db"),
        ALLOWED_USER_IDS=os.getenv("ALLOWED_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        COMPLETION_POINTS=os.getenv("COMPLETION_POINTS", "5"),
        MAX_DOCUMENT_CHARS=os.getenv("MAX_DOCUMENT_CHARS", "20000"),
    )


# Singleton, imported by all other modules as:
#   from famly.config import settings
settings = _load_settings()
