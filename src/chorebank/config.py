"""Configuration for ChoreBank, read from the environment and ``.env`` files."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ValidationError
from .weeks import Weekday

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///chorebank.db"
DEFAULT_CACHE_TTL_SECONDS = 300.0
DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_STORAGE_RETRIES = 3
DEFAULT_STORAGE_BACKOFF_SECONDS = 0.05
SYSTEM_ACTOR = "system"


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    week_start: Weekday = Weekday.MONDAY
    timezone: str = DEFAULT_TIMEZONE
    storage_retries: int = DEFAULT_STORAGE_RETRIES
    storage_backoff_seconds: float = DEFAULT_STORAGE_BACKOFF_SECONDS
    log_path: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``CHOREBANK_*`` variables."""

        env = os.environ if environ is None else environ
        try:
            cache_ttl = float(env.get("CHOREBANK_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS))
            retries = int(env.get("CHOREBANK_STORAGE_RETRIES", DEFAULT_STORAGE_RETRIES))
            backoff = float(env.get("CHOREBANK_STORAGE_BACKOFF_SECONDS", DEFAULT_STORAGE_BACKOFF_SECONDS))
            week_start = Weekday.parse(env.get("CHOREBANK_WEEK_START", "monday"))
        except ValueError as exc:
            raise ValidationError(f"Invalid ChoreBank configuration: {exc}") from exc
        if cache_ttl < 0 or retries < 0 or backoff < 0:
            raise ValidationError("Cache TTL, retries and backoff must not be negative.")
        log_path = env.get("CHOREBANK_LOG_PATH")
        return cls(
            database_url=env.get("CHOREBANK_DATABASE_URL", DEFAULT_DATABASE_URL),
            cache_ttl_seconds=cache_ttl,
            week_start=week_start,
            timezone=env.get("CHOREBANK_TIMEZONE", DEFAULT_TIMEZONE),
            storage_retries=retries,
            storage_backoff_seconds=backoff,
            log_path=Path(log_path) if log_path else None,
        )


__all__ = [
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_DATABASE_URL",
    "DEFAULT_TIMEZONE",
    "SYSTEM_ACTOR",
    "Settings",
]
