from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from .espn_nfl import ESPN_NFL_SCOREBOARD_URL

DEFAULT_SCOREBOARD_URL = ESPN_NFL_SCOREBOARD_URL
DEFAULT_TIMEZONE = "America/Los_Angeles"


@dataclass
class AppSettings:
    """Application configuration sourced from environment variables."""

    database_url: str
    data_root: Path
    log_level: str
    pool_timezone: str = DEFAULT_TIMEZONE
    scoreboard_url: str = DEFAULT_SCOREBOARD_URL
    feed_timeout_seconds: float = 15.0
    active_poll_seconds: int = 30
    idle_poll_seconds: int = 300
    active_recheck_seconds: int = 300
    season_weeks: int = 18

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.pool_timezone)

    @property
    def masked_database_url(self) -> str:
        scheme, sep, rest = self.database_url.partition("://")
        if not sep or "@" not in rest:
            return self.database_url
        credentials, _, host = rest.rpartition("@")
        user = credentials.split(":", 1)[0]
        return f"{scheme}://{user}:***@{host}"


def _coerce_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Expected integer-compatible value, got: {value!r}") from None


def _coerce_float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Expected numeric value, got: {value!r}") from None


@lru_cache(maxsize=1)
def get_settings(env_path: Optional[Path | str] = None) -> AppSettings:
    """Load settings from `.env` (if present) and environment variables."""

    env_file = Path(env_path) if env_path else Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    data_root = Path(os.getenv("DATA_ROOT", "./data")).resolve()
    database_url = os.getenv("DATABASE_URL") or f"sqlite:///{data_root / 'pickstick.db'}"

    return AppSettings(
        database_url=database_url,
        data_root=data_root,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        pool_timezone=os.getenv("POOL_TIMEZONE", DEFAULT_TIMEZONE),
        scoreboard_url=os.getenv("SCOREBOARD_URL", DEFAULT_SCOREBOARD_URL),
        feed_timeout_seconds=_coerce_float(os.getenv("FEED_TIMEOUT_SECONDS"), 15.0),
        active_poll_seconds=_coerce_int(os.getenv("ACTIVE_POLL_SECONDS"), 30),
        idle_poll_seconds=_coerce_int(os.getenv("IDLE_POLL_SECONDS"), 300),
        active_recheck_seconds=_coerce_int(os.getenv("ACTIVE_RECHECK_SECONDS"), 300),
        season_weeks=_coerce_int(os.getenv("SEASON_WEEKS"), 18),
    )


def reset_settings_cache() -> None:
    """Clear cached settings, useful for tests."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
