"""Resolve the pool's single "current" week.

Scan weeks in order. The first week with any incomplete game is current.
A fully complete week stays current until 06:00 local time on the first
Wednesday strictly after its last kickoff, then the scan moves on.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Callable, Sequence
from zoneinfo import ZoneInfo

from .db import Game, utcnow
from .repositories import ScheduleProvider

WEDNESDAY = 2
CUTOVER_TIME = time(6, 0)
DEFAULT_WEEK = 1


def next_wednesday_cutover(latest_kickoff: datetime, tz: ZoneInfo) -> datetime:
    """06:00 local on the first Wednesday strictly after ``latest_kickoff``."""

    local = latest_kickoff.astimezone(tz)
    days_ahead = (WEDNESDAY - local.weekday()) % 7 or 7
    target = local.date() + timedelta(days=days_ahead)
    return datetime.combine(target, CUTOVER_TIME, tzinfo=tz)


class WeekResolver:
    def __init__(
        self,
        schedule: ScheduleProvider,
        tz: ZoneInfo,
        season_weeks: int = 18,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.schedule = schedule
        self.tz = tz
        self.season_weeks = season_weeks
        self.clock = clock

    def current_week(self) -> int:
        now = self.clock()
        for week in range(1, self.season_weeks + 1):
            games: Sequence[Game] = self.schedule.games_for_week(week)
            if not games:
                continue
            if any(not game.is_complete for game in games):
                return week
            latest = max(game.kickoff for game in games)
            if now < next_wednesday_cutover(latest, self.tz):
                return week
        return DEFAULT_WEEK


__all__ = ["WeekResolver", "next_wednesday_cutover"]
