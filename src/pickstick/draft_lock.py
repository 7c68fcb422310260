from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .db import utcnow
from .repositories import PickRepository, ScheduleProvider, WeekStateRepository

LOGGER = logging.getLogger(__name__)


class DraftLockController:
    """UNLOCKED → LOCKED once any drafted team's game has begun.

    The lock is one-way: only ``unlock`` clears it, and the next
    ``refresh_and_check`` re-locks if a drafted game is still underway.
    """

    def __init__(
        self,
        schedule: ScheduleProvider,
        picks: PickRepository,
        week_states: WeekStateRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.schedule = schedule
        self.picks = picks
        self.week_states = week_states
        self.clock = clock

    def is_locked(self, week: int) -> bool:
        state = self.week_states.get(week)
        return bool(state and state.is_draft_locked)

    def should_lock(self, week: int, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        picked = {pick.team_id for pick in self.picks.list_by_week(week) if pick.team_id is not None}
        if not picked:
            return False
        for game in self.schedule.games_for_week(week):
            if (game.home_team_id in picked or game.away_team_id in picked) and game.has_started(now):
                return True
        return False

    def refresh_and_check(self, week: int) -> bool:
        if self.is_locked(week):
            return True
        if not self.should_lock(week):
            return False
        self.week_states.upsert_lock(week, True)
        LOGGER.info("Draft for week %s locked: a drafted team's game has started", week)
        return True

    def unlock(self, week: int) -> None:
        if not self.is_locked(week):
            return
        self.week_states.upsert_lock(week, False)
        LOGGER.info("Draft for week %s unlocked by admin", week)


__all__ = ["DraftLockController"]
