"""Background score sync: an explicitly owned service with start()/stop().

Cadence follows two signals:

- a calendar predicate approximating NFL broadcast windows (plus an extended
  early-morning window for late finishers), evaluated in the pool's timezone
- a sticky "games active" flag (any live game, or an incomplete game kicking
  off within 30 minutes), refreshed while active, when it is older than the
  recheck age, and immediately on entering a game-period window

Active or in-window ticks come every ``active_poll_seconds``; otherwise every
``idle_poll_seconds``. Ticks never overlap and never raise.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select

from .db import Database, Game, LiveScore, utcnow
from .repositories import ScheduleProvider
from .score_sync import ScoreSyncService, SyncReport
from .week_resolver import WeekResolver

LOGGER = logging.getLogger(__name__)

UPCOMING_WINDOW = timedelta(minutes=30)

MONDAY, TUESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = 0, 1, 3, 4, 5, 6
LATE_SEASON_MONTHS = {12, 1}

# weekday -> (start hour, start minute); windows run to midnight
PRIMARY_WINDOWS = {
    THURSDAY: (16, 0),
    SUNDAY: (9, 0),
    MONDAY: (16, 0),
}
LATE_SEASON_WINDOWS = {SATURDAY: (12, 0)}
EXTENDED_END_HOUR = 3


def is_game_period(local_now: datetime) -> bool:
    """True inside an NFL broadcast window or its early-morning extension."""

    weekday = local_now.weekday()
    minutes = local_now.hour * 60 + local_now.minute
    late_season = local_now.month in LATE_SEASON_MONTHS

    windows = dict(PRIMARY_WINDOWS)
    if late_season:
        windows.update(LATE_SEASON_WINDOWS)
    start = windows.get(weekday)
    if start is not None and minutes >= start[0] * 60 + start[1]:
        return True

    if local_now.hour < EXTENDED_END_HOUR:
        previous_day = (weekday - 1) % 7
        if previous_day in windows:
            return True
    return False


class ScoreSyncScheduler:
    def __init__(
        self,
        database: Database,
        sync_service: ScoreSyncService,
        tz: ZoneInfo,
        *,
        season_weeks: int = 18,
        active_poll_seconds: int = 30,
        idle_poll_seconds: int = 300,
        active_recheck_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.sync_service = sync_service
        self.tz = tz
        self.season_weeks = season_weeks
        self.active_poll_seconds = active_poll_seconds
        self.idle_poll_seconds = idle_poll_seconds
        self.active_recheck = timedelta(seconds=active_recheck_seconds)
        self.clock = clock

        self.current_week: Optional[int] = None
        self.has_active_games = False
        self.last_active_check: Optional[datetime] = None
        self.last_tick_at: Optional[datetime] = None
        self.last_report: Optional[SyncReport] = None
        self.last_error: Optional[str] = None
        self._was_game_period = False

        self._tick_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---------------------------
    # Lifecycle
    # ---------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="score-sync", daemon=True)
        self._thread.start()
        LOGGER.info("Live score scheduler started")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        LOGGER.info("Live score scheduler stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.next_interval())

    # ---------------------------
    # Cadence
    # ---------------------------

    def in_game_period(self, now: Optional[datetime] = None) -> bool:
        return is_game_period((now or self.clock()).astimezone(self.tz))

    def next_interval(self, now: Optional[datetime] = None) -> int:
        if self.has_active_games or self.in_game_period(now):
            return self.active_poll_seconds
        return self.idle_poll_seconds

    def _needs_active_check(self, now: datetime, entered_game_period: bool) -> bool:
        if self.has_active_games or entered_game_period or self.last_active_check is None:
            return True
        return now - self.last_active_check > self.active_recheck

    def check_for_active_games(self, week: int, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        self.last_active_check = now
        previous = self.has_active_games
        live: list = []
        upcoming: list = []
        try:
            with self.database.session_scope() as session:
                live = session.scalars(
                    select(LiveScore.event_id)
                    .join(Game, Game.event_id == LiveScore.event_id)
                    .where(Game.week == week, LiveScore.is_live.is_(True))
                ).all()
                upcoming = [
                    game
                    for game in ScheduleProvider(session).games_for_week(week)
                    if not game.is_complete and now <= game.kickoff <= now + UPCOMING_WINDOW
                ]
            self.has_active_games = bool(live) or bool(upcoming)
        except Exception:
            LOGGER.exception("Error checking for active games; assuming games are active")
            self.has_active_games = True

        if self.has_active_games and not previous:
            LOGGER.info("Active games detected for week %s: %s live, %s upcoming", week, len(live), len(upcoming))
        elif previous and not self.has_active_games:
            LOGGER.info("No active games in week %s; slowing live score polling", week)
        return self.has_active_games

    # ---------------------------
    # Ticks
    # ---------------------------

    def resolve_week(self) -> int:
        with self.database.session_scope() as session:
            resolver = WeekResolver(
                ScheduleProvider(session), self.tz, season_weeks=self.season_weeks, clock=self.clock
            )
            return resolver.current_week()

    def tick(self) -> Optional[SyncReport]:
        """Run one scheduled pass. Returns None when a pass is already running."""

        if not self._tick_lock.acquire(blocking=False):
            LOGGER.warning("Previous score sync still running; skipping tick")
            return None
        try:
            return self._tick_locked()
        finally:
            self._tick_lock.release()

    def _tick_locked(self) -> Optional[SyncReport]:
        now = self.clock()
        self.last_tick_at = now
        try:
            week = self.resolve_week()
            if week != self.current_week:
                LOGGER.info("Current week is now %s", week)
            self.current_week = week

            game_period = self.in_game_period(now)
            entered = game_period and not self._was_game_period
            self._was_game_period = game_period
            if self._needs_active_check(now, entered):
                self.check_for_active_games(week, now)

            report = self.sync_service.sync_week(week)
            self.last_report = report
            if report.ok:
                self.last_error = None
            else:
                self.last_error = report.feed_error
                self.has_active_games = True
            return report
        except Exception as exc:
            LOGGER.exception("Score sync tick failed")
            self.last_error = str(exc)
            self.has_active_games = True
            return None

    def trigger_now(self, week: Optional[int] = None) -> SyncReport:
        """Run a sync immediately, waiting for any in-flight tick to finish."""

        with self._tick_lock:
            target = week if week is not None else self.resolve_week()
            LOGGER.info("Manual trigger: updating scores for week %s", target)
            report = self.sync_service.sync_week(target)
            self.last_report = report
            return report

    def status(self) -> Dict[str, object]:
        return {
            "running": self.running,
            "current_week": self.current_week,
            "has_active_games": self.has_active_games,
            "in_game_period": self.in_game_period(),
            "last_active_check": self.last_active_check.isoformat() if self.last_active_check else None,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_error": self.last_error,
            "last_report": self.last_report.as_dict() if self.last_report else None,
            "next_interval_seconds": self.next_interval(),
        }


__all__ = ["ScoreSyncScheduler", "is_game_period"]
