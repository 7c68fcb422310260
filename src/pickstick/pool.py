"""Boundary operations consumed by the HTTP / CLI layers.

Mutations that must not interleave for a week (team assignment, seeding,
simulation, reset) take the week's process-local lock and then run inside a
single database transaction.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from .db import Database, Pick, utcnow
from .draft_lock import DraftLockController
from .draft_order import DraftOrderEngine
from .errors import DraftLockedError, GameAlreadyStartedError, ValidationError, validate_week
from .espn_nfl import EspnScoreboardFeed
from .locks import WeekLocks
from .repositories import (
    ParticipantRepository,
    PickRepository,
    ScheduleProvider,
    WeekStateRepository,
    WeeklyScoreRepository,
)
from .scheduler import ScoreSyncScheduler
from .score_sync import ScoreSyncService, SyncReport
from .settings import AppSettings
from .simulator import SimulationEngine, SimulationResult
from .teams import TeamCatalog
from .week_resolver import WeekResolver

LOGGER = logging.getLogger(__name__)


def _pick_row(pick: Pick) -> Dict[str, object]:
    return {
        "id": pick.id,
        "week": pick.week,
        "round": pick.round,
        "order_in_round": pick.order_in_round,
        "participant_id": pick.participant_id,
        "assigned_by_id": pick.assigned_by_id,
        "team_id": pick.team_id,
        "reasoning": pick.reasoning,
    }


class PoolService:
    def __init__(
        self,
        settings: AppSettings,
        database: Database,
        catalog: TeamCatalog,
        sync_service: Optional[ScoreSyncService] = None,
        scheduler: Optional[ScoreSyncScheduler] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        feed: Optional[EspnScoreboardFeed] = None,
    ) -> None:
        self.settings = settings
        self.database = database
        self.catalog = catalog
        self.sync_service = sync_service
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.clock = clock
        self.feed = feed
        self.week_locks = WeekLocks()

    def close(self) -> None:
        """Stop the scheduler, close the feed client and release database connections."""

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.stop()
        if self.feed is not None:
            self.feed.close()
        self.database.dispose()

    # ---------------------------
    # Wiring helpers
    # ---------------------------

    def _week(self, week: object) -> int:
        return validate_week(week, self.settings.season_weeks)

    def _order_engine(self, session: Session) -> DraftOrderEngine:
        return DraftOrderEngine(
            ScheduleProvider(session), ParticipantRepository(session), PickRepository(session), rng=self.rng
        )

    def _lock_controller(self, session: Session) -> DraftLockController:
        return DraftLockController(
            ScheduleProvider(session), PickRepository(session), WeekStateRepository(session), clock=self.clock
        )

    def _draft_state(self, session: Session, week: int) -> Dict[str, object]:
        schedule = ScheduleProvider(session)
        picks = PickRepository(session).list_by_week(week)
        state = WeekStateRepository(session).get(week)
        taken = {pick.team_id for pick in picks if pick.team_id is not None}
        playing: set[int] = set()
        for game in schedule.games_for_week(week):
            playing.update((game.home_team_id, game.away_team_id))
        available = [
            {"team_id": team.id, "name": team.name, "short_name": team.short_name}
            for team in schedule.teams()
            if team.id in playing and team.id not in taken
        ]
        return {
            "week": week,
            "picks": [_pick_row(pick) for pick in picks],
            "available_teams": available,
            "is_draft_locked": bool(state and state.is_draft_locked),
            "is_simulated": bool(state and state.is_simulated),
        }

    # ---------------------------
    # Setup
    # ---------------------------

    def init_db(self, load_teams: bool = True) -> int:
        self.database.init_db()
        if not load_teams:
            return 0
        with self.database.session_scope() as session:
            return ScheduleProvider(session).upsert_teams(self.catalog)

    def add_participant(self, username: str, first_name: str = "", last_name: str = "") -> int:
        with self.database.session_scope() as session:
            return ParticipantRepository(session).add(username, first_name, last_name).id

    def list_participants(self) -> List[Dict[str, object]]:
        with self.database.session_scope() as session:
            return [
                {"id": p.id, "username": p.username, "name": p.display_name}
                for p in ParticipantRepository(session).list_all()
            ]

    # ---------------------------
    # Weeks
    # ---------------------------

    def current_week(self) -> int:
        with self.database.session_scope() as session:
            resolver = WeekResolver(
                ScheduleProvider(session),
                self.settings.tz,
                season_weeks=self.settings.season_weeks,
                clock=self.clock,
            )
            return resolver.current_week()

    def set_punishment(self, week: object, text: str) -> None:
        week = self._week(week)
        with self.database.session_scope() as session:
            WeekStateRepository(session).upsert_punishment(week, text.strip() or None)

    def get_punishment(self, week: object) -> Optional[str]:
        week = self._week(week)
        with self.database.session_scope() as session:
            state = WeekStateRepository(session).get(week)
            return state.punishment if state else None

    def reset_week(self, week: object) -> int:
        """Admin reset: drop a week's picks and summaries and clear its flags."""

        week = self._week(week)
        with self.week_locks.hold(week), self.database.session_scope() as session:
            removed = PickRepository(session).delete_by_week(week)
            WeeklyScoreRepository(session).delete_by_week(week)
            states = WeekStateRepository(session)
            if states.get(week) is not None:
                states.upsert_lock(week, False)
                states.upsert_simulated(week, False)
        LOGGER.info("Reset week %s: removed %s picks", week, removed)
        return removed

    # ---------------------------
    # Draft
    # ---------------------------

    def draft_order(self, week: object) -> List[int]:
        week = self._week(week)
        with self.database.session_scope() as session:
            return self._order_engine(session).compute_order(week)

    def draft_state(self, week: object) -> Dict[str, object]:
        week = self._week(week)
        with self.database.session_scope() as session:
            return self._draft_state(session, week)

    def seed_draft(self, week: object) -> Dict[str, object]:
        week = self._week(week)
        with self.week_locks.hold(week), self.database.session_scope() as session:
            self._order_engine(session).seed_week(week)
            return self._draft_state(session, week)

    def assign_team(self, week: object, pick_id: int, team_id: int) -> Dict[str, object]:
        week = self._week(week)
        with self.week_locks.hold(week):
            # committed separately so a fresh lock survives the rejection below
            with self.database.session_scope() as session:
                locked = self._lock_controller(session).refresh_and_check(week)
            if locked:
                raise DraftLockedError(week)
            return self._assign_unlocked(week, pick_id, team_id)

    def _assign_unlocked(self, week: int, pick_id: int, team_id: int) -> Dict[str, object]:
        with self.database.session_scope() as session:
            schedule = ScheduleProvider(session)
            picks = PickRepository(session)

            pick = picks.get(pick_id)
            if pick is None or pick.week != week:
                raise ValidationError(f"Pick {pick_id} does not belong to week {week}")
            if schedule.team(team_id) is None:
                raise ValidationError(f"Unknown team {team_id}")
            game = schedule.game_for_team(week, team_id)
            if game is None:
                raise ValidationError(f"Team {team_id} does not play in week {week}")
            if any(other.team_id == team_id and other.id != pick_id for other in picks.list_by_week(week)):
                raise ValidationError(f"Team {team_id} was already picked in week {week}")

            if game.has_started(self.clock()):
                raise GameAlreadyStartedError(team_id, game.event_id)

            picks.update_team(pick_id, team_id)
            LOGGER.info("Week %s pick %s assigned team %s", week, pick_id, team_id)
            return self._draft_state(session, week)

    def lock_status(self, week: object) -> bool:
        week = self._week(week)
        with self.week_locks.hold(week), self.database.session_scope() as session:
            return self._lock_controller(session).refresh_and_check(week)

    def is_locked(self, week: object) -> bool:
        week = self._week(week)
        with self.database.session_scope() as session:
            return self._lock_controller(session).is_locked(week)

    def unlock(self, week: object) -> None:
        week = self._week(week)
        with self.week_locks.hold(week), self.database.session_scope() as session:
            self._lock_controller(session).unlock(week)

    def simulate(self, week: object) -> SimulationResult:
        week = self._week(week)
        with self.week_locks.hold(week), self.database.session_scope() as session:
            engine = SimulationEngine(
                ScheduleProvider(session),
                PickRepository(session),
                WeekStateRepository(session),
                self._order_engine(session),
                rng=self.rng,
            )
            return engine.simulate(week)

    # ---------------------------
    # Scores
    # ---------------------------

    def trigger_sync(self, week: Optional[object] = None) -> SyncReport:
        target = self._week(week) if week is not None else None
        if self.scheduler is not None:
            return self.scheduler.trigger_now(target)
        if self.sync_service is None:
            raise RuntimeError("No score sync service configured")
        return self.sync_service.sync_week(target if target is not None else self.current_week())

    def leaderboard(self, week: object) -> List[Dict[str, object]]:
        week = self._week(week)
        with self.database.session_scope() as session:
            participants = {p.id: p.display_name for p in ParticipantRepository(session).list_all()}
            return [
                {
                    "participant_id": row.participant_id,
                    "name": participants.get(row.participant_id, str(row.participant_id)),
                    "current_points": row.current_points,
                    "completed_games": row.completed_games,
                    "total_games": row.total_games,
                    "last_updated": row.last_updated.isoformat(),
                }
                for row in WeeklyScoreRepository(session).list_by_week(week)
            ]

    def scoreboard(self, week: object) -> List[Dict[str, object]]:
        week = self._week(week)
        with self.database.session_scope() as session:
            schedule = ScheduleProvider(session)
            names = {team.id: team.name for team in schedule.teams()}
            rows: List[Dict[str, object]] = []
            for game in schedule.games_for_week(week):
                live = game.live_score
                rows.append(
                    {
                        "event_id": game.event_id,
                        "kickoff": game.kickoff.isoformat(),
                        "home_team": names.get(game.home_team_id, str(game.home_team_id)),
                        "away_team": names.get(game.away_team_id, str(game.away_team_id)),
                        "home_score": game.points_for(game.home_team_id),
                        "away_score": game.points_for(game.away_team_id),
                        "period": live.period if live else None,
                        "clock": live.clock if live else None,
                        "is_live": bool(live and live.is_live),
                        "is_complete": game.is_complete,
                    }
                )
            return rows


def create_pool(settings: AppSettings, catalog: Optional[TeamCatalog] = None) -> PoolService:
    """Wire one application instance: database, feed, sync service and scheduler.

    The scheduler is constructed but not started; the entry point owns its lifecycle.
    """

    settings.data_root.mkdir(parents=True, exist_ok=True)
    catalog = catalog or TeamCatalog.load()
    database = Database(settings.database_url)
    feed = EspnScoreboardFeed(url=settings.scoreboard_url, timeout=settings.feed_timeout_seconds)
    sync_service = ScoreSyncService(database, feed, catalog)
    scheduler = ScoreSyncScheduler(
        database,
        sync_service,
        settings.tz,
        season_weeks=settings.season_weeks,
        active_poll_seconds=settings.active_poll_seconds,
        idle_poll_seconds=settings.idle_poll_seconds,
        active_recheck_seconds=settings.active_recheck_seconds,
    )
    return PoolService(
        settings, database, catalog, sync_service=sync_service, scheduler=scheduler, feed=feed
    )


__all__ = ["PoolService", "create_pool"]
