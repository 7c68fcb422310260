"""One pass of live-score reconciliation for a week.

A pass fetches the feed, upserts a LiveScore row for every feed game that maps
onto a scheduled game, guarantees a default row for every scheduled game the
feed left out, then recomputes each participant's weekly total. Every write is
keyed and skipped when nothing changed, so replaying a payload is a no-op.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from .db import Database, Game, utcnow
from .errors import UpstreamFeedError
from .espn_nfl import FeedEvent
from .repositories import LiveScoreRepository, PickRepository, ScheduleProvider, WeeklyScoreRepository
from .teams import TeamCatalog

LOGGER = logging.getLogger(__name__)


class LiveScoreFeed(Protocol):
    def fetch(self, week: int) -> List[FeedEvent]: ...


@dataclass
class SyncReport:
    week: int
    games: int = 0
    feed_events: int = 0
    matched: int = 0
    updated: int = 0
    defaults_created: int = 0
    totals_changed: int = 0
    unmapped: List[str] = field(default_factory=list)
    feed_error: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.feed_error is None

    def as_dict(self) -> Dict[str, object]:
        return {
            "week": self.week,
            "games": self.games,
            "feed_events": self.feed_events,
            "matched": self.matched,
            "updated": self.updated,
            "defaults_created": self.defaults_created,
            "totals_changed": self.totals_changed,
            "unmapped": list(self.unmapped),
            "feed_error": self.feed_error,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def apply_feed_events(
    session: Session,
    week: int,
    events: Sequence[FeedEvent],
    catalog: TeamCatalog,
    report: SyncReport,
    now: Optional[datetime] = None,
) -> List[Game]:
    now = now or utcnow()
    games = ScheduleProvider(session).games_for_week(week)
    live_scores = LiveScoreRepository(session)
    by_matchup = {(g.home_team_id, g.away_team_id): g for g in games}
    report.games = len(games)
    report.feed_events = len(events)

    seen: set[int] = set()
    for event in events:
        home_id = catalog.resolve(event.home_team_name)
        away_id = catalog.resolve(event.away_team_name)
        matchup = f"{event.away_team_name} @ {event.home_team_name}"
        if home_id is None or away_id is None:
            LOGGER.warning("Could not map feed teams: %s", matchup)
            report.unmapped.append(matchup)
            continue
        game = by_matchup.get((home_id, away_id))
        if game is None:
            LOGGER.warning("No scheduled week %s game matches feed event %s", week, matchup)
            report.unmapped.append(matchup)
            continue

        seen.add(game.event_id)
        report.matched += 1
        changed = live_scores.upsert(
            game,
            home_score=event.home_score,
            away_score=event.away_score,
            period=event.period_label,
            clock=event.clock,
            is_live=event.is_live,
            is_complete=event.is_complete,
            now=now,
        )
        if changed:
            report.updated += 1
            LOGGER.debug(
                "Game %s %s: %s-%s (%s)",
                game.event_id,
                matchup,
                event.away_score,
                event.home_score,
                event.period_label or "Not Started",
            )

    for game in games:
        if game.event_id in seen:
            continue
        if live_scores.ensure_default(game, now=now):
            report.defaults_created += 1
    return games


def recompute_weekly_totals(
    session: Session,
    week: int,
    games: Sequence[Game],
    report: SyncReport,
    now: Optional[datetime] = None,
) -> Dict[int, int]:
    """Sum each participant's drafted team scores for ``week`` and persist them."""

    picks = PickRepository(session).list_by_week(week)
    weekly = WeeklyScoreRepository(session)

    points: Dict[int, int] = defaultdict(int)
    completed: Dict[int, int] = defaultdict(int)
    total: Dict[int, int] = defaultdict(int)
    for pick in picks:
        points.setdefault(pick.participant_id, 0)
        if pick.team_id is None:
            continue
        game = next((g for g in games if g.involves(pick.team_id)), None)
        total[pick.participant_id] += 1
        if game is None:
            continue
        points[pick.participant_id] += game.points_for(pick.team_id)
        if game.is_complete:
            completed[pick.participant_id] += 1

    for participant_id, value in points.items():
        if weekly.upsert(
            participant_id,
            week,
            current_points=value,
            completed_games=completed[participant_id],
            total_games=total[participant_id],
            now=now,
        ):
            report.totals_changed += 1
    return dict(points)


class ScoreSyncService:
    """Runs sync passes against the database with a given feed."""

    def __init__(
        self,
        database: Database,
        feed: LiveScoreFeed,
        catalog: TeamCatalog,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.feed = feed
        self.catalog = catalog
        self.clock = clock

    def sync_week(self, week: int) -> SyncReport:
        """Reconcile ``week``. Feed failures are recorded on the report, never raised."""

        report = SyncReport(week=week)
        events: Optional[Sequence[FeedEvent]] = None
        try:
            events = self.feed.fetch(week)
        except UpstreamFeedError as exc:
            LOGGER.warning("Live score feed failed for week %s: %s", week, exc)
            report.feed_error = str(exc)

        now = self.clock()
        with self.database.session_scope() as session:
            if events is None:
                # stored scores are left untouched when the feed is down
                games = ScheduleProvider(session).games_for_week(week)
                report.games = len(games)
            else:
                games = apply_feed_events(session, week, events, self.catalog, report, now=now)
            recompute_weekly_totals(session, week, games, report, now=now)

        report.finished_at = self.clock()
        LOGGER.info(
            "Week %s sync: %s games, %s matched, %s updated, %s defaults, %s totals changed%s",
            week,
            report.games,
            report.matched,
            report.updated,
            report.defaults_created,
            report.totals_changed,
            f", feed error: {report.feed_error}" if report.feed_error else "",
        )
        return report


__all__ = [
    "LiveScoreFeed",
    "ScoreSyncService",
    "SyncReport",
    "apply_feed_events",
    "recompute_weekly_totals",
]
