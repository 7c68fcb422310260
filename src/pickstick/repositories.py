"""Session-bound data access used by the pool's core components.

Every repository wraps a caller-owned SQLAlchemy ``Session``; transaction
boundaries belong to the caller (see ``Database.session_scope``).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from .db import Game, LiveScore, Participant, Pick, Team, WeeklyScore, WeekState, utcnow

if TYPE_CHECKING:
    from .draft_order import PickSlot
    from .teams import TeamCatalog


class ScheduleProvider:
    def __init__(self, session: Session) -> None:
        self.session = session

    def games_for_week(self, week: int) -> List[Game]:
        stmt = select(Game).where(Game.week == week).order_by(Game.kickoff, Game.event_id)
        return list(self.session.scalars(stmt).unique())

    def games_before(self, week: int) -> List[Game]:
        stmt = select(Game).where(Game.week < week).order_by(Game.week, Game.kickoff)
        return list(self.session.scalars(stmt).unique())

    def game_for_team(self, week: int, team_id: int) -> Optional[Game]:
        stmt = select(Game).where(
            Game.week == week,
            or_(Game.home_team_id == team_id, Game.away_team_id == team_id),
        )
        return self.session.scalars(stmt).unique().first()

    def add_game(
        self,
        event_id: int,
        week: int,
        kickoff: datetime,
        home_team_id: int,
        away_team_id: int,
        home_score: Optional[int] = None,
        away_score: Optional[int] = None,
    ) -> Game:
        game = Game(
            event_id=event_id,
            week=week,
            kickoff=kickoff,
            home_team_id=home_team_id,
            away_team_id=away_team_id,
            home_score=home_score,
            away_score=away_score,
        )
        self.session.add(game)
        self.session.flush()
        return game

    def team(self, team_id: int) -> Optional[Team]:
        return self.session.get(Team, team_id)

    def teams(self) -> List[Team]:
        return list(self.session.scalars(select(Team).order_by(Team.id)))

    def upsert_teams(self, catalog: "TeamCatalog") -> int:
        written = 0
        for info in catalog.teams:
            team = self.session.get(Team, info.team_id)
            if team is None:
                self.session.add(Team(id=info.team_id, name=info.name, short_name=info.short_name))
                written += 1
            elif (team.name, team.short_name) != (info.name, info.short_name):
                team.name = info.name
                team.short_name = info.short_name
                written += 1
        self.session.flush()
        return written


class ParticipantRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> List[Participant]:
        return list(self.session.scalars(select(Participant).order_by(Participant.id)))

    def add(self, username: str, first_name: str = "", last_name: str = "") -> Participant:
        participant = Participant(username=username, first_name=first_name, last_name=last_name)
        self.session.add(participant)
        self.session.flush()
        return participant


class PickRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, pick_id: int) -> Optional[Pick]:
        return self.session.get(Pick, pick_id)

    def list_by_week(self, week: int) -> List[Pick]:
        stmt = select(Pick).where(Pick.week == week).order_by(Pick.round, Pick.order_in_round)
        return list(self.session.scalars(stmt))

    def list_before(self, week: int) -> List[Pick]:
        stmt = select(Pick).where(Pick.week < week).order_by(Pick.week, Pick.round, Pick.order_in_round)
        return list(self.session.scalars(stmt))

    def insert_many(self, week: int, slots: Iterable["PickSlot"]) -> List[Pick]:
        rows = [
            Pick(
                week=week,
                round=slot.round,
                participant_id=slot.participant_id,
                team_id=slot.team_id,
                order_in_round=slot.order_in_round,
                assigned_by_id=slot.assigned_by_id,
                reasoning=slot.reasoning,
            )
            for slot in slots
        ]
        self.session.add_all(rows)
        self.session.flush()
        return rows

    def update_team(self, pick_id: int, team_id: Optional[int], reasoning: Optional[str] = None) -> Pick:
        pick = self.session.get(Pick, pick_id)
        if pick is None:
            raise LookupError(f"Pick {pick_id} not found")
        pick.team_id = team_id
        if reasoning is not None:
            pick.reasoning = reasoning
        self.session.flush()
        return pick

    def delete_by_week(self, week: int) -> int:
        result = self.session.execute(delete(Pick).where(Pick.week == week))
        self.session.flush()
        return int(result.rowcount or 0)


class WeekStateRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, week: int) -> Optional[WeekState]:
        return self.session.get(WeekState, week)

    def _get_or_create(self, week: int) -> WeekState:
        state = self.session.get(WeekState, week)
        if state is None:
            state = WeekState(week=week, is_draft_locked=False, is_simulated=False)
            self.session.add(state)
        return state

    def upsert_lock(self, week: int, locked: bool) -> WeekState:
        state = self._get_or_create(week)
        state.is_draft_locked = locked
        self.session.flush()
        return state

    def upsert_simulated(self, week: int, simulated: bool) -> WeekState:
        state = self._get_or_create(week)
        state.is_simulated = simulated
        self.session.flush()
        return state

    def upsert_punishment(self, week: int, text: Optional[str]) -> WeekState:
        state = self._get_or_create(week)
        state.punishment = text
        self.session.flush()
        return state


class LiveScoreRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, event_id: int) -> Optional[LiveScore]:
        return self.session.get(LiveScore, event_id)

    def upsert(
        self,
        game: Game,
        *,
        home_score: int,
        away_score: int,
        period: Optional[str],
        clock: Optional[str],
        is_live: bool,
        is_complete: bool,
        now: Optional[datetime] = None,
    ) -> bool:
        """Insert or update the row for ``game``; returns True when stored state changed."""

        values = {
            "home_score": home_score,
            "away_score": away_score,
            "period": period,
            "clock": clock,
            "is_live": is_live,
            "is_complete": is_complete,
        }
        row = self.get(game.event_id)
        if row is None:
            row = LiveScore(event_id=game.event_id, last_updated=now or utcnow(), **values)
            game.live_score = row
            self.session.add(row)
            self.session.flush()
            return True

        if all(getattr(row, key) == value for key, value in values.items()):
            return False
        for key, value in values.items():
            setattr(row, key, value)
        row.last_updated = now or utcnow()
        self.session.flush()
        return True

    def ensure_default(self, game: Game, now: Optional[datetime] = None) -> bool:
        """Create a row if none exists; returns True when created.

        Games with recorded final scores get a completed row carrying those
        scores, everything else a zero / not-started row.
        """

        if self.get(game.event_id) is not None:
            return False
        final = game.home_score is not None and game.away_score is not None
        row = LiveScore(
            event_id=game.event_id,
            home_score=game.home_score if final else 0,
            away_score=game.away_score if final else 0,
            period="Final" if final else None,
            clock=None,
            is_live=False,
            is_complete=final,
            last_updated=now or utcnow(),
        )
        game.live_score = row
        self.session.add(row)
        self.session.flush()
        return True


class WeeklyScoreRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, participant_id: int, week: int) -> Optional[WeeklyScore]:
        stmt = select(WeeklyScore).where(
            WeeklyScore.participant_id == participant_id, WeeklyScore.week == week
        )
        return self.session.scalars(stmt).first()

    def list_by_week(self, week: int) -> List[WeeklyScore]:
        stmt = (
            select(WeeklyScore)
            .where(WeeklyScore.week == week)
            .order_by(WeeklyScore.current_points.desc(), WeeklyScore.participant_id)
        )
        return list(self.session.scalars(stmt))

    def upsert(
        self,
        participant_id: int,
        week: int,
        *,
        current_points: int,
        completed_games: int,
        total_games: int,
        now: Optional[datetime] = None,
    ) -> bool:
        row = self.get(participant_id, week)
        values: Sequence[tuple[str, int]] = (
            ("current_points", current_points),
            ("completed_games", completed_games),
            ("total_games", total_games),
        )
        if row is None:
            row = WeeklyScore(participant_id=participant_id, week=week, last_updated=now or utcnow())
            for key, value in values:
                setattr(row, key, value)
            self.session.add(row)
            self.session.flush()
            return True
        if all(getattr(row, key) == value for key, value in values):
            return False
        for key, value in values:
            setattr(row, key, value)
        row.last_updated = now or utcnow()
        self.session.flush()
        return True

    def delete_by_week(self, week: int) -> int:
        result = self.session.execute(delete(WeeklyScore).where(WeeklyScore.week == week))
        self.session.flush()
        return int(result.rowcount or 0)


__all__ = [
    "LiveScoreRepository",
    "ParticipantRepository",
    "PickRepository",
    "ScheduleProvider",
    "WeekStateRepository",
    "WeeklyScoreRepository",
]
