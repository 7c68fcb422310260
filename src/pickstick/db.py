"""Persistence models and session management for the pick-and-stick pool.

Tables:
- teams: NFL reference catalog (immutable once loaded)
- participants: pool members who draft each week
- games: one row per real-world game, owned by the schedule import
- live_scores: 1:1 with games, written only by the score sync
- picks: draft slots for a week (team_id NULL until chosen)
- weeks: per-week lock / simulated flags and punishment text
- weekly_scores: per-participant weekly point totals
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Store naive UTC, always hand back timezone-aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    short_name: Mapped[str] = mapped_column(String(10), nullable=False)


class Participant(Base):
    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.username


class Game(Base):
    __tablename__ = "games"

    event_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    kickoff: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    home_team_id: Mapped[int] = mapped_column(Integer, ForeignKey("teams.id"), nullable=False)
    away_team_id: Mapped[int] = mapped_column(Integer, ForeignKey("teams.id"), nullable=False)
    home_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    away_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    live_score: Mapped[Optional["LiveScore"]] = relationship(
        "LiveScore", back_populates="game", uselist=False, lazy="joined"
    )

    def involves(self, team_id: int) -> bool:
        return team_id in (self.home_team_id, self.away_team_id)

    def points_for(self, team_id: int) -> int:
        """Points credited to ``team_id``: live score first, then final score, else 0."""

        if self.live_score is not None:
            if team_id == self.home_team_id:
                return self.live_score.home_score
            return self.live_score.away_score
        value = self.home_score if team_id == self.home_team_id else self.away_score
        return value or 0

    @property
    def is_complete(self) -> bool:
        if self.live_score is not None:
            return self.live_score.is_complete
        return self.home_score is not None and self.away_score is not None

    def has_started(self, now: datetime) -> bool:
        if self.kickoff <= now:
            return True
        if self.live_score is not None:
            return self.live_score.is_live or self.live_score.is_complete
        return False


class LiveScore(Base):
    __tablename__ = "live_scores"

    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("games.event_id"), primary_key=True)
    home_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    away_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    clock: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_live: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    game: Mapped[Game] = relationship("Game", back_populates="live_score")


class Pick(Base):
    __tablename__ = "picks"
    __table_args__ = (
        UniqueConstraint("week", "team_id", name="uq_picks_week_team"),
        UniqueConstraint("week", "round", "order_in_round", name="uq_picks_week_slot"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    round: Mapped[int] = mapped_column(Integer, nullable=False)
    participant_id: Mapped[int] = mapped_column(Integer, ForeignKey("participants.id"), nullable=False)
    team_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("teams.id"), nullable=True)
    order_in_round: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("participants.id"), nullable=True
    )
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class WeekState(Base):
    __tablename__ = "weeks"

    week: Mapped[int] = mapped_column(Integer, primary_key=True)
    is_draft_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_simulated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    punishment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )


class WeeklyScore(Base):
    __tablename__ = "weekly_scores"
    __table_args__ = (UniqueConstraint("participant_id", "week", name="uq_weekly_scores_participant_week"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    participant_id: Mapped[int] = mapped_column(Integer, ForeignKey("participants.id"), nullable=False)
    week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    current_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_games: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, future=True, **kwargs)
    return create_engine(database_url, echo=echo, future=True, pool_pre_ping=True)


class Database:
    """Owns the engine and session factory for one application instance."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.engine = build_engine(database_url, echo=echo)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
            class_=Session,
        )

    def init_db(self) -> None:
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional session: commit on success, rollback on error."""

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            LOGGER.debug("DB session rolled back", exc_info=True)
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = [
    "Base",
    "Database",
    "Game",
    "LiveScore",
    "Participant",
    "Pick",
    "Team",
    "WeekState",
    "WeeklyScore",
    "build_engine",
    "utcnow",
]
