"""Shared pytest fixtures: an in-memory pool database, the team catalog and a fake clock."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import pytest

from pickstick.db import Database
from pickstick.draft_order import PickSlot
from pickstick.pool import PoolService
from pickstick.repositories import ParticipantRepository, PickRepository, ScheduleProvider
from pickstick.settings import AppSettings
from pickstick.teams import TeamCatalog

# Wednesday 2025-09-10 19:00 UTC (noon in Los Angeles)
NOW = datetime(2025, 9, 10, 19, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session")
def catalog() -> TeamCatalog:
    return TeamCatalog.load()


@pytest.fixture()
def database(catalog: TeamCatalog) -> Database:
    db = Database("sqlite://")
    db.init_db()
    with db.session_scope() as session:
        ScheduleProvider(session).upsert_teams(catalog)
    yield db
    db.dispose()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(database_url="sqlite://", data_root=tmp_path, log_level="INFO")


@pytest.fixture()
def pool(settings: AppSettings, database: Database, catalog: TeamCatalog, clock: FakeClock) -> PoolService:
    return PoolService(settings, database, catalog, rng=random.Random(7), clock=clock)


def add_participants(database: Database, usernames: Iterable[str]) -> List[int]:
    with database.session_scope() as session:
        repo = ParticipantRepository(session)
        return [repo.add(name, name.title(), "").id for name in usernames]


def add_games(
    database: Database,
    week: int,
    kickoff: datetime,
    matchups: Sequence[Tuple[int, int]],
    finals: Optional[Sequence[Tuple[int, int]]] = None,
    first_event_id: Optional[int] = None,
) -> List[int]:
    """Schedule ``(home, away)`` games for ``week``; ``finals`` holds (home, away) final scores."""

    base = first_event_id if first_event_id is not None else week * 100
    event_ids: List[int] = []
    with database.session_scope() as session:
        schedule = ScheduleProvider(session)
        for offset, (home, away) in enumerate(matchups):
            home_score, away_score = finals[offset] if finals else (None, None)
            game = schedule.add_game(
                base + offset,
                week,
                kickoff,
                home,
                away,
                home_score=home_score,
                away_score=away_score,
            )
            event_ids.append(game.event_id)
    return event_ids


def add_picks(database: Database, week: int, slots: Iterable[PickSlot]) -> List[int]:
    with database.session_scope() as session:
        return [pick.id for pick in PickRepository(session).insert_many(week, list(slots))]
