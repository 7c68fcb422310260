from datetime import timedelta
from typing import List

import pytest

from conftest import NOW, add_games, add_participants
from pickstick.errors import DraftLockedError, GameAlreadyStartedError, ValidationError
from pickstick.espn_nfl import FeedEvent
from pickstick.pool import PoolService, create_pool
from pickstick.repositories import PickRepository
from pickstick.score_sync import ScoreSyncService

KICKOFF = NOW + timedelta(days=1)


class StaticFeed:
    def __init__(self, events: List[FeedEvent]) -> None:
        self.events = events

    def fetch(self, week: int) -> List[FeedEvent]:
        return list(self.events)


@pytest.fixture()
def seeded(pool, database):
    ids = add_participants(database, ["ann", "bob"])
    add_games(database, 1, KICKOFF, [(1, 2), (3, 4), (5, 6), (7, 8)])
    state = pool.seed_draft(1)
    return ids, state


def first_pick_id(state) -> int:
    return state["picks"][0]["id"]


def test_seed_draft_creates_empty_slots_once(pool, seeded):
    _, state = seeded
    assert len(state["picks"]) == 8
    assert all(row["team_id"] is None for row in state["picks"])
    assert len(state["available_teams"]) == 8

    again = pool.seed_draft(1)
    assert [row["id"] for row in again["picks"]] == [row["id"] for row in state["picks"]]


def test_assign_team(pool, seeded):
    _, state = seeded
    result = pool.assign_team(1, first_pick_id(state), 1)

    assert result["picks"][0]["team_id"] == 1
    assert 1 not in {team["team_id"] for team in result["available_teams"]}
    assert len(result["available_teams"]) == 7


def test_assign_rejects_duplicate_team(pool, seeded):
    _, state = seeded
    pool.assign_team(1, state["picks"][0]["id"], 1)
    with pytest.raises(ValidationError, match="already picked"):
        pool.assign_team(1, state["picks"][1]["id"], 1)


def test_reassigning_same_pick_is_allowed(pool, seeded):
    _, state = seeded
    pool.assign_team(1, first_pick_id(state), 1)
    result = pool.assign_team(1, first_pick_id(state), 1)
    assert result["picks"][0]["team_id"] == 1


def test_assign_rejects_team_without_game(pool, seeded):
    _, state = seeded
    with pytest.raises(ValidationError, match="does not play"):
        pool.assign_team(1, first_pick_id(state), 20)


def test_assign_rejects_unknown_team_and_pick(pool, seeded):
    _, state = seeded
    with pytest.raises(ValidationError, match="Unknown team"):
        pool.assign_team(1, first_pick_id(state), 99)
    with pytest.raises(ValidationError, match="does not belong"):
        pool.assign_team(1, 12345, 1)
    with pytest.raises(ValidationError, match="does not belong"):
        pool.assign_team(2, first_pick_id(state), 1)


@pytest.mark.parametrize("week", [0, 19, "x", None, True, 1.5])
def test_invalid_week(pool, week):
    with pytest.raises(ValidationError):
        pool.draft_state(week)


def test_assign_rejects_started_game(pool, seeded, database):
    _, state = seeded
    add_games(database, 1, NOW - timedelta(hours=1), [(9, 10)], first_event_id=900)

    with pytest.raises(GameAlreadyStartedError) as excinfo:
        pool.assign_team(1, first_pick_id(state), 9)
    assert excinfo.value.event_id == 900
    assert pool.is_locked(1) is False


def test_assign_rejected_once_drafted_game_starts(pool, seeded, clock):
    _, state = seeded
    pool.assign_team(1, state["picks"][0]["id"], 1)

    clock.now = KICKOFF + timedelta(minutes=5)
    with pytest.raises(DraftLockedError):
        pool.assign_team(1, state["picks"][1]["id"], 3)
    # lock is persisted even though the assignment was rejected
    assert pool.is_locked(1) is True

    pool.unlock(1)
    assert pool.is_locked(1) is False
    assert pool.lock_status(1) is True


def test_reset_week(pool, seeded, clock):
    _, state = seeded
    pool.assign_team(1, first_pick_id(state), 1)
    clock.now = KICKOFF + timedelta(minutes=5)
    assert pool.lock_status(1) is True

    assert pool.reset_week(1) == 8
    after = pool.draft_state(1)
    assert after["picks"] == []
    assert after["is_draft_locked"] is False
    assert after["is_simulated"] is False


def test_punishment(pool):
    assert pool.get_punishment(3) is None
    pool.set_punishment(3, "  Wear the loser's jersey  ")
    assert pool.get_punishment(3) == "Wear the loser's jersey"
    pool.set_punishment(3, "")
    assert pool.get_punishment(3) is None


def test_participants_and_current_week(pool, database):
    pool.add_participant("ann", "Ann", "Lee")
    pool.add_participant("bob")
    rows = pool.list_participants()
    assert [row["username"] for row in rows] == ["ann", "bob"]
    assert rows[0]["name"] == "Ann Lee"
    assert rows[1]["name"] == "bob"

    add_games(database, 1, NOW - timedelta(days=2), [(1, 2)])
    assert pool.current_week() == 1


def test_sync_leaderboard_and_scoreboard(settings, database, catalog, clock):
    feed = StaticFeed(
        [
            FeedEvent("401", "Buffalo Bills", "Miami Dolphins", 24, 17, "Final", None, False, True),
            FeedEvent("402", "New England Patriots", "New York Jets", 10, 3, "3rd Quarter", "2:00", True, False),
        ]
    )
    service = ScoreSyncService(database, feed, catalog, clock=clock)
    pool = PoolService(settings, database, catalog, sync_service=service, clock=clock)

    ann, bob = add_participants(database, ["ann", "bob"])
    add_games(database, 1, NOW - timedelta(hours=3), [(1, 2), (3, 4)])
    state = pool.seed_draft(1)
    by_participant = {}
    for row in state["picks"]:
        if row["round"] == 1:
            by_participant[row["participant_id"]] = row["id"]

    # rows are filled directly: kickoff has passed, so assignments are closed
    with database.session_scope() as session:
        picks = PickRepository(session)
        picks.update_team(by_participant[ann], 1)
        picks.update_team(by_participant[bob], 4)

    report = pool.trigger_sync(1)
    assert report.ok and report.matched == 2

    board = pool.leaderboard(1)
    assert [row["participant_id"] for row in board] == [ann, bob]
    assert board[0]["current_points"] == 24
    assert board[0]["completed_games"] == 1
    assert board[1]["current_points"] == 3

    games = pool.scoreboard(1)
    assert games[0]["home_team"] == "Buffalo Bills"
    assert games[0]["is_complete"] is True
    assert games[1]["period"] == "3rd Quarter"
    assert games[1]["is_live"] is True


def test_close_releases_feed_client(settings, catalog):
    pool = create_pool(settings, catalog)
    client = pool.feed._client
    assert pool.scheduler is not None and not pool.scheduler.running

    pool.close()

    assert client.is_closed
    assert not pool.scheduler.running
