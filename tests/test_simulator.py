import random
from datetime import timedelta

import pytest

from conftest import NOW, add_games, add_participants, add_picks
from pickstick.db import Database, Game, Pick
from pickstick.draft_order import DraftOrderEngine, PickSlot
from pickstick.errors import OrderNotAvailable, SimulationConflict
from pickstick.repositories import ParticipantRepository, PickRepository, ScheduleProvider, WeekStateRepository
from pickstick.pool import PoolService
from pickstick.simulator import (
    SimulationEngine,
    build_affinity,
    build_expected_points,
    compute_weights,
    describe_choice,
    normalize,
    weighted_choice,
)

WEEK_ONE_MATCHUPS = [(1, 2), (3, 4), (5, 6), (7, 8), (9, 10), (11, 12), (13, 14), (15, 16)]


def test_normalize():
    assert normalize([]) == []
    assert normalize([3.0, 3.0]) == [0.5, 0.5]
    assert normalize([0.0, 5.0, 10.0]) == [0.0, 0.5, 1.0]


def test_compute_weights_self_pick_favours_points_and_history():
    weights = compute_weights([0.0, 10.0], [0, 2], stick=False)
    assert weights == pytest.approx([0.1, 1.1])


def test_compute_weights_stick_pick_inverts_points():
    weights = compute_weights([0.0, 10.0], [0, 2], stick=True)
    assert weights == pytest.approx([0.85, 0.35])


def test_compute_weights_flat_pool():
    weights = compute_weights([7.0, 7.0, 7.0], [0, 0, 0], stick=False)
    assert weights == pytest.approx([0.475, 0.475, 0.475])


def test_weighted_choice_follows_weights():
    rng = random.Random(2024)
    draws = [weighted_choice([1.0, 3.0], rng) for _ in range(20000)]
    assert sum(draws) / len(draws) == pytest.approx(0.75, abs=0.02)


def test_weighted_choice_rejects_empty_or_zero_weights():
    with pytest.raises(ValueError):
        weighted_choice([], random.Random(1))
    with pytest.raises(ValueError):
        weighted_choice([0.0, 0.0], random.Random(1))


def test_describe_choice():
    text = describe_choice("Buffalo Bills", count=2, expected=24.333, rank=1, stick=False)
    assert text == "Took Buffalo Bills: picked 2 times before, 24.3 expected points, #1 of the top 3 options"

    stuck = describe_choice("New York Jets", count=0, expected=9.0, rank=8, stick=True)
    assert stuck.startswith("Stuck them with New York Jets: never picked before")
    assert "long shot" in stuck


def test_build_affinity_counts_received_teams():
    history = [
        Pick(week=1, round=1, participant_id=1, team_id=5, order_in_round=1),
        Pick(week=2, round=1, participant_id=1, team_id=5, order_in_round=1),
        Pick(week=2, round=2, participant_id=2, team_id=6, order_in_round=1),
        Pick(week=3, round=1, participant_id=2, team_id=None, order_in_round=1),
    ]
    affinity = build_affinity(history)
    assert affinity.loc[1, 5] == 2
    assert affinity.loc[2, 6] == 1
    assert affinity.loc[1, 6] == 0
    assert build_affinity([]).empty


def test_build_expected_points_uses_completed_games_only():
    games = [
        Game(event_id=1, week=1, kickoff=NOW, home_team_id=1, away_team_id=2, home_score=30, away_score=10),
        Game(event_id=2, week=2, kickoff=NOW, home_team_id=2, away_team_id=1, home_score=20, away_score=14),
        Game(event_id=3, week=3, kickoff=NOW, home_team_id=1, away_team_id=3),
    ]
    assert build_expected_points(games) == pytest.approx({1: 22.0, 2: 15.0})


def test_simulate_fills_every_slot_without_duplicates(pool, database):
    add_participants(database, ["ann", "bob", "cat", "dan"])
    add_games(database, 1, NOW + timedelta(days=1), WEEK_ONE_MATCHUPS)

    result = pool.simulate(1)

    assert len(result.picks) == 16
    team_ids = [slot.team_id for slot in result.picks]
    assert len(set(team_ids)) == 16
    assert set(team_ids) == set(range(1, 17))
    assert all(slot.reasoning for slot in result.picks)

    state = pool.draft_state(1)
    assert state["is_draft_locked"] is True
    assert state["is_simulated"] is True
    assert all(row["team_id"] is not None for row in state["picks"])


def test_simulate_twice_conflicts(pool, database):
    add_participants(database, ["ann", "bob"])
    add_games(database, 1, NOW + timedelta(days=1), WEEK_ONE_MATCHUPS)
    pool.simulate(1)
    with pytest.raises(SimulationConflict, match="picks already exist"):
        pool.simulate(1)


def test_simulate_replaces_empty_seeded_picks(pool, database):
    add_participants(database, ["ann", "bob"])
    add_games(database, 1, NOW + timedelta(days=1), WEEK_ONE_MATCHUPS)
    pool.seed_draft(1)

    result = pool.simulate(1)
    assert len(result.picks) == 8
    assert len(pool.draft_state(1)["picks"]) == 8


def test_simulate_without_schedule_uses_every_team(pool, database):
    add_participants(database, ["ann"])
    result = pool.simulate(1)
    assert len(result.picks) == 4
    assert all(1 <= slot.team_id <= 32 for slot in result.picks)


def test_simulation_is_reproducible_with_a_seed(settings, catalog):
    def run() -> list:
        db = Database("sqlite://")
        db.init_db()
        with db.session_scope() as session:
            ScheduleProvider(session).upsert_teams(catalog)
        add_participants(db, ["ann", "bob", "cat"])
        add_games(db, 1, NOW + timedelta(days=1), WEEK_ONE_MATCHUPS)
        service = PoolService(settings, db, catalog, rng=random.Random(11), clock=lambda: NOW)
        picks = [(slot.participant_id, slot.team_id) for slot in service.simulate(1).picks]
        db.dispose()
        return picks

    assert run() == run()


def history_engine(session, rng: random.Random) -> SimulationEngine:
    schedule = ScheduleProvider(session)
    picks = PickRepository(session)
    order = DraftOrderEngine(schedule, ParticipantRepository(session), picks, rng=rng)
    return SimulationEngine(schedule, picks, WeekStateRepository(session), order, rng=rng)


def setup_history(database, week_one_finals, week_two_matchups):
    ann, bob = add_participants(database, ["ann", "bob"])
    add_games(database, 1, NOW - timedelta(days=7), WEEK_ONE_MATCHUPS, finals=week_one_finals)
    add_games(database, 2, NOW + timedelta(days=1), week_two_matchups)
    add_picks(
        database,
        1,
        [
            PickSlot(round=1, participant_id=ann, order_in_round=1, team_id=1),
            PickSlot(round=1, participant_id=bob, order_in_round=2, team_id=3),
        ],
    )
    return ann, bob


def test_stick_rounds_favour_low_scoring_teams(database):
    # home teams scored 35 in week 1, away teams 3
    high = {home for home, _ in WEEK_ONE_MATCHUPS}
    setup_history(database, [(35, 3)] * 8, WEEK_ONE_MATCHUPS)

    self_high = stick_low = self_total = stick_total = 0
    with database.session_scope() as session:
        engine = history_engine(session, random.Random(5))
        for _ in range(300):
            plan = engine.draft(2, engine.order_engine.plan_for_week(2))
            for slot in plan:
                if slot.is_stick:
                    stick_total += 1
                    stick_low += slot.team_id not in high
                else:
                    self_total += 1
                    self_high += slot.team_id in high

    assert self_high / self_total > 0.75
    assert stick_low / stick_total > 0.75


def test_past_picks_pull_toward_familiar_teams(database):
    # flat week 1 scores leave affinity as the only signal
    ann, bob = setup_history(database, [(21, 21)] * 8, [(1, 2), (3, 4), (5, 6), (7, 8)])

    first_pick = {ann: [], bob: []}
    with database.session_scope() as session:
        engine = history_engine(session, random.Random(9))
        for _ in range(2000):
            plan = engine.draft(2, engine.order_engine.plan_for_week(2))
            for slot in plan:
                if slot.round == 1:
                    first_pick[slot.participant_id].append(slot.team_id)

    ann_team_one = first_pick[ann].count(1) / len(first_pick[ann])
    bob_team_one = first_pick[bob].count(1) / len(first_pick[bob])
    assert ann_team_one > bob_team_one + 0.03


def test_simulate_later_week_uses_history(pool, database):
    ann, bob = setup_history(database, [(21, 21)] * 8, [(1, 2), (3, 4), (5, 6), (7, 8)])

    result = pool.simulate(2)

    assert len(result.picks) == 8
    assert sorted(slot.team_id for slot in result.picks) == list(range(1, 9))
    assert result.expected_totals == pytest.approx({ann: 84.0, bob: 84.0})
    assert result.projected_winner == ann
    # equal totals in week 1 order the draft by participant id
    assert [slot.participant_id for slot in result.picks if slot.round == 1] == [ann, bob]


def test_simulate_requires_previous_week_complete(pool, database):
    add_participants(database, ["ann", "bob"])
    add_games(database, 1, NOW - timedelta(days=7), WEEK_ONE_MATCHUPS)
    add_games(database, 2, NOW + timedelta(days=1), WEEK_ONE_MATCHUPS)

    with pytest.raises(OrderNotAvailable) as excinfo:
        pool.simulate(2)
    assert excinfo.value.previous_week == 1
    assert pool.draft_state(2)["picks"] == []
    assert pool.draft_state(2)["is_simulated"] is False
