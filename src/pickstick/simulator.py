from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .db import Game, Pick
from .draft_order import STICK_ROUNDS, DraftOrderEngine, PickSlot
from .errors import SimulationConflict, ValidationError
from .repositories import PickRepository, ScheduleProvider, WeekStateRepository

LOGGER = logging.getLogger(__name__)

BASE_WEIGHT = 0.1
POINTS_WEIGHT = 0.75
AFFINITY_WEIGHT = 0.25
TOP_OPTIONS = 3


@dataclass
class SimulationResult:
    week: int
    picks: List[PickSlot]
    expected_totals: Dict[int, float] = field(default_factory=dict)

    @property
    def projected_winner(self) -> Optional[int]:
        if not self.expected_totals:
            return None
        return max(self.expected_totals, key=lambda pid: (self.expected_totals[pid], -pid))


def build_affinity(history: Iterable[Pick]) -> pd.DataFrame:
    """Participant x team matrix of how often each participant received each team."""

    rows = [
        {"participant_id": pick.participant_id, "team_id": pick.team_id}
        for pick in history
        if pick.team_id is not None
    ]
    if not rows:
        return pd.DataFrame(dtype="int64")
    df = pd.DataFrame(rows)
    return df.groupby(["participant_id", "team_id"]).size().unstack(fill_value=0)


def build_expected_points(history: Iterable[Game]) -> Dict[int, float]:
    """Mean actual score per team across completed games."""

    rows: List[Dict[str, float]] = []
    for game in history:
        if not game.is_complete:
            continue
        rows.append({"team_id": game.home_team_id, "points": game.points_for(game.home_team_id)})
        rows.append({"team_id": game.away_team_id, "points": game.points_for(game.away_team_id)})
    if not rows:
        return {}
    means = pd.DataFrame(rows).groupby("team_id")["points"].mean()
    return {int(team_id): float(value) for team_id, value in means.items()}


def normalize(values: Sequence[float]) -> List[float]:
    """Linear min-max scaling to [0, 1]; a flat input scales to 0.5."""

    if not values:
        return []
    low, high = min(values), max(values)
    if high == low:
        return [0.5 for _ in values]
    span = high - low
    return [(value - low) / span for value in values]


def affinity_counts(affinity: pd.DataFrame, participant_id: int, team_ids: Sequence[int]) -> List[int]:
    if affinity.empty or participant_id not in affinity.index:
        return [0 for _ in team_ids]
    row = affinity.loc[participant_id]
    return [int(row.get(team_id, 0)) for team_id in team_ids]


def compute_weights(
    expected: Sequence[float],
    counts: Sequence[int],
    *,
    stick: bool,
) -> List[float]:
    points_scores = normalize(expected)
    if stick:
        points_scores = [1.0 - score for score in points_scores]
    max_count = max(counts) if counts else 0
    affinity_scores = [count / max_count if max_count > 0 else 0.0 for count in counts]
    return [
        BASE_WEIGHT + POINTS_WEIGHT * p + AFFINITY_WEIGHT * a
        for p, a in zip(points_scores, affinity_scores)
    ]


def weighted_choice(weights: Sequence[float], rng: random.Random) -> int:
    """Index drawn with probability weight / sum(weights)."""

    total = sum(weights)
    if not weights or total <= 0:
        raise ValueError("weighted_choice requires at least one positive weight")
    roll = rng.random() * total
    cumulative = 0.0
    for index, weight in enumerate(weights):
        cumulative += weight
        if roll < cumulative:
            return index
    return len(weights) - 1


def describe_choice(
    team_name: str,
    *,
    count: int,
    expected: float,
    rank: int,
    stick: bool,
) -> str:
    times = "once" if count == 1 else f"{count} times"
    history = "never picked before" if count == 0 else f"picked {times} before"
    verb = "Stuck them with" if stick else "Took"
    if rank <= TOP_OPTIONS:
        standing = f"#{rank} of the top {TOP_OPTIONS} options"
    else:
        standing = f"a long shot outside the top {TOP_OPTIONS}"
    return f"{verb} {team_name}: {history}, {expected:.1f} expected points, {standing}"


class SimulationEngine:
    """Fills a skipped week's draft from historical affinity and expected points."""

    def __init__(
        self,
        schedule: ScheduleProvider,
        picks: PickRepository,
        week_states: WeekStateRepository,
        order_engine: DraftOrderEngine,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.schedule = schedule
        self.picks = picks
        self.week_states = week_states
        self.order_engine = order_engine
        self.rng = rng or random.Random()

    def _candidate_teams(self, week: int) -> List[int]:
        team_ids: List[int] = []
        for game in self.schedule.games_for_week(week):
            team_ids.extend([game.home_team_id, game.away_team_id])
        if not team_ids:
            team_ids = [team.id for team in self.schedule.teams()]
        return sorted(set(team_ids))

    def draft(self, week: int, plan: List[PickSlot]) -> List[PickSlot]:
        """Assign a team to every slot of ``plan`` in order, without replacement."""

        affinity = build_affinity(self.picks.list_before(week))
        expected_points = build_expected_points(self.schedule.games_before(week))
        names = {team.id: team.name for team in self.schedule.teams()}
        available = self._candidate_teams(week)
        if len(available) < len(plan):
            raise ValidationError(
                f"Week {week} has {len(available)} teams available for {len(plan)} picks"
            )

        for slot in plan:
            stick = slot.round in STICK_ROUNDS
            expected = [expected_points.get(team_id, 0.0) for team_id in available]
            counts = affinity_counts(affinity, slot.selector_id, available)
            weights = compute_weights(expected, counts, stick=stick)

            index = weighted_choice(weights, self.rng)
            ranking = sorted(range(len(weights)), key=lambda i: weights[i], reverse=True)
            team_id = available.pop(index)

            slot.team_id = team_id
            slot.reasoning = describe_choice(
                names.get(team_id, f"Team {team_id}"),
                count=counts[index],
                expected=expected[index],
                rank=ranking.index(index) + 1,
                stick=stick,
            )
        return plan

    def simulate(self, week: int) -> SimulationResult:
        existing = self.picks.list_by_week(week)
        if any(pick.team_id is not None for pick in existing):
            raise SimulationConflict(week)

        plan = self.order_engine.plan_for_week(week)
        self.draft(week, plan)

        expected_points = build_expected_points(self.schedule.games_before(week))
        totals: Dict[int, float] = {}
        for slot in plan:
            totals[slot.participant_id] = totals.get(slot.participant_id, 0.0) + expected_points.get(
                slot.team_id, 0.0
            )

        self.picks.delete_by_week(week)
        self.picks.insert_many(week, plan)
        self.week_states.upsert_simulated(week, True)
        self.week_states.upsert_lock(week, True)
        LOGGER.info("Simulated week %s: %s picks for %s participants", week, len(plan), len(totals))
        return SimulationResult(week=week, picks=plan, expected_totals=totals)


__all__ = [
    "SimulationEngine",
    "SimulationResult",
    "build_affinity",
    "build_expected_points",
    "compute_weights",
    "describe_choice",
    "normalize",
    "weighted_choice",
]
