"""Draft order: who picks when, and on whose behalf.

Week 1 is a uniform shuffle of every participant. Every later week ranks
participants ascending by the points they scored the week before (worst
first, ties broken by participant id) and requires that week to be complete.

The ranked order expands into a four-round snake with a "stick" twist:

    round 1: order            (self picks)
    round 2: reversed order   (self picks)
    round 3: order[i] picks for order[(i + 1) % n]
    round 4: same mapping applied to the reversed order
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .errors import OrderNotAvailable
from .repositories import ParticipantRepository, PickRepository, ScheduleProvider

LOGGER = logging.getLogger(__name__)

STICK_ROUNDS = (3, 4)


@dataclass
class PickSlot:
    round: int
    participant_id: int
    order_in_round: int
    assigned_by_id: Optional[int] = None
    team_id: Optional[int] = None
    reasoning: Optional[str] = None

    @property
    def selector_id(self) -> int:
        return self.assigned_by_id if self.assigned_by_id is not None else self.participant_id

    @property
    def is_stick(self) -> bool:
        return self.assigned_by_id is not None


def fisher_yates(items: Sequence[int], rng: Optional[random.Random] = None) -> List[int]:
    rng = rng or random.Random()
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def rank_by_points(totals: Dict[int, int], participant_ids: Sequence[int]) -> List[int]:
    """Ascending by points, ties by participant id; missing totals count as 0."""

    return sorted(participant_ids, key=lambda pid: (totals.get(pid, 0), pid))


def _stick_round(round_number: int, order: Sequence[int]) -> List[PickSlot]:
    n = len(order)
    return [
        PickSlot(
            round=round_number,
            participant_id=order[(i + 1) % n],
            order_in_round=i + 1,
            assigned_by_id=picker,
        )
        for i, picker in enumerate(order)
    ]


def expand_snake(order: Sequence[int]) -> List[PickSlot]:
    """Expand an ascending participant order into the full 4-round pick plan."""

    order = list(order)
    if not order:
        return []
    reverse = list(reversed(order))

    plan: List[PickSlot] = []
    plan.extend(PickSlot(round=1, participant_id=pid, order_in_round=i + 1) for i, pid in enumerate(order))
    plan.extend(PickSlot(round=2, participant_id=pid, order_in_round=i + 1) for i, pid in enumerate(reverse))
    plan.extend(_stick_round(3, order))
    plan.extend(_stick_round(4, reverse))
    return plan


class DraftOrderEngine:
    def __init__(
        self,
        schedule: ScheduleProvider,
        participants: ParticipantRepository,
        picks: PickRepository,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.schedule = schedule
        self.participants = participants
        self.picks = picks
        self.rng = rng or random.Random()

    def is_week_complete(self, week: int) -> bool:
        games = self.schedule.games_for_week(week)
        return bool(games) and all(game.is_complete for game in games)

    def points_for_week(self, week: int) -> Dict[int, int]:
        """Total points per participant from their non-null picks in ``week``."""

        games = self.schedule.games_for_week(week)
        totals: Dict[int, int] = defaultdict(int)
        for pick in self.picks.list_by_week(week):
            if pick.team_id is None:
                continue
            game = next((g for g in games if g.involves(pick.team_id)), None)
            totals[pick.participant_id] += game.points_for(pick.team_id) if game else 0
        return dict(totals)

    def compute_order(self, week: int) -> List[int]:
        participant_ids = [p.id for p in self.participants.list_all()]
        if week == 1:
            return fisher_yates(participant_ids, self.rng)

        previous = week - 1
        if not self.is_week_complete(previous):
            raise OrderNotAvailable(week, previous)
        return rank_by_points(self.points_for_week(previous), participant_ids)

    def plan_for_week(self, week: int) -> List[PickSlot]:
        return expand_snake(self.compute_order(week))

    def seed_week(self, week: int) -> List:
        """Create empty pick rows for ``week`` unless picks already exist."""

        existing = self.picks.list_by_week(week)
        if existing:
            LOGGER.debug("Week %s already has %s picks; not reseeding", week, len(existing))
            return existing
        plan = self.plan_for_week(week)
        rows = self.picks.insert_many(week, plan)
        LOGGER.info("Seeded %s empty picks for week %s", len(rows), week)
        return rows


__all__ = [
    "DraftOrderEngine",
    "PickSlot",
    "STICK_ROUNDS",
    "expand_snake",
    "fisher_yates",
    "rank_by_points",
]
