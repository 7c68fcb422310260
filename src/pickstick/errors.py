"""Error taxonomy shared by the pool's core components."""

from __future__ import annotations


class PoolError(RuntimeError):
    """Base class for every error the pool surfaces to its callers."""


class ValidationError(PoolError):
    """Raised for out-of-range weeks and malformed input."""


class OrderNotAvailable(PoolError):
    """Raised when the previous week is not complete, so no draft order exists yet."""

    def __init__(self, week: int, previous_week: int) -> None:
        super().__init__(
            f"Unable to determine pick order for week {week}: week {previous_week} is not complete"
        )
        self.week = week
        self.previous_week = previous_week


class DraftLockedError(PoolError):
    """Raised when a pick mutation is attempted on a locked week."""

    def __init__(self, week: int) -> None:
        super().__init__(f"Draft for week {week} is locked")
        self.week = week


class GameAlreadyStartedError(PoolError):
    """Raised when the chosen team's game has already kicked off."""

    def __init__(self, team_id: int, event_id: int) -> None:
        super().__init__(f"Game {event_id} for team {team_id} has already started")
        self.team_id = team_id
        self.event_id = event_id


class UpstreamFeedError(PoolError):
    """Raised by the live-score feed client on network or parse failures."""


class SimulationConflict(PoolError):
    """Raised when a simulation targets a week whose picks already hold teams."""

    def __init__(self, week: int) -> None:
        super().__init__(f"Cannot simulate week {week}: picks already exist for this week")
        self.week = week


def validate_week(week: object, season_weeks: int = 18) -> int:
    """Coerce ``week`` to an int inside ``1..season_weeks`` or raise ValidationError."""

    try:
        value = int(week)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid week: {week!r}") from None
    if isinstance(week, float) and not week.is_integer():
        raise ValidationError(f"Invalid week: {week!r}")
    if isinstance(week, bool) or value < 1 or value > season_weeks:
        raise ValidationError(f"Invalid week: {week!r} (expected 1-{season_weeks})")
    return value


__all__ = [
    "DraftLockedError",
    "GameAlreadyStartedError",
    "OrderNotAvailable",
    "PoolError",
    "SimulationConflict",
    "UpstreamFeedError",
    "ValidationError",
    "validate_week",
]
