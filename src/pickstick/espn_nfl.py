from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from .errors import UpstreamFeedError

LOGGER = logging.getLogger(__name__)

ESPN_NFL_SCOREBOARD_URL = "https://site.api.espn.com/apis/site/v2/sports/football/nfl/scoreboard"
DEFAULT_TIMEOUT_SECONDS = 15.0

PERIOD_LABELS = {
    1: "1st Quarter",
    2: "2nd Quarter",
    3: "3rd Quarter",
    4: "4th Quarter",
    5: "Overtime",
}


@dataclass(frozen=True)
class FeedEvent:
    external_event_key: str
    home_team_name: str
    away_team_name: str
    home_score: int
    away_score: int
    period_label: Optional[str]
    clock: Optional[str]
    is_live: bool
    is_complete: bool


def _parse_score(value: object) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(str(value)))
    except ValueError:
        return 0


def period_label(period: int, is_live: bool, is_complete: bool) -> Optional[str]:
    if is_complete:
        return "Final"
    if not is_live:
        return None
    return PERIOD_LABELS.get(period, f"Period {period}")


def parse_scoreboard_events(scoreboard_data: dict) -> List[FeedEvent]:
    """Flatten an ESPN scoreboard payload into one FeedEvent per game."""

    if not isinstance(scoreboard_data, dict):
        raise UpstreamFeedError(f"Unexpected scoreboard payload type: {type(scoreboard_data).__name__}")

    results: List[FeedEvent] = []
    for event in scoreboard_data.get("events") or []:
        competitions = event.get("competitions") or []
        if not competitions:
            continue
        comp = competitions[0]
        competitors = comp.get("competitors") or []
        home = next((c for c in competitors if c.get("homeAway") == "home"), None)
        away = next((c for c in competitors if c.get("homeAway") == "away"), None)
        if home is None or away is None:
            continue

        status = comp.get("status") or event.get("status") or {}
        stype = status.get("type") or {}
        is_complete = stype.get("completed") is True
        is_live = not is_complete and stype.get("state") == "in"
        period = int(status.get("period") or 0)
        clock = str(status.get("displayClock")) if is_live and status.get("displayClock") else None

        results.append(
            FeedEvent(
                external_event_key=str(event.get("id") or comp.get("id") or ""),
                home_team_name=str((home.get("team") or {}).get("displayName") or ""),
                away_team_name=str((away.get("team") or {}).get("displayName") or ""),
                home_score=_parse_score(home.get("score")),
                away_score=_parse_score(away.get("score")),
                period_label=period_label(period, is_live, is_complete),
                clock=clock,
                is_live=is_live,
                is_complete=is_complete,
            )
        )
    return results


class EspnScoreboardFeed:
    """Live-score feed backed by ESPN's public NFL scoreboard endpoint."""

    def __init__(
        self,
        url: str = ESPN_NFL_SCOREBOARD_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout))

    def fetch_scoreboard(self, week: int) -> dict:
        LOGGER.debug("Fetching ESPN scoreboard for week %s", week)
        try:
            response = self._client.get(self.url, params={"week": week})
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamFeedError(
                f"ESPN scoreboard request failed for week {week} with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamFeedError(f"ESPN scoreboard request failed for week {week}: {exc}") from exc
        except ValueError as exc:
            raise UpstreamFeedError(f"ESPN scoreboard returned invalid JSON for week {week}") from exc

    def fetch(self, week: int) -> List[FeedEvent]:
        payload = self.fetch_scoreboard(week)
        try:
            events = parse_scoreboard_events(payload)
        except (AttributeError, TypeError, ValueError) as exc:
            raise UpstreamFeedError(f"Malformed ESPN scoreboard payload for week {week}: {exc}") from exc
        LOGGER.info("ESPN scoreboard returned %s games for week %s", len(events), week)
        return events

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "EspnScoreboardFeed":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["EspnScoreboardFeed", "FeedEvent", "parse_scoreboard_events", "period_label"]
