from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "teams.yaml"


@dataclass(frozen=True)
class TeamInfo:
    team_id: int
    name: str
    short_name: str


@dataclass
class TeamCatalog:
    """NFL reference teams plus the feed team-name → team-id mapping."""

    teams: List[TeamInfo]
    aliases: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "TeamCatalog":
        path = path or DEFAULT_CATALOG_PATH
        if not path.exists():
            raise FileNotFoundError(f"Team catalog not found at {path}")

        raw = yaml.safe_load(path.read_text()) or {}
        teams = [
            TeamInfo(
                team_id=int(entry["id"]),
                name=str(entry["name"]),
                short_name=str(entry.get("short_name", "")).upper(),
            )
            for entry in raw.get("teams") or []
        ]
        aliases = {str(name): int(team_id) for name, team_id in (raw.get("aliases") or {}).items()}
        return cls(teams=teams, aliases=aliases)

    def __post_init__(self) -> None:
        self._mapping = self.name_map()

    def name_map(self) -> Dict[str, int]:
        mapping: Dict[str, int] = {}
        for team in self.teams:
            mapping[_normalize(team.name)] = team.team_id
            if team.short_name:
                mapping[_normalize(team.short_name)] = team.team_id
        for name, team_id in self.aliases.items():
            mapping[_normalize(name)] = team_id
        return mapping

    def resolve(self, name: str) -> Optional[int]:
        return self._mapping.get(_normalize(name))


def _normalize(name: str) -> str:
    return " ".join(name.split()).lower()


__all__ = ["DEFAULT_CATALOG_PATH", "TeamCatalog", "TeamInfo"]
