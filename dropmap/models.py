from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .geometry import Point


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_points(raw: Any) -> List[Point]:
    pts: List[Point] = []
    for item in raw or []:
        try:
            if isinstance(item, dict):
                pts.append((float(item["x"]), float(item["y"])))
            else:
                pts.append((float(item[0]), float(item[1])))
        except (KeyError, IndexError, TypeError, ValueError):
            continue
    return pts


def points_to_api(points: List[Point]) -> List[Dict[str, float]]:
    return [{"x": x, "y": y} for x, y in points]


@dataclass(frozen=True)
class Claim:
    territory_id: str
    user_id: str
    display_name: str = ""
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    is_team_leader: bool = False
    claimed_at: Optional[datetime] = None

    @property
    def is_virtual(self) -> bool:
        return self.user_id.startswith(config.VIRTUAL_PREFIX)

    @classmethod
    def from_api(cls, data: Dict[str, Any], territory_id: str) -> "Claim":
        return cls(
            territory_id=str(data.get("territoryId") or territory_id),
            user_id=str(data.get("userId", "")),
            display_name=str(data.get("displayName") or data.get("username") or ""),
            team_id=data.get("teamId") or None,
            team_name=data.get("teamName") or None,
            is_team_leader=bool(data.get("isTeamLeader", False)),
            claimed_at=_parse_time(data.get("claimedAt")),
        )


@dataclass
class Territory:
    id: str
    name: str
    points: List[Point]
    color: str = config.DEFAULT_TERRITORY_COLOR
    max_occupants: int = 1
    template_id: Optional[str] = None
    is_active: bool = True
    description: str = ""
    claims: List[Claim] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Territory":
        tid = str(data.get("id", ""))
        raw_max = data.get("maxOccupants", data.get("maxPlayers"))
        try:
            max_occupants = max(1, int(raw_max)) if raw_max is not None else 1
        except (TypeError, ValueError):
            max_occupants = 1
        claims = [Claim.from_api(c, tid) for c in data.get("claims") or [] if c and c.get("userId")]
        return cls(
            id=tid,
            name=str(data.get("name", "")),
            points=_parse_points(data.get("points")),
            color=str(data.get("color") or config.DEFAULT_TERRITORY_COLOR),
            max_occupants=max_occupants,
            template_id=data.get("templateId") or data.get("mapId"),
            is_active=bool(data.get("isActive", True)),
            description=str(data.get("description") or ""),
            claims=claims,
        )

    def unique_claims(self) -> List[Claim]:
        seen = set()
        out: List[Claim] = []
        for c in self.claims:
            if c.user_id in seen:
                continue
            seen.add(c.user_id)
            out.append(c)
        return out


@dataclass
class DropMapSettings:
    id: str
    template_id: str
    tournament_id: Optional[str] = None
    mode: str = "practice"
    allow_reclaim: bool = True
    is_locked: bool = False
    max_players_per_spot: int = 1
    max_contested_spots: int = 0
    custom_name: Optional[str] = None
    map_image_url: Optional[str] = None
    team_mode: Optional[str] = None

    @property
    def team_size(self) -> Optional[int]:
        if not self.team_mode:
            return None
        return config.TEAM_SIZES.get(self.team_mode)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DropMapSettings":
        tournament = data.get("tournament") or {}
        return cls(
            id=str(data.get("id", "")),
            template_id=str(data.get("templateId") or data.get("id", "")),
            tournament_id=data.get("tournamentId") or tournament.get("id"),
            mode=str(data.get("mode") or "practice"),
            allow_reclaim=bool(data.get("allowReclaim", True)),
            is_locked=bool(data.get("isLocked", False)),
            max_players_per_spot=int(data.get("maxPlayersPerSpot") or 1),
            max_contested_spots=int(data.get("maxContestedSpots") or 0),
            custom_name=data.get("customName") or data.get("name"),
            map_image_url=data.get("mapImageUrl"),
            team_mode=data.get("teamMode") or tournament.get("teamMode"),
        )


@dataclass(frozen=True)
class EligiblePlayer:
    user_id: str
    display_name: str = ""
    source_type: str = "manual"
    team_id: Optional[str] = None
    is_team_leader: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "EligiblePlayer":
        user = data.get("user") or {}
        return cls(
            user_id=str(data.get("userId", "")),
            display_name=str(data.get("displayName") or user.get("displayName") or ""),
            source_type=str(data.get("sourceType") or "manual"),
            team_id=data.get("teamId") or None,
            is_team_leader=bool(data.get("isTeamLeader", False)),
        )


@dataclass
class InviteCode:
    code: str
    settings_id: str
    display_name: str
    is_used: bool = False
    expires_at: Optional[datetime] = None
    territory_id: Optional[str] = None
    team_member_names: Tuple[str, ...] = ()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now > self.expires_at

    def is_redeemable(self, now: Optional[datetime] = None) -> bool:
        return not self.is_used and not self.is_expired(now)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "InviteCode":
        names = data.get("teamMemberNames") or ()
        if isinstance(names, str):
            try:
                names = json.loads(names)
            except ValueError:
                names = names.split(",")
        return cls(
            code=str(data.get("code", "")),
            settings_id=str(data.get("settingsId") or data.get("mapId") or ""),
            display_name=str(data.get("displayName") or ""),
            is_used=bool(data.get("isUsed", False)),
            expires_at=_parse_time(data.get("expiresAt")),
            territory_id=data.get("territoryId") or None,
            team_member_names=tuple(n.strip() for n in names if n and n.strip()),
        )


@dataclass
class Shape:
    id: str
    name: str
    points: List[Point]
    default_color: str = config.DEFAULT_TERRITORY_COLOR
    description: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Shape":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            points=_parse_points(data.get("points")),
            default_color=str(data.get("defaultColor") or config.DEFAULT_TERRITORY_COLOR),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class Caller:
    user_id: str
    display_name: str = ""
    is_admin: bool = False
