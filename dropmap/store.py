from __future__ import annotations

import logging
from collections import defaultdict
from types import MappingProxyType
from typing import DefaultDict, Dict, Iterable, List, Mapping, Optional, Tuple

from .geometry import Point, is_drawable, point_in_polygon
from .models import DropMapSettings, EligiblePlayer, Territory

logger = logging.getLogger(__name__)


class ClaimStore:
    """Projection of one map's territories and occupants.

    Rebuilt wholesale from every successful fetch; never patched in place.
    Consumers only get read-only views.
    """

    def __init__(self) -> None:
        self.map_id: Optional[str] = None
        self.settings: Optional[DropMapSettings] = None
        self.revision = 0
        self._territories: Tuple[Territory, ...] = ()
        self._by_id: Dict[str, Territory] = {}
        self._claims_by_user: Dict[str, Tuple[Territory, ...]] = {}
        self._occupancy: Dict[str, int] = {}
        self._eligible: Optional[Dict[str, EligiblePlayer]] = None

    def rebuild(
        self,
        map_id: str,
        settings: Optional[DropMapSettings],
        territories: Iterable[Territory],
        eligible: Optional[Iterable[EligiblePlayer]] = None,
    ) -> None:
        terrs = tuple(territories)
        by_id: Dict[str, Territory] = {}
        by_user: DefaultDict[str, List[Territory]] = defaultdict(list)
        occupancy: Dict[str, int] = {}
        for t in terrs:
            if t.id in by_id:
                logger.warning("[store] duplicate territory id %s ignored", t.id)
                continue
            by_id[t.id] = t
            claims = t.unique_claims()
            occupancy[t.id] = len(claims)
            for c in claims:
                by_user[c.user_id].append(t)

        self.map_id = map_id
        self.settings = settings
        self._territories = tuple(by_id.values())
        self._by_id = by_id
        self._claims_by_user = {uid: tuple(ts) for uid, ts in by_user.items()}
        self._occupancy = occupancy
        if eligible is None:
            self._eligible = None
        else:
            self._eligible = {p.user_id: p for p in eligible if p.user_id}
        self.revision += 1
        logger.debug(
            "[store] map=%s rev=%d territories=%d claimants=%d",
            map_id, self.revision, len(self._territories), len(self._claims_by_user),
        )

    def clear(self) -> None:
        self.rebuild("", None, ())
        self.map_id = None

    @property
    def territories(self) -> Tuple[Territory, ...]:
        return self._territories

    @property
    def claims_by_user(self) -> Mapping[str, Tuple[Territory, ...]]:
        return MappingProxyType(self._claims_by_user)

    @property
    def occupancy_by_territory(self) -> Mapping[str, int]:
        return MappingProxyType(self._occupancy)

    @property
    def eligible(self) -> Mapping[str, EligiblePlayer]:
        return MappingProxyType(self._eligible or {})

    @property
    def eligibility_known(self) -> bool:
        return self._eligible is not None

    def territory(self, territory_id: str) -> Optional[Territory]:
        return self._by_id.get(territory_id)

    def occupancy(self, territory_id: str) -> int:
        return self._occupancy.get(territory_id, 0)

    def claims_of(self, user_id: str) -> Tuple[Territory, ...]:
        return self._claims_by_user.get(user_id, ())

    def holds(self, user_id: str, territory_id: str) -> bool:
        return any(t.id == territory_id for t in self.claims_of(user_id))

    def is_eligible(self, user_id: str) -> bool:
        # unknown list: the backend has the final word
        if self._eligible is None:
            return True
        return user_id in self._eligible

    def territory_at(self, point: Point) -> Optional[Territory]:
        for t in self._territories:
            if not is_drawable(t.points):
                continue
            if point_in_polygon(point, t.points):
                return t
        return None
