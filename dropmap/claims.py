"""Claim rules for one map.

Every transition is a plain function of the current ``ClaimStore`` snapshot
and returns a ``ClaimResult``; nothing here touches the network or mutates the
store. The session sends accepted results to the backend and refetches.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .models import Caller, InviteCode, Territory
from .store import ClaimStore

logger = logging.getLogger(__name__)


class TerritoryState(str, Enum):
    FREE = "free"
    PARTIAL = "partial"
    FULL = "full"


class ClaimKind(str, Enum):
    OK = "ok"
    NOOP = "noop"
    BUSY = "busy"
    MAP_LOCKED = "map_locked"
    NOT_ELIGIBLE = "not_eligible"
    RECLAIM_DISALLOWED = "reclaim_disallowed"
    TERRITORY_FULL = "territory_full"
    ALREADY_CLAIMED = "already_claimed"
    UNKNOWN_TERRITORY = "unknown_territory"
    INVALID_INVITE = "invalid_invite"
    NETWORK_FAILURE = "network_failure"
    REJECTED = "rejected"


SUCCESS_KINDS = frozenset({ClaimKind.OK, ClaimKind.NOOP})
BENIGN_KINDS = frozenset({ClaimKind.TERRITORY_FULL, ClaimKind.ALREADY_CLAIMED, ClaimKind.BUSY})


@dataclass(frozen=True)
class ClaimResult:
    kind: ClaimKind
    territory_id: Optional[str] = None
    user_id: Optional[str] = None
    released: Tuple[str, ...] = ()
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind in SUCCESS_KINDS

    @property
    def benign(self) -> bool:
        return self.kind in BENIGN_KINDS

    @property
    def changes_state(self) -> bool:
        return self.kind == ClaimKind.OK


def territory_state(territory: Territory, occupancy: int) -> TerritoryState:
    if occupancy <= 0:
        return TerritoryState.FREE
    if occupancy >= territory.max_occupants:
        return TerritoryState.FULL
    return TerritoryState.PARTIAL


_FULL_MARKERS = ("full", "maximum", "максимум")
_TAKEN_MARKERS = ("already claimed", "уже заклеймлена", "уже заклеймили")
_LOCKED_MARKERS = ("locked", "заблокирована")
_ELIGIBLE_MARKERS = ("not eligible", "не в списке", "forbidden")
_RECLAIM_MARKERS = ("reclaim",)
_INVITE_MARKERS = ("invite", "код", "инвайт")


def classify_rejection(message: str, status: int = 400) -> ClaimKind:
    """Map a backend ``{error}`` message onto the claim taxonomy."""
    text = (message or "").casefold()
    if any(m in text for m in _TAKEN_MARKERS):
        return ClaimKind.ALREADY_CLAIMED
    if any(m in text for m in _FULL_MARKERS):
        return ClaimKind.TERRITORY_FULL
    if any(m in text for m in _LOCKED_MARKERS):
        return ClaimKind.MAP_LOCKED
    if any(m in text for m in _RECLAIM_MARKERS):
        return ClaimKind.RECLAIM_DISALLOWED
    if status == 403 or any(m in text for m in _ELIGIBLE_MARKERS):
        return ClaimKind.NOT_ELIGIBLE
    if any(m in text for m in _INVITE_MARKERS):
        return ClaimKind.INVALID_INVITE
    if status == 404:
        return ClaimKind.UNKNOWN_TERRITORY
    return ClaimKind.REJECTED


class ClaimStateMachine:
    def __init__(self, store: ClaimStore):
        self.store = store

    def _locked(self) -> bool:
        return bool(self.store.settings and self.store.settings.is_locked)

    def _allow_reclaim(self) -> bool:
        return bool(self.store.settings is None or self.store.settings.allow_reclaim)

    def _target(self, territory_id: str, user_id: str) -> Tuple[Optional[Territory], Optional[ClaimResult]]:
        territory = self.store.territory(territory_id)
        if territory is None:
            return None, ClaimResult(ClaimKind.UNKNOWN_TERRITORY, territory_id, user_id)
        if not territory.is_active:
            return None, ClaimResult(ClaimKind.REJECTED, territory_id, user_id, message="territory is inactive")
        return territory, None

    def state_of(self, territory_id: str) -> Optional[TerritoryState]:
        territory = self.store.territory(territory_id)
        if territory is None:
            return None
        return territory_state(territory, self.store.occupancy(territory_id))

    def release_all(self, user_id: str, keep: Optional[str] = None) -> Tuple[str, ...]:
        return tuple(t.id for t in self.store.claims_of(user_id) if t.id != keep)

    def request_claim(self, territory_id: str, caller: Caller) -> ClaimResult:
        uid = caller.user_id
        if self._locked() and not caller.is_admin:
            return ClaimResult(ClaimKind.MAP_LOCKED, territory_id, uid)
        if not caller.is_admin and not self.store.is_eligible(uid):
            return ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, uid)
        territory, failure = self._target(territory_id, uid)
        if failure is not None:
            return failure

        if self.store.holds(uid, territory_id):
            return ClaimResult(ClaimKind.NOOP, territory_id, uid)

        others = self.release_all(uid, keep=territory_id)
        if others and not self._allow_reclaim():
            return ClaimResult(ClaimKind.RECLAIM_DISALLOWED, territory_id, uid)

        if self.store.occupancy(territory_id) >= territory.max_occupants:
            return ClaimResult(ClaimKind.TERRITORY_FULL, territory_id, uid)

        logger.debug("[claim] %s -> %s (releases %s)", uid, territory_id, others)
        return ClaimResult(ClaimKind.OK, territory_id, uid, released=others)

    def admin_assign(self, territory_id: str, user_id: str, caller: Caller, force: bool = False) -> ClaimResult:
        if not caller.is_admin:
            return ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, user_id)
        territory, failure = self._target(territory_id, user_id)
        if failure is not None:
            return failure
        if self.store.holds(user_id, territory_id):
            return ClaimResult(ClaimKind.NOOP, territory_id, user_id)
        if not force and self.store.occupancy(territory_id) >= territory.max_occupants:
            return ClaimResult(ClaimKind.TERRITORY_FULL, territory_id, user_id)
        return ClaimResult(ClaimKind.OK, territory_id, user_id, released=self.release_all(user_id, keep=territory_id))

    def admin_remove(self, territory_id: str, user_id: str, caller: Caller) -> ClaimResult:
        if not caller.is_admin:
            return ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, user_id)
        if self.store.territory(territory_id) is None:
            return ClaimResult(ClaimKind.UNKNOWN_TERRITORY, territory_id, user_id)
        if not self.store.holds(user_id, territory_id):
            return ClaimResult(ClaimKind.NOOP, territory_id, user_id)
        return ClaimResult(ClaimKind.OK, territory_id, user_id, released=(territory_id,))

    def request_release(self, territory_id: str, caller: Caller) -> ClaimResult:
        uid = caller.user_id
        if self._locked() and not caller.is_admin:
            return ClaimResult(ClaimKind.MAP_LOCKED, territory_id, uid)
        if not self.store.holds(uid, territory_id):
            return ClaimResult(ClaimKind.NOOP, territory_id, uid)
        return ClaimResult(ClaimKind.OK, territory_id, uid, released=(territory_id,))

    def redeem_invite(self, invite: InviteCode, territory_id: str, now: Optional[datetime] = None) -> ClaimResult:
        if not invite.is_redeemable(now):
            reason = "invite already used" if invite.is_used else "invite expired"
            return ClaimResult(ClaimKind.INVALID_INVITE, territory_id, message=reason)
        if self.store.map_id and invite.settings_id and invite.settings_id != self.store.map_id:
            return ClaimResult(ClaimKind.INVALID_INVITE, territory_id, message="invite belongs to another map")
        if self._locked():
            return ClaimResult(ClaimKind.MAP_LOCKED, territory_id)
        territory, failure = self._target(territory_id, "")
        if failure is not None:
            return failure
        if self.store.occupancy(territory_id) >= territory.max_occupants:
            return ClaimResult(ClaimKind.TERRITORY_FULL, territory_id)
        return ClaimResult(ClaimKind.OK, territory_id)
