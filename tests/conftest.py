from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from dropmap.errors import BackendRejection, NetworkFailure
from dropmap.models import (
    Caller,
    Claim,
    DropMapSettings,
    EligiblePlayer,
    InviteCode,
    Shape,
    Territory,
)
from dropmap.session import MapSession
from dropmap.store import ClaimStore
from dropmap.viewport import Viewport

TRIANGLE = [(0.0, 0.0), (100.0, 0.0), (50.0, 100.0)]
SQUARE_X = [(200.0, 200.0), (300.0, 200.0), (300.0, 300.0), (200.0, 300.0)]
SQUARE_Y = [(500.0, 500.0), (600.0, 500.0), (600.0, 600.0), (500.0, 600.0)]


def make_territory(tid: str, points, max_occupants: int = 1, claims=(), **kw) -> Territory:
    return Territory(
        id=tid,
        name=kw.pop("name", tid.upper()),
        points=list(points),
        max_occupants=max_occupants,
        template_id=kw.pop("template_id", "tpl-1"),
        claims=[Claim(tid, uid, name, **extra) for uid, name, extra in _claims(claims)],
        **kw,
    )


def _claims(claims):
    for c in claims:
        if isinstance(c, str):
            yield c, c.title(), {}
        else:
            uid, name, *rest = c
            yield uid, name, (rest[0] if rest else {})


def make_settings(**kw) -> DropMapSettings:
    kw.setdefault("id", "map-1")
    kw.setdefault("template_id", "tpl-1")
    return DropMapSettings(**kw)


class FakeBackend:
    """In-memory stand-in for ``BackendClient``.

    Applies the claim rules itself, the way the real server does, so the
    client-side checks can be bypassed and the backend verdict tested.
    """

    def __init__(self, settings: DropMapSettings, territories: List[Territory], players=(), user: str = "alice", admin: bool = False):
        self.settings_obj = settings
        self.data: Dict[str, Territory] = {t.id: t for t in territories}
        self.player_list: List[EligiblePlayer] = [EligiblePlayer(p) for p in players]
        self.user = user
        self.admin = admin
        self.token: Optional[str] = "token"
        self.calls: List[tuple] = []
        self.fail_next: Optional[Exception] = None
        self.hide_players = False
        self.invite_codes: Dict[str, InviteCode] = {}
        self.shape_store: Dict[str, Shape] = {}
        self._ids = itertools.count(1)

    # plumbing

    @property
    def has_credential(self) -> bool:
        return bool(self.token)

    def _call(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    def mutations(self) -> List[tuple]:
        reads = {"settings", "territories", "players", "public_map", "public_territories", "invite", "shapes"}
        return [c for c in self.calls if c[0] not in reads]

    def _territory(self, tid: str) -> Territory:
        t = self.data.get(tid)
        if t is None:
            raise BackendRejection(404, "Territory not found")
        return t

    def _drop_user(self, uid: str, keep: Optional[str] = None) -> None:
        for t in self.data.values():
            if t.id != keep:
                t.claims = [c for c in t.claims if c.user_id != uid]

    def _add_claim(self, t: Territory, uid: str, name: str) -> None:
        t.claims.append(Claim(t.id, uid, name))

    # reads

    def settings(self, settings_id: str) -> DropMapSettings:
        self._call("settings", settings_id)
        return replace(self.settings_obj)

    def territories(self, template_id: str) -> List[Territory]:
        self._call("territories", template_id)
        return [replace(t, claims=list(t.claims)) for t in self.data.values()]

    def players(self, settings_id: str) -> List[EligiblePlayer]:
        self._call("players", settings_id)
        if self.hide_players:
            raise BackendRejection(403, "Admins only")
        return list(self.player_list)

    def public_map(self, map_id: str) -> DropMapSettings:
        self._call("public_map", map_id)
        return replace(self.settings_obj)

    def public_territories(self, map_id: str) -> List[Territory]:
        self._call("public_territories", map_id)
        return [replace(t, claims=list(t.claims)) for t in self.data.values()]

    # claims

    def claim(self, territory_id: str, replace_existing: bool = True):
        self._call("claim", territory_id, replace_existing)
        t = self._territory(territory_id)
        if self.settings_obj.is_locked and not self.admin:
            raise BackendRejection(403, "Map is locked")
        if any(c.user_id == self.user for c in t.claims):
            return {"ok": True}
        if len(t.unique_claims()) >= t.max_occupants:
            raise BackendRejection(400, "Территория уже заклеймлена")
        holds_other = any(c.user_id == self.user for o in self.data.values() for c in o.claims)
        if holds_other and not self.settings_obj.allow_reclaim:
            raise BackendRejection(400, "Reclaim is disabled for this map")
        self._drop_user(self.user, keep=territory_id)
        self._add_claim(t, self.user, self.user.title())
        return {"message": "claimed"}

    def release(self, territory_id: str):
        self._call("release", territory_id)
        t = self._territory(territory_id)
        t.claims = [c for c in t.claims if c.user_id != self.user]
        return {"ok": True}

    def admin_assign(self, territory_id: str, user_id: str, force: bool = False):
        self._call("admin_assign", territory_id, user_id, force)
        t = self._territory(territory_id)
        if not force and len(t.unique_claims()) >= t.max_occupants:
            raise BackendRejection(400, "Максимум игроков на территории")
        self._drop_user(user_id, keep=territory_id)
        self._add_claim(t, user_id, user_id.title())
        return {"ok": True}

    def admin_remove(self, territory_id: str, user_id: str):
        self._call("admin_remove", territory_id, user_id)
        t = self._territory(territory_id)
        t.claims = [c for c in t.claims if c.user_id != user_id]
        return {"ok": True}

    def invite(self, code: str) -> InviteCode:
        self._call("invite", code)
        if code not in self.invite_codes:
            raise BackendRejection(404, "Invite code not found")
        return self.invite_codes[code]

    def claim_with_invite(self, code: str, territory_id: str):
        self._call("claim_with_invite", code, territory_id)
        invite = self.invite_codes[code]
        t = self._territory(territory_id)
        if len(t.unique_claims()) >= t.max_occupants:
            raise BackendRejection(400, "Territory is full")
        t.claims.append(Claim(t.id, f"virtual-{code}", invite.display_name))
        invite.is_used = True
        return {"ok": True}

    # authoring

    def create_shape(self, name, points, default_color, description=""):
        self._call("create_shape", name, list(points), default_color)
        shape = Shape(f"shape-{next(self._ids)}", name, list(points), default_color, description)
        self.shape_store[shape.id] = shape
        return shape

    def add_shape_to_template(self, template_id, shape_id, max_occupants=1, color=None):
        self._call("add_shape_to_template", template_id, shape_id, max_occupants)
        shape = self.shape_store[shape_id]
        tid = f"terr-{shape_id}"
        self.data[tid] = Territory(tid, shape.name, list(shape.points), color or shape.default_color, max_occupants, template_id)
        return {"ok": True}

    def update_territory(self, territory_id, **fields):
        self._call("update_territory", territory_id, fields)
        t = self._territory(territory_id)
        if "name" in fields:
            t.name = fields["name"]
        if "color" in fields:
            t.color = fields["color"]
        if "maxPlayers" in fields:
            t.max_occupants = fields["maxPlayers"]
        return {"ok": True}

    def delete_territory(self, territory_id):
        self._call("delete_territory", territory_id)
        self._territory(territory_id)
        del self.data[territory_id]
        return {"ok": True}

    def shapes(self):
        self._call("shapes")
        return list(self.shape_store.values())

    def delete_shape(self, shape_id):
        self._call("delete_shape", shape_id)
        self.shape_store.pop(shape_id, None)
        return {"ok": True}

    def create_template(self, name, shape_ids, description=""):
        self._call("create_template", name, list(shape_ids))
        return {"id": "tpl-new", "name": name}


@pytest.fixture
def triangle_map():
    return make_settings(), [make_territory("tri", TRIANGLE)]


@pytest.fixture
def backend():
    settings = make_settings()
    territories = [
        make_territory("tri", TRIANGLE),
        make_territory("x", SQUARE_X, max_occupants=2),
        make_territory("y", SQUARE_Y, max_occupants=2),
    ]
    return FakeBackend(settings, territories, players=["alice", "bob"])


def make_session(backend: FakeBackend, user: str = "alice", admin: bool = False, public: bool = False) -> MapSession:
    backend.user = user
    backend.admin = admin
    session = MapSession(
        backend,
        caller=Caller(user, user.title(), admin),
        viewport=Viewport(size_px=1000.0),
        public=public,
    )
    session.activate(backend.settings_obj.id)
    return session


@pytest.fixture
def session(backend):
    return make_session(backend)


@pytest.fixture
def store(backend):
    s = ClaimStore()
    s.rebuild("map-1", backend.settings_obj, backend.data.values(), backend.player_list)
    return s


@pytest.fixture
def network_down():
    return NetworkFailure("connection refused")
