from __future__ import annotations

import pytest

from dropmap.models import Claim, DropMapSettings, EligiblePlayer, InviteCode, Territory
from dropmap.store import ClaimStore

from conftest import SQUARE_X, TRIANGLE, make_settings, make_territory


def test_rebuild_derives_indices():
    store = ClaimStore()
    territories = [
        make_territory("a", TRIANGLE, claims=["alice"]),
        make_territory("b", SQUARE_X, max_occupants=3, claims=["bob", "carol", "bob"]),
    ]
    store.rebuild("map-1", make_settings(), territories, [EligiblePlayer("alice")])
    assert store.occupancy("a") == 1
    # duplicate claim rows for one user count once
    assert store.occupancy("b") == 2
    assert [t.id for t in store.claims_of("bob")] == ["b"]
    assert store.holds("alice", "a")
    assert not store.holds("alice", "b")
    assert store.is_eligible("alice") and not store.is_eligible("bob")
    assert store.revision == 1


def test_views_are_read_only(store):
    with pytest.raises(TypeError):
        store.occupancy_by_territory["tri"] = 5
    with pytest.raises(TypeError):
        store.claims_by_user["alice"] = ()


def test_rebuild_replaces_everything():
    store = ClaimStore()
    store.rebuild("m", None, [make_territory("a", TRIANGLE, claims=["alice"])], [])
    store.rebuild("m", None, [make_territory("b", SQUARE_X)], [])
    assert store.territory("a") is None
    assert store.claims_of("alice") == ()
    assert store.revision == 2


def test_duplicate_ids_keep_first():
    store = ClaimStore()
    store.rebuild("m", None, [make_territory("a", TRIANGLE), make_territory("a", SQUARE_X)])
    assert len(store.territories) == 1
    assert store.territory("a").points == TRIANGLE


def test_unknown_eligibility_defers_to_backend():
    store = ClaimStore()
    store.rebuild("m", None, [], None)
    assert not store.eligibility_known
    assert store.is_eligible("anyone")


def test_territory_at_skips_malformed():
    store = ClaimStore()
    store.rebuild("m", None, [
        make_territory("bad", [(0, 0), (100, 0)]),
        make_territory("tri", TRIANGLE),
    ])
    assert store.territory_at((50, 30)).id == "tri"
    assert store.territory_at((900, 900)) is None


def test_clear():
    store = ClaimStore()
    store.rebuild("m", None, [make_territory("tri", TRIANGLE)])
    store.clear()
    assert store.map_id is None
    assert store.territories == ()


def test_territory_from_api():
    t = Territory.from_api({
        "id": "t1",
        "name": "Pochinki",
        "points": [{"x": 1, "y": 2}, {"x": 3, "y": 4}, [5, 6], {"x": "bad"}],
        "maxPlayers": "3",
        "mapId": "tpl-9",
        "claims": [
            {"userId": "u1", "displayName": "One", "teamId": "team-a", "isTeamLeader": True,
             "claimedAt": "2024-05-01T10:00:00Z"},
            {"userId": None},
        ],
    })
    assert t.points == [(1.0, 2.0), (3.0, 4.0), (5.0, 6.0)]
    assert t.max_occupants == 3
    assert t.template_id == "tpl-9"
    assert len(t.claims) == 1
    claim = t.claims[0]
    assert claim.team_id == "team-a" and claim.is_team_leader
    assert claim.claimed_at.tzinfo is not None


def test_settings_team_mode_from_tournament():
    s = DropMapSettings.from_api({
        "id": "m", "templateId": "tpl", "isLocked": True, "allowReclaim": False,
        "tournament": {"id": "tour", "teamMode": "trio"},
    })
    assert s.is_locked and not s.allow_reclaim
    assert s.tournament_id == "tour"
    assert s.team_size == 3


def test_virtual_claims():
    assert Claim("t", "virtual-abc").is_virtual
    assert not Claim("t", "user-1").is_virtual


def test_invite_from_api_and_expiry():
    invite = InviteCode.from_api({
        "code": "XYZ", "settingsId": "m", "displayName": "Guest",
        "expiresAt": "2020-01-01T00:00:00Z", "teamMemberNames": '["A", "B"]',
    })
    assert invite.team_member_names == ("A", "B")
    assert invite.is_expired()
    assert not invite.is_redeemable()
    legacy = InviteCode.from_api({"code": "Q", "teamMemberNames": "A, B ,"})
    assert legacy.team_member_names == ("A", "B")
    assert legacy.is_redeemable()
