from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest

import server
from dropmap import config

from conftest import make_session


@pytest.fixture
def app_client(backend):
    session = make_session(backend, "alice")
    server.set_session(session)
    server.app.config["TESTING"] = True
    with server.app.test_client() as c:
        yield c, session
    server.set_session(None)


@pytest.fixture
def admin_client(backend):
    session = make_session(backend, "root", admin=True)
    server.set_session(session)
    with server.app.test_client() as c:
        yield c, session
    server.set_session(None)


def test_view(app_client):
    c, _ = app_client
    data = c.get("/api/view").get_json()
    assert data["ok"] and data["mapId"] == "map-1"
    assert {t["id"] for t in data["territories"]} == {"tri", "x", "y"}


def test_click_claims(app_client):
    c, session = app_client
    data = c.post("/api/click", json={"x": 250, "y": 250}).get_json()
    assert data["kind"] == "ok"
    assert session.store.holds("alice", "x")


def test_click_with_bad_payload(app_client):
    c, _ = app_client
    resp = c.post("/api/click", json={"x": "left"})
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "x"


def test_viewport_routes(app_client):
    c, session = app_client
    c.post("/api/wheel", json={"x": 500, "y": 500, "deltaY": -1})
    assert session.viewport.scale == pytest.approx(1.1)
    c.post("/api/zoom", json={"direction": "in"})
    assert session.viewport.scale == pytest.approx(1.32)
    assert c.post("/api/zoom", json={"direction": "sideways"}).status_code == 400
    c.post("/api/reset")
    assert session.viewport.scale == 1.0
    c.post("/api/pan", json={"dx": 10, "dy": 20})
    assert session.viewport.pan == (10.0, 20.0)
    assert c.post("/api/zoom-to", json={"territoryId": "tri"}).get_json()["selection"] == "tri"
    assert c.post("/api/zoom-to", json={"territoryId": "nope"}).status_code == 404


def test_render_routes(app_client):
    c, _ = app_client
    svg = c.get("/api/render.svg")
    assert svg.mimetype == "image/svg+xml"
    assert b"<svg" in svg.data
    png = c.get("/api/render.png")
    assert png.mimetype == "image/png"
    assert png.data[:8] == b"\x89PNG\r\n\x1a\n"


def test_network_failure_maps_to_502(app_client, backend, network_down):
    c, _ = app_client
    backend.fail_next = network_down
    assert c.post("/api/refresh").status_code == 502


def test_admin_routes_forbidden_for_players(app_client):
    c, _ = app_client
    assert c.post("/api/draw/save", json={"name": "x"}).status_code == 403
    data = c.post("/api/admin/assign", json={"territoryId": "tri", "userId": "bob"}).get_json()
    assert data["kind"] == "not_eligible"


def test_drawing_via_routes(admin_client, backend):
    c, session = admin_client
    c.post("/api/admin/mode", json={"admin": True, "drawing": True})
    for x, y in [(700, 700), (800, 700)]:
        c.post("/api/click", json={"x": x, "y": y})
    resp = c.post("/api/draw/save", json={"name": "Ridge", "color": "#22C55E"})
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "points"
    c.post("/api/click", json={"x": 750, "y": 800})
    c.post("/api/draw/undo")
    c.post("/api/click", json={"x": 750, "y": 800})
    data = c.post("/api/draw/save", json={"name": "Ridge", "color": "#22C55E", "maxOccupants": 2}).get_json()
    assert data["ok"]
    assert session.store.territory(f"terr-{data['shapeId']}") is not None


def test_edit_and_delete_territory(admin_client):
    c, session = admin_client
    assert c.put("/api/territories/tri", json={"name": "Peak"}).get_json()["ok"]
    assert session.store.territory("tri").name == "Peak"
    assert c.delete("/api/territories/tri").get_json()["ok"]
    assert session.store.territory("tri") is None
    assert c.delete("/api/territories/tri").status_code == 404


def test_public_session_refuses_claims(backend):
    server.set_session(make_session(backend, "alice", public=True))
    try:
        with server.app.test_client() as c:
            assert c.post("/api/claim", json={"territoryId": "x"}).status_code == 403
    finally:
        server.set_session(None)


def test_export(app_client, tmp_path, monkeypatch):
    c, _ = app_client
    monkeypatch.setattr(config, "EXPORT_DIR", tmp_path)
    data = c.post("/api/export").get_json()
    assert data["ok"]
    assert (tmp_path / "dropmap_map-1.png").exists()
    assert (tmp_path / "dropmap_map-1.svg").read_text(encoding="utf-8").startswith("<svg")


def test_resize_rejects_non_positive_size(app_client):
    c, session = app_client
    assert c.post("/api/resize", json={"size": -10}).status_code == 400
    assert c.post("/api/resize", json={"size": 0}).get_json()["field"] == "size"
    assert session.viewport.size_px == 1000.0
    assert c.get("/api/render.png").status_code == 200


def test_zero_size_viewport_still_renders(app_client):
    c, session = app_client
    session.viewport.size_px = 0.0
    png = c.get("/api/render.png")
    assert png.status_code == 200
    assert png.data[:8] == b"\x89PNG\r\n\x1a\n"
    assert c.get("/api/render.svg").status_code == 200


def test_map_image_loaded_once_across_renders(backend, monkeypatch):
    backend.settings_obj = replace(backend.settings_obj, map_image_url="https://maps.example/erangel.png")
    loads = []

    def fake_load(source):
        loads.append(source)
        return np.zeros((20, 20, 3), dtype=np.uint8)

    monkeypatch.setattr(server, "load_image", fake_load)
    server.set_session(make_session(backend, "alice"))
    try:
        with server.app.test_client() as c:
            for _ in range(3):
                assert c.get("/api/render.png").status_code == 200
    finally:
        server.set_session(None)
    assert loads == ["https://maps.example/erangel.png"]


def test_export_keeps_files_inside_export_dir(app_client, tmp_path, monkeypatch):
    c, _ = app_client
    out_dir = tmp_path / "exports"
    monkeypatch.setattr(config, "EXPORT_DIR", out_dir)
    assert c.post("/api/map", json={"mapId": "x/../../escaped"}).get_json()["ok"]
    data = c.post("/api/export").get_json()
    assert data["ok"]
    assert [p.name for p in tmp_path.iterdir()] == ["exports"]
    assert sorted(p.suffix for p in out_dir.iterdir()) == [".png", ".svg"]
