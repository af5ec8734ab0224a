from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import requests
from flask import Flask, Response, jsonify, request
from werkzeug.utils import secure_filename

from dropmap import config
from dropmap.api import BackendClient
from dropmap.claims import ClaimResult
from dropmap.errors import (
    BackendRejection,
    MissingCredential,
    NetworkFailure,
    ReadOnlyMode,
    ValidationError,
)
from dropmap.models import Caller
from dropmap.raster_target import RasterTarget
from dropmap.render import read_image
from dropmap.session import MapSession
from dropmap.svg_target import SvgTarget

logger = logging.getLogger(__name__)

app = Flask(__name__, static_folder=None)

_SESSION: Optional[MapSession] = None
_RASTER: Optional[RasterTarget] = None


def load_image(source: str) -> Optional[np.ndarray]:
    try:
        if source.startswith(("http://", "https://")):
            r = requests.get(source, timeout=config.API_TIMEOUT)
            r.raise_for_status()
            return read_image(r.content)
        path = Path(source)
        if not path.exists():
            logger.warning("[server] map image not found: %s", source)
            return None
        return read_image(path)
    except (requests.RequestException, OSError) as exc:
        logger.warning("[server] cannot load map image %s: %s", source, exc)
        return None


def build_session() -> MapSession:
    config.apply_env()
    caller = None
    if config.USER_ID:
        caller = Caller(config.USER_ID, config.DISPLAY_NAME, config.IS_ADMIN)
    return MapSession(BackendClient(), caller=caller, image_loader=load_image)


def get_session() -> MapSession:
    global _SESSION
    if _SESSION is None:
        _SESSION = build_session()
    return _SESSION


def set_session(session: Optional[MapSession]) -> None:
    global _SESSION, _RASTER
    _SESSION = session
    _RASTER = None


def get_raster(session: MapSession) -> RasterTarget:
    """One raster target per session so the map image is loaded once."""
    global _RASTER
    if _RASTER is None:
        _RASTER = RasterTarget(image_loader=load_image)
    _RASTER.resize(session.viewport.size_px)
    return _RASTER


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _point(payload: Dict[str, Any], kx: str = "x", ky: str = "y"):
    try:
        return float(payload[kx]), float(payload[ky])
    except (KeyError, TypeError, ValueError):
        raise ValidationError(kx, f"expected numeric {kx}/{ky}") from None


def _claim_json(result: ClaimResult):
    return jsonify({
        "ok": result.ok,
        "kind": result.kind.value,
        "territoryId": result.territory_id,
        "userId": result.user_id,
        "released": list(result.released),
        "message": result.message,
        "revision": get_session().store.revision,
    })


def _active(session: MapSession):
    if session.active_map is None:
        return jsonify({"ok": False, "error": "no active map"}), 404
    return None


def _admin(session: MapSession):
    if session.public:
        raise ReadOnlyMode("public map is read-only")
    if session.caller is None or not session.caller.is_admin:
        return jsonify({"ok": False, "error": "admin only"}), 403
    return None


@app.errorhandler(ValidationError)
def _on_validation(exc: ValidationError):
    return jsonify({"ok": False, "error": exc.message, "field": exc.field}), 400


@app.errorhandler(ReadOnlyMode)
def _on_read_only(exc: ReadOnlyMode):
    return jsonify({"ok": False, "error": str(exc)}), 403


@app.errorhandler(MissingCredential)
def _on_missing_credential(exc: MissingCredential):
    return jsonify({"ok": False, "error": str(exc)}), 401


@app.errorhandler(NetworkFailure)
def _on_network(exc: NetworkFailure):
    return jsonify({"ok": False, "error": str(exc)}), 502


@app.errorhandler(BackendRejection)
def _on_rejection(exc: BackendRejection):
    status = exc.status if 400 <= exc.status < 500 else 502
    return jsonify({"ok": False, "error": exc.message}), status


# ---- view

@app.get("/api/view")
def api_view():
    session = get_session()
    return jsonify({"ok": True, **session.state()})


@app.get("/api/render.svg")
def api_render_svg():
    session = get_session()
    svg = SvgTarget(int(session.viewport.size_px)).render(session.scene())
    return Response(svg, mimetype="image/svg+xml")


@app.get("/api/render.png")
def api_render_png():
    session = get_session()
    return Response(get_raster(session).encode_png(session.scene()), mimetype="image/png")


@app.post("/api/map")
def api_activate():
    payload = _payload()
    map_id = str(payload.get("mapId") or "").strip()
    if not map_id:
        raise ValidationError("mapId", "mapId is required")
    session = get_session()
    applied = session.activate(map_id, public=bool(payload.get("public", False)))
    return jsonify({"ok": True, "applied": applied, "revision": session.store.revision})


@app.post("/api/refresh")
def api_refresh():
    session = get_session()
    missing = _active(session)
    if missing:
        return missing
    applied = session.refresh()
    return jsonify({"ok": True, "applied": applied, "revision": session.store.revision})


# ---- viewport

@app.post("/api/resize")
def api_resize():
    payload = _payload()
    try:
        size = float(payload.get("size", config.VIEWPORT_PX))
    except (TypeError, ValueError):
        raise ValidationError("size", "size must be a number") from None
    if not size > 0:
        raise ValidationError("size", "size must be positive")
    session = get_session()
    session.viewport.resize(size)
    return jsonify({"ok": True, "viewport": session.viewport.to_dict()})


@app.post("/api/wheel")
def api_wheel():
    payload = _payload()
    session = get_session()
    changed = session.wheel(_point(payload), float(payload.get("deltaY", 0)))
    return jsonify({"ok": True, "changed": changed, "viewport": session.viewport.to_dict()})


@app.post("/api/zoom")
def api_zoom():
    session = get_session()
    direction = _payload().get("direction", "in")
    if direction == "in":
        changed = session.viewport.zoom_in()
    elif direction == "out":
        changed = session.viewport.zoom_out()
    else:
        raise ValidationError("direction", "direction must be 'in' or 'out'")
    return jsonify({"ok": True, "changed": changed, "viewport": session.viewport.to_dict()})


@app.post("/api/pan")
def api_pan():
    session = get_session()
    session.pan(_point(_payload(), "dx", "dy"))
    return jsonify({"ok": True, "viewport": session.viewport.to_dict()})


@app.post("/api/reset")
def api_reset():
    session = get_session()
    session.reset_view()
    return jsonify({"ok": True, "viewport": session.viewport.to_dict()})


@app.post("/api/zoom-to")
def api_zoom_to():
    session = get_session()
    tid = str(_payload().get("territoryId") or "")
    if not session.zoom_to(tid):
        return jsonify({"ok": False, "error": "territory not found"}), 404
    return jsonify({"ok": True, "selection": session.selection, "viewport": session.viewport.to_dict()})


# ---- claims

@app.post("/api/click")
def api_click():
    session = get_session()
    result = session.click(_point(_payload()))
    if result is None:
        return jsonify({"ok": True, "selection": session.selection, "drawing": len(session.buffer)})
    return _claim_json(result)


@app.post("/api/claim")
def api_claim():
    tid = str(_payload().get("territoryId") or "")
    return _claim_json(get_session().claim(tid))


@app.post("/api/release")
def api_release():
    tid = str(_payload().get("territoryId") or "")
    return _claim_json(get_session().release(tid))


@app.post("/api/invite/redeem")
def api_redeem_invite():
    payload = _payload()
    code = str(payload.get("code") or "").strip()
    if not code:
        raise ValidationError("code", "invite code is required")
    return _claim_json(get_session().redeem_invite(code, str(payload.get("territoryId") or "")))


@app.post("/api/admin/assign")
def api_admin_assign():
    payload = _payload()
    session = get_session()
    return _claim_json(
        session.admin_assign(
            str(payload.get("territoryId") or ""),
            str(payload.get("userId") or ""),
            force=bool(payload.get("force", False)),
        )
    )


@app.post("/api/admin/remove")
def api_admin_remove():
    payload = _payload()
    return _claim_json(
        get_session().admin_remove(str(payload.get("territoryId") or ""), str(payload.get("userId") or ""))
    )


# ---- authoring

@app.post("/api/admin/mode")
def api_admin_mode():
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    payload = _payload()
    admin_mode = session.set_admin_mode(bool(payload.get("admin", True)))
    drawing_mode = session.set_drawing_mode(bool(payload.get("drawing", False)))
    return jsonify({"ok": True, "adminMode": admin_mode, "drawingMode": drawing_mode})


@app.post("/api/draw/undo")
def api_draw_undo():
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    session.buffer.undo()
    return jsonify({"ok": True, "points": len(session.buffer)})


@app.post("/api/draw/clear")
def api_draw_clear():
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    session.buffer.clear()
    return jsonify({"ok": True, "points": 0})


@app.post("/api/draw/save")
def api_draw_save():
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    payload = _payload()
    settings = session.store.settings
    template_id = str(payload.get("templateId") or (settings.template_id if settings else ""))
    shape = session.authoring.save(
        template_id,
        str(payload.get("name") or ""),
        str(payload.get("color") or config.DEFAULT_TERRITORY_COLOR),
        description=str(payload.get("description") or ""),
        max_occupants=payload.get("maxOccupants", 1),
    )
    if session.active_map:
        session.refresh()
    return jsonify({"ok": True, "shapeId": shape.id})


@app.put("/api/territories/<territory_id>")
def api_edit_territory(territory_id: str):
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    payload = _payload()
    session.authoring.edit_territory(
        territory_id,
        name=payload.get("name"),
        color=payload.get("color"),
        description=payload.get("description"),
        max_occupants=payload.get("maxOccupants"),
    )
    if session.active_map:
        session.refresh()
    return jsonify({"ok": True})


@app.delete("/api/territories/<territory_id>")
def api_delete_territory(territory_id: str):
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    session.authoring.delete_territory(territory_id)
    if session.selection == territory_id:
        session.selection = None
    if session.active_map:
        session.refresh()
    return jsonify({"ok": True})


@app.get("/api/shapes")
def api_shapes():
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    shapes = session.authoring.list_shapes()
    return jsonify({"ok": True, "shapes": [
        {"id": s.id, "name": s.name, "points": len(s.points), "defaultColor": s.default_color}
        for s in shapes
    ]})


@app.delete("/api/shapes/<shape_id>")
def api_delete_shape(shape_id: str):
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    session.authoring.delete_shape(shape_id)
    return jsonify({"ok": True})


@app.post("/api/templates")
def api_create_template():
    session = get_session()
    denied = _admin(session)
    if denied:
        return denied
    payload = _payload()
    data = session.authoring.create_template(
        str(payload.get("name") or ""),
        list(payload.get("shapeIds") or []),
        description=str(payload.get("description") or ""),
    )
    return jsonify({"ok": True, "template": data})


@app.post("/api/export")
def api_export():
    session = get_session()
    missing = _active(session)
    if missing:
        return missing
    out_dir = Path(config.EXPORT_DIR)
    scene = session.scene()
    size = int(session.viewport.size_px)
    stem = secure_filename(f"dropmap_{session.active_map}")
    print(f"[export] rendering {stem} at {size}px", flush=True)
    png = get_raster(session).write(scene, out_dir / f"{stem}.png")
    svg = SvgTarget(size).write(scene, out_dir / f"{stem}.svg")
    print("[export] done", flush=True)
    return jsonify({"ok": True, "png": str(png), "svg": str(svg)})


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.run(host="127.0.0.1", port=5000, debug=True)
