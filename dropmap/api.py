"""HTTP client for the territory backend.

Thin wrapper over ``requests``: every call returns decoded JSON or raises one
of ``NetworkFailure``, ``BackendRejection`` or ``MissingCredential``.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from . import config
from .errors import BackendRejection, MissingCredential, NetworkFailure
from .geometry import Point
from .models import (
    DropMapSettings,
    EligiblePlayer,
    InviteCode,
    Shape,
    Territory,
    points_to_api,
)

logger = logging.getLogger(__name__)


def _unwrap(payload: Any, key: str) -> Any:
    if isinstance(payload, dict) and key in payload:
        return payload[key]
    return payload


class BackendClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or config.API_BASE_URL).rstrip("/")
        self.token_provider = token_provider or (lambda: config.API_TOKEN or None)
        self.timeout = config.API_TIMEOUT if timeout is None else timeout
        self.session = session or requests.Session()

    @property
    def has_credential(self) -> bool:
        return bool(self.token_provider())

    def _request(self, method: str, path: str, auth: bool = True, **kwargs) -> Any:
        headers = kwargs.pop("headers", {}) or {}
        if auth:
            token = self.token_provider()
            if not token:
                raise MissingCredential(f"{method} {path} needs a bearer token")
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("[api] %s %s failed: %s", method, path, exc)
            raise NetworkFailure(str(exc)) from exc

        if resp.status_code >= 500:
            raise NetworkFailure(f"{method} {path}: HTTP {resp.status_code}")
        try:
            data = resp.json() if resp.content else {}
        except ValueError as exc:
            if resp.status_code >= 400:
                raise BackendRejection(resp.status_code, resp.text or resp.reason or "") from exc
            raise NetworkFailure(f"{method} {path}: unreadable response") from exc

        if resp.status_code >= 400:
            message = ""
            if isinstance(data, dict):
                message = str(data.get("error") or data.get("message") or "")
            raise BackendRejection(resp.status_code, message or f"HTTP {resp.status_code}")
        logger.debug("[api] %s %s -> %s", method, path, resp.status_code)
        return data

    # territories / claims

    def territories(self, template_id: str) -> List[Territory]:
        data = self._request("GET", "/api/territory/territories", params={"templateId": template_id})
        return [Territory.from_api(t) for t in _unwrap(data, "territories") or []]

    def claim(self, territory_id: str, replace_existing: bool = True) -> Dict[str, Any]:
        return self._request(
            "POST", "/api/territory/claim",
            json={"territoryId": territory_id, "replaceExisting": replace_existing},
        )

    def release(self, territory_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/territories/{territory_id}/claim")

    def admin_assign(self, territory_id: str, user_id: str, force: bool = False) -> Dict[str, Any]:
        body: Dict[str, Any] = {"userId": user_id}
        if force:
            body["force"] = True
        return self._request("POST", f"/api/admin/territories/{territory_id}/assign-player", json=body)

    def admin_remove(self, territory_id: str, user_id: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"/api/admin/territories/{territory_id}/remove-player", json={"userId": user_id}
        )

    def update_territory(self, territory_id: str, **fields: Any) -> Dict[str, Any]:
        return self._request("PUT", f"/api/territories/{territory_id}", json=fields)

    def delete_territory(self, territory_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/territories/{territory_id}")

    # settings / eligibility / invites

    def settings(self, settings_id: str) -> DropMapSettings:
        data = self._request("GET", f"/api/dropmap/settings/{settings_id}")
        return DropMapSettings.from_api(_unwrap(data, "settings") or {})

    def update_settings(self, settings_id: str, **fields: Any) -> DropMapSettings:
        data = self._request("PUT", f"/api/dropmap/settings/{settings_id}", json=fields)
        return DropMapSettings.from_api(_unwrap(data, "settings") or {})

    def players(self, settings_id: str) -> List[EligiblePlayer]:
        data = self._request("GET", f"/api/dropmap/settings/{settings_id}/players")
        return [EligiblePlayer.from_api(p) for p in _unwrap(data, "players") or []]

    def add_player(self, settings_id: str, user_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/dropmap/settings/{settings_id}/players", json={"userId": user_id})

    def remove_player(self, settings_id: str, user_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/dropmap/settings/{settings_id}/players/{user_id}")

    def import_players(self, settings_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/dropmap/settings/{settings_id}/import-players")

    def invites(self, settings_id: str) -> List[InviteCode]:
        data = self._request("GET", f"/api/dropmap/settings/{settings_id}/invites")
        return [InviteCode.from_api(i) for i in _unwrap(data, "invites") or []]

    def create_invite(self, settings_id: str, display_name: str, **extra: Any) -> InviteCode:
        body = {"displayName": display_name, **extra}
        data = self._request("POST", f"/api/dropmap/settings/{settings_id}/invites", json=body)
        return InviteCode.from_api(_unwrap(data, "invite") or {})

    def delete_invite(self, code: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/dropmap/invites/{code}")

    def invite(self, code: str) -> InviteCode:
        data = self._request("GET", f"/api/dropmap/invite/{code}", auth=False)
        return InviteCode.from_api(_unwrap(data, "invite") or {})

    def claim_with_invite(self, code: str, territory_id: str) -> Dict[str, Any]:
        return self._request(
            "POST", "/api/claim-with-invite", auth=False, json={"code": code, "territoryId": territory_id}
        )

    # public mirror

    def public_map(self, map_id: str) -> DropMapSettings:
        data = self._request("GET", f"/api/maps/{map_id}/public", auth=False)
        return DropMapSettings.from_api(_unwrap(data, "map") or {})

    def public_territories(self, map_id: str) -> List[Territory]:
        data = self._request("GET", f"/api/maps/{map_id}/territories/public", auth=False)
        return [Territory.from_api(t) for t in _unwrap(data, "territories") or []]

    # templates / shapes

    def shapes(self) -> List[Shape]:
        data = self._request("GET", "/api/territory/shapes")
        return [Shape.from_api(s) for s in _unwrap(data, "shapes") or []]

    def create_shape(
        self, name: str, points: List[Point], default_color: str, description: str = ""
    ) -> Shape:
        data = self._request(
            "POST", "/api/territory/shapes",
            json={
                "name": name,
                "points": points_to_api(points),
                "defaultColor": default_color,
                "description": description,
            },
        )
        return Shape.from_api(_unwrap(data, "shape") or {})

    def delete_shape(self, shape_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/territory/shapes/{shape_id}")

    def add_shape_to_template(
        self,
        template_id: str,
        shape_id: str,
        max_occupants: int = 1,
        color: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"shapeId": shape_id, "maxPlayers": max_occupants}
        if color:
            body["customColor"] = color
        return self._request("POST", f"/api/territory/templates/{template_id}/add-shape", json=body)

    def create_template(
        self, name: str, shape_ids: List[str], description: str = "", map_image_url: str = ""
    ) -> Dict[str, Any]:
        body = {"name": name, "description": description, "shapeIds": shape_ids}
        if map_image_url:
            body["mapImageUrl"] = map_image_url
        return self._request("POST", "/api/territory/templates", json=body)

