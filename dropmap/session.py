"""One viewer's session on one map.

Input -> viewport -> hit test -> claim rules -> backend call -> refetch.
The store is only ever rebuilt from a fetch; claim calls never patch it.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np

from . import config
from .api import BackendClient
from .authoring import AuthoringTool, DrawingBuffer
from .claims import ClaimKind, ClaimResult, ClaimStateMachine, classify_rejection
from .errors import BackendRejection, MissingCredential, NetworkFailure, ReadOnlyMode
from .geometry import Point
from .models import Caller, DropMapSettings, EligiblePlayer, Territory
from .notices import NoticeBoard
from .render import Scene, build_scene, sample_backdrop_color
from .store import ClaimStore
from .viewport import Viewport

logger = logging.getLogger(__name__)

Snapshot = Tuple[DropMapSettings, List[Territory], Optional[List[EligiblePlayer]]]

_TITLES = {
    ClaimKind.MAP_LOCKED: "Map is locked",
    ClaimKind.NOT_ELIGIBLE: "Not on the player list",
    ClaimKind.RECLAIM_DISALLOWED: "You already hold a territory",
    ClaimKind.UNKNOWN_TERRITORY: "Territory not found",
    ClaimKind.INVALID_INVITE: "Invite cannot be used",
    ClaimKind.NETWORK_FAILURE: "Network error, try again",
    ClaimKind.REJECTED: "Request rejected",
}


@dataclass(frozen=True)
class FetchTicket:
    map_id: str
    generation: int
    public: bool = False


class MapSession:
    def __init__(
        self,
        client: BackendClient,
        caller: Optional[Caller] = None,
        viewport: Optional[Viewport] = None,
        notices: Optional[NoticeBoard] = None,
        public: bool = False,
        image_loader: Optional[Callable[[str], Optional[np.ndarray]]] = None,
    ):
        self.client = client
        self.caller = caller
        self.viewport = viewport or Viewport(size_px=float(config.VIEWPORT_PX))
        self.notices = notices or NoticeBoard()
        self.public = public
        self.image_loader = image_loader
        self.store = ClaimStore()
        self.machine = ClaimStateMachine(self.store)
        self.buffer = DrawingBuffer()
        self.authoring = AuthoringTool(client, self.buffer)
        self.selection: Optional[str] = None
        self.admin_mode = False
        self.drawing_mode = False
        self.backdrop: Optional[str] = None
        self._backdrop_source: Optional[str] = None
        self.busy = False
        self._lock = threading.Lock()
        self._generation = 0
        self._applied = 0
        self._active_map: Optional[str] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # ---- fetch / refetch

    @property
    def active_map(self) -> Optional[str]:
        return self._active_map

    def begin_fetch(self, map_id: Optional[str] = None) -> FetchTicket:
        with self._lock:
            if map_id is not None and map_id != self._active_map:
                self._active_map = map_id
                self.store.clear()
            if self._active_map is None:
                raise ValueError("no active map")
            self._generation += 1
            return FetchTicket(self._active_map, self._generation, self.public)

    def fetch(self, ticket: FetchTicket) -> Snapshot:
        if ticket.public:
            settings = self.client.public_map(ticket.map_id)
            return settings, self.client.public_territories(ticket.map_id), None
        settings = self.client.settings(ticket.map_id)
        territories = self.client.territories(settings.template_id)
        try:
            players: Optional[List[EligiblePlayer]] = self.client.players(ticket.map_id)
        except BackendRejection as exc:
            if exc.status not in (401, 403):
                raise
            logger.debug("[fetch] player list hidden for %s", ticket.map_id)
            players = None
        return settings, territories, players

    def complete_fetch(self, ticket: FetchTicket, snapshot: Snapshot) -> bool:
        with self._lock:
            if ticket.map_id != self._active_map or ticket.generation <= self._applied:
                logger.info(
                    "[fetch] stale response for %s (gen %d, applied %d) discarded",
                    ticket.map_id, ticket.generation, self._applied,
                )
                return False
            settings, territories, players = snapshot
            self.store.rebuild(ticket.map_id, settings, territories, players)
            self._applied = ticket.generation
        if self.selection and self.store.territory(self.selection) is None:
            self.selection = None
        self._update_backdrop(settings)
        return True

    def _update_backdrop(self, settings: Optional[DropMapSettings]) -> None:
        url = settings.map_image_url if settings else None
        if url == self._backdrop_source:
            return
        self._backdrop_source = url
        self.backdrop = None
        if url and self.image_loader is not None:
            self.backdrop = sample_backdrop_color(self.image_loader(url))

    def refresh(self) -> bool:
        ticket = self.begin_fetch()
        return self.complete_fetch(ticket, self.fetch(ticket))

    def refresh_async(self) -> Future:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="dropmap-fetch")
        ticket = self.begin_fetch()
        return self._executor.submit(lambda: self.complete_fetch(ticket, self.fetch(ticket)))

    def activate(self, map_id: str, public: Optional[bool] = None) -> bool:
        if public is not None:
            self.public = public
        if map_id != self._active_map:
            self.selection = None
            self.buffer.clear()
            self.viewport.reset()
        ticket = self.begin_fetch(map_id)
        return self.complete_fetch(ticket, self.fetch(ticket))

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _safe_refresh(self) -> None:
        try:
            self.refresh()
        except (NetworkFailure, BackendRejection, MissingCredential) as exc:
            logger.warning("[fetch] refetch after claim failed: %s", exc)
            self.notices.error(_TITLES[ClaimKind.NETWORK_FAILURE], str(exc))

    # ---- claim flow

    @contextmanager
    def _busy(self) -> Iterator[bool]:
        with self._lock:
            taken = not self.busy
            if taken:
                self.busy = True
        try:
            yield taken
        finally:
            if taken:
                with self._lock:
                    self.busy = False

    def _report(self, result: ClaimResult) -> ClaimResult:
        if result.kind == ClaimKind.OK:
            self.notices.info("Done", result.territory_id or "")
        elif result.kind == ClaimKind.NOOP:
            pass
        elif result.benign:
            logger.info("[claim] %s on %s suppressed", result.kind.value, result.territory_id)
        elif result.kind == ClaimKind.NETWORK_FAILURE:
            self.notices.error(_TITLES[result.kind], result.message)
        else:
            self.notices.warning(_TITLES.get(result.kind, "Request rejected"), result.message)
        return result

    def _submit(self, decided: ClaimResult, call: Callable[[], object]) -> ClaimResult:
        if not decided.changes_state:
            if decided.benign:
                self._safe_refresh()
            return self._report(decided)
        try:
            call()
        except NetworkFailure as exc:
            return self._report(ClaimResult(ClaimKind.NETWORK_FAILURE, decided.territory_id, decided.user_id, message=str(exc)))
        except MissingCredential as exc:
            return self._report(ClaimResult(ClaimKind.NOT_ELIGIBLE, decided.territory_id, decided.user_id, message=str(exc)))
        except BackendRejection as exc:
            kind = classify_rejection(exc.message, exc.status)
            result = ClaimResult(kind, decided.territory_id, decided.user_id, message=exc.message)
            if result.benign:
                self._safe_refresh()
            return self._report(result)
        self._safe_refresh()
        return self._report(decided)

    def _credentialed_caller(self) -> Optional[Caller]:
        if self.caller is None or not self.caller.user_id or not self.client.has_credential:
            return None
        return self.caller

    def _require_writable(self) -> None:
        if self.public:
            raise ReadOnlyMode("public map is read-only")

    def claim(self, territory_id: str) -> ClaimResult:
        self._require_writable()
        caller = self._credentialed_caller()
        if caller is None:
            return self._report(ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, message="not signed in"))
        with self._busy() as ok:
            if not ok:
                return self._report(ClaimResult(ClaimKind.BUSY, territory_id, caller.user_id))
            decided = self.machine.request_claim(territory_id, caller)
            return self._submit(
                decided, lambda: self.client.claim(territory_id, replace_existing=bool(decided.released))
            )

    def release(self, territory_id: str) -> ClaimResult:
        self._require_writable()
        caller = self._credentialed_caller()
        if caller is None:
            return self._report(ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, message="not signed in"))
        with self._busy() as ok:
            if not ok:
                return self._report(ClaimResult(ClaimKind.BUSY, territory_id, caller.user_id))
            decided = self.machine.request_release(territory_id, caller)
            return self._submit(decided, lambda: self.client.release(territory_id))

    def admin_assign(self, territory_id: str, user_id: str, force: bool = False) -> ClaimResult:
        self._require_writable()
        caller = self._credentialed_caller()
        if caller is None:
            return self._report(ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, user_id, message="not signed in"))
        with self._busy() as ok:
            if not ok:
                return self._report(ClaimResult(ClaimKind.BUSY, territory_id, user_id))
            decided = self.machine.admin_assign(territory_id, user_id, caller, force=force)
            return self._submit(decided, lambda: self.client.admin_assign(territory_id, user_id, force=force))

    def admin_remove(self, territory_id: str, user_id: str) -> ClaimResult:
        self._require_writable()
        caller = self._credentialed_caller()
        if caller is None:
            return self._report(ClaimResult(ClaimKind.NOT_ELIGIBLE, territory_id, user_id, message="not signed in"))
        with self._busy() as ok:
            if not ok:
                return self._report(ClaimResult(ClaimKind.BUSY, territory_id, user_id))
            decided = self.machine.admin_remove(territory_id, user_id, caller)
            return self._submit(decided, lambda: self.client.admin_remove(territory_id, user_id))

    def redeem_invite(self, code: str, territory_id: str) -> ClaimResult:
        with self._busy() as ok:
            if not ok:
                return self._report(ClaimResult(ClaimKind.BUSY, territory_id))
            try:
                invite = self.client.invite(code)
            except NetworkFailure as exc:
                return self._report(ClaimResult(ClaimKind.NETWORK_FAILURE, territory_id, message=str(exc)))
            except BackendRejection as exc:
                return self._report(ClaimResult(ClaimKind.INVALID_INVITE, territory_id, message=exc.message))
            decided = self.machine.redeem_invite(invite, territory_id)
            return self._submit(decided, lambda: self.client.claim_with_invite(code, territory_id))

    # ---- input

    def set_admin_mode(self, on: bool) -> bool:
        self.admin_mode = bool(on and self.caller and self.caller.is_admin and not self.public)
        if not self.admin_mode:
            self.drawing_mode = False
        return self.admin_mode

    def set_drawing_mode(self, on: bool) -> bool:
        self.drawing_mode = bool(on and self.admin_mode)
        if not self.drawing_mode:
            self.buffer.clear()
        return self.drawing_mode

    def click(self, screen_point: Point) -> Optional[ClaimResult]:
        if self.drawing_mode:
            self.buffer.add_screen(screen_point, self.viewport)
            return None
        map_point = self.viewport.screen_to_map(screen_point)
        if map_point is None:
            return None
        territory = self.store.territory_at(map_point)
        if territory is None:
            self.selection = None
            return None
        self.selection = territory.id
        if self.public or self.admin_mode:
            return None
        return self.claim(territory.id)

    def wheel(self, screen_point: Point, delta_y: float) -> bool:
        return self.viewport.wheel(screen_point, delta_y)

    def pan(self, delta_screen: Point) -> None:
        self.viewport.pan_by(delta_screen)

    def reset_view(self) -> None:
        self.viewport.reset()

    def zoom_to(self, territory_id: str) -> bool:
        territory = self.store.territory(territory_id)
        if territory is None or not self.viewport.focus(territory.points):
            return False
        self.selection = territory.id
        return True

    # ---- output

    @property
    def team_size(self) -> Optional[int]:
        settings = self.store.settings
        return settings.team_size if settings else None

    def scene(self) -> Scene:
        settings = self.store.settings
        return build_scene(
            self.store.territories,
            self.viewport,
            selection=self.selection,
            team_size=self.team_size,
            drawing=self.buffer.points if self.drawing_mode else (),
            image_source=settings.map_image_url if settings else None,
            backdrop=self.backdrop,
        )

    def state(self) -> dict:
        settings = self.store.settings
        return {
            "mapId": self._active_map,
            "public": self.public,
            "revision": self.store.revision,
            "locked": bool(settings and settings.is_locked),
            "allowReclaim": bool(settings is None or settings.allow_reclaim),
            "selection": self.selection,
            "adminMode": self.admin_mode,
            "drawingMode": self.drawing_mode,
            "drawing": [{"x": x, "y": y} for x, y in self.buffer.points],
            "busy": self.busy,
            "viewport": self.viewport.to_dict(),
            "occupancy": dict(self.store.occupancy_by_territory),
            "territories": [
                {
                    "id": t.id,
                    "name": t.name,
                    "maxOccupants": t.max_occupants,
                    "state": self.machine.state_of(t.id).value,
                    "occupants": [c.display_name or c.user_id for c in t.unique_claims()],
                }
                for t in self.store.territories
            ],
            "notices": [n.to_dict() for n in self.notices.active()],
        }
