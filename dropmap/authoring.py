from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from .api import BackendClient
from .errors import ValidationError
from .geometry import Point, clamp_to_frame, is_simple
from .models import Shape
from .viewport import Viewport

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def _check_name(name: Optional[str]) -> str:
    text = (name or "").strip()
    if not text:
        raise ValidationError("name", "name must not be empty")
    return text


def _check_color(color: str) -> str:
    if not _HEX_COLOR.match(color or ""):
        raise ValidationError("color", f"not a hex colour: {color!r}")
    return color


def _check_max(value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError("max_occupants", f"not an integer: {value!r}") from None
    if n < 1:
        raise ValidationError("max_occupants", "must be at least 1")
    return n


class DrawingBuffer:
    """Points captured in drawing mode, in map space, clamped to the frame."""

    def __init__(self) -> None:
        self.points: List[Point] = []

    def __len__(self) -> int:
        return len(self.points)

    def add(self, point: Point) -> Point:
        p = clamp_to_frame(point)
        self.points.append(p)
        return p

    def add_screen(self, screen_point: Point, viewport: Viewport) -> Optional[Point]:
        p = viewport.screen_to_map(screen_point, clamp=True)
        if p is None:
            return None
        self.points.append(p)
        return p

    def undo(self) -> Optional[Point]:
        if not self.points:
            return None
        return self.points.pop()

    def clear(self) -> None:
        self.points = []

    def validate(self) -> List[Point]:
        if len(self.points) < 3:
            raise ValidationError("points", f"need at least 3 points, have {len(self.points)}")
        return list(self.points)


class AuthoringTool:
    def __init__(self, client: BackendClient, buffer: Optional[DrawingBuffer] = None):
        self.client = client
        self.buffer = buffer if buffer is not None else DrawingBuffer()

    def save(
        self,
        template_id: str,
        name: str,
        color: str,
        description: str = "",
        max_occupants: int = 1,
    ) -> Shape:
        """Persist the buffer as a shape and attach it to ``template_id``.

        All checks run before the first request; nothing is sent for an
        invalid buffer. The buffer is cleared only after both calls succeed.
        """
        points = self.buffer.validate()
        name = _check_name(name)
        color = _check_color(color)
        max_occupants = _check_max(max_occupants)
        if not template_id:
            raise ValidationError("template_id", "no template selected")
        if not is_simple(points):
            logger.warning("[author] polygon %r is self-intersecting, saving anyway", name)

        shape = self.client.create_shape(name, points, color, description)
        self.client.add_shape_to_template(template_id, shape.id, max_occupants=max_occupants, color=color)
        logger.info("[author] saved %s (%d points) to template %s", shape.id, len(points), template_id)
        self.buffer.clear()
        return shape

    def edit_territory(
        self,
        territory_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
        max_occupants: Optional[int] = None,
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if name is not None:
            fields["name"] = _check_name(name)
        if color is not None:
            fields["color"] = _check_color(color)
        if description is not None:
            fields["description"] = description
        if max_occupants is not None:
            fields["maxPlayers"] = _check_max(max_occupants)
        if not fields:
            raise ValidationError("fields", "nothing to update")
        return self.client.update_territory(territory_id, **fields)

    def delete_territory(self, territory_id: str) -> Dict[str, Any]:
        return self.client.delete_territory(territory_id)

    def list_shapes(self) -> List[Shape]:
        return self.client.shapes()

    def delete_shape(self, shape_id: str) -> Dict[str, Any]:
        return self.client.delete_shape(shape_id)

    def create_template(self, name: str, shape_ids: List[str], description: str = "") -> Dict[str, Any]:
        name = _check_name(name)
        if not shape_ids:
            raise ValidationError("shape_ids", "a template needs at least one shape")
        return self.client.create_template(name, list(shape_ids), description)
