"""Scene building: territories + viewport + selection -> draw commands.

The scene is plain data; ``svg_target`` and ``raster_target`` turn the same
command list into an SVG document or a BGR image.
"""
from __future__ import annotations

import io
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from . import config
from .geometry import Point, centroid, is_drawable
from .models import Claim, Territory
from .viewport import Viewport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageCommand:
    source: Optional[str]
    size: float
    backdrop: str


@dataclass(frozen=True)
class PolygonCommand:
    territory_id: str
    points: Tuple[Point, ...]
    fill: str
    fill_opacity: float
    stroke: str
    stroke_width: float
    selected: bool = False


@dataclass(frozen=True)
class LabelCommand:
    text: str
    x: float
    y: float
    font_size: float
    color: str
    outline: str
    outline_width: float
    territory_id: Optional[str] = None


@dataclass(frozen=True)
class PolylineCommand:
    points: Tuple[Point, ...]
    color: str
    width: float
    closed: bool = False
    fill_opacity: float = 0.0


@dataclass(frozen=True)
class VertexCommand:
    x: float
    y: float
    radius: float
    color: str
    index: int


DrawCommand = Union[ImageCommand, PolygonCommand, LabelCommand, PolylineCommand, VertexCommand]


@dataclass
class Scene:
    size: float
    scale: float
    view_box: str
    origin: Point = (0.0, 0.0)
    commands: List[DrawCommand] = field(default_factory=list)

    def of_type(self, kind: type) -> List[DrawCommand]:
        return [c for c in self.commands if isinstance(c, kind)]


@dataclass(frozen=True)
class OccupantLabel:
    text: str
    is_team_leader: bool = False
    team_name: Optional[str] = None


def occupant_labels(territory: Territory, team_size: Optional[int] = None) -> List[OccupantLabel]:
    """Group a territory's claims into display labels.

    Without teams every occupant gets a label. With teams, members of one team
    share a ``"a + b + ?"`` label padded with empty slots up to ``team_size``
    (or the territory's ``max_occupants`` when the team size is unknown);
    players without a team follow as separate labels.
    """
    claims = territory.unique_claims()
    if not claims:
        return []
    if not any(c.team_id for c in claims):
        return [OccupantLabel(c.display_name or territory.name) for c in claims]

    teams: "OrderedDict[str, List[Claim]]" = OrderedDict()
    solo: List[Claim] = []
    for c in claims:
        if c.team_id:
            teams.setdefault(c.team_id, []).append(c)
        else:
            solo.append(c)

    slots = team_size or territory.max_occupants
    out: List[OccupantLabel] = []
    for members in teams.values():
        names = [m.display_name or "Unknown" for m in members]
        names += [config.EMPTY_SLOT] * max(0, slots - len(members))
        out.append(
            OccupantLabel(
                " + ".join(names),
                is_team_leader=any(m.is_team_leader for m in members),
                team_name=members[0].team_name,
            )
        )
    out.extend(OccupantLabel(c.display_name or territory.name) for c in solo)
    return out


def label_offsets(count: int, line_offset: float) -> List[float]:
    o = line_offset
    if count <= 0:
        return []
    if count == 1:
        return [0.0]
    if count == 2:
        return [-o, o]
    if count == 3:
        return [-1.2 * o, 0.0, 1.2 * o]
    if count == 4:
        return [-1.5 * o, -0.5 * o, 0.5 * o, 1.5 * o]
    total = 2 * o * (count - 1)
    step = total / (count - 1)
    return [-total / 2 + i * step for i in range(count)]


def display_color(territory: Territory, label_count: int) -> str:
    if label_count >= 2:
        return config.MULTI_CLAIM_COLOR
    return territory.color or config.DEFAULT_TERRITORY_COLOR


def read_image(source: Union[str, Path, bytes]) -> np.ndarray:
    """Load an image as a BGR array (PIL decodes, OpenCV layout)."""
    if isinstance(source, (bytes, bytearray)):
        handle = io.BytesIO(source)
    else:
        handle = Path(source)
    with Image.open(handle) as im:
        im = im.convert("RGB")
        arr = np.array(im)
        return arr[:, :, ::-1].copy()


def _bgr_to_hex(bgr: Sequence[int]) -> str:
    b, g, r = (int(v) for v in bgr[:3])
    return f"#{r:02x}{g:02x}{b:02x}"


def sample_backdrop_color(image: Optional[np.ndarray]) -> str:
    if image is None or image.size == 0:
        return _bgr_to_hex(config.DEFAULT_BACKDROP[::-1])
    small = cv2.resize(image, (10, 10), interpolation=cv2.INTER_AREA)
    return _bgr_to_hex(small[1, 1])


def _drawing_commands(points: Sequence[Point], viewport: Viewport) -> List[DrawCommand]:
    if not points:
        return []
    pts = tuple(points)
    out: List[DrawCommand] = []
    width = viewport.px(config.STROKE_WIDTH)
    if len(pts) >= 3:
        out.append(PolylineCommand(pts, config.DRAWING_COLOR, width, True, config.DRAWING_FILL_OPACITY))
    elif len(pts) == 2:
        out.append(PolylineCommand(pts, config.DRAWING_COLOR, width))
    radius = viewport.px(config.VERTEX_RADIUS)
    for i, (x, y) in enumerate(pts):
        out.append(VertexCommand(x, y, radius, config.DRAWING_COLOR, i + 1))
    return out


def build_scene(
    territories: Iterable[Territory],
    viewport: Viewport,
    selection: Optional[str] = None,
    team_size: Optional[int] = None,
    drawing: Sequence[Point] = (),
    image_source: Optional[str] = None,
    backdrop: Optional[str] = None,
) -> Scene:
    scale = viewport.scale
    region = viewport.visible_region()
    scene = Scene(
        size=float(config.CANVAS_SIZE),
        scale=scale,
        view_box=viewport.view_box(),
        origin=(region["min_x"], region["min_y"]),
    )
    scene.commands.append(
        ImageCommand(image_source, float(config.CANVAS_SIZE), backdrop or _bgr_to_hex(config.DEFAULT_BACKDROP[::-1]))
    )

    labels_out: List[LabelCommand] = []
    show_labels = scale > config.LABEL_MIN_SCALE
    skipped = 0
    for t in territories:
        if not is_drawable(t.points):
            skipped += 1
            logger.warning("[render] skip territory %s (%d points)", t.id, len(t.points or ()))
            continue
        labels = occupant_labels(t, team_size)
        selected = t.id == selection
        color = display_color(t, len(labels))
        opacity = config.CLAIMED_FILL_OPACITY if labels else config.FREE_FILL_OPACITY
        width = config.SELECTED_STROKE_WIDTH if selected else config.STROKE_WIDTH
        scene.commands.append(
            PolygonCommand(t.id, tuple(t.points), color, opacity, color, viewport.px(width), selected)
        )
        if not show_labels or not labels:
            continue
        cx, cy = centroid(t.points)
        for label, dy in zip(labels, label_offsets(len(labels), viewport.px(config.LABEL_LINE_OFFSET))):
            labels_out.append(
                LabelCommand(
                    text=label.text,
                    x=cx,
                    y=cy + dy,
                    font_size=viewport.px(config.LABEL_FONT_SIZE),
                    color=config.LEADER_LABEL_COLOR if label.is_team_leader else config.LABEL_COLOR,
                    outline=config.LABEL_OUTLINE_COLOR,
                    outline_width=viewport.px(config.LABEL_STROKE_WIDTH),
                    territory_id=t.id,
                )
            )

    # labels on top of every polygon
    scene.commands.extend(labels_out)
    scene.commands.extend(_drawing_commands(drawing, viewport))
    if skipped:
        logger.info("[render] %d malformed territories skipped", skipped)
    return scene
