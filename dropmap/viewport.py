from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Sequence

from . import config
from .geometry import Point, centroid, clamp_to_frame, suggested_scale

logger = logging.getLogger(__name__)


def clamp_scale(value: float) -> float:
    return min(max(value, config.MIN_SCALE), config.MAX_SCALE)


@dataclass
class Viewport:
    """Scale and pan over the square canonical frame.

    Convention: ``pan`` is kept in map units and
    ``screen = (map + pan) * scale * fit`` with ``fit = size_px / CANVAS_SIZE``.
    Wheel zoom, button zoom and drag pan all go through this one formula.
    """

    size_px: float = float(config.CANVAS_SIZE)
    scale: float = 1.0
    pan: Point = field(default=(0.0, 0.0))

    @property
    def fit(self) -> float:
        if self.size_px <= 0:
            return 0.0
        return self.size_px / float(config.CANVAS_SIZE)

    @property
    def usable(self) -> bool:
        return self.fit > 0

    def resize(self, size_px: float) -> None:
        self.size_px = float(size_px)

    def map_to_screen(self, point: Point) -> Point | None:
        if not self.usable:
            return None
        k = self.scale * self.fit
        return ((point[0] + self.pan[0]) * k, (point[1] + self.pan[1]) * k)

    def screen_to_map(self, point: Point, clamp: bool = False) -> Point | None:
        if not self.usable:
            return None
        k = self.scale * self.fit
        mapped = (point[0] / k - self.pan[0], point[1] / k - self.pan[1])
        if clamp:
            return clamp_to_frame(mapped)
        return mapped

    def zoom_at(self, screen_point: Point, factor: float) -> bool:
        if not self.usable or factor <= 0:
            return False
        new_scale = clamp_scale(self.scale * factor)
        if new_scale == self.scale:
            return False
        anchor = self.screen_to_map(screen_point)
        k = new_scale * self.fit
        self.pan = (screen_point[0] / k - anchor[0], screen_point[1] / k - anchor[1])
        self.scale = new_scale
        return True

    def wheel(self, screen_point: Point, delta_y: float) -> bool:
        factor = config.WHEEL_ZOOM_OUT if delta_y > 0 else config.WHEEL_ZOOM_IN
        return self.zoom_at(screen_point, factor)

    def center(self) -> Point:
        return (self.size_px / 2.0, self.size_px / 2.0)

    def zoom_in(self) -> bool:
        return self.zoom_at(self.center(), config.BUTTON_ZOOM_STEP)

    def zoom_out(self) -> bool:
        return self.zoom_at(self.center(), 1.0 / config.BUTTON_ZOOM_STEP)

    def pan_by(self, delta_screen: Point) -> None:
        if not self.usable:
            return
        k = self.scale * self.fit
        self.pan = (self.pan[0] + delta_screen[0] / k, self.pan[1] + delta_screen[1] / k)

    def reset(self) -> None:
        self.scale = 1.0
        self.pan = (0.0, 0.0)

    def focus(self, polygon: Sequence[Point]) -> bool:
        c = centroid(polygon)
        if c is None or not self.usable:
            return False
        self.scale = clamp_scale(suggested_scale(polygon))
        half = config.CANVAS_SIZE / (2.0 * self.scale)
        self.pan = (half - c[0], half - c[1])
        logger.debug("[viewport] focus (%.1f, %.1f) at x%.2f", c[0], c[1], self.scale)
        return True

    def visible_region(self) -> Dict[str, float]:
        span = config.CANVAS_SIZE / self.scale
        min_x = -self.pan[0]
        min_y = -self.pan[1]
        return {
            "min_x": min_x,
            "min_y": min_y,
            "max_x": min_x + span,
            "max_y": min_y + span,
            "scale": self.scale,
        }

    def view_box(self) -> str:
        r = self.visible_region()
        w = r["max_x"] - r["min_x"]
        h = r["max_y"] - r["min_y"]
        return f"{r['min_x']:.3f} {r['min_y']:.3f} {w:.3f} {h:.3f}"

    def px(self, screen_units: float) -> float:
        """Map-space length that renders as ``screen_units`` at the current scale."""
        return screen_units / self.scale

    def to_dict(self) -> Dict[str, object]:
        return {
            "scale": self.scale,
            "pan": {"x": self.pan[0], "y": self.pan[1]},
            "size": self.size_px,
            "viewBox": self.view_box(),
        }
