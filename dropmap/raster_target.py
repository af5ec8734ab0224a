from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from . import config
from .geometry import Point
from .render import (
    ImageCommand,
    LabelCommand,
    PolygonCommand,
    PolylineCommand,
    Scene,
    VertexCommand,
    read_image,
)

logger = logging.getLogger(__name__)

ImageLoader = Callable[[str], Optional[np.ndarray]]


def _default_loader(source: str) -> Optional[np.ndarray]:
    path = Path(source)
    if not path.exists():
        logger.warning("[raster] map image not found: %s", source)
        return None
    return read_image(path)


class RasterTarget:
    """Bitmap strategy: draws a scene into a square BGR canvas with OpenCV."""

    def __init__(self, size_px: Optional[int] = None, image_loader: Optional[ImageLoader] = None):
        self.image_loader = image_loader or _default_loader
        self._cache: Dict[str, Optional[np.ndarray]] = {}
        self.resize(size_px)

    def resize(self, size_px: Optional[float]) -> None:
        # non-positive sizes fall back to the default canvas
        self.size_px = int(size_px) if size_px and size_px >= 1 else config.VIEWPORT_PX

    def _image(self, source: str) -> Optional[np.ndarray]:
        if source not in self._cache:
            self._cache[source] = self.image_loader(source)
        return self._cache[source]

    def _k(self, scene: Scene) -> float:
        return scene.scale * self.size_px / scene.size

    def _to_px(self, scene: Scene, points: Sequence[Point]) -> np.ndarray:
        k = self._k(scene)
        ox, oy = scene.origin
        pts = [[int(round((x - ox) * k)), int(round((y - oy) * k))] for x, y in points]
        return np.array(pts, dtype=np.int32).reshape((-1, 1, 2))

    def _thickness(self, scene: Scene, width: float) -> int:
        return max(1, int(round(width * self._k(scene))))

    def _draw_image(self, canvas: np.ndarray, scene: Scene, cmd: ImageCommand) -> np.ndarray:
        backdrop = config.hex_to_bgr(cmd.backdrop)
        canvas[:] = backdrop
        if not cmd.source:
            return canvas
        img = self._image(cmd.source)
        if img is None:
            return canvas
        frame = int(cmd.size)
        img = cv2.resize(img, (frame, frame), interpolation=cv2.INTER_AREA)
        k = self._k(scene)
        ox, oy = scene.origin
        m = np.float32([[k, 0, -ox * k], [0, k, -oy * k]])
        return cv2.warpAffine(
            img, m, (self.size_px, self.size_px),
            flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=backdrop,
        )

    def _blend_fill(self, canvas: np.ndarray, pts: np.ndarray, color: Tuple[int, int, int], alpha: float) -> None:
        overlay = canvas.copy()
        cv2.fillPoly(overlay, [pts], color)
        cv2.addWeighted(overlay, alpha, canvas, 1.0 - alpha, 0, dst=canvas)

    def _draw_text(self, canvas: np.ndarray, scene: Scene, cmd: LabelCommand) -> None:
        k = self._k(scene)
        font = cv2.FONT_HERSHEY_SIMPLEX
        fs = max(0.3, cmd.font_size * k / 22.0)
        (tw, th), _ = cv2.getTextSize(cmd.text, font, fs, 1)
        ox, oy = scene.origin
        org = (int(round((cmd.x - ox) * k - tw / 2)), int(round((cmd.y - oy) * k + th / 2)))
        outline = max(1, int(round(cmd.outline_width * k)))
        cv2.putText(canvas, cmd.text, org, font, fs, config.hex_to_bgr(cmd.outline), outline + 1, cv2.LINE_AA)
        cv2.putText(canvas, cmd.text, org, font, fs, config.hex_to_bgr(cmd.color), 1, cv2.LINE_AA)

    def render(self, scene: Scene) -> np.ndarray:
        canvas = np.zeros((self.size_px, self.size_px, 3), dtype=np.uint8)
        for cmd in scene.commands:
            if isinstance(cmd, ImageCommand):
                canvas = self._draw_image(canvas, scene, cmd)
            elif isinstance(cmd, PolygonCommand):
                pts = self._to_px(scene, cmd.points)
                self._blend_fill(canvas, pts, config.hex_to_bgr(cmd.fill), cmd.fill_opacity)
                cv2.polylines(
                    canvas, [pts], True, config.hex_to_bgr(cmd.stroke),
                    self._thickness(scene, cmd.stroke_width), cv2.LINE_AA,
                )
            elif isinstance(cmd, LabelCommand):
                self._draw_text(canvas, scene, cmd)
            elif isinstance(cmd, PolylineCommand):
                pts = self._to_px(scene, cmd.points)
                color = config.hex_to_bgr(cmd.color)
                if cmd.closed and cmd.fill_opacity > 0:
                    self._blend_fill(canvas, pts, color, cmd.fill_opacity)
                cv2.polylines(canvas, [pts], cmd.closed, color, self._thickness(scene, cmd.width), cv2.LINE_AA)
            elif isinstance(cmd, VertexCommand):
                center = self._to_px(scene, [(cmd.x, cmd.y)])[0][0]
                radius = max(2, int(round(cmd.radius * self._k(scene))))
                cv2.circle(canvas, (int(center[0]), int(center[1])), radius, config.hex_to_bgr(cmd.color), -1, cv2.LINE_AA)
        return canvas

    def encode_png(self, scene: Scene) -> bytes:
        ok, buf = cv2.imencode(".png", self.render(scene), [cv2.IMWRITE_PNG_COMPRESSION, 3])
        if not ok:
            raise RuntimeError("imencode PNG failed")
        return buf.tobytes()

    def write(self, scene: Scene, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.encode_png(scene))
        return path
