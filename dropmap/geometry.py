from __future__ import annotations

import math
from typing import Sequence, Tuple

from shapely.geometry import Polygon

from . import config

Point = Tuple[float, float]
BBox = Tuple[float, float, float, float]


def is_drawable(polygon: Sequence[Point]) -> bool:
    if polygon is None or len(polygon) < 3:
        return False
    for x, y in polygon:
        if not (math.isfinite(x) and math.isfinite(y)):
            return False
    return True


def point_in_polygon(point: Point, polygon: Sequence[Point]) -> bool:
    """Even-odd ray cast towards +x.

    An edge counts only when exactly one endpoint lies strictly above the ray
    (half-open in y), so a ray through a shared vertex is counted once and
    horizontal edges are never counted.
    """
    if not is_drawable(polygon):
        return False
    px, py = point
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i]
        xj, yj = polygon[j]
        if (yi > py) != (yj > py):
            x_cross = (xj - xi) * (py - yi) / (yj - yi) + xi
            if px < x_cross:
                inside = not inside
        j = i
    return inside


def centroid(polygon: Sequence[Point]) -> Point | None:
    # vertex mean, good enough for label placement
    if not polygon:
        return None
    n = float(len(polygon))
    return (sum(p[0] for p in polygon) / n, sum(p[1] for p in polygon) / n)


def bounding_box(polygon: Sequence[Point]) -> BBox | None:
    if not polygon:
        return None
    xs = [p[0] for p in polygon]
    ys = [p[1] for p in polygon]
    return (min(xs), min(ys), max(xs), max(ys))


def polygon_area(polygon: Sequence[Point]) -> float:
    if len(polygon) < 3:
        return 0.0
    pts = list(polygon)
    area = 0.0
    for a, b in zip(pts, pts[1:] + [pts[0]]):
        area += a[0] * b[1] - b[0] * a[1]
    return abs(area) * 0.5


def suggested_scale(polygon: Sequence[Point], viewport_size: float = config.CANVAS_SIZE) -> float:
    """Scale that shows the polygon's larger side at FOCUS_FRACTION of the frame."""
    bbox = bounding_box(polygon)
    if bbox is None:
        return config.FOCUS_MIN_SCALE
    min_x, min_y, max_x, max_y = bbox
    max_size = max(max_x - min_x, max_y - min_y)
    if max_size <= 0:
        return config.MAX_SCALE
    target = (viewport_size * config.FOCUS_FRACTION) / max_size
    return min(max(target, config.FOCUS_MIN_SCALE), config.MAX_SCALE)


def is_simple(polygon: Sequence[Point]) -> bool:
    if not is_drawable(polygon):
        return False
    poly = Polygon(polygon)
    return (not poly.is_empty) and poly.is_valid and poly.area > 0


def clamp_to_frame(point: Point, size: float = config.CANVAS_SIZE) -> Point:
    x, y = point
    return (min(max(x, 0.0), float(size)), min(max(y, 0.0), float(size)))
