from __future__ import annotations

from html import escape
from pathlib import Path
from typing import List, Optional

from .render import (
    ImageCommand,
    LabelCommand,
    PolygonCommand,
    PolylineCommand,
    Scene,
    VertexCommand,
)


def _path_d(points) -> str:
    return "M " + " L ".join(f"{x:.2f} {y:.2f}" for x, y in points) + " Z"


class SvgTarget:
    """Vector strategy: one SVG document per scene, viewBox follows the viewport."""

    def __init__(self, size_px: Optional[int] = None):
        self.size_px = size_px

    def render(self, scene: Scene) -> str:
        size = int(self.size_px) if self.size_px and self.size_px >= 1 else int(scene.size)
        parts: List[str] = [
            f'<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
            f'width="{size}" height="{size}" viewBox="{scene.view_box}">'
        ]
        for cmd in scene.commands:
            if isinstance(cmd, ImageCommand):
                s = cmd.size
                parts.append(f'<rect x="0" y="0" width="{s}" height="{s}" fill="{cmd.backdrop}"/>')
                if cmd.source:
                    parts.append(
                        f'<image href="{escape(cmd.source)}" x="0" y="0" width="{s}" height="{s}" '
                        f'preserveAspectRatio="xMidYMid meet"/>'
                    )
            elif isinstance(cmd, PolygonCommand):
                parts.append(
                    f'<path d="{_path_d(cmd.points)}" fill="{cmd.fill}" fill-opacity="{cmd.fill_opacity}" '
                    f'stroke="{cmd.stroke}" stroke-width="{cmd.stroke_width:.3f}" '
                    f'data-territory="{escape(cmd.territory_id)}"/>'
                )
            elif isinstance(cmd, LabelCommand):
                parts.append(
                    f'<text x="{cmd.x:.2f}" y="{cmd.y:.2f}" font-size="{cmd.font_size:.3f}" '
                    f'text-anchor="middle" dominant-baseline="middle" fill="{cmd.color}" '
                    f'stroke="{cmd.outline}" stroke-width="{cmd.outline_width:.3f}" '
                    f'paint-order="stroke">{escape(cmd.text)}</text>'
                )
            elif isinstance(cmd, PolylineCommand):
                pts = " ".join(f"{x:.2f},{y:.2f}" for x, y in cmd.points)
                tag = "polygon" if cmd.closed else "polyline"
                fill = f'fill="{cmd.color}" fill-opacity="{cmd.fill_opacity}"' if cmd.closed else 'fill="none"'
                parts.append(
                    f'<{tag} points="{pts}" {fill} stroke="{cmd.color}" '
                    f'stroke-width="{cmd.width:.3f}" stroke-dasharray="{cmd.width * 2:.3f}"/>'
                )
            elif isinstance(cmd, VertexCommand):
                parts.append(
                    f'<circle cx="{cmd.x:.2f}" cy="{cmd.y:.2f}" r="{cmd.radius:.3f}" fill="{cmd.color}"/>'
                )
                parts.append(
                    f'<text x="{cmd.x:.2f}" y="{cmd.y:.2f}" font-size="{cmd.radius * 1.5:.3f}" '
                    f'text-anchor="middle" dominant-baseline="middle" fill="#fff">{cmd.index}</text>'
                )
        parts.append("</svg>")
        return "".join(parts)

    def write(self, scene: Scene, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(scene), encoding="utf-8")
        return path
