from __future__ import annotations

import os
from pathlib import Path


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


CANVAS_SIZE = 1000

MIN_SCALE = 0.5
MAX_SCALE = 3.0
WHEEL_ZOOM_IN = 1.1
WHEEL_ZOOM_OUT = 0.9
BUTTON_ZOOM_STEP = 1.2
FOCUS_FRACTION = 0.3
FOCUS_MIN_SCALE = 1.5

FREE_FILL_OPACITY = 0.25
CLAIMED_FILL_OPACITY = 0.5
DRAWING_FILL_OPACITY = 0.25
STROKE_WIDTH = 2.0
SELECTED_STROKE_WIDTH = 3.0
LABEL_FONT_SIZE = 14.0
LABEL_STROKE_WIDTH = 3.0
LABEL_LINE_OFFSET = 20.0
LABEL_MIN_SCALE = 0.5
VERTEX_RADIUS = 6.0
DEFAULT_TERRITORY_COLOR = "#3B82F6"
MULTI_CLAIM_COLOR = "#EF4444"
LABEL_COLOR = "#FFFFFF"
LEADER_LABEL_COLOR = "#FBBF24"
LABEL_OUTLINE_COLOR = "#000000"
DRAWING_COLOR = "#000000"
DEFAULT_BACKDROP = (9, 9, 11)
EMPTY_SLOT = "?"
VIRTUAL_PREFIX = "virtual-"

TEAM_SIZES = {"solo": 1, "duo": 2, "trio": 3, "squad": 4}

API_BASE_URL = os.getenv("DROPMAP_API_URL", "http://127.0.0.1:5000")
API_TIMEOUT = float(os.getenv("DROPMAP_API_TIMEOUT", "10"))
API_TOKEN = os.getenv("DROPMAP_TOKEN", "")
USER_ID = os.getenv("DROPMAP_USER_ID", "")
DISPLAY_NAME = os.getenv("DROPMAP_DISPLAY_NAME", "")
IS_ADMIN = _flag(os.getenv("DROPMAP_IS_ADMIN", "0"))

NOTICE_TTL = float(os.getenv("DROPMAP_NOTICE_TTL", "3.0"))
LOG_LEVEL = os.getenv("DROPMAP_LOG_LEVEL", "INFO")
VIEWPORT_PX = int(os.getenv("DROPMAP_VIEWPORT_PX", "1000"))
EXPORT_DIR = Path(os.getenv("DROPMAP_EXPORT_DIR", "export"))


def apply_env() -> None:
    global MIN_SCALE, MAX_SCALE, API_BASE_URL, API_TIMEOUT, API_TOKEN
    global USER_ID, DISPLAY_NAME, IS_ADMIN, NOTICE_TTL, LOG_LEVEL, VIEWPORT_PX, EXPORT_DIR
    if "DROPMAP_MIN_SCALE" in os.environ:
        MIN_SCALE = float(os.environ["DROPMAP_MIN_SCALE"])
    if "DROPMAP_MAX_SCALE" in os.environ:
        MAX_SCALE = float(os.environ["DROPMAP_MAX_SCALE"])
    if "DROPMAP_API_URL" in os.environ:
        API_BASE_URL = os.environ["DROPMAP_API_URL"]
    if "DROPMAP_API_TIMEOUT" in os.environ:
        API_TIMEOUT = float(os.environ["DROPMAP_API_TIMEOUT"])
    if "DROPMAP_TOKEN" in os.environ:
        API_TOKEN = os.environ["DROPMAP_TOKEN"]
    if "DROPMAP_USER_ID" in os.environ:
        USER_ID = os.environ["DROPMAP_USER_ID"]
    if "DROPMAP_DISPLAY_NAME" in os.environ:
        DISPLAY_NAME = os.environ["DROPMAP_DISPLAY_NAME"]
    if "DROPMAP_IS_ADMIN" in os.environ:
        IS_ADMIN = _flag(os.environ["DROPMAP_IS_ADMIN"])
    if "DROPMAP_NOTICE_TTL" in os.environ:
        NOTICE_TTL = float(os.environ["DROPMAP_NOTICE_TTL"])
    if "DROPMAP_LOG_LEVEL" in os.environ:
        LOG_LEVEL = os.environ["DROPMAP_LOG_LEVEL"]
    if "DROPMAP_VIEWPORT_PX" in os.environ:
        VIEWPORT_PX = int(float(os.environ["DROPMAP_VIEWPORT_PX"]))
    if "DROPMAP_EXPORT_DIR" in os.environ:
        EXPORT_DIR = Path(os.environ["DROPMAP_EXPORT_DIR"])
    if MIN_SCALE > MAX_SCALE:
        MIN_SCALE, MAX_SCALE = MAX_SCALE, MIN_SCALE


def hex_to_bgr(color: str) -> tuple[int, int, int]:
    text = (color or "").strip().lstrip("#")
    if len(text) == 3:
        text = "".join(ch * 2 for ch in text)
    if len(text) != 6:
        text = DEFAULT_TERRITORY_COLOR.lstrip("#")
    try:
        r = int(text[0:2], 16)
        g = int(text[2:4], 16)
        b = int(text[4:6], 16)
    except ValueError:
        return hex_to_bgr(DEFAULT_TERRITORY_COLOR)
    return (b, g, r)
