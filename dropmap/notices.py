from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from . import config

logger = logging.getLogger(__name__)


@dataclass
class Notice:
    level: str
    title: str
    message: str = ""
    created_at: float = field(default_factory=time.monotonic)

    def to_dict(self) -> dict:
        return {"level": self.level, "title": self.title, "message": self.message}


class NoticeBoard:
    """Transient notices that drop off after ``ttl`` seconds."""

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl = config.NOTICE_TTL if ttl is None else ttl
        self._clock = clock
        self._items: List[Notice] = []

    def push(self, level: str, title: str, message: str = "") -> Notice:
        notice = Notice(level, title, message, created_at=self._clock())
        self._items.append(notice)
        log = logger.warning if level in ("warning", "error") else logger.info
        log("[notice] %s: %s %s", level, title, message)
        return notice

    def info(self, title: str, message: str = "") -> Notice:
        return self.push("info", title, message)

    def warning(self, title: str, message: str = "") -> Notice:
        return self.push("warning", title, message)

    def error(self, title: str, message: str = "") -> Notice:
        return self.push("error", title, message)

    def active(self, now: Optional[float] = None) -> List[Notice]:
        now = self._clock() if now is None else now
        self._items = [n for n in self._items if now - n.created_at < self.ttl]
        return list(self._items)

    def clear(self) -> None:
        self._items = []
