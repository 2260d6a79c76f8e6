"""Data models for tab sessions and window geometry."""

from __future__ import annotations

import base64
import binascii
import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MIN_WINDOW_WIDTH = 800
MIN_WINDOW_HEIGHT = 400


class LoadPhase(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class TabSession:
    """Runtime state of one site's tab."""

    site_id: str
    current_url: str = ""
    phase: LoadPhase = LoadPhase.IDLE
    title: str = ""
    favicon: bytes | None = None
    favicon_generated: bool = False
    unread: int | None = None
    last_active: float | None = None

    @property
    def has_favicon(self) -> bool:
        return self.favicon is not None

    def to_record(self) -> dict:
        """JSON-able form; the load phase is not persisted."""
        return {
            "site_id": self.site_id,
            "current_url": self.current_url,
            "title": self.title,
            "favicon": base64.b64encode(self.favicon).decode("ascii") if self.favicon else None,
            "favicon_generated": self.favicon_generated,
            "unread": self.unread,
            "last_active": self.last_active,
        }

    @classmethod
    def from_record(cls, record: dict) -> "TabSession":
        """Rebuild an Idle session from a persisted record."""
        favicon = None
        raw_icon = record.get("favicon")
        if raw_icon:
            try:
                favicon = base64.b64decode(raw_icon, validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Discarding corrupt favicon for site %s", record.get("site_id"))
        unread = record.get("unread")
        last_active = record.get("last_active")
        return cls(
            site_id=str(record["site_id"]),
            current_url=str(record.get("current_url") or ""),
            title=str(record.get("title") or ""),
            favicon=favicon,
            favicon_generated=bool(record.get("favicon_generated", False)) and favicon is not None,
            unread=int(unread) if isinstance(unread, (int, float)) and unread >= 0 else None,
            last_active=float(last_active) if isinstance(last_active, (int, float)) else None,
        )


@dataclass
class WindowState:
    """Process-wide window geometry and selection."""

    x: float = 0.0
    y: float = 0.0
    width: float = 1200.0
    height: float = 800.0
    active_site_id: str | None = None

    def to_record(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "active_site_id": self.active_site_id,
        }

    @classmethod
    def from_record(cls, record: dict) -> "WindowState":
        """Restore, clamping the size so a corrupt frame stays usable."""
        defaults = cls()

        def number(key: str, default: float) -> float:
            value = record.get(key)
            return float(value) if isinstance(value, (int, float)) else default

        active = record.get("active_site_id")
        return cls(
            x=number("x", defaults.x),
            y=number("y", defaults.y),
            width=max(number("width", defaults.width), MIN_WINDOW_WIDTH),
            height=max(number("height", defaults.height), MIN_WINDOW_HEIGHT),
            active_site_id=str(active) if active else None,
        )
