"""Unread-count extraction from page titles and poll stabilization."""

from __future__ import annotations

import re

MAX_BADGE_COUNT = 9999

_PATTERNS = (
    re.compile(r"\((\d+)\)"),  # "(3) Slack", "Slack (12)"
    re.compile(r"\[(\d+)\]"),  # "[2] Inbox"
    re.compile(r"[•·|]\s*(\d+)"),  # "Slack • 4", "Slack | 5"
    re.compile(r"unread\D{0,3}(\d+)", re.IGNORECASE),  # "(unread 7)"
    re.compile(r"(\d+)\s+unread", re.IGNORECASE),  # "Inbox 3 unread"
    re.compile(r"(\d+)"),
)


def parse_title_count(title: str | None) -> int:
    """Best-effort unread count from a document title; 0 if none."""
    if not title:
        return 0
    for pattern in _PATTERNS:
        match = pattern.search(title)
        if match:
            count = int(match.group(1))
            return count if count <= MAX_BADGE_COUNT else 0
    return 0


def coerce_signal(raw: str | int | None) -> int | None:
    """Interpret a raw poll result (count or title text)."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if 0 <= raw <= MAX_BADGE_COUNT else None
    return parse_title_count(str(raw))


class UnreadSignalFilter:
    """Accepts a value only once two consecutive polls agree."""

    def __init__(self) -> None:
        self._pending: int | None = None
        self.accepted: int | None = None

    def feed(self, value: int | None) -> int | None:
        """Feed one poll result; returns the newly accepted value or None."""
        if value is None or value < 0:
            self._pending = None
            return None
        if value != self._pending:
            self._pending = value
            return None
        if value == self.accepted:
            return None
        self.accepted = value
        return value

    def reset(self, accepted: int | None = None) -> None:
        self._pending = None
        self.accepted = accepted
