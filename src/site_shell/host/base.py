"""Abstract interfaces for the collaborators the engine drives."""

from __future__ import annotations

from abc import ABC, abstractmethod


class BasePageHost(ABC):
    """The page-rendering engine, seen through the narrow surface the core uses."""

    @abstractmethod
    def apply_content_rules(self, tab_id: str, payload: list[dict]) -> bool:
        """Install a compiled content-rule payload on a tab.

        Returns False if the host rejects the payload (e.g. too many rules).
        """
        ...

    @abstractmethod
    def load_url(self, tab_id: str, url: str) -> None:
        """Start loading `url` in the tab."""
        ...

    @abstractmethod
    def cancel_load(self, tab_id: str) -> None:
        """Abort the in-flight navigation of a tab."""
        ...

    @abstractmethod
    def focus_tab(self, tab_id: str) -> None:
        """Bring a tab to the front of the window."""
        ...

    @abstractmethod
    async def query_badge(self, tab_id: str) -> str | int | None:
        """Introspect the page for an unread signal (title text or a count)."""
        ...


class BaseExternalOpener(ABC):
    """Hands URLs to the operating system's default browser."""

    @abstractmethod
    def open(self, url: str) -> bool:
        """Open `url` externally; returns success."""
        ...
