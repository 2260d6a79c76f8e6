"""Per-site tab state machine."""

from __future__ import annotations

import logging
import time
from typing import Callable

from site_shell.session.badge import UnreadSignalFilter, coerce_signal
from site_shell.session.models import LoadPhase, TabSession

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    LoadPhase.IDLE: {LoadPhase.LOADING},
    LoadPhase.LOADING: {LoadPhase.LOADED, LoadPhase.FAILED, LoadPhase.LOADING},
    LoadPhase.LOADED: {LoadPhase.LOADING},
    LoadPhase.FAILED: {LoadPhase.LOADING},
}


class TabSessionMachine:
    """Owns one TabSession; every mutation goes through these methods.

    Page events arrive asynchronously and may race (a favicon can land after
    a reload started, an unread poll can land while idle). Events that are
    invalid for the current phase are logged and ignored rather than raised
    back into the page host.

    Args:
        session: State to own; usually restored from storage.
        on_change: Called with the machine after every accepted mutation.
        clock: Time source for last-active stamps.
    """

    def __init__(
        self,
        session: TabSession,
        on_change: Callable[["TabSessionMachine"], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._session = session
        self._on_change = on_change
        self._clock = clock
        self._unread = UnreadSignalFilter()
        self._unread.reset(session.unread)
        self.closed = False

    @property
    def site_id(self) -> str:
        return self._session.site_id

    @property
    def phase(self) -> LoadPhase:
        return self._session.phase

    @property
    def session(self) -> TabSession:
        """A copy of the current state."""
        s = self._session
        return TabSession(
            site_id=s.site_id,
            current_url=s.current_url,
            phase=s.phase,
            title=s.title,
            favicon=s.favicon,
            favicon_generated=s.favicon_generated,
            unread=s.unread,
            last_active=s.last_active,
        )

    # ---- Events ----

    def activate(self) -> None:
        self._session.last_active = self._clock()
        self._changed()

    def on_load_started(self, url: str | None = None) -> bool:
        if not self._transition(LoadPhase.LOADING):
            return False
        if url:
            self._session.current_url = url
        self._changed()
        return True

    def on_load_finished(self, success: bool, url: str | None = None, title: str | None = None) -> bool:
        if self._session.phase is not LoadPhase.LOADING:
            logger.debug("Ignoring load finish for %s in phase %s", self.site_id, self.phase.value)
            return False
        self._transition(LoadPhase.LOADED if success else LoadPhase.FAILED)
        if url and success:
            self._session.current_url = url
        if title is not None:
            self._session.title = title
        self._changed()
        return True

    def reload(self) -> bool:
        """Manual reload; the only way out of FAILED."""
        return self.on_load_started()

    def on_url_changed(self, url: str) -> None:
        """Same-document or history URL change without a new load."""
        if url and url != self._session.current_url:
            self._session.current_url = url
            self._changed()

    def on_title_changed(self, title: str) -> None:
        if title != self._session.title:
            self._session.title = title
            self._changed()

    def on_favicon_received(self, data: bytes | None, generated: bool = False) -> None:
        if self.closed:
            return
        if data is None:
            # keep an existing icon rather than blanking the sidebar slot
            if self._session.favicon is None:
                logger.debug("No favicon for %s", self.site_id)
            return
        if data == self._session.favicon and generated == self._session.favicon_generated:
            return
        if generated and self._session.favicon is not None and not self._session.favicon_generated:
            # a real icon already present beats a generated fallback
            return
        self._session.favicon = data
        self._session.favicon_generated = generated
        self._changed()

    def on_unread_signal(self, value: str | int | None) -> bool:
        """Feed one poll result; returns True if the unread value changed."""
        if self.closed:
            return False
        accepted = self._unread.feed(coerce_signal(value))
        if accepted is None or accepted == self._session.unread:
            return False
        self._session.unread = accepted
        self._changed()
        return True

    def clear_unread(self) -> None:
        self._unread.reset(0)
        if self._session.unread:
            self._session.unread = 0
            self._changed()

    def close(self) -> None:
        """Detach; later events become no-ops."""
        self.closed = True
        self._on_change = None

    # ---- Internals ----

    def _transition(self, target: LoadPhase) -> bool:
        current = self._session.phase
        if target not in _TRANSITIONS[current]:
            logger.debug("Ignoring %s -> %s for %s", current.value, target.value, self.site_id)
            return False
        self._session.phase = target
        return True

    def _changed(self) -> None:
        if self._on_change is not None and not self.closed:
            self._on_change(self)
