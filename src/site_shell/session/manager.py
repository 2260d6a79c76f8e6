"""Owns one tab state machine per configured site and persists them."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable

from site_shell.exceptions import PersistenceError, UnknownSiteError
from site_shell.session.models import TabSession, WindowState
from site_shell.session.tab import TabSessionMachine
from site_shell.store.records import RecordStore
from site_shell.whitelist.models import SiteEntry, WhitelistChange
from site_shell.whitelist.store import WhitelistStore

logger = logging.getLogger(__name__)

SessionListener = Callable[[TabSession], None]


class TabSessionManager:
    """Keeps tab sessions in step with the whitelist and durable storage.

    Sessions are created and dropped as sites are added and removed.
    Changes are written on a debounce timer (one write per window, however
    many updates land in it) and unconditionally on shutdown. Without a
    running event loop each change is written immediately. A failed
    write leaves the record dirty so the next tick retries it.

    Args:
        whitelist: Site list to mirror.
        records: Durable store; None keeps everything in memory.
        debounce_seconds: Coalescing window for writes.
        clock: Time source for last-active stamps.
    """

    def __init__(
        self,
        whitelist: WhitelistStore,
        records: RecordStore | None = None,
        *,
        debounce_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        self.whitelist = whitelist
        self.records = records
        self.debounce_seconds = debounce_seconds
        self._clock = clock
        self._machines: dict[str, TabSessionMachine] = {}
        self._dirty: set[str] = set()
        self._pending_deletes: set[str] = set()
        self._window = WindowState()
        self._window_dirty = False
        self._timer: asyncio.TimerHandle | None = None
        self._save_lock = threading.Lock()
        self._listeners: list[SessionListener] = []
        self._unsubscribe = whitelist.subscribe(self._on_whitelist_change)

    # ---- Queries ----

    def machine(self, site_id: str) -> TabSessionMachine:
        machine = self._machines.get(site_id)
        if machine is None:
            raise UnknownSiteError(f"No tab session for site {site_id!r}")
        return machine

    def get(self, site_id: str) -> TabSessionMachine | None:
        return self._machines.get(site_id)

    def session(self, site_id: str) -> TabSession:
        return self.machine(site_id).session

    def sessions(self) -> list[TabSession]:
        """Sessions in sidebar order."""
        return [
            self._machines[entry.site_id].session
            for entry in self.whitelist.list()
            if entry.site_id in self._machines
        ]

    @property
    def window_state(self) -> WindowState:
        return WindowState(**self._window.to_record())

    @property
    def active_site_id(self) -> str | None:
        return self._window.active_site_id

    def has_pending_writes(self) -> bool:
        return bool(self._dirty or self._pending_deletes or self._window_dirty)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- Lifecycle ----

    def restore(self) -> list[TabSession]:
        """Rebuild Idle sessions for every current site from storage.

        Saved favicon/unread/url values apply immediately; records of sites
        that no longer exist are discarded.
        """
        stored: dict[str, dict] = {}
        window_record = None
        if self.records is not None:
            try:
                stored = self.records.load_tab_sessions()
                window_record = self.records.load_window_state()
            except PersistenceError as e:
                logger.warning("Cannot restore sessions, starting fresh: %s", e)

        entries = self.whitelist.list()
        for machine in self._machines.values():
            machine.close()
        self._machines = {}
        self._dirty.clear()
        for entry in entries:
            record = stored.get(entry.site_id)
            session = self._restore_one(entry, record)
            self._machines[entry.site_id] = self._make_machine(session)

        orphans = set(stored) - {e.site_id for e in entries}
        if orphans:
            logger.info("Discarding %d orphaned tab session(s)", len(orphans))
            if self.records is not None:
                try:
                    self.records.prune_tab_sessions({e.site_id for e in entries})
                except PersistenceError as e:
                    logger.warning("Failed to prune orphaned sessions: %s", e)
                    self._pending_deletes |= orphans

        self._window = WindowState.from_record(window_record) if window_record else WindowState()
        if self._window.active_site_id not in self._machines:
            self._window.active_site_id = entries[0].site_id if entries else None
        return self.sessions()

    def activate(self, site_id: str) -> bool:
        """Make a site's tab the active one.

        Returns False (and does nothing) if the site no longer exists, which
        covers a focus request racing a removal.
        """
        machine = self._machines.get(site_id)
        if machine is None or machine.closed:
            logger.debug("Activate ignored for missing site %s", site_id)
            return False
        machine.activate()
        if self._window.active_site_id != site_id:
            self._window.active_site_id = site_id
            self._window_dirty = True
            self.schedule_save()
        return True

    def update_window(
        self,
        *,
        x: float | None = None,
        y: float | None = None,
        width: float | None = None,
        height: float | None = None,
    ) -> WindowState:
        record = self._window.to_record()
        for key, value in (("x", x), ("y", y), ("width", width), ("height", height)):
            if value is not None:
                record[key] = value
        self._window = WindowState.from_record(record)
        self._window_dirty = True
        self.schedule_save()
        return self.window_state

    def shutdown(self) -> bool:
        """Cancel the debounce timer and write everything now."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        ok = self.flush()
        self._unsubscribe()
        return ok

    # ---- Persistence ----

    def schedule_save(self) -> None:
        """Arm the debounce timer if it is not already running.

        Without a running event loop there is nothing to debounce on, so the
        dirty records are written straight away.
        """
        if self.records is None or self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer)

    def flush(self) -> bool:
        """Write all dirty records; returns False if any write failed."""
        if self.records is None:
            self._dirty.clear()
            self._window_dirty = False
            return True
        ok = True
        with self._save_lock:
            for site_id in sorted(self._pending_deletes):
                try:
                    self.records.delete_tab_session(site_id)
                    self._pending_deletes.discard(site_id)
                except PersistenceError as e:
                    ok = False
                    logger.warning("Failed to delete session %s, will retry: %s", site_id, e)

            for site_id in sorted(self._dirty):
                machine = self._machines.get(site_id)
                if machine is None:
                    self._dirty.discard(site_id)
                    continue
                try:
                    self.records.save_tab_session(site_id, machine.session.to_record())
                    self._dirty.discard(site_id)
                except PersistenceError as e:
                    ok = False
                    logger.warning("Failed to save session %s, will retry: %s", site_id, e)

            if self._window_dirty:
                try:
                    self.records.save_window_state(self._window.to_record())
                    self._window_dirty = False
                except PersistenceError as e:
                    ok = False
                    logger.warning("Failed to save window state, will retry: %s", e)
        return ok

    def _on_timer(self) -> None:
        self._timer = None
        if not self.flush():
            self.schedule_save()

    # ---- Internals ----

    def _restore_one(self, entry: SiteEntry, record: dict | None) -> TabSession:
        if record:
            try:
                session = TabSession.from_record({**record, "site_id": entry.site_id})
                if not session.current_url:
                    session.current_url = entry.url
                return session
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Discarding malformed session for %s: %s", entry.site_id, e)
        return TabSession(site_id=entry.site_id, current_url=entry.url)

    def _make_machine(self, session: TabSession) -> TabSessionMachine:
        return TabSessionMachine(session, on_change=self._machine_changed, clock=self._clock)

    def _machine_changed(self, machine: TabSessionMachine) -> None:
        self._dirty.add(machine.site_id)
        self.schedule_save()
        if self._listeners:
            snapshot = machine.session
            for listener in list(self._listeners):
                try:
                    listener(snapshot)
                except Exception:
                    logger.exception("Session listener failed for %s", machine.site_id)

    def _on_whitelist_change(self, change: WhitelistChange) -> None:
        if change.kind == "added" and change.entry is not None:
            self._add(change.entry)
        elif change.kind == "removed" and change.entry is not None:
            self._remove(change.entry.site_id)
        elif change.kind == "loaded":
            current = {e.site_id: e for e in self.whitelist.list()}
            for site_id in list(self._machines):
                if site_id not in current:
                    self._remove(site_id)
            for site_id, entry in current.items():
                if site_id not in self._machines:
                    self._add(entry)

    def _add(self, entry: SiteEntry) -> None:
        if entry.site_id in self._machines:
            return
        machine = self._make_machine(TabSession(site_id=entry.site_id, current_url=entry.url))
        self._machines[entry.site_id] = machine
        self._pending_deletes.discard(entry.site_id)
        self._dirty.add(entry.site_id)
        if self._window.active_site_id is None:
            self._window.active_site_id = entry.site_id
            self._window_dirty = True
        self.schedule_save()

    def _remove(self, site_id: str) -> None:
        machine = self._machines.pop(site_id, None)
        if machine is not None:
            machine.close()
        self._dirty.discard(site_id)
        if self.records is not None:
            try:
                self.records.delete_tab_session(site_id)
            except PersistenceError as e:
                logger.warning("Failed to delete session %s, will retry: %s", site_id, e)
                self._pending_deletes.add(site_id)
                self.schedule_save()
        if self._window.active_site_id == site_id:
            remaining = self.whitelist.list()
            self._window.active_site_id = remaining[0].site_id if remaining else None
            self._window_dirty = True
            self.schedule_save()
