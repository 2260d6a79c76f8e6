"""Ordered, validated list of configured sites."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from typing import Callable
from urllib.parse import urlparse

from site_shell.exceptions import DuplicatePatternError, PersistenceError, UnknownSiteError
from site_shell.store.records import RecordStore
from site_shell.whitelist.models import SiteEntry, WhitelistChange
from site_shell.whitelist.patterns import canonical_host, host_suffixes, parse_pattern

logger = logging.getLogger(__name__)

Listener = Callable[[WhitelistChange], None]


class WhitelistStore:
    """Owns the configured sites, their order and their host patterns.

    Mutations are written through to the record store (when one is given)
    and then broadcast to subscribers, which is how the tab session manager
    learns to create or drop sessions.

    Args:
        records: Optional durable store; None keeps the list in memory only.
    """

    def __init__(self, records: RecordStore | None = None):
        self._records = records
        self._entries: list[SiteEntry] = []
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

    # ---- Queries ----

    def list(self) -> list[SiteEntry]:
        """Sites in sidebar order."""
        with self._lock:
            return list(self._entries)

    def get(self, site_id: str) -> SiteEntry | None:
        with self._lock:
            for entry in self._entries:
                if entry.site_id == site_id:
                    return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, site_id: object) -> bool:
        return isinstance(site_id, str) and self.get(site_id) is not None

    def match_host(self, host: str | None) -> SiteEntry | None:
        """Find the site owning `host`.

        Exact host match wins; otherwise the longest matching suffix among
        subdomain-inclusive entries. Entries are never implicitly
        subdomain-inclusive.
        """
        h = canonical_host(host)
        if not h:
            return None
        with self._lock:
            by_host = {entry.pattern: entry for entry in self._entries}
        exact = by_host.get(h)
        if exact is not None:
            return exact
        # host_suffixes is longest-first; skip the host itself
        for suffix in host_suffixes(h)[1:]:
            entry = by_host.get(suffix)
            if entry is not None and entry.include_subdomains:
                return entry
        return None

    def entry_for_url(self, url: str) -> SiteEntry | None:
        try:
            return self.match_host(urlparse(url).hostname)
        except ValueError:
            return None

    # ---- Mutations ----

    def add_entry(
        self,
        pattern: str,
        name: str | None = None,
        *,
        include_subdomains: bool = False,
        site_id: str | None = None,
    ) -> SiteEntry:
        """Validate and append a site.

        Raises:
            InvalidPatternError: if `pattern` is not a usable domain.
            DuplicatePatternError: if the normalized host is already configured.
        """
        parsed = parse_pattern(pattern)
        with self._lock:
            if any(e.pattern == parsed.host for e in self._entries):
                raise DuplicatePatternError(f"Site {parsed.host!r} is already configured")
            new_id = site_id or uuid.uuid4().hex
            if any(e.site_id == new_id for e in self._entries):
                raise DuplicatePatternError(f"Site id {new_id!r} is already in use")
            entry = SiteEntry(
                site_id=new_id,
                name=(name or "").strip() or parsed.host,
                pattern=parsed.host,
                position=len(self._entries),
                include_subdomains=include_subdomains or parsed.include_subdomains,
                start_url=parsed.start_url,
            )
            self._entries.append(entry)
            self._persist()
        logger.info("Added site %s (%s)", entry.pattern, entry.site_id)
        self._notify(WhitelistChange("added", entry))
        return entry

    def remove_entry(self, site_id: str) -> SiteEntry:
        with self._lock:
            entry = self._require(site_id)
            self._entries = self._renumber([e for e in self._entries if e.site_id != site_id])
            self._persist()
        logger.info("Removed site %s (%s)", entry.pattern, entry.site_id)
        self._notify(WhitelistChange("removed", entry))
        return entry

    def reorder(self, site_id: str, new_position: int) -> list[SiteEntry]:
        """Move a site to `new_position` (clamped) and renumber the rest."""
        with self._lock:
            entry = self._require(site_id)
            others = [e for e in self._entries if e.site_id != site_id]
            index = max(0, min(new_position, len(others)))
            others.insert(index, entry)
            self._entries = self._renumber(others)
            self._persist()
            moved = self._entries[index]
        self._notify(WhitelistChange("reordered", moved))
        return self.list()

    def rename(self, site_id: str, name: str) -> SiteEntry:
        with self._lock:
            entry = self._require(site_id)
            updated = replace(entry, name=name.strip() or entry.pattern)
            self._entries = [updated if e.site_id == site_id else e for e in self._entries]
            self._persist()
        self._notify(WhitelistChange("renamed", updated))
        return updated

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- Persistence ----

    def load(self) -> list[SiteEntry]:
        """Replace the in-memory list with the persisted one.

        Records whose host duplicates an earlier record are dropped, keeping
        the first occurrence.
        """
        if self._records is None:
            return self.list()
        loaded: list[SiteEntry] = []
        seen_hosts: set[str] = set()
        seen_ids: set[str] = set()
        for record in self._records.load_whitelist():
            try:
                entry = SiteEntry.from_record(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed site record %r: %s", record, e)
                continue
            host = canonical_host(entry.pattern)
            if host in seen_hosts or entry.site_id in seen_ids:
                logger.warning("Skipping duplicate site record %s", host)
                continue
            seen_hosts.add(host)
            seen_ids.add(entry.site_id)
            loaded.append(replace(entry, pattern=host))
        with self._lock:
            self._entries = self._renumber(loaded)
        self._notify(WhitelistChange("loaded"))
        return self.list()

    def _persist(self) -> None:
        if self._records is None:
            return
        try:
            self._records.save_whitelist([e.to_record() for e in self._entries])
        except PersistenceError as e:
            logger.warning("Failed to persist whitelist: %s", e)

    # ---- Internals ----

    def _require(self, site_id: str) -> SiteEntry:
        for entry in self._entries:
            if entry.site_id == site_id:
                return entry
        raise UnknownSiteError(f"No site with id {site_id!r}")

    @staticmethod
    def _renumber(entries: list[SiteEntry]) -> list[SiteEntry]:
        return [
            e if e.position == index else replace(e, position=index)
            for index, e in enumerate(entries)
        ]

    def _notify(self, change: WhitelistChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Whitelist listener failed for %s", change.kind)
