"""Block-list fetching, conditional refresh and recompilation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from site_shell.exceptions import FilterListFetchError, PersistenceError
from site_shell.filters.active import ActiveRuleSet
from site_shell.filters.compiler import compile_filter_list
from site_shell.filters.models import CompiledFilterRuleSet
from site_shell.store.records import RecordStore

logger = logging.getLogger(__name__)

USER_AGENT = "SiteShell/1.0 (+filter-list refresh)"
MAX_LIST_BYTES = 20 * 1_048_576


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one refresh attempt."""

    updated: bool
    not_modified: bool = False
    version: int | None = None
    rule_count: int = 0
    skipped: int = 0
    error: str | None = None


class FilterListService:
    """Keeps the active rule set in step with a remote block-list.

    A failed fetch leaves the previously compiled set active. The last
    successfully compiled text is persisted with its ETag/Last-Modified so
    the next refresh can be conditional.

    Args:
        active: Holder whose rule set is replaced after each successful compile.
        records: Durable store for the cached list text; optional.
        source_url: Block-list URL; empty disables remote refresh.
        on_swap: Called with the new set after every swap (re-applies blocking).
        client: Injected AsyncClient (tests); one is created per call otherwise.
        timeout: HTTP timeout in seconds.
    """

    def __init__(
        self,
        active: ActiveRuleSet,
        records: RecordStore | None = None,
        source_url: str = "",
        *,
        on_swap: Callable[[CompiledFilterRuleSet], None] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ):
        self.active = active
        self.records = records
        self.source_url = source_url
        self.on_swap = on_swap
        self._client = client
        self.timeout = timeout
        self._etag: str | None = None
        self._last_modified: str | None = None

    def load_cached(self) -> CompiledFilterRuleSet | None:
        """Compile the persisted list text, if any, and make it active."""
        if self.records is None:
            return None
        try:
            cached = self.records.load_filter_source()
        except PersistenceError as e:
            logger.warning("Cannot read cached filter list: %s", e)
            return None
        if not cached:
            return None
        if self.source_url and cached["source_url"] != self.source_url:
            logger.info("Cached filter list is for %s; ignoring", cached["source_url"])
            return None
        self._etag = cached.get("etag")
        self._last_modified = cached.get("last_modified")
        return self.install(compile_filter_list(cached["body"]))

    def install(self, rule_set: CompiledFilterRuleSet) -> CompiledFilterRuleSet:
        """Atomically make `rule_set` active and notify the swap hook."""
        self.active.swap(rule_set)
        if self.on_swap is not None:
            try:
                self.on_swap(rule_set)
            except Exception:
                logger.exception("Filter swap hook failed for v%d", rule_set.version)
        return rule_set

    def apply_text(self, body: str) -> CompiledFilterRuleSet:
        """Compile list text supplied directly (e.g. a bundled default)."""
        return self.install(compile_filter_list(body))

    async def refresh(self, force: bool = False) -> RefreshResult:
        """Fetch the list, recompile on change and swap it in.

        Never raises: fetch failures are logged and reported in the result.
        """
        if not self.source_url:
            return RefreshResult(updated=False, error="no filter list URL configured")
        try:
            status, body, etag, last_modified = await self._fetch(force)
        except FilterListFetchError as e:
            logger.warning("Filter list refresh failed, keeping v%d: %s", self.active.current().version, e)
            return RefreshResult(updated=False, error=str(e))

        if status == 304:
            logger.info("Filter list not modified")
            return RefreshResult(updated=False, not_modified=True, version=self.active.current().version)

        # compilation is CPU-bound; keep it off the event loop
        rule_set = await asyncio.to_thread(compile_filter_list, body)
        if rule_set.source_digest == self.active.current().source_digest and not force:
            logger.info("Filter list content unchanged")
            self._etag, self._last_modified = etag, last_modified
            return RefreshResult(updated=False, not_modified=True, version=self.active.current().version)

        self.install(rule_set)
        self._etag, self._last_modified = etag, last_modified
        if self.records is not None:
            try:
                self.records.save_filter_source(self.source_url, body, etag, last_modified)
            except PersistenceError as e:
                logger.warning("Failed to cache filter list text: %s", e)
        return RefreshResult(
            updated=True,
            version=rule_set.version,
            rule_count=rule_set.stats.rule_count,
            skipped=rule_set.stats.skipped,
        )

    async def run_periodic(self, interval: float) -> None:
        """Refresh every `interval` seconds until cancelled."""
        while True:
            await self.refresh()
            await asyncio.sleep(interval)

    async def _fetch(self, force: bool) -> tuple[int, str, str | None, str | None]:
        headers = {"User-Agent": USER_AGENT, "Accept": "text/plain,*/*;q=0.5"}
        if not force:
            if self._etag:
                headers["If-None-Match"] = self._etag
            if self._last_modified:
                headers["If-Modified-Since"] = self._last_modified
        try:
            if self._client is not None:
                response = await self._client.get(self.source_url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(self.source_url, headers=headers)
        except httpx.HTTPError as e:
            raise FilterListFetchError(f"Fetch failed: {e}") from e

        if response.status_code == 304:
            return 304, "", self._etag, self._last_modified
        if response.status_code >= 400:
            raise FilterListFetchError(f"HTTP {response.status_code} from {self.source_url}")
        if len(response.content) > MAX_LIST_BYTES:
            raise FilterListFetchError(f"Filter list too large (>{MAX_LIST_BYTES} bytes)")
        body = response.text
        if not body.strip():
            raise FilterListFetchError("Filter list is empty")
        return (
            response.status_code,
            body,
            response.headers.get("etag"),
            response.headers.get("last-modified"),
        )
