"""Wires the engine components together for one shell window."""

from __future__ import annotations

import asyncio
import logging

import httpx

from site_shell.config import ShellConfig
from site_shell.exceptions import CompilationRejectedError
from site_shell.favicon.resolver import FaviconResolver, FaviconResult
from site_shell.filters.active import ActiveRuleSet
from site_shell.filters.adapter import ContentBlockAdapter
from site_shell.filters.models import CompiledFilterRuleSet
from site_shell.filters.source import FilterListService
from site_shell.host.base import BaseExternalOpener, BasePageHost
from site_shell.host.opener import SystemBrowserOpener
from site_shell.navigation.models import NavigationDecision
from site_shell.navigation.policy import NavigationPolicyEngine
from site_shell.navigation.sso import SSODetector
from site_shell.session.manager import TabSessionManager
from site_shell.session.models import LoadPhase, TabSession
from site_shell.session.unread import UnreadPoller
from site_shell.store.records import RecordStore
from site_shell.whitelist.models import SiteEntry, WhitelistChange
from site_shell.whitelist.store import WhitelistStore

logger = logging.getLogger(__name__)


class SiteShell:
    """Top-level engine for a single-purpose browsing window.

    The page host reports page events here and asks ``handle_navigation``
    before committing any navigation. Everything else (rule activation,
    favicon fetches, unread polling, persistence) is driven from inside.

    Args:
        config: Shared settings.
        host: Page-rendering engine.
        opener: Default-browser handoff; the system browser if omitted.
        records: Durable store; opened at ``config.db_path`` if omitted.
        http_client: Shared AsyncClient for filter-list and favicon fetches.
    """

    def __init__(
        self,
        config: ShellConfig,
        host: BasePageHost,
        opener: BaseExternalOpener | None = None,
        *,
        records: RecordStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.host = host
        self.opener = opener or SystemBrowserOpener()
        self.records = records if records is not None else RecordStore(config.db_path)

        self.whitelist = WhitelistStore(self.records)
        self.sessions = TabSessionManager(
            self.whitelist, self.records, debounce_seconds=config.save_debounce_seconds
        )
        self.policy = NavigationPolicyEngine(
            self.whitelist,
            sso_detector=SSODetector(extra_hosts=config.sso_hosts),
            opener=self.opener,
            focus_site=self._focus,
            redirect_capacity=config.redirect_chain_capacity,
        )
        self.rules = ActiveRuleSet()
        self.adapter = ContentBlockAdapter(host, config.rule_ceiling)
        self.filters = FilterListService(
            self.rules,
            self.records,
            config.filter_list_url,
            on_swap=self.apply_rules,
            client=http_client,
        )
        self.poller = UnreadPoller(host, self.sessions, config.unread_poll_seconds)
        self.favicons = FaviconResolver(client=http_client, timeout=config.favicon_timeout)

        self._tasks: list[asyncio.Task] = []
        self._favicon_tasks: dict[str, asyncio.Task] = {}
        self._started = False
        # registered after the session manager, so tabs exist before these hooks run
        self._unsubscribe = self.whitelist.subscribe(self._on_whitelist_change)

    # ---- Lifecycle ----

    def start(self) -> list[TabSession]:
        """Load the site list, restore tabs and put blocking in place.

        Background work (list refresh, unread polling, favicons) starts
        separately with ``launch``, since it needs a running event loop.
        """
        self.whitelist.load()
        sessions = self.sessions.restore()
        if self.filters.load_cached() is None:
            self.apply_rules(self.rules.current())
        self._started = True
        logger.info("Shell started with %d site(s)", len(sessions))
        return sessions

    async def launch(self) -> None:
        """Start the periodic refresh and poll tasks plus initial favicon fetches."""
        if not self._started:
            self.start()
        self._tasks.append(
            asyncio.create_task(self.filters.run_periodic(self.config.filter_refresh_seconds))
        )
        self._tasks.append(asyncio.create_task(self.poller.run()))
        for session in self.sessions.sessions():
            if session.favicon is None or session.favicon_generated:
                self.refresh_favicon(session.site_id)

    def shutdown(self) -> bool:
        """Stop background work and write all pending state; returns write success."""
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        for task in self._favicon_tasks.values():
            task.cancel()
        self._favicon_tasks.clear()
        self._unsubscribe()
        ok = self.sessions.shutdown()
        logger.info("Shell shut down (state saved: %s)", ok)
        return ok

    # ---- Page host events ----

    def handle_navigation(
        self,
        site_id: str,
        url: str,
        *,
        is_redirect: bool = False,
        previous_url: str | None = None,
        redirect_from: str | None = None,
    ) -> bool:
        """Decide a navigation from a tab; returns whether it may proceed.

        A blocked navigation is cancelled in the tab; focusing another tab
        or the external handoff has already happened by the time this returns.
        """
        decision = self.decide(
            site_id,
            url,
            is_redirect=is_redirect,
            previous_url=previous_url,
            redirect_from=redirect_from,
        )
        if not decision.allowed:
            self.host.cancel_load(site_id)
        return decision.allowed

    def decide(
        self,
        site_id: str,
        url: str,
        *,
        is_redirect: bool = False,
        previous_url: str | None = None,
        redirect_from: str | None = None,
    ) -> NavigationDecision:
        return self.policy.decide(
            url,
            self.whitelist.get(site_id),
            is_redirect,
            previous_url=previous_url,
            redirect_from=redirect_from,
        )

    def on_load_started(self, site_id: str, url: str | None = None) -> bool:
        machine = self.sessions.get(site_id)
        if machine is None:
            return False
        return machine.on_load_started(url)

    def on_load_finished(
        self,
        site_id: str,
        success: bool,
        url: str | None = None,
        title: str | None = None,
    ) -> bool:
        machine = self.sessions.get(site_id)
        if machine is None or not machine.on_load_finished(success, url, title):
            return False
        session = machine.session
        if success and (session.favicon is None or session.favicon_generated):
            self.refresh_favicon(site_id)
        return True

    def select(self, site_id: str) -> bool:
        """Bring a tab to the front (sidebar click or shortcut)."""
        return self._focus(site_id)

    # ---- Content blocking ----

    def apply_rules(self, rule_set: CompiledFilterRuleSet) -> int:
        """Install `rule_set` on every tab; returns how many tabs accepted it.

        A tab whose host rejects even a truncated payload keeps whatever
        rules it had before.
        """
        applied = 0
        for session in self.sessions.sessions():
            if self._activate_rules(rule_set, session.site_id):
                applied += 1
        return applied

    def _activate_rules(self, rule_set: CompiledFilterRuleSet, site_id: str) -> bool:
        try:
            self.adapter.activate(rule_set, site_id)
        except CompilationRejectedError as e:
            logger.error("Content blocking not updated for %s: %s", site_id, e)
            return False
        return True

    # ---- Favicons ----

    def refresh_favicon(self, site_id: str) -> asyncio.Task | None:
        """Fetch a site's favicon in the background.

        Any fetch already running for the site is cancelled. Returns None
        when the site is unknown or no event loop is running.
        """
        entry = self.whitelist.get(site_id)
        if entry is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; favicon for %s not fetched", site_id)
            return None
        previous = self._favicon_tasks.pop(site_id, None)
        if previous is not None:
            previous.cancel()
        task = loop.create_task(self._fetch_favicon(entry))
        self._favicon_tasks[site_id] = task
        task.add_done_callback(lambda t, sid=site_id: self._favicon_done(sid, t))
        return task

    async def _fetch_favicon(self, entry: SiteEntry) -> FaviconResult | None:
        result = await self.favicons.resolve(entry)
        if entry.site_id not in self.whitelist:
            logger.debug("Discarding favicon for removed site %s", entry.site_id)
            return None
        machine = self.sessions.get(entry.site_id)
        if machine is not None:
            machine.on_favicon_received(result.data, generated=result.generated)
        return result

    def _favicon_done(self, site_id: str, task: asyncio.Task) -> None:
        if self._favicon_tasks.get(site_id) is task:
            del self._favicon_tasks[site_id]

    # ---- Internals ----

    def reload(self, site_id: str) -> bool:
        """Manual reload; also the way out of a failed load."""
        machine = self.sessions.get(site_id)
        if machine is None or not machine.reload():
            return False
        self.host.load_url(site_id, machine.session.current_url)
        return True

    def _focus(self, site_id: str) -> bool:
        if not self.sessions.activate(site_id):
            return False
        self.host.focus_tab(site_id)
        # tabs load lazily, the first time they are shown
        session = self.sessions.session(site_id)
        if session.phase is LoadPhase.IDLE:
            self.host.load_url(site_id, session.current_url)
        return True

    def _on_whitelist_change(self, change: WhitelistChange) -> None:
        entry = change.entry
        if change.kind == "removed" and entry is not None:
            task = self._favicon_tasks.pop(entry.site_id, None)
            if task is not None:
                task.cancel()
            self.policy.forget(entry.site_id)
            self.adapter.deactivate(entry.site_id)
        elif change.kind == "added" and entry is not None and self._started:
            self._activate_rules(self.rules.current(), entry.site_id)
            self.refresh_favicon(entry.site_id)
