"""Per-navigation in-scope / out-of-scope policy."""

from __future__ import annotations

import logging
from typing import Callable
from urllib.parse import urldefrag, urlparse

from site_shell.host.base import BaseExternalOpener
from site_shell.navigation.models import DecisionAction, NavigationDecision, Verdict
from site_shell.navigation.redirects import RedirectChain, is_wrapper_host, unwrap_redirect
from site_shell.navigation.sso import SSODetector
from site_shell.whitelist.models import SiteEntry
from site_shell.whitelist.patterns import canonical_host
from site_shell.whitelist.store import WhitelistStore

logger = logging.getLogger(__name__)

IN_PAGE_SCHEMES = {"about", "blob", "data"}
WEB_SCHEMES = {"http", "https"}

FocusCallback = Callable[[str], bool]


class NavigationPolicyEngine:
    """Decides whether a navigation stays in its tab.

    Policy, first match wins:

    1. host belongs to the originating site -> in-scope
    2. redirect hop of an allowed request that looks like SSO -> passthrough
    3. host belongs to another configured site -> blocked, focus that tab
    4. anything else -> blocked, hand off to the default browser

    ``decide`` must stay fast: no network I/O, and the only state kept is a
    bounded redirect chain per tab.

    Args:
        whitelist: Source of configured sites.
        sso_detector: SSO classifier; defaults to the built-in heuristics.
        opener: Default-browser handoff used by rule 4.
        focus_site: Called with a site id for rule 3; returns False when the
            site no longer exists.
        redirect_capacity: Hops remembered per tab.
    """

    def __init__(
        self,
        whitelist: WhitelistStore,
        *,
        sso_detector: SSODetector | None = None,
        opener: BaseExternalOpener | None = None,
        focus_site: FocusCallback | None = None,
        redirect_capacity: int = 32,
    ):
        self.whitelist = whitelist
        self.sso = sso_detector or SSODetector()
        self.opener = opener
        self.focus_site = focus_site
        self.redirect_capacity = redirect_capacity
        self._chains: dict[str, RedirectChain] = {}
        self._last_urls: dict[str, str] = {}

    # ---- Public API ----

    def decide(
        self,
        request_url: str,
        origin_entry: SiteEntry | None,
        is_redirect_of_allowed_request: bool = False,
        *,
        previous_url: str | None = None,
        redirect_from: str | None = None,
    ) -> NavigationDecision:
        """Classify a navigation and perform its side effect.

        Rule 3 focuses the owning tab; rule 4 opens the URL externally
        exactly once. Side-effect failures are logged, never raised.
        """
        decision = self.evaluate(
            request_url,
            origin_entry,
            is_redirect_of_allowed_request,
            previous_url=previous_url,
            redirect_from=redirect_from,
        )
        if decision.action is DecisionAction.FOCUS_TAB and decision.matched_site is not None:
            self._focus(decision.matched_site)
        elif decision.action is DecisionAction.OPEN_EXTERNAL:
            self._open_external(decision.external_url or decision.url)
        return decision

    def evaluate(
        self,
        request_url: str,
        origin_entry: SiteEntry | None,
        is_redirect_of_allowed_request: bool = False,
        *,
        previous_url: str | None = None,
        redirect_from: str | None = None,
    ) -> NavigationDecision:
        """Classify a navigation without side effects (besides the redirect chain)."""
        decision = self._classify(
            request_url,
            origin_entry,
            is_redirect_of_allowed_request,
            previous_url,
            redirect_from,
        )
        logger.debug(
            "Navigation %s from %s -> %s (%s)",
            request_url[:200],
            origin_entry.site_id if origin_entry else "-",
            decision.verdict.value,
            decision.reason,
        )
        return decision

    def chain_for(self, site_id: str) -> RedirectChain:
        chain = self._chains.get(site_id)
        if chain is None:
            chain = RedirectChain(self.redirect_capacity)
            self._chains[site_id] = chain
        return chain

    def forget(self, site_id: str) -> None:
        """Drop per-tab memory (site removed or tab reset)."""
        self._chains.pop(site_id, None)
        self._last_urls.pop(site_id, None)

    # ---- Classification ----

    def _classify(
        self,
        url: str,
        origin: SiteEntry | None,
        is_redirect: bool,
        previous_url: str | None,
        redirect_from: str | None,
    ) -> NavigationDecision:
        try:
            parsed = urlparse(url)
            host = canonical_host(parsed.hostname)
        except ValueError:
            return NavigationDecision(url, Verdict.OUT_OF_SCOPE, None, "malformed URL")
        scheme = parsed.scheme.lower()

        if origin is not None:
            last = previous_url or self._last_urls.get(origin.site_id)
            if last and _same_document(url, last):
                return NavigationDecision(url, Verdict.IN_SCOPE, origin, "same-document navigation")

        if scheme in IN_PAGE_SCHEMES:
            return NavigationDecision(url, Verdict.IN_SCOPE, origin, f"in-page {scheme}: resource")
        if scheme not in WEB_SCHEMES:
            return NavigationDecision(
                url, Verdict.OUT_OF_SCOPE, None, f"non-web scheme {scheme or '<none>'}",
                action=DecisionAction.OPEN_EXTERNAL,
            )
        if not host:
            return NavigationDecision(url, Verdict.OUT_OF_SCOPE, None, "URL has no host")

        # Rule 1
        if origin is not None and _owns(origin, host):
            chain = self.chain_for(origin.site_id)
            chain.clear()
            chain.record(url, Verdict.IN_SCOPE)
            self._last_urls[origin.site_id] = url
            return NavigationDecision(url, Verdict.IN_SCOPE, origin, "host matches originating site")

        # Rule 2
        if origin is not None:
            chain = self.chain_for(origin.site_id)
            redirect_hop = is_redirect or bool(redirect_from and chain.contains(redirect_from))
            if redirect_hop and self.sso.is_sso(url):
                chain.record(url, Verdict.SSO_PASSTHROUGH)
                self._last_urls[origin.site_id] = url
                return NavigationDecision(
                    url, Verdict.SSO_PASSTHROUGH, origin, "redirect hop to an SSO endpoint",
                )

        # Rule 3
        other = self.whitelist.match_host(host)
        if other is not None and (origin is None or other.site_id != origin.site_id):
            return NavigationDecision(
                url, Verdict.OUT_OF_SCOPE, other, "host belongs to another configured site",
                action=DecisionAction.FOCUS_TAB,
            )

        # Rule 4
        target = unwrap_redirect(url) if is_wrapper_host(host) else None
        if target and target != url:
            owner = self.whitelist.entry_for_url(target)
            if owner is not None:
                return NavigationDecision(
                    url, Verdict.OUT_OF_SCOPE, owner, "wrapped link to a configured site",
                    action=DecisionAction.FOCUS_TAB,
                )
        return NavigationDecision(
            url, Verdict.OUT_OF_SCOPE, None, "host is not whitelisted",
            action=DecisionAction.OPEN_EXTERNAL,
            external_url=target or url,
        )

    # ---- Side effects ----

    def _focus(self, entry: SiteEntry) -> None:
        if self.focus_site is None:
            return
        try:
            focused = self.focus_site(entry.site_id)
        except Exception:
            logger.exception("Focusing site %s failed", entry.site_id)
            return
        if not focused:
            logger.info("Site %s vanished before it could be focused", entry.site_id)

    def _open_external(self, url: str) -> None:
        if self.opener is None:
            logger.warning("No external opener configured; dropping %s", url[:200])
            return
        try:
            ok = self.opener.open(url)
        except Exception:
            logger.exception("External open failed for %s", url[:200])
            return
        if not ok:
            logger.warning("External open reported failure for %s", url[:200])


def _owns(entry: SiteEntry, host: str) -> bool:
    if host == entry.pattern:
        return True
    return entry.include_subdomains and host.endswith("." + entry.pattern)


def _same_document(url: str, previous: str) -> bool:
    """True if `url` differs from `previous` only by its fragment."""
    if url == previous:
        return "#" in url
    base, fragment = urldefrag(url)
    prev_base, _ = urldefrag(previous)
    return base == prev_base and (bool(fragment) or url.endswith("#"))
