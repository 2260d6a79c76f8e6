"""Heuristics for recognizing OAuth/SAML identity-provider hops."""

from __future__ import annotations

from urllib.parse import urlparse

DEFAULT_IDP_HOSTS = (
    "okta.com",
    "auth0.com",
    "login.microsoftonline.com",
    "login.live.com",
    "accounts.google.com",
    "appleid.apple.com",
    "identity.azure.com",
)

DEFAULT_IDP_SUFFIXES = (
    ".okta.com",
    ".auth0.com",
    ".login.microsoftonline.com",
    ".onelogin.com",
)

DEFAULT_PATH_MARKERS = (
    "/oauth",
    "/saml",
    "/sso",
    "/signin",
    "/login",
    "/auth",
    "/openid",
)

DEFAULT_QUERY_MARKERS = (
    "samlrequest",
    "samlresponse",
    "relaystate",
    "response_type=",
    "client_id=",
    "redirect_uri=",
    "id_token=",
)


class SSODetector:
    """Best-effort classifier for federated-login endpoints.

    Conservative by default; every list is replaceable or extendable since
    misclassification cuts both ways (an escape allowed, or a login flow
    broken).
    """

    def __init__(
        self,
        hosts: tuple[str, ...] | list[str] = DEFAULT_IDP_HOSTS,
        suffixes: tuple[str, ...] | list[str] = DEFAULT_IDP_SUFFIXES,
        path_markers: tuple[str, ...] | list[str] = DEFAULT_PATH_MARKERS,
        query_markers: tuple[str, ...] | list[str] = DEFAULT_QUERY_MARKERS,
        extra_hosts: list[str] | None = None,
    ):
        self.hosts = {h.lower().strip(".") for h in hosts}
        self.suffixes = tuple(s.lower() if s.startswith(".") else "." + s.lower() for s in suffixes)
        self.path_markers = tuple(p.lower() for p in path_markers)
        self.query_markers = tuple(q.lower() for q in query_markers)
        for host in extra_hosts or []:
            self.add_host(host)

    def add_host(self, host: str) -> None:
        """Trust `host` (and, given as ``*.host``, its subdomains) as an IdP."""
        h = host.strip().lower()
        if h.startswith("*."):
            self.suffixes = self.suffixes + ("." + h[2:],)
        elif h:
            self.hosts.add(h.strip("."))

    def is_idp_host(self, host: str | None) -> bool:
        h = (host or "").lower().rstrip(".")
        if not h:
            return False
        return h in self.hosts or h.endswith(self.suffixes)

    def is_sso(self, url: str) -> bool:
        """True if the URL looks like an IdP/SSO endpoint by host, query or path."""
        try:
            parsed = urlparse(url)
            host = parsed.hostname
        except ValueError:
            return False
        if not host:
            return False
        if self.is_idp_host(host):
            return True

        query = parsed.query.lower()
        if query and any(marker in query for marker in self.query_markers):
            return True

        path = parsed.path.lower()
        return any(marker in path for marker in self.path_markers)
