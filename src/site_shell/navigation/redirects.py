"""Recent redirect-chain memory and link-wrapper unwrapping."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from urllib.parse import parse_qsl, unquote, urlparse

from site_shell.navigation.models import Verdict

MAX_UNWRAPPED_LENGTH = 2000

WRAPPER_PARAMS = {
    "mail.google.com": ("data-saferedirecturl",),
    "l.facebook.com": ("u", "url"),
    "lm.facebook.com": ("u", "url"),
    "safelinks.protection.outlook.com": ("url",),
    "urldefense.proofpoint.com": ("u", "url"),
    "click.redditmedia.com": ("u", "url"),
}

KNOWN_SHORTENERS = frozenset({"t.co", "lnkd.in", "bit.ly", "goo.gl", "tinyurl.com"})

GENERIC_PARAMS = ("data-saferedirecturl", "url", "u", "redirect", "target", "dest", "q")


@dataclass(frozen=True)
class RedirectHop:
    url: str
    verdict: Verdict
    at: float


class RedirectChain:
    """Fixed-capacity record of recent allowed hops for one tab.

    Oldest hops are evicted first once `capacity` is reached.
    """

    def __init__(self, capacity: int = 32):
        self.capacity = max(1, capacity)
        self._hops: deque[RedirectHop] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._hops)

    def record(self, url: str, verdict: Verdict) -> None:
        self._hops.append(RedirectHop(url=url, verdict=verdict, at=time.monotonic()))

    def clear(self) -> None:
        self._hops.clear()

    def last(self) -> RedirectHop | None:
        return self._hops[-1] if self._hops else None

    def contains(self, url: str) -> bool:
        return any(hop.url == url for hop in self._hops)

    def in_sso_flow(self) -> bool:
        """True if the chain's latest hop was an SSO passthrough."""
        last = self.last()
        return last is not None and last.verdict is Verdict.SSO_PASSTHROUGH

    def hops(self) -> list[RedirectHop]:
        return list(self._hops)


def unwrap_redirect(url: str) -> str | None:
    """Extract the destination from a known link wrapper.

    Returns the decoded target for wrapper hosts, the URL itself for known
    shorteners, and None when nothing can be safely extracted.
    """
    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
    except ValueError:
        return None
    if not host:
        return None

    params = dict(parse_qsl(parsed.query, keep_blank_values=False))

    wrapper = _wrapper_params(host)
    if wrapper:
        for name in wrapper:
            target = _http_target(params.get(name))
            if target:
                return target
        return None

    if host in KNOWN_SHORTENERS:
        return url

    for name in GENERIC_PARAMS:
        target = _http_target(params.get(name))
        if target:
            return target
    return None


def is_wrapper_host(host: str | None) -> bool:
    """True for hosts whose only purpose is to redirect to a link they carry."""
    return bool(_wrapper_params((host or "").lower()))


def _wrapper_params(host: str) -> tuple[str, ...]:
    for base, names in WRAPPER_PARAMS.items():
        if host == base or host.endswith("." + base):
            return names
    return ()


def _http_target(value: str | None) -> str | None:
    if not value:
        return None
    decoded = _decode_smart(value)
    if decoded is None:
        return None
    try:
        target = urlparse(decoded)
    except ValueError:
        return None
    if target.scheme.lower() not in ("http", "https") or not target.hostname:
        return None
    return decoded


def _decode_smart(value: str) -> str | None:
    """Up to two percent-decoding passes to handle double-encoded values."""
    decoded = value
    for _ in range(2):
        once = unquote(decoded)
        if once == decoded:
            break
        decoded = once
    if len(decoded) > MAX_UNWRAPPED_LENGTH:
        return None
    return decoded
