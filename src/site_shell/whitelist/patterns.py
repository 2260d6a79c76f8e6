"""Host pattern parsing and hostname matching helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

from site_shell.exceptions import InvalidPatternError

_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_ALLOWED_SCHEMES = {"http", "https"}


@dataclass(frozen=True)
class ParsedPattern:
    """A validated site pattern."""

    host: str
    include_subdomains: bool
    start_url: str


def canonical_host(host: str | None) -> str:
    """Lowercase, strip a trailing dot and a leading ``www.``."""
    h = (host or "").strip().lower().rstrip(".")
    if h.startswith("www."):
        h = h[4:]
    return h


def host_matches_base(host: str, base: str, *, enable_suffix: bool = True) -> bool:
    """True if `host` equals `base` or (with `enable_suffix`) is a subdomain of it."""
    host_norm = canonical_host(host)
    base_norm = canonical_host(base)
    if not host_norm or not base_norm:
        return False
    if host_norm == base_norm:
        return True
    return bool(enable_suffix and host_norm.endswith("." + base_norm))


def host_suffixes(host: str) -> list[str]:
    """``a.b.example.com`` -> ``[a.b.example.com, b.example.com, example.com, com]``."""
    labels = canonical_host(host).split(".")
    return [".".join(labels[i:]) for i in range(len(labels)) if labels[i]]


_SECOND_LEVEL_LABELS = {"co", "com", "org", "net", "ac", "gov", "edu", "ne", "or"}


def root_domain(host: str) -> str:
    """Approximate registrable domain (``mail.example.co.uk`` -> ``example.co.uk``).

    A heuristic, not a public suffix list lookup: two-letter country TLDs with
    a generic second level keep three labels, everything else keeps two.
    """
    labels = canonical_host(host).split(".")
    if len(labels) <= 2:
        return ".".join(labels)
    if len(labels[-1]) == 2 and labels[-2] in _SECOND_LEVEL_LABELS:
        return ".".join(labels[-3:])
    return ".".join(labels[-2:])


def parse_pattern(raw: str) -> ParsedPattern:
    """Validate user input (bare domain, ``*.domain`` or full URL).

    Raises:
        InvalidPatternError: if no usable host can be extracted.
    """
    text = (raw or "").strip()
    if not text:
        raise InvalidPatternError("Site pattern is empty")
    if any(ch.isspace() for ch in text):
        raise InvalidPatternError(f"Site pattern contains whitespace: {raw!r}")

    include_subdomains = False
    if text.startswith("*."):
        include_subdomains = True
        text = text[2:]

    if "://" in text:
        parsed = urlparse(text)
        if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
            raise InvalidPatternError(f"Unsupported scheme in site pattern: {parsed.scheme}")
        start_url = text
    else:
        parsed = urlparse(f"https://{text}")
        start_url = f"https://{text}"

    try:
        hostname = parsed.hostname
    except ValueError as e:
        raise InvalidPatternError(f"Malformed site pattern {raw!r}: {e}") from e
    if hostname and hostname.startswith("*."):
        include_subdomains = True
        hostname = hostname[2:]

    host = canonical_host(hostname)
    if not host or "." not in host:
        raise InvalidPatternError(f"Site pattern must be a domain name: {raw!r}")
    if len(host) > 253:
        raise InvalidPatternError(f"Site pattern host is too long: {raw!r}")
    for label in host.split("."):
        if not _LABEL_RE.match(label):
            raise InvalidPatternError(f"Invalid host label {label!r} in {raw!r}")

    return ParsedPattern(host=host, include_subdomains=include_subdomains, start_url=start_url)
