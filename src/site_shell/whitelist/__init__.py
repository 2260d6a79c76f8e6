"""Configured sites: validation, ordering and host matching."""

from site_shell.whitelist.models import SiteEntry, WhitelistChange
from site_shell.whitelist.patterns import canonical_host, host_matches_base, parse_pattern
from site_shell.whitelist.store import WhitelistStore

__all__ = [
    "SiteEntry",
    "WhitelistChange",
    "WhitelistStore",
    "canonical_host",
    "host_matches_base",
    "parse_pattern",
]
