"""Runtime configuration read from SITE_SHELL_* environment variables."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_FILTER_LIST_URL = "https://easylist.to/easylist/easylist.txt"


def default_data_dir() -> Path:
    """Per-user application data directory."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "SiteShell"
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg) if xdg else Path.home() / ".local" / "share"
    return base / "site-shell"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name, "")
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


@dataclass
class ShellConfig:
    """Settings shared by every engine component.

    Args:
        data_dir: Directory holding the sqlite record store.
        filter_list_url: Block-list source; empty disables remote refresh.
        filter_refresh_seconds: Interval between scheduled block-list refreshes.
        rule_ceiling: Maximum rule count the page host accepts per payload.
        save_debounce_seconds: Coalescing window for session persistence.
        unread_poll_seconds: Interval between page badge polls.
        redirect_chain_capacity: Hops remembered per tab for redirect detection.
        sso_hosts: Extra identity-provider hosts treated as SSO endpoints.
        favicon_timeout: Per-request timeout for favicon fetches.
    """

    data_dir: Path = field(default_factory=default_data_dir)
    filter_list_url: str = DEFAULT_FILTER_LIST_URL
    filter_refresh_seconds: float = 86400.0
    rule_ceiling: int = 50000
    save_debounce_seconds: float = 2.0
    unread_poll_seconds: float = 5.0
    redirect_chain_capacity: int = 32
    sso_hosts: list[str] = field(default_factory=list)
    favicon_timeout: float = 10.0

    @property
    def db_path(self) -> Path:
        return self.data_dir / "state.sqlite3"

    @classmethod
    def from_env(cls) -> "ShellConfig":
        """Build a config from the environment, falling back to defaults."""
        data_dir = os.environ.get("SITE_SHELL_DATA_DIR")
        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else default_data_dir(),
            filter_list_url=os.environ.get("SITE_SHELL_FILTER_LIST_URL", DEFAULT_FILTER_LIST_URL),
            filter_refresh_seconds=_env_float("SITE_SHELL_FILTER_REFRESH_SECONDS", 86400.0),
            rule_ceiling=_env_int("SITE_SHELL_RULE_CEILING", 50000),
            save_debounce_seconds=_env_float("SITE_SHELL_SAVE_DEBOUNCE_SECONDS", 2.0),
            unread_poll_seconds=_env_float("SITE_SHELL_UNREAD_POLL_SECONDS", 5.0),
            redirect_chain_capacity=_env_int("SITE_SHELL_REDIRECT_CHAIN_CAPACITY", 32),
            sso_hosts=_env_list("SITE_SHELL_SSO_HOSTS"),
            favicon_timeout=_env_float("SITE_SHELL_FAVICON_TIMEOUT", 10.0),
        )
