"""Data models for navigation decisions."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from site_shell.whitelist.models import SiteEntry


class Verdict(str, enum.Enum):
    IN_SCOPE = "in-scope"
    OUT_OF_SCOPE = "out-of-scope"
    SSO_PASSTHROUGH = "sso-passthrough"


class DecisionAction(str, enum.Enum):
    NONE = "none"
    FOCUS_TAB = "focus-tab"  # another configured site owns the URL
    OPEN_EXTERNAL = "open-external"  # default-browser handoff


@dataclass(frozen=True)
class NavigationDecision:
    """Per-request policy outcome; never persisted."""

    url: str
    verdict: Verdict
    matched_site: SiteEntry | None
    reason: str
    action: DecisionAction = DecisionAction.NONE
    external_url: str | None = None

    @property
    def allowed(self) -> bool:
        return self.verdict is not Verdict.OUT_OF_SCOPE
