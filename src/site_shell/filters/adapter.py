"""Translate compiled rules into the page host's content-rule payload."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from site_shell.exceptions import CompilationRejectedError
from site_shell.filters.models import (
    ALL_RESOURCE_TYPES,
    CompiledFilterRuleSet,
    FilterRule,
    MatchKind,
    ResourceType,
    RuleAction,
)
from site_shell.host.base import BasePageHost

logger = logging.getLogger(__name__)

MAX_REJECTION_RETRIES = 4

_WEBKIT_TYPES = (
    (ResourceType.SCRIPT, "script"),
    (ResourceType.IMAGE, "image"),
    (ResourceType.STYLESHEET, "style-sheet"),
    (ResourceType.FONT, "font"),
    (ResourceType.MEDIA, "media"),
    (ResourceType.POPUP, "popup"),
    (ResourceType.DOCUMENT | ResourceType.SUBDOCUMENT, "document"),
    (
        ResourceType.XMLHTTPREQUEST
        | ResourceType.WEBSOCKET
        | ResourceType.PING
        | ResourceType.OBJECT
        | ResourceType.OTHER,
        "raw",
    ),
)

# Constructs the host's regex dialect does not support.
_UNSUPPORTED_REGEX = re.compile(r"\||\{|\(\?|\\[dDwWsSbB]")
_ESCAPE_CHARS = set(".+?()[]{}$\\")


@dataclass(frozen=True)
class ActivationResult:
    """Outcome of installing a rule set on one tab."""

    tab_id: str
    version: int
    applied_rules: int
    truncated: bool = False
    dropped: int = 0
    untranslatable: int = 0


class ContentBlockAdapter:
    """Installs compiled rule sets on tabs through the page host.

    When the host rejects a payload, or the payload exceeds `rule_ceiling`,
    a truncated payload is installed instead of disabling blocking.

    Args:
        host: Page host that accepts content-rule payloads.
        rule_ceiling: Maximum number of payload entries the host accepts.
    """

    def __init__(self, host: BasePageHost, rule_ceiling: int = 50000):
        self.host = host
        self.rule_ceiling = max(1, rule_ceiling)
        self._active: dict[str, int] = {}

    def active_version(self, tab_id: str) -> int | None:
        return self._active.get(tab_id)

    def deactivate(self, tab_id: str) -> None:
        self._active.pop(tab_id, None)

    def activate(self, rule_set: CompiledFilterRuleSet, for_tab: str) -> ActivationResult:
        """Translate and apply `rule_set` to a tab.

        Raises:
            CompilationRejectedError: if even a truncated payload is refused.
        """
        entries, untranslatable = self.translate(rule_set)
        total = len(entries)

        if total <= self.rule_ceiling and self.host.apply_content_rules(for_tab, [e for _, e in entries]):
            self._active[for_tab] = rule_set.version
            return ActivationResult(
                tab_id=for_tab,
                version=rule_set.version,
                applied_rules=total,
                untranslatable=untranslatable,
            )

        limit = min(self.rule_ceiling, max(1, total - 1)) if total else 0
        for _ in range(MAX_REJECTION_RETRIES):
            kept = self.truncate(entries, rule_set, limit)
            if self.host.apply_content_rules(for_tab, [e for _, e in kept]):
                dropped = total - len(kept)
                logger.warning(
                    "Content rules for tab %s truncated: kept %d of %d (v%d)",
                    for_tab, len(kept), total, rule_set.version,
                )
                self._active[for_tab] = rule_set.version
                return ActivationResult(
                    tab_id=for_tab,
                    version=rule_set.version,
                    applied_rules=len(kept),
                    truncated=True,
                    dropped=dropped,
                    untranslatable=untranslatable,
                )
            if limit <= 1:
                break
            limit = limit // 2

        raise CompilationRejectedError(
            f"Page host rejected content rules v{rule_set.version} for tab {for_tab}"
        )

    # ---- Translation ----

    def translate(self, rule_set: CompiledFilterRuleSet) -> tuple[list[tuple[FilterRule, dict]], int]:
        """Payload entries (block rules first, exceptions last) and the untranslatable count."""
        entries: list[tuple[FilterRule, dict]] = []
        skipped = 0
        for rule in rule_set.block_rules + rule_set.allow_rules:
            entry = rule_to_payload(rule)
            if entry is None:
                skipped += 1
                continue
            entries.append((rule, entry))
        if skipped:
            logger.info("%d rule(s) could not be expressed for the page host", skipped)
        return entries, skipped

    @staticmethod
    def truncate(
        entries: list[tuple[FilterRule, dict]],
        rule_set: CompiledFilterRuleSet,
        limit: int,
    ) -> list[tuple[FilterRule, dict]]:
        """Keep at most `limit` entries, preferring exceptions and busy domains."""
        allows = [(r, e) for r, e in entries if r.action is RuleAction.ALLOW]
        blocks = [(r, e) for r, e in entries if r.action is RuleAction.BLOCK]
        kept_allows = allows[:limit]
        budget = limit - len(kept_allows)

        bucket_sizes = rule_set.buckets()

        def priority(item: tuple[FilterRule, dict]) -> tuple:
            rule = item[0]
            if rule.domain is None:
                return (1, 0, "", rule.line_no)
            return (0, -bucket_sizes.get(rule.domain, 0), rule.domain, rule.line_no)

        selected = sorted(blocks, key=priority)[:max(0, budget)]
        selected.sort(key=lambda item: item[0].line_no)
        return selected + kept_allows


def rule_to_payload(rule: FilterRule) -> dict | None:
    """Express one rule as a content-rule trigger/action pair, or None."""
    url_filter = _url_filter(rule)
    if url_filter is None:
        return None

    trigger: dict = {"url-filter": url_filter}
    if rule.match_case:
        trigger["url-filter-is-case-sensitive"] = True
    if rule.resource_types != ALL_RESOURCE_TYPES:
        types = [name for flag, name in _WEBKIT_TYPES if rule.resource_types & flag]
        if types:
            trigger["resource-type"] = types
    if rule.third_party is True:
        trigger["load-type"] = ["third-party"]
    elif rule.third_party is False:
        trigger["load-type"] = ["first-party"]
    if rule.include_domains:
        trigger["if-domain"] = [f"*{d}" for d in rule.include_domains]
    elif rule.exclude_domains:
        trigger["unless-domain"] = [f"*{d}" for d in rule.exclude_domains]

    action_type = "ignore-previous-rules" if rule.action is RuleAction.ALLOW else "block"
    return {"trigger": trigger, "action": {"type": action_type}}


def _url_filter(rule: FilterRule) -> str | None:
    if rule.kind is MatchKind.REGEX:
        source = rule.regex.pattern
        if _UNSUPPORTED_REGEX.search(source):
            return None
        return source

    pattern = rule.pattern
    prefix = ""
    if rule.kind is MatchKind.DOMAIN:
        prefix = r"^[^:]+://+([^:/]+\.)?"
        pattern = pattern[2:]
    elif pattern.startswith("|"):
        prefix = "^"
        pattern = pattern[1:]

    suffix = ""
    if pattern.endswith("|"):
        suffix = "$"
        pattern = pattern[:-1]
    if pattern.endswith("^"):
        pattern = pattern[:-1]

    out = []
    for ch in pattern:
        if ch == "*":
            out.append(".*")
        elif ch == "^":
            out.append("[^a-zA-Z0-9_.%-]")
        elif ch in _ESCAPE_CHARS:
            out.append("\\" + ch)
        else:
            out.append(ch)
    body = "".join(out)
    if not prefix and not body:
        body = ".*"
    return prefix + body + suffix
