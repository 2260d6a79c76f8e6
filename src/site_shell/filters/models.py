"""Data models for compiled block-list rules."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping
from urllib.parse import urlparse

from site_shell.whitelist.patterns import canonical_host, host_matches_base, root_domain


class ResourceType(enum.IntFlag):
    """Request kinds a network rule can be restricted to."""

    SCRIPT = enum.auto()
    IMAGE = enum.auto()
    STYLESHEET = enum.auto()
    OBJECT = enum.auto()
    XMLHTTPREQUEST = enum.auto()
    SUBDOCUMENT = enum.auto()
    DOCUMENT = enum.auto()
    FONT = enum.auto()
    MEDIA = enum.auto()
    WEBSOCKET = enum.auto()
    PING = enum.auto()
    POPUP = enum.auto()
    OTHER = enum.auto()


ALL_RESOURCE_TYPES = ResourceType(0)
for _member in ResourceType:
    ALL_RESOURCE_TYPES |= _member
del _member

# Rules without type options apply to everything but top-level loads.
DEFAULT_RESOURCE_TYPES = ALL_RESOURCE_TYPES & ~(ResourceType.DOCUMENT | ResourceType.POPUP)

GLOBAL_BUCKET = "*"


class RuleAction(str, enum.Enum):
    BLOCK = "block"
    ALLOW = "allow"


class MatchKind(str, enum.Enum):
    DOMAIN = "domain"  # ||host^ anchored
    PATH = "path"  # plain / | anchored wildcard pattern
    REGEX = "regex"  # /.../


@dataclass(frozen=True)
class FilterRule:
    """One compiled network rule."""

    action: RuleAction
    kind: MatchKind
    pattern: str
    regex: re.Pattern
    domain: str | None = None
    resource_types: ResourceType = DEFAULT_RESOURCE_TYPES
    third_party: bool | None = None
    include_domains: tuple[str, ...] = ()
    exclude_domains: tuple[str, ...] = ()
    match_case: bool = False
    line_no: int = 0
    raw: str = ""

    @property
    def bucket(self) -> str:
        return self.domain or GLOBAL_BUCKET

    def applies_to(
        self,
        url: str,
        resource_type: ResourceType,
        source_host: str | None,
        is_third_party: bool | None,
    ) -> bool:
        if not resource_type & self.resource_types:
            return False
        if self.third_party is not None:
            if is_third_party is None or is_third_party != self.third_party:
                return False
        if self.include_domains or self.exclude_domains:
            src = canonical_host(source_host)
            if any(host_matches_base(src, d) for d in self.exclude_domains):
                return False
            if self.include_domains and not any(host_matches_base(src, d) for d in self.include_domains):
                return False
        return self.regex.search(url) is not None


@dataclass(frozen=True)
class SkippedLine:
    line_no: int
    text: str
    reason: str


@dataclass(frozen=True)
class CompileStats:
    """Counters reported by a compile pass."""

    total_lines: int = 0
    rule_count: int = 0
    skipped: int = 0
    cosmetic: int = 0
    skipped_lines: tuple[SkippedLine, ...] = ()


@dataclass(frozen=True)
class FilterMatch:
    """Outcome of matching one request against a rule set."""

    blocked: bool
    rule: FilterRule | None = None
    exception: FilterRule | None = None


def _index(rules: Iterable[FilterRule]) -> Mapping[str, tuple[FilterRule, ...]]:
    buckets: dict[str, list[FilterRule]] = {}
    for rule in rules:
        buckets.setdefault(rule.bucket, []).append(rule)
    return MappingProxyType({key: tuple(value) for key, value in buckets.items()})


@dataclass(frozen=True)
class CompiledFilterRuleSet:
    """Immutable, versioned snapshot of parsed block-list rules.

    Rules are bucketed by their ``||domain`` anchor (or the global bucket),
    so a request only scans rules sharing one of its host suffixes.
    """

    version: int
    source_digest: str
    rules: tuple[FilterRule, ...]
    stats: CompileStats = field(default_factory=CompileStats)
    _block_index: Mapping[str, tuple[FilterRule, ...]] = field(
        default_factory=dict, repr=False, compare=False
    )
    _allow_index: Mapping[str, tuple[FilterRule, ...]] = field(
        default_factory=dict, repr=False, compare=False
    )

    @classmethod
    def build(
        cls,
        rules: Iterable[FilterRule],
        *,
        version: int,
        source_digest: str,
        stats: CompileStats | None = None,
    ) -> "CompiledFilterRuleSet":
        ordered = tuple(sorted(rules, key=lambda r: r.line_no))
        return cls(
            version=version,
            source_digest=source_digest,
            rules=ordered,
            stats=stats or CompileStats(rule_count=len(ordered)),
            _block_index=_index(r for r in ordered if r.action is RuleAction.BLOCK),
            _allow_index=_index(r for r in ordered if r.action is RuleAction.ALLOW),
        )

    @classmethod
    def empty(cls) -> "CompiledFilterRuleSet":
        return cls.build((), version=0, source_digest="")

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def block_rules(self) -> tuple[FilterRule, ...]:
        return tuple(r for r in self.rules if r.action is RuleAction.BLOCK)

    @property
    def allow_rules(self) -> tuple[FilterRule, ...]:
        return tuple(r for r in self.rules if r.action is RuleAction.ALLOW)

    def buckets(self) -> dict[str, int]:
        """Rule count per index bucket (block and allow combined)."""
        counts: dict[str, int] = {}
        for rule in self.rules:
            counts[rule.bucket] = counts.get(rule.bucket, 0) + 1
        return counts

    def match(
        self,
        url: str,
        resource_type: ResourceType = ResourceType.OTHER,
        source_host: str | None = None,
    ) -> FilterMatch:
        """Match a request; exception rules override block rules."""
        try:
            host = (urlparse(url).hostname or "").rstrip(".")
        except ValueError:
            return FilterMatch(blocked=False)
        if not host:
            return FilterMatch(blocked=False)

        is_third_party = None
        if source_host:
            is_third_party = root_domain(host) != root_domain(source_host)

        labels = host.split(".")
        # raw host labels: a rule may be anchored on "www."
        keys = [".".join(labels[i:]) for i in range(len(labels))] + [GLOBAL_BUCKET]
        blocking = self._first_match(self._block_index, keys, url, resource_type, source_host, is_third_party)
        if blocking is None:
            return FilterMatch(blocked=False)
        exception = self._first_match(self._allow_index, keys, url, resource_type, source_host, is_third_party)
        if exception is not None:
            return FilterMatch(blocked=False, rule=blocking, exception=exception)
        return FilterMatch(blocked=True, rule=blocking)

    def should_block(
        self,
        url: str,
        resource_type: ResourceType = ResourceType.OTHER,
        source_host: str | None = None,
    ) -> bool:
        return self.match(url, resource_type, source_host).blocked

    @staticmethod
    def _first_match(
        index: Mapping[str, tuple[FilterRule, ...]],
        keys: list[str],
        url: str,
        resource_type: ResourceType,
        source_host: str | None,
        is_third_party: bool | None,
    ) -> FilterRule | None:
        best: FilterRule | None = None
        for key in keys:
            for rule in index.get(key, ()):
                if best is not None and rule.line_no >= best.line_no:
                    break
                if rule.applies_to(url, resource_type, source_host, is_third_party):
                    best = rule
                    break
        return best
