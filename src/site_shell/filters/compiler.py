"""Compile EasyList-style block-list text into an indexed rule set."""

from __future__ import annotations

import hashlib
import itertools
import logging
import re

from site_shell.filters.models import (
    DEFAULT_RESOURCE_TYPES,
    CompiledFilterRuleSet,
    CompileStats,
    FilterRule,
    MatchKind,
    ResourceType,
    RuleAction,
    SkippedLine,
)

logger = logging.getLogger(__name__)

MAX_SKIPPED_SAMPLE = 50

_version_counter = itertools.count(1)

_COSMETIC_RE = re.compile(r"#[@?$%]?#|#@[?$%]#")
_OPTIONS_RE = re.compile(r"^[A-Za-z0-9_~,=|.\-*]+$")
_DOMAIN_ANCHOR_RE = re.compile(r"^[a-z0-9.\-]+")
_ANCHOR_TERMINATORS = ("^", "/", ":", "|")
_DOMAIN_OPTION_RE = re.compile(r"^~?[a-z0-9*][a-z0-9.\-*]*$")

_TYPE_OPTIONS = {
    "script": ResourceType.SCRIPT,
    "image": ResourceType.IMAGE,
    "stylesheet": ResourceType.STYLESHEET,
    "css": ResourceType.STYLESHEET,
    "object": ResourceType.OBJECT,
    "object-subrequest": ResourceType.OBJECT,
    "xmlhttprequest": ResourceType.XMLHTTPREQUEST,
    "xhr": ResourceType.XMLHTTPREQUEST,
    "subdocument": ResourceType.SUBDOCUMENT,
    "frame": ResourceType.SUBDOCUMENT,
    "document": ResourceType.DOCUMENT,
    "doc": ResourceType.DOCUMENT,
    "font": ResourceType.FONT,
    "media": ResourceType.MEDIA,
    "websocket": ResourceType.WEBSOCKET,
    "ping": ResourceType.PING,
    "popup": ResourceType.POPUP,
    "other": ResourceType.OTHER,
}

# Separator class: anything but a letter, digit or one of _ - . %
_SEPARATOR = r"(?:[^\w\-.%]|$)"


class _SkipLine(Exception):
    """Internal signal: the current line cannot be compiled."""


def compile_filter_list(raw_text: str, *, version: int | None = None) -> CompiledFilterRuleSet:
    """Parse block-list text into an immutable, indexed rule set.

    Never fails as a whole: malformed lines are skipped and counted.
    Cosmetic (element hiding) rules are ignored since only network loads are
    filtered.

    Args:
        raw_text: Block-list source, one rule per line.
        version: Explicit version number; defaults to a process-wide counter.
    """
    text = raw_text or ""
    rules: list[FilterRule] = []
    skipped: list[SkippedLine] = []
    skipped_count = 0
    cosmetic = 0
    total = 0

    for line_no, raw_line in enumerate(text.splitlines(), start=1):
        total += 1
        line = raw_line.strip()
        if not line or line.startswith("!") or (line.startswith("[") and line.endswith("]")):
            continue
        if _COSMETIC_RE.search(line):
            cosmetic += 1
            continue
        try:
            rules.append(parse_rule(line, line_no))
        except _SkipLine as e:
            skipped_count += 1
            if len(skipped) < MAX_SKIPPED_SAMPLE:
                skipped.append(SkippedLine(line_no=line_no, text=line, reason=str(e)))

    stats = CompileStats(
        total_lines=total,
        rule_count=len(rules),
        skipped=skipped_count,
        cosmetic=cosmetic,
        skipped_lines=tuple(skipped),
    )
    if skipped_count:
        logger.warning("Filter list compile skipped %d malformed line(s)", skipped_count)
    logger.info(
        "Compiled filter list: %d rules, %d skipped, %d cosmetic ignored",
        len(rules), skipped_count, cosmetic,
    )
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return CompiledFilterRuleSet.build(
        rules,
        version=version if version is not None else next(_version_counter),
        source_digest=digest,
        stats=stats,
    )


def parse_rule(line: str, line_no: int = 0) -> FilterRule:
    """Compile a single network rule line.

    Raises:
        _SkipLine: if the line is malformed or uses unsupported options.
    """
    action = RuleAction.BLOCK
    body = line
    if body.startswith("@@"):
        action = RuleAction.ALLOW
        body = body[2:]

    is_regex = len(body) > 2 and body.startswith("/") and body.endswith("/")
    options = ""
    if not is_regex:
        idx = body.rfind("$")
        if idx >= 0:
            body, options = body[:idx], body[idx + 1:]
            if not options:
                raise _SkipLine("empty option list")
            is_regex = len(body) > 2 and body.startswith("/") and body.endswith("/")

    parsed = _parse_options(options) if options else {}
    match_case = parsed.get("match_case", False)
    flags = 0 if match_case else re.IGNORECASE

    domain: str | None = None
    if is_regex:
        kind = MatchKind.REGEX
        source = body[1:-1]
    elif body.startswith("||"):
        kind = MatchKind.DOMAIN
        host_part = body[2:]
        if not host_part.strip("*|^"):
            raise _SkipLine("pattern matches every request")
        domain = _index_domain(host_part.lower())
        source = _wildcard_to_regex(host_part, host_anchored=True)
    else:
        kind = MatchKind.PATH
        if not body.strip("*|^"):
            if not parsed.get("include_domains"):
                raise _SkipLine("pattern matches every request")
        source = _wildcard_to_regex(body, host_anchored=False)

    try:
        regex = re.compile(source, flags)
    except re.error as e:
        raise _SkipLine(f"invalid pattern: {e}") from e

    return FilterRule(
        action=action,
        kind=kind,
        pattern=body,
        regex=regex,
        domain=domain,
        resource_types=parsed.get("resource_types", DEFAULT_RESOURCE_TYPES),
        third_party=parsed.get("third_party"),
        include_domains=parsed.get("include_domains", ()),
        exclude_domains=parsed.get("exclude_domains", ()),
        match_case=match_case,
        line_no=line_no,
        raw=line,
    )


def _parse_options(options: str) -> dict:
    if not _OPTIONS_RE.match(options):
        raise _SkipLine("unparseable option syntax")

    include_types = ResourceType(0)
    exclude_types = ResourceType(0)
    result: dict = {}

    for opt in options.split(","):
        name = opt.strip()
        if not name:
            raise _SkipLine("empty option")
        negated = name.startswith("~")
        key = name[1:].lower() if negated else name.lower()

        if key in _TYPE_OPTIONS:
            if negated:
                exclude_types |= _TYPE_OPTIONS[key]
            else:
                include_types |= _TYPE_OPTIONS[key]
        elif key in ("third-party", "thirdparty", "3p"):
            result["third_party"] = not negated
        elif key in ("first-party", "firstparty", "1p"):
            result["third_party"] = negated
        elif key == "match-case" and not negated:
            result["match_case"] = True
        elif key.startswith("domain=") and not negated:
            include, exclude = _parse_domain_option(name[len("domain="):])
            result["include_domains"] = include
            result["exclude_domains"] = exclude
        else:
            raise _SkipLine(f"unsupported option {name!r}")

    if include_types or exclude_types:
        base = include_types if include_types else DEFAULT_RESOURCE_TYPES
        mask = base & ~exclude_types
        if not mask:
            raise _SkipLine("option list excludes every resource type")
        result["resource_types"] = mask
    return result


def _index_domain(host_part: str) -> str | None:
    """Index bucket for a ``||`` pattern, or None for the global bucket.

    Only a complete host can be indexed: ``||example.co`` also matches
    ``example.com``, and ``||ads*.example.com^`` has no fixed host at all.
    """
    anchor = _DOMAIN_ANCHOR_RE.match(host_part)
    if not anchor:
        return None
    host = anchor.group(0)
    if host.startswith(".") or host.endswith("."):
        return None
    if host_part[anchor.end():anchor.end() + 1] not in _ANCHOR_TERMINATORS:
        return None
    return host


def _parse_domain_option(value: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    include: list[str] = []
    exclude: list[str] = []
    for part in value.lower().split("|"):
        part = part.strip()
        if not part or not _DOMAIN_OPTION_RE.match(part):
            raise _SkipLine(f"invalid domain option {part!r}")
        if part.startswith("~"):
            exclude.append(part[1:])
        else:
            include.append(part)
    return tuple(include), tuple(exclude)


def _wildcard_to_regex(pattern: str, *, host_anchored: bool) -> str:
    """Translate ``*``, ``^`` and ``|`` anchors into a regular expression."""
    start = ""
    end = ""
    body = pattern
    if host_anchored:
        start = r"^[a-z][a-z0-9+.\-]*://(?:[^/?#]*\.)?"
    elif body.startswith("|"):
        start = "^"
        body = body[1:]
    if body.endswith("|"):
        end = "$"
        body = body[:-1]

    out = []
    for ch in body:
        if ch == "*":
            out.append(".*")
        elif ch == "^":
            out.append(_SEPARATOR)
        else:
            out.append(re.escape(ch))
    return start + "".join(out) + end
