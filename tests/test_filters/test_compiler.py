"""Tests for block-list compilation and matching."""

import pytest

from site_shell.filters.compiler import compile_filter_list, parse_rule
from site_shell.filters.models import GLOBAL_BUCKET, MatchKind, ResourceType, RuleAction


SAMPLE = """[Adblock Plus 2.0]
! Title: sample
||ads.example.com^
@@||ads.example.com/allowed/*
##.banner
||tracker.net^$script,third-party
/banner/*$image,domain=news.example|~sports.news.example
||bad.example^$unknownopt
*
/ads[/
"""


@pytest.fixture
def rules():
    return compile_filter_list(SAMPLE)


def test_counts(rules):
    assert rules.stats.total_lines == 10
    assert rules.stats.rule_count == 4
    assert rules.stats.cosmetic == 1
    assert rules.stats.skipped == 3
    reasons = [s.reason for s in rules.stats.skipped_lines]
    assert any("unsupported option" in r for r in reasons)
    assert any("every request" in r for r in reasons)
    assert any("invalid pattern" in r for r in reasons)


def test_domain_anchor_blocks_subdomains(rules):
    assert rules.should_block("https://ads.example.com/x.js")
    assert rules.should_block("https://cdn.ads.example.com/x.js")
    assert not rules.should_block("https://example.com/x.js")


def test_exception_overrides_block(rules):
    result = rules.match("https://ads.example.com/allowed/pixel.gif", ResourceType.IMAGE)
    assert result.blocked is False
    assert result.rule is not None
    assert result.exception is not None
    assert result.exception.action is RuleAction.ALLOW


def test_default_types_skip_documents(rules):
    assert not rules.should_block("https://ads.example.com/", ResourceType.DOCUMENT)


def test_type_and_party_options(rules):
    url = "https://tracker.net/t.js"
    assert rules.should_block(url, ResourceType.SCRIPT, source_host="news.example")
    assert not rules.should_block(url, ResourceType.IMAGE, source_host="news.example")
    assert not rules.should_block(url, ResourceType.SCRIPT, source_host="cdn.tracker.net")
    assert not rules.should_block(url, ResourceType.SCRIPT)


def test_domain_option(rules):
    url = "https://img.cdn.example/banner/top.png"
    assert rules.should_block(url, ResourceType.IMAGE, source_host="news.example")
    assert rules.should_block(url, ResourceType.IMAGE, source_host="www.news.example")
    assert not rules.should_block(url, ResourceType.IMAGE, source_host="sports.news.example")
    assert not rules.should_block(url, ResourceType.IMAGE, source_host="other.example")


def test_separator_does_not_match_longer_host():
    rules = compile_filter_list("||example.com^")
    assert rules.should_block("https://example.com/")
    assert rules.should_block("https://example.com:8443/a")
    assert not rules.should_block("https://example.community/")


def test_www_anchored_rule():
    rules = compile_filter_list("||www.example.com/ads/")
    assert rules.should_block("https://www.example.com/ads/1.js")


def test_bucketing():
    rules = compile_filter_list("||a.example/1\n||a.example/2\n/global/*\n||cdn.example.*/x")
    assert rules.buckets() == {"a.example": 2, GLOBAL_BUCKET: 2}


def test_same_text_compiles_to_same_rules():
    first = compile_filter_list(SAMPLE)
    second = compile_filter_list(SAMPLE)
    assert first.source_digest == second.source_digest
    assert [r.raw for r in first.rules] == [r.raw for r in second.rules]
    assert second.version > first.version


def test_explicit_version_and_empty_text():
    rules = compile_filter_list("", version=7)
    assert rules.version == 7
    assert len(rules) == 0
    assert not rules.should_block("https://ads.example.com/")


def test_parse_rule_regex_and_match_case():
    rule = parse_rule("/\\/ad[0-9]+\\.js/$match-case", 3)
    assert rule.kind is MatchKind.REGEX
    assert rule.match_case is True
    assert rule.line_no == 3
    assert rule.regex.search("https://x.example/ad12.js")
    assert not rule.regex.search("https://x.example/AD12.js")


def test_negated_type_option():
    rule = parse_rule("/track/*$~image")
    assert not rule.resource_types & ResourceType.IMAGE
    assert rule.resource_types & ResourceType.SCRIPT


def test_malformed_url_never_blocks(rules):
    assert not rules.should_block("https://[broken/ads")
    assert not rules.should_block("not a url")


def test_exception_precedence_same_path():
    rules = compile_filter_list("||example.com/ads^\n@@||example.com/ads^")
    assert not rules.should_block("https://example.com/ads")
    assert not rules.should_block("https://example.com/ads?slot=1")


def test_unparseable_options_skip_one_line():
    rules = compile_filter_list("||ads.example^\n||other.example^$domain=(a.example)")
    assert rules.stats.rule_count == 1
    assert rules.stats.skipped == 1
    assert rules.stats.skipped_lines[0].reason == "unparseable option syntax"
    assert rules.stats.skipped_lines[0].line_no == 2


def test_open_ended_anchor_matches_longer_host():
    rules = compile_filter_list("||example.co")
    assert rules.rules[0].domain is None
    assert rules.should_block("https://example.com/")
    assert rules.should_block("https://example.co/")


def test_wildcard_inside_host_uses_global_bucket():
    rules = compile_filter_list("||ads*.example.com^")
    assert rules.stats.rule_count == 1
    assert rules.buckets() == {GLOBAL_BUCKET: 1}
    assert rules.should_block("https://ads-eu.example.com/pixel")
    assert not rules.should_block("https://news.example.com/")


@pytest.mark.parametrize("line, bucket", [
    ("||ads.example.com^", "ads.example.com"),
    ("||ads.example.com/banner", "ads.example.com"),
    ("||ads.example.com:8080", "ads.example.com"),
    ("||ads.example.com|", "ads.example.com"),
    ("||ads.example.com", GLOBAL_BUCKET),
    ("||cdn.example.*/x", GLOBAL_BUCKET),
])
def test_index_only_complete_hosts(line, bucket):
    assert compile_filter_list(line).buckets() == {bucket: 1}


def test_bare_domain_anchor_matching_everything_is_skipped():
    rules = compile_filter_list("||*^")
    assert rules.stats.rule_count == 0
    assert rules.stats.skipped_lines[0].reason == "pattern matches every request"


def test_party_option_aliases():
    rules = compile_filter_list("||ads.example.com^$script,image,~thirdparty")
    assert rules.stats.rule_count == 1
    rule = rules.rules[0]
    assert rule.third_party is False
    assert rule.resource_types == ResourceType.SCRIPT | ResourceType.IMAGE
    assert rules.should_block("https://ads.example.com/a.js", ResourceType.SCRIPT, source_host="www.example.com")
    assert not rules.should_block("https://ads.example.com/a.js", ResourceType.SCRIPT, source_host="news.example.net")
    assert parse_rule("||t.example^$thirdparty").third_party is True
    assert parse_rule("||t.example^$firstparty").third_party is False
