"""Tests for the content-rule adapter."""

import pytest

from site_shell.exceptions import CompilationRejectedError
from site_shell.filters.adapter import ContentBlockAdapter, rule_to_payload
from site_shell.filters.compiler import compile_filter_list, parse_rule
from site_shell.host.base import BasePageHost


class FakeHost(BasePageHost):
    """Accepts payloads up to `accept_limit` entries."""

    def __init__(self, accept_limit=None):
        self.accept_limit = accept_limit
        self.applied = {}
        self.attempts = []

    def apply_content_rules(self, tab_id, payload):
        self.attempts.append(len(payload))
        if self.accept_limit is not None and len(payload) > self.accept_limit:
            return False
        self.applied[tab_id] = payload
        return True

    def load_url(self, tab_id, url):
        pass

    def cancel_load(self, tab_id):
        pass

    def focus_tab(self, tab_id):
        pass

    async def query_badge(self, tab_id):
        return None


def test_payload_for_domain_rule():
    payload = rule_to_payload(parse_rule("||ads.example.com^$script,third-party"))
    assert payload == {
        "trigger": {
            "url-filter": r"^[^:]+://+([^:/]+\.)?ads\.example\.com",
            "resource-type": ["script"],
            "load-type": ["third-party"],
        },
        "action": {"type": "block"},
    }


def test_payload_for_exception_with_domains():
    payload = rule_to_payload(parse_rule("@@/pixel.gif$domain=news.example|shop.example"))
    assert payload["action"] == {"type": "ignore-previous-rules"}
    assert payload["trigger"]["if-domain"] == ["*news.example", "*shop.example"]
    assert payload["trigger"]["url-filter"] == r"/pixel\.gif"


def test_unsupported_regex_untranslatable():
    assert rule_to_payload(parse_rule(r"/ad\d+\.js/")) is None


def test_activate_within_ceiling():
    host = FakeHost()
    adapter = ContentBlockAdapter(host)
    rules = compile_filter_list("@@||ads.example/ok\n||ads.example^\n/ad\\d+/", version=5)

    result = adapter.activate(rules, "tab1")

    assert result.applied_rules == 2
    assert result.untranslatable == 1
    assert result.truncated is False
    assert adapter.active_version("tab1") == 5
    # exceptions come last so they override earlier blocks
    actions = [entry["action"]["type"] for entry in host.applied["tab1"]]
    assert actions == ["block", "ignore-previous-rules"]


def test_activate_truncates_over_ceiling():
    host = FakeHost()
    adapter = ContentBlockAdapter(host, rule_ceiling=2)
    rules = compile_filter_list("||a.example/1\n||b.example/1\n/global/*\n@@||a.example/ok")

    result = adapter.activate(rules, "tab1")

    assert result.truncated is True
    assert result.applied_rules == 2
    assert result.dropped == 2
    actions = [entry["action"]["type"] for entry in host.applied["tab1"]]
    assert actions == ["block", "ignore-previous-rules"]


def test_activate_retries_smaller_payload_on_rejection():
    host = FakeHost(accept_limit=2)
    adapter = ContentBlockAdapter(host)
    text = "\n".join(f"||site{i}.example^" for i in range(8))

    result = adapter.activate(compile_filter_list(text), "tab1")

    assert result.truncated is True
    assert result.applied_rules <= 2
    assert host.attempts[0] == 8


def test_activate_raises_when_always_rejected():
    host = FakeHost(accept_limit=0)
    adapter = ContentBlockAdapter(host)
    with pytest.raises(CompilationRejectedError, match="rejected"):
        adapter.activate(compile_filter_list("||a.example^\n||b.example^"), "tab1")
    assert adapter.active_version("tab1") is None


def test_truncate_prefers_busy_domains():
    rules = compile_filter_list("/global/*\n||a.example/1\n||b.example/1\n||a.example/2")
    entries, _ = ContentBlockAdapter(FakeHost()).translate(rules)

    kept = ContentBlockAdapter.truncate(entries, rules, 2)

    assert [rule.raw for rule, _ in kept] == ["||a.example/1", "||a.example/2"]


def test_deactivate():
    adapter = ContentBlockAdapter(FakeHost())
    adapter.activate(compile_filter_list("||a.example^", version=1), "tab1")
    adapter.deactivate("tab1")
    assert adapter.active_version("tab1") is None
