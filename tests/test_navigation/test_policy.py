"""Tests for the navigation policy engine."""

from unittest.mock import MagicMock

import pytest

from site_shell.host.base import BaseExternalOpener
from site_shell.navigation.models import DecisionAction, Verdict
from site_shell.navigation.policy import NavigationPolicyEngine
from site_shell.whitelist.store import WhitelistStore


@pytest.fixture
def whitelist():
    store = WhitelistStore()
    store.add_entry("mail.example.com", site_id="1")
    store.add_entry("*.docs.example", site_id="2")
    return store


@pytest.fixture
def opener():
    mock = MagicMock(spec=BaseExternalOpener)
    mock.open.return_value = True
    return mock


@pytest.fixture
def focus():
    return MagicMock(return_value=True)


@pytest.fixture
def engine(whitelist, opener, focus):
    return NavigationPolicyEngine(whitelist, opener=opener, focus_site=focus)


def test_own_host_is_in_scope(engine, whitelist, opener):
    mail = whitelist.get("1")
    decision = engine.decide("https://mail.example.com/inbox", mail, False)
    assert decision.verdict is Verdict.IN_SCOPE
    assert decision.allowed
    assert decision.matched_site == mail
    opener.open.assert_not_called()


def test_sso_redirect_passes_through(engine, whitelist, opener):
    mail = whitelist.get("1")
    engine.decide("https://mail.example.com/inbox", mail)
    decision = engine.decide(
        "https://accounts.example.org/oauth/authorize?client_id=abc&response_type=code",
        mail,
        True,
    )
    assert decision.verdict is Verdict.SSO_PASSTHROUGH
    assert decision.allowed
    assert engine.chain_for("1").in_sso_flow()
    opener.open.assert_not_called()


def test_unlisted_top_level_load_goes_external(engine, whitelist, opener):
    decision = engine.decide("https://news.example.net", whitelist.get("1"), False)
    assert decision.verdict is Verdict.OUT_OF_SCOPE
    assert not decision.allowed
    assert decision.action is DecisionAction.OPEN_EXTERNAL
    opener.open.assert_called_once_with("https://news.example.net")


def test_sso_looking_url_without_redirect_goes_external(engine, whitelist, opener):
    decision = engine.decide("https://accounts.google.com/signin", whitelist.get("1"), False)
    assert decision.verdict is Verdict.OUT_OF_SCOPE
    opener.open.assert_called_once()


def test_redirect_from_recorded_hop(engine, whitelist):
    mail = whitelist.get("1")
    engine.decide("https://mail.example.com/login", mail)
    decision = engine.decide(
        "https://login.microsoftonline.com/common/oauth2/authorize",
        mail,
        redirect_from="https://mail.example.com/login",
    )
    assert decision.verdict is Verdict.SSO_PASSTHROUGH


def test_redirect_from_unknown_hop_is_not_trusted(engine, whitelist, opener):
    decision = engine.decide(
        "https://login.microsoftonline.com/common/oauth2/authorize",
        whitelist.get("1"),
        redirect_from="https://elsewhere.example/",
    )
    assert decision.verdict is Verdict.OUT_OF_SCOPE
    opener.open.assert_called_once()


def test_other_site_focuses_its_tab(engine, whitelist, opener, focus):
    decision = engine.decide("https://wiki.docs.example/page", whitelist.get("1"))
    assert decision.action is DecisionAction.FOCUS_TAB
    assert decision.matched_site.site_id == "2"
    focus.assert_called_once_with("2")
    opener.open.assert_not_called()


def test_subdomain_not_included(engine, whitelist, opener):
    decision = engine.decide("https://calendar.example.com/", whitelist.get("1"))
    assert decision.action is DecisionAction.OPEN_EXTERNAL
    opener.open.assert_called_once()


def test_wrapped_link_opens_target(engine, whitelist, opener):
    url = "https://l.facebook.com/l.php?u=https%3A%2F%2Fexample.org%2Fpage%3Fa%3D1"
    decision = engine.decide(url, whitelist.get("1"))
    assert decision.external_url == "https://example.org/page?a=1"
    opener.open.assert_called_once_with("https://example.org/page?a=1")


def test_wrapped_link_to_configured_site_focuses(engine, whitelist, opener, focus):
    url = "https://l.facebook.com/l.php?u=https%3A%2F%2Fmail.example.com%2Finbox"
    decision = engine.decide(url, whitelist.get("2"))
    assert decision.action is DecisionAction.FOCUS_TAB
    focus.assert_called_once_with("1")
    opener.open.assert_not_called()


def test_non_web_scheme_goes_external(engine, whitelist, opener):
    decision = engine.decide("mailto:someone@example.com", whitelist.get("1"))
    assert decision.action is DecisionAction.OPEN_EXTERNAL
    opener.open.assert_called_once_with("mailto:someone@example.com")


@pytest.mark.parametrize("url", ["about:blank", "blob:https://mail.example.com/1234", "data:text/plain,hi"])
def test_in_page_schemes(engine, whitelist, url):
    assert engine.decide(url, whitelist.get("1")).verdict is Verdict.IN_SCOPE


def test_hostless_url_blocked_without_handoff(engine, whitelist, opener):
    decision = engine.decide("https:///nowhere", whitelist.get("1"))
    assert decision.verdict is Verdict.OUT_OF_SCOPE
    assert decision.action is DecisionAction.NONE
    opener.open.assert_not_called()


def test_fragment_change_after_passthrough_stays(engine, whitelist, opener):
    mail = whitelist.get("1")
    sso_url = "https://accounts.example.org/oauth/authorize?client_id=abc"
    engine.decide(sso_url, mail, True)
    decision = engine.decide(sso_url + "#step2", mail)
    assert decision.verdict is Verdict.IN_SCOPE
    opener.open.assert_not_called()


def test_removed_origin_still_routes(engine, whitelist, focus):
    decision = engine.decide("https://mail.example.com/", None)
    assert decision.action is DecisionAction.FOCUS_TAB
    focus.assert_called_once_with("1")


def test_side_effect_failures_are_contained(whitelist, opener):
    opener.open.side_effect = RuntimeError("no browser")
    engine = NavigationPolicyEngine(whitelist, opener=opener, focus_site=MagicMock(return_value=False))
    assert engine.decide("https://news.example.net", whitelist.get("1")).action is DecisionAction.OPEN_EXTERNAL
    assert engine.decide("https://a.docs.example", whitelist.get("1")).action is DecisionAction.FOCUS_TAB


def test_evaluate_has_no_side_effects(engine, whitelist, opener, focus):
    engine.evaluate("https://news.example.net", whitelist.get("1"))
    engine.evaluate("https://a.docs.example", whitelist.get("1"))
    opener.open.assert_not_called()
    focus.assert_not_called()


def test_forget_clears_chain(engine, whitelist):
    engine.decide("https://mail.example.com/", whitelist.get("1"))
    assert len(engine.chain_for("1")) == 1
    engine.forget("1")
    assert len(engine.chain_for("1")) == 0


@pytest.mark.parametrize("url", [
    "https://news.example.net/share?url=https://mail.example.com/inbox",
    "https://search.example.net/results?q=https%3A%2F%2Fother.example.org%2F",
    "https://t.co/abc123",
])
def test_unlisted_host_hands_off_requested_url(engine, whitelist, opener, focus, url):
    decision = engine.decide(url, whitelist.get("2"), False)
    assert decision.verdict is Verdict.OUT_OF_SCOPE
    assert decision.action is DecisionAction.OPEN_EXTERNAL
    opener.open.assert_called_once_with(url)
    focus.assert_not_called()


def test_wrapper_subdomain_is_unwrapped(engine, whitelist, opener):
    url = "https://eur01.safelinks.protection.outlook.com/?url=https%3A%2F%2Fexample.org%2Fdoc"
    engine.decide(url, whitelist.get("1"))
    opener.open.assert_called_once_with("https://example.org/doc")


def test_sso_round_trip_ends_in_scope(engine, whitelist, opener):
    mail = whitelist.get("1")
    engine.decide("https://mail.example.com/login", mail)
    passthrough = engine.decide(
        "https://login.microsoftonline.com/common/oauth2/authorize?client_id=mail",
        mail,
        True,
    )
    assert passthrough.verdict is Verdict.SSO_PASSTHROUGH
    assert len(engine.chain_for("1")) == 2

    back = engine.decide("https://mail.example.com/auth/callback?code=xyz", mail, True)

    assert back.verdict is Verdict.IN_SCOPE
    assert back.reason == "host matches originating site"
    chain = engine.chain_for("1")
    assert [hop.url for hop in chain.hops()] == ["https://mail.example.com/auth/callback?code=xyz"]
    assert not chain.in_sso_flow()
    opener.open.assert_not_called()
