"""Tests for the active rule set holder."""

from site_shell.filters.active import ActiveRuleSet
from site_shell.filters.compiler import compile_filter_list


def test_starts_empty():
    active = ActiveRuleSet()
    assert active.current().version == 0
    assert len(active.current()) == 0


def test_swap_returns_previous():
    first = compile_filter_list("||a.example^")
    second = compile_filter_list("||b.example^")
    active = ActiveRuleSet(first)
    snapshot = active.current()

    old = active.swap(second)

    assert old is first
    assert active.current() is second
    # a reader holding the old snapshot still sees a complete set
    assert snapshot.should_block("https://a.example/x")


def test_keeps_explicit_empty_set():
    empty = compile_filter_list("! nothing yet", version=4)
    active = ActiveRuleSet(empty)
    assert active.current() is empty
    assert active.current().version == 4
