"""Tests for the sqlite record store."""

import sqlite3

import pytest

from site_shell.exceptions import PersistenceError
from site_shell.store.records import RecordStore


@pytest.fixture
def records(tmp_path):
    return RecordStore(tmp_path / "nested" / "state.sqlite3")


def test_creates_parent_dir_and_schema(records):
    assert records.db_path.exists()
    conn = sqlite3.connect(str(records.db_path))
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"window_state", "tab_sessions", "whitelist", "filter_source"} <= tables


def test_whitelist_replaced_in_order(records):
    records.save_whitelist([{"site_id": "b"}, {"site_id": "a"}])
    records.save_whitelist([{"site_id": "c"}, {"site_id": "b"}])
    assert [r["site_id"] for r in records.load_whitelist()] == ["c", "b"]


def test_window_state_round_trip(records):
    assert records.load_window_state() is None
    records.save_window_state({"x": 1, "width": 900})
    records.save_window_state({"x": 2, "width": 1000})
    assert records.load_window_state() == {"x": 2, "width": 1000}


def test_tab_sessions_save_delete(records):
    records.save_tab_session("a", {"unread": 3})
    records.save_tab_session("b", {"unread": 0})
    records.delete_tab_session("b")
    assert records.load_tab_sessions() == {"a": {"unread": 3}}


def test_prune_tab_sessions(records):
    for site_id in ("a", "b", "c"):
        records.save_tab_session(site_id, {})
    removed = records.prune_tab_sessions({"b"})
    assert sorted(removed) == ["a", "c"]
    assert list(records.load_tab_sessions()) == ["b"]


def test_filter_source_round_trip(records):
    assert records.load_filter_source() is None
    records.save_filter_source("https://lists.example/list.txt", "||ads.example^", etag='"v1"')
    cached = records.load_filter_source()
    assert cached["source_url"] == "https://lists.example/list.txt"
    assert cached["body"] == "||ads.example^"
    assert cached["etag"] == '"v1"'
    assert cached["last_modified"] is None
    assert cached["fetched_at"] > 0


def test_unwritable_location_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(PersistenceError):
        RecordStore(blocker / "state.sqlite3")


def test_corrupt_database_raises(tmp_path):
    path = tmp_path / "state.sqlite3"
    path.write_bytes(b"this is not a database" * 100)
    with pytest.raises(PersistenceError):
        RecordStore(path)
