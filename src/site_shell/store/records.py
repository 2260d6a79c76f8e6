"""Keyed record store for persisted shell state (sqlite)."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from site_shell.exceptions import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS window_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    record TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tab_sessions (
    site_id TEXT PRIMARY KEY,
    record TEXT NOT NULL,
    updated_at REAL NOT NULL
);
CREATE TABLE IF NOT EXISTS whitelist (
    position INTEGER PRIMARY KEY,
    site_id TEXT NOT NULL UNIQUE,
    record TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS filter_source (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    source_url TEXT NOT NULL,
    body TEXT NOT NULL,
    etag TEXT,
    last_modified TEXT,
    fetched_at REAL NOT NULL
);
"""


class RecordStore:
    """Durable storage for whitelist, window, tab session and filter-list records.

    Every public call opens its own connection and runs inside a single
    transaction. Writes are serialized through one lock so concurrent savers
    never interleave partial records.

    Args:
        db_path: Location of the sqlite database file; parent dirs are created.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create state directory {self.db_path.parent}: {e}") from e
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=5.0)
            conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open state database {self.db_path}: {e}") from e
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise PersistenceError(f"State database operation failed: {e}") from e
        finally:
            conn.close()

    # ---- Whitelist ----

    def load_whitelist(self) -> list[dict]:
        """Ordered list of persisted site records."""
        with self._connect() as conn:
            rows = conn.execute("SELECT record FROM whitelist ORDER BY position").fetchall()
        return [json.loads(row["record"]) for row in rows]

    def save_whitelist(self, records: list[dict]) -> None:
        """Replace the stored site list with `records`, in order."""
        with self._write_lock, self._connect() as conn:
            conn.execute("DELETE FROM whitelist")
            conn.executemany(
                "INSERT INTO whitelist (position, site_id, record) VALUES (?, ?, ?)",
                [
                    (index, record["site_id"], json.dumps(record, sort_keys=True))
                    for index, record in enumerate(records)
                ],
            )

    # ---- Window state ----

    def load_window_state(self) -> dict | None:
        with self._connect() as conn:
            row = conn.execute("SELECT record FROM window_state WHERE id = 1").fetchone()
        return json.loads(row["record"]) if row else None

    def save_window_state(self, record: dict) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO window_state (id, record) VALUES (1, ?)",
                (json.dumps(record, sort_keys=True),),
            )

    # ---- Tab sessions ----

    def load_tab_sessions(self) -> dict[str, dict]:
        """All persisted tab session records keyed by site id."""
        with self._connect() as conn:
            rows = conn.execute("SELECT site_id, record FROM tab_sessions").fetchall()
        return {row["site_id"]: json.loads(row["record"]) for row in rows}

    def save_tab_session(self, site_id: str, record: dict) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO tab_sessions (site_id, record, updated_at) VALUES (?, ?, ?)",
                (site_id, json.dumps(record, sort_keys=True), time.time()),
            )

    def delete_tab_session(self, site_id: str) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute("DELETE FROM tab_sessions WHERE site_id = ?", (site_id,))

    def prune_tab_sessions(self, keep_ids: set[str]) -> list[str]:
        """Delete session records whose site id is not in `keep_ids`.

        Returns the removed ids.
        """
        with self._write_lock, self._connect() as conn:
            stored = [row["site_id"] for row in conn.execute("SELECT site_id FROM tab_sessions")]
            orphans = [site_id for site_id in stored if site_id not in keep_ids]
            conn.executemany(
                "DELETE FROM tab_sessions WHERE site_id = ?",
                [(site_id,) for site_id in orphans],
            )
        if orphans:
            logger.info("Pruned %d orphaned tab session(s)", len(orphans))
        return orphans

    # ---- Filter-list source ----

    def load_filter_source(self) -> dict | None:
        """Last successfully compiled block-list text with its HTTP validators."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT source_url, body, etag, last_modified, fetched_at FROM filter_source WHERE id = 1"
            ).fetchone()
        if not row:
            return None
        return {
            "source_url": row["source_url"],
            "body": row["body"],
            "etag": row["etag"],
            "last_modified": row["last_modified"],
            "fetched_at": row["fetched_at"],
        }

    def save_filter_source(
        self,
        source_url: str,
        body: str,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> None:
        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO filter_source
                    (id, source_url, body, etag, last_modified, fetched_at)
                VALUES (1, ?, ?, ?, ?, ?)
                """,
                (source_url, body, etag, last_modified, time.time()),
            )
